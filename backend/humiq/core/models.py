"""
HumIQ Work Sessions - Database Models
======================================

SQLAlchemy models for the work session engine.

The event log (`work_session_events`) is the source of truth; session
status and the open stage are always re-derivable from it and from the
stage rows.
"""

import enum
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from humiq.core.config import settings
from humiq.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back as UTC.

    SQLite drops the offset on storage, so naive values read back are
    tagged as UTC here.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ==========================================================================
# Enums
# ==========================================================================

class RoleTrack(str, enum.Enum):
    """Engineering track the candidate is interviewed for."""
    BACKEND = "backend"
    FRONTEND = "frontend"


class SessionLevel(str, enum.Enum):
    """Target seniority."""
    JUNIOR = "junior"
    MID = "mid"
    SENIOR = "senior"


class SessionStatus(str, enum.Enum):
    """Work session lifecycle status."""
    ACTIVE = "active"
    COMPLETED = "completed"


class StageName(str, enum.Enum):
    """Interview stages, declared in their fixed order."""
    FRAMING = "framing"      # Understanding the problem
    APPROACH = "approach"    # Solution design
    BUILD = "build"          # Implementation / pseudocode
    REVIEW = "review"        # Testing, edge cases, hardening


class EventType(str, enum.Enum):
    """Kinds of entries in the session event log."""
    PROMPT = "PROMPT"
    RESPONSE = "RESPONSE"
    CODE_SNAPSHOT = "CODE_SNAPSHOT"


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ==========================================================================
# Models
# ==========================================================================

class WorkSession(Base, TimestampMixin):
    """
    A timed, staged interview for one candidate.

    Mutated only by stage transitions (ended_at) and by the final
    evidence synthesis (status -> completed).
    """

    __tablename__ = "work_sessions"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    # Inputs
    evidence_source_ref: Mapped[str] = mapped_column(
        String(2000),
        nullable=False,
    )  # e.g. https://github.com/alice
    role_track: Mapped[RoleTrack] = mapped_column(
        Enum(RoleTrack),
        nullable=False,
    )
    level: Mapped[SessionLevel] = mapped_column(
        Enum(SessionLevel),
        nullable=False,
    )
    duration_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # Status
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus),
        default=SessionStatus.ACTIVE,
        nullable=False,
        index=True,
    )

    # Context
    raw_work_evidence: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )  # None when the evidence fetch came back empty or failed
    work_brief: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )  # CandidateBrief pre-analysis of raw_work_evidence, if one was produced
    job_context: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )  # {title, description, requirements, tech_stack}

    # Timing
    started_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    @property
    def is_demo(self) -> bool:
        return self.duration_minutes == settings.DEMO_DURATION_MINUTES

    def __repr__(self) -> str:
        return f"<WorkSession {self.id} [{self.status.value}]>"


class WorkSessionStage(Base, TimestampMixin):
    """
    One stage of a work session.

    At most one row per session has ended_at = NULL; the partial unique
    index enforces it at the database level.
    """

    __tablename__ = "work_session_stages"
    __table_args__ = (
        UniqueConstraint("session_id", "stage_name", name="uq_work_session_stages_name"),
        Index(
            "uq_work_session_stages_open",
            "session_id",
            unique=True,
            sqlite_where=text("ended_at IS NULL"),
            postgresql_where=text("ended_at IS NULL"),
        ),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    session_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("work_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_name: Mapped[StageName] = mapped_column(
        Enum(StageName),
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<WorkSessionStage {self.stage_name.value} [{state}]>"


class WorkSessionEvent(Base):
    """
    Append-only interview log entry.

    Never updated after insert. `seq` is the per-session write order and
    created_at never decreases along it.
    """

    __tablename__ = "work_session_events"
    __table_args__ = (
        UniqueConstraint("session_id", "seq", name="uq_work_session_events_seq"),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    session_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("work_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    seq: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    event_type: Mapped[EventType] = mapped_column(
        Enum(EventType),
        nullable=False,
    )
    stage_name: Mapped[StageName] = mapped_column(
        Enum(StageName),
        nullable=False,
    )
    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
    )  # PROMPT: {text, signal_tags, decision}; RESPONSE: {text}; CODE_SNAPSHOT: {code, language}
    content_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
    )  # sha256 of CODE_SNAPSHOT code
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
    )

    @property
    def text(self) -> str:
        return self.payload.get("text") or ""

    @property
    def signal_tags(self) -> list[str]:
        return list(self.payload.get("signal_tags") or [])

    def __repr__(self) -> str:
        return f"<WorkSessionEvent #{self.seq} {self.event_type.value}/{self.stage_name.value}>"


class EvidencePack(Base, TimestampMixin):
    """
    Synthesized end-of-session report.

    Exactly one per completed session, written once and never mutated.
    """

    __tablename__ = "evidence_packs"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    session_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("work_sessions.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    public_share_id: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        index=True,
        nullable=False,
    )
    summary_json: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
    )
    generated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<EvidencePack {self.public_share_id} session={self.session_id}>"
