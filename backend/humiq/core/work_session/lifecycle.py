"""
Session Lifecycle Manager
=========================

Creates work sessions, records candidate events and reports session state.

Flow of createSession:
1. Validate role track, level and duration (nothing persisted on failure)
2. Fetch public work evidence best-effort
3. Pre-analyse substantial evidence into a candidate brief, best-effort
4. Persist the session and open its first stage in one transaction
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from humiq.core.config import settings
from humiq.core.schemas import CandidateBrief
from humiq.core.models import (
    EventType,
    RoleTrack,
    SessionLevel,
    SessionStatus,
    StageName,
    WorkSession,
    WorkSessionStage,
)
from humiq.core.work_session.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from humiq.core.work_session.event_log import EventLog, content_hash
from humiq.core.work_session.evidence import EvidenceFetcher
from humiq.core.work_session.generation import GenerationClient
from humiq.core.work_session.locks import SessionLocks, session_locks
from humiq.core.work_session.prompts import (
    BRIEF_INSTRUCTIONS,
    CANDIDATE_BRIEF_SCHEMA,
    build_brief_context,
)
from humiq.core.work_session.stages import StageController, parse_stage_name, stage_plan

logger = structlog.get_logger()


class JobContextProvider(Protocol):
    """Resolves a job posting id to title/description/requirements/tech stack."""

    async def get_job_context(self, job_posting_id: str) -> Optional[dict]: ...


@dataclass
class SessionState:
    """Session state derived from the stage rows and the event log."""
    session: WorkSession
    stages: list[WorkSessionStage]
    current_stage: Optional[StageName]
    stage_plan: list[StageName]
    event_count: int
    completion_eligible: bool

    @property
    def evidence_available(self) -> bool:
        return self.session.raw_work_evidence is not None


@dataclass
class RecordedEvent:
    event_id: UUID
    seq: int
    deduplicated: bool = False


@dataclass
class CreatedSession:
    session_id: UUID
    evidence_available: bool
    first_stage: StageName


async def load_session(db: AsyncSession, session_id: UUID, for_update: bool = False) -> WorkSession:
    """Load a session or raise NotFoundError."""
    query = select(WorkSession).where(WorkSession.id == session_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFoundError(f"Work session {session_id} not found")
    return session


def _parse_enum(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {label} '{value}'. Valid: {valid}")


class SessionLifecycleManager:
    """
    Entry point for creating sessions and appending candidate events.

    PROMPT events are never written here; they belong to the prompt policy.
    """

    def __init__(
        self,
        db: AsyncSession,
        evidence_fetcher: EvidenceFetcher,
        job_context_provider: Optional[JobContextProvider] = None,
        locks: Optional[SessionLocks] = None,
        evidence_timeout: Optional[float] = None,
        brief_generator: Optional[GenerationClient] = None,
        brief_timeout: Optional[float] = None,
    ):
        self.db = db
        self.evidence_fetcher = evidence_fetcher
        self.job_context_provider = job_context_provider
        self.brief_generator = brief_generator
        self.brief_timeout = brief_timeout or settings.BRIEF_TIMEOUT_SECONDS
        self.locks = locks if locks is not None else session_locks
        self.evidence_timeout = evidence_timeout or settings.EVIDENCE_FETCH_TIMEOUT_SECONDS
        self.stages = StageController(db)
        self.events = EventLog(db)

    # ==========================================================================
    # Create
    # ==========================================================================

    async def create_session(
        self,
        evidence_source_ref: str,
        role_track: str,
        level: str,
        duration_minutes: int,
        job_posting_id: Optional[str] = None,
        job_context: Optional[dict] = None,
    ) -> CreatedSession:
        """
        Create a work session and open its first stage.

        Args:
            evidence_source_ref: Link to the candidate's public work
            role_track: backend | frontend
            level: junior | mid | senior
            duration_minutes: One of the allowed session lengths
            job_posting_id: Resolved through the job context provider
            job_context: Inline job context; wins over job_posting_id

        Returns:
            CreatedSession with the new id and whether evidence was obtained

        Raises:
            ValidationError: Bad enum or duration, or a job_posting_id with no
                provider to resolve it; nothing is persisted
        """
        if not evidence_source_ref or not evidence_source_ref.strip():
            raise ValidationError("evidence_source_ref is required")
        track = _parse_enum(RoleTrack, role_track, "role track")
        session_level = _parse_enum(SessionLevel, level, "level")
        if duration_minutes not in settings.ALLOWED_DURATIONS:
            allowed = ", ".join(str(d) for d in settings.ALLOWED_DURATIONS)
            raise ValidationError(f"Invalid duration {duration_minutes}. Allowed: {allowed}")
        if job_posting_id and job_context is None and self.job_context_provider is None:
            raise ValidationError("job_posting_id cannot be resolved: no job context provider is configured")

        evidence = await self._fetch_evidence(evidence_source_ref)
        work_brief = await self._generate_brief(evidence_source_ref, evidence)

        if job_context is None and job_posting_id and self.job_context_provider:
            job_context = await self.job_context_provider.get_job_context(job_posting_id)

        session = WorkSession(
            evidence_source_ref=evidence_source_ref.strip(),
            role_track=track,
            level=session_level,
            duration_minutes=duration_minutes,
            status=SessionStatus.ACTIVE,
            raw_work_evidence=evidence,
            work_brief=work_brief,
            job_context=job_context,
        )
        try:
            self.db.add(session)
            await self.db.flush()
            first = await self.stages.start_first(session)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "work_session_created",
            session_id=str(session.id),
            role_track=track.value,
            level=session_level.value,
            duration_minutes=duration_minutes,
            evidence_available=evidence is not None,
            work_brief=work_brief is not None,
        )
        return CreatedSession(
            session_id=session.id,
            evidence_available=evidence is not None,
            first_stage=first.stage_name,
        )

    async def _fetch_evidence(self, evidence_source_ref: str) -> Optional[str]:
        """Absence of evidence is a signal, never an error."""
        try:
            evidence = await asyncio.wait_for(
                self.evidence_fetcher.fetch(evidence_source_ref),
                timeout=self.evidence_timeout,
            )
        except Exception as e:
            logger.warning(
                "evidence_fetch_failed",
                ref=evidence_source_ref,
                error=str(e) or type(e).__name__,
            )
            return None
        return evidence or None

    async def _generate_brief(
        self, evidence_source_ref: str, evidence: Optional[str]
    ) -> Optional[dict]:
        """
        Pre-analyse the work evidence once, for reuse at completion.

        Skipped when no brief generator is wired or the evidence is too
        thin to analyse. A failed or malformed brief is simply absent.
        """
        if self.brief_generator is None or evidence is None:
            return None
        if len(evidence) <= settings.BRIEF_MIN_EVIDENCE_CHARS:
            return None

        try:
            result = await asyncio.wait_for(
                self.brief_generator.generate(
                    BRIEF_INSTRUCTIONS, CANDIDATE_BRIEF_SCHEMA, build_brief_context(evidence)
                ),
                timeout=self.brief_timeout,
            )
            brief = CandidateBrief.model_validate(result)
        except Exception as e:
            logger.warning(
                "candidate_brief_failed",
                ref=evidence_source_ref,
                error=str(e) or type(e).__name__,
            )
            return None

        logger.info("candidate_brief_generated", ref=evidence_source_ref, verdict=brief.verdict)
        return brief.model_dump(mode="json", by_alias=True, exclude_none=True)

    # ==========================================================================
    # Events
    # ==========================================================================

    async def record_event(
        self,
        session_id: UUID,
        event_type: str,
        text: Optional[str] = None,
        code: Optional[str] = None,
        language: Optional[str] = None,
        stage_name: Optional[str] = None,
    ) -> RecordedEvent:
        """
        Append a RESPONSE or CODE_SNAPSHOT to an active session.

        A CODE_SNAPSHOT identical to the session's latest snapshot is not
        written again; the existing event is returned instead.

        Raises:
            ValidationError: Unsupported event type or empty payload
            NotFoundError: Unknown session
            ConflictError: Session completed, or stage is not the open one
        """
        kind = _parse_enum(EventType, event_type, "event type")
        if kind == EventType.PROMPT:
            raise ValidationError("PROMPT events are generated by the interviewer, not recorded")
        if kind == EventType.RESPONSE and not (text and text.strip()):
            raise ValidationError("RESPONSE events require non-empty text")
        if kind == EventType.CODE_SNAPSHOT and code is None:
            raise ValidationError("CODE_SNAPSHOT events require code")
        claimed_stage = parse_stage_name(stage_name) if stage_name else None

        async with self.locks.hold(session_id):
            try:
                session = await load_session(self.db, session_id, for_update=True)
                if session.status == SessionStatus.COMPLETED:
                    raise ConflictError(f"Session {session_id} is already completed")

                open_stage = await self.stages.open_stage(session_id)
                if claimed_stage is not None:
                    await self.stages.require_open_stage(session, claimed_stage)
                elif open_stage is None:
                    raise ConflictError(
                        f"Session {session_id} has no open stage; it is awaiting completion"
                    )

                if kind == EventType.RESPONSE:
                    event = await self.events.append(
                        session_id, kind, open_stage.stage_name, {"text": text.strip()}
                    )
                    recorded = RecordedEvent(event_id=event.id, seq=event.seq)
                else:
                    recorded = await self._append_snapshot(
                        session_id, open_stage.stage_name, code, language
                    )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        return recorded

    async def _append_snapshot(
        self,
        session_id: UUID,
        stage: StageName,
        code: str,
        language: Optional[str],
    ) -> RecordedEvent:
        digest = content_hash(code)
        latest = await self.events.last_event(session_id, EventType.CODE_SNAPSHOT)
        if latest is not None and latest.content_hash == digest:
            logger.debug("code_snapshot_deduplicated", session_id=str(session_id), seq=latest.seq)
            return RecordedEvent(event_id=latest.id, seq=latest.seq, deduplicated=True)

        event = await self.events.append(
            session_id,
            EventType.CODE_SNAPSHOT,
            stage,
            {"code": code, "language": language},
            content_hash=digest,
        )
        return RecordedEvent(event_id=event.id, seq=event.seq)

    # ==========================================================================
    # State
    # ==========================================================================

    async def get_state(self, session_id: UUID) -> SessionState:
        """Current session state, recomputed from persisted rows."""
        session = await load_session(self.db, session_id)
        stages = await self.stages.list_stages(session_id)
        open_stages = [s for s in stages if s.is_open]
        event_count = await self.events.count(session_id)

        current = open_stages[0].stage_name if open_stages else None
        return SessionState(
            session=session,
            stages=stages,
            current_stage=current,
            stage_plan=stage_plan(session.duration_minutes),
            event_count=event_count,
            completion_eligible=session.status == SessionStatus.ACTIVE and current is None,
        )
