"""
Evidence Synthesis Pipeline
===========================

Turns a finished interview into its Evidence Pack.

1. Snapshot (locked): refuse completed sessions, rebuild the transcript
   up to the current head (the cutoff)
2. Synthesize (unlocked): collaborator call under a hard timeout
3. Validate: malformed output is fatal, nothing is written
4. Finalize (locked): insert the pack, close open stages, mark the
   session completed; one transaction. Code snapshots written after the
   cutoff stay in the log but not in the pack; a PROMPT or RESPONSE
   written after it fails the call as retryable
"""

import asyncio
import secrets
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from humiq.core.config import settings
from humiq.core.models import (
    EventType,
    EvidencePack,
    RoleTrack,
    SessionStatus,
    WorkSession,
    utcnow,
)
from humiq.core.schemas import CandidateBrief, EvidencePackSummary, RiskOrUnknown
from humiq.core.work_session.errors import (
    ConflictError,
    NotFoundError,
    RetryableError,
    SchemaError,
    ValidationError,
)
from humiq.core.work_session.event_log import (
    CONVERSATION_EVENTS,
    EventLog,
    build_transcript,
    collect_signal_tags,
)
from humiq.core.work_session.generation import GenerationClient
from humiq.core.work_session.lifecycle import load_session
from humiq.core.work_session.locks import SessionLocks, session_locks
from humiq.core.work_session.prompts import (
    EVIDENCE_PACK_INSTRUCTIONS,
    EVIDENCE_PACK_SCHEMA,
    NO_EVIDENCE_GAP,
    build_synthesis_context,
)
from humiq.core.work_session.stages import StageController

logger = structlog.get_logger()


NO_RESPONSES_GAP = "The candidate gave no responses during the session."


@dataclass
class CompletionResult:
    evidence_pack_id: UUID
    share_id: str


@dataclass
class _Snapshot:
    cutoff: int
    conversation_head: int
    role_track: RoleTrack
    evidence_available: bool
    response_count: int
    context: str
    work_brief: Optional[dict] = None


def new_share_id() -> str:
    """Unguessable public identifier for a pack link."""
    return secrets.token_urlsafe(16)


def enforce_summary(
    summary: EvidencePackSummary,
    role_track: RoleTrack,
    evidence_available: bool,
    response_count: int,
    work_brief: Optional[dict] = None,
) -> EvidencePackSummary:
    """
    Apply the rules the collaborator cannot be trusted with.

    The role track always comes from the session, and a missing source
    of evidence is always listed as a gap. A candidate brief fills the
    name, artifacts and signals the collaborator left empty, and always
    supplies the validation plan.
    """
    risks = list(summary.risks_or_unknowns)
    known_gaps = {risk.evidence_gap for risk in risks}

    if not evidence_available and NO_EVIDENCE_GAP not in known_gaps:
        risks.append(RiskOrUnknown(signal="Public work evidence", evidence_gap=NO_EVIDENCE_GAP))
    if response_count == 0 and NO_RESPONSES_GAP not in known_gaps:
        risks.append(RiskOrUnknown(signal="Interview responses", evidence_gap=NO_RESPONSES_GAP))

    update: dict = {"role_track": role_track, "risks_or_unknowns": risks}
    if work_brief:
        brief = CandidateBrief.model_validate(work_brief)
        if brief.candidate_name and summary.candidate_name in (None, "", "Unknown"):
            update["candidate_name"] = brief.candidate_name
        if not summary.work_artifacts:
            update["work_artifacts"] = brief.work_artifacts
        if not summary.signal_synthesis:
            update["signal_synthesis"] = brief.signal_synthesis
        if brief.validation_plan is not None:
            update["validation_plan"] = brief.validation_plan

    return summary.model_copy(update=update)


class EvidenceSynthesisPipeline:
    """
    Completes sessions and serves their Evidence Packs.

    Usage:
        pipeline = EvidenceSynthesisPipeline(db, generator)
        result = await pipeline.complete_session(session_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        generator: GenerationClient,
        locks: Optional[SessionLocks] = None,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.generator = generator
        self.locks = locks if locks is not None else session_locks
        self.timeout = timeout or settings.SYNTHESIS_TIMEOUT_SECONDS
        self.stages = StageController(db)
        self.events = EventLog(db)

    async def complete_session(self, session_id: UUID) -> CompletionResult:
        """
        Synthesize and persist the Evidence Pack, then close the session.

        Returns:
            CompletionResult with the pack id and its public share id

        Raises:
            NotFoundError: Unknown session
            ConflictError: Session already completed (no writes)
            RetryableError: Collaborator timeout/rate limit or concurrent write
            SchemaError: Collaborator output failed validation (no writes)
            GenerationError: Collaborator rejected the request
        """
        log = logger.bind(session_id=str(session_id))

        async with self.locks.hold(session_id):
            snapshot = await self._snapshot(session_id)

        summary = await self._synthesize(snapshot, log)
        summary = enforce_summary(
            summary,
            snapshot.role_track,
            snapshot.evidence_available,
            snapshot.response_count,
            snapshot.work_brief,
        )

        async with self.locks.hold(session_id):
            try:
                result = await self._finalize(session_id, snapshot, summary)
                await self.db.commit()
            except IntegrityError as e:
                await self.db.rollback()
                raise ConflictError(f"Evidence pack already exists for session {session_id}") from e
            except Exception:
                await self.db.rollback()
                raise

        log.info(
            "evidence_pack_created",
            evidence_pack_id=str(result.evidence_pack_id),
            confidence=summary.confidence,
            risks=len(summary.risks_or_unknowns),
        )
        return result

    async def _snapshot(self, session_id: UUID) -> _Snapshot:
        try:
            self.db.expire_all()
            session = await load_session(self.db, session_id)
            if session.status == SessionStatus.COMPLETED:
                raise ConflictError(f"Session {session_id} is already completed")

            events = await self.events.list_events(session_id)
            transcript = build_transcript(events, settings.CODE_SNAPSHOT_PREVIEW_CHARS)
            context = build_synthesis_context(
                role_track=session.role_track.value,
                level=session.level.value,
                duration_minutes=session.duration_minutes,
                evidence_source_ref=session.evidence_source_ref,
                evidence=session.raw_work_evidence,
                transcript=transcript,
                signal_tags=collect_signal_tags(events),
                evidence_chars=settings.SYNTHESIS_EVIDENCE_CHARS,
                work_brief=session.work_brief,
            )
            snapshot = _Snapshot(
                cutoff=events[-1].seq if events else 0,
                conversation_head=max(
                    (e.seq for e in events if e.event_type in CONVERSATION_EVENTS), default=0
                ),
                role_track=session.role_track,
                evidence_available=session.raw_work_evidence is not None,
                response_count=sum(1 for e in events if e.event_type == EventType.RESPONSE),
                context=context,
                work_brief=session.work_brief,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return snapshot

    async def _synthesize(self, snapshot: _Snapshot, log) -> EvidencePackSummary:
        try:
            result = await asyncio.wait_for(
                self.generator.generate(
                    EVIDENCE_PACK_INSTRUCTIONS, EVIDENCE_PACK_SCHEMA, snapshot.context
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            log.warning("evidence_synthesis_timeout", timeout=self.timeout)
            raise RetryableError("Evidence synthesis timed out. Please retry.") from e
        except SchemaError as e:
            log.error("evidence_synthesis_malformed", reason=e.message)
            raise

        try:
            return EvidencePackSummary.model_validate(result)
        except SchemaValidationError as e:
            log.error("evidence_pack_invalid", errors=e.error_count())
            raise SchemaError(
                f"Evidence pack failed validation ({e.error_count()} errors)",
                raw_text=str(result)[:2000],
            ) from e

    async def _finalize(
        self,
        session_id: UUID,
        snapshot: _Snapshot,
        summary: EvidencePackSummary,
    ) -> CompletionResult:
        self.db.expire_all()
        session = await load_session(self.db, session_id, for_update=True)
        if session.status == SessionStatus.COMPLETED:
            raise ConflictError(f"Session {session_id} is already completed")
        conversation_head = await self.events.head(session_id, CONVERSATION_EVENTS)
        if conversation_head != snapshot.conversation_head:
            raise RetryableError("Session changed while synthesizing. Please retry.")

        now = utcnow()
        pack = EvidencePack(
            session_id=session_id,
            public_share_id=new_share_id(),
            summary_json=summary.model_dump(mode="json", by_alias=True, exclude_none=True),
            generated_at=now,
        )
        self.db.add(pack)
        await self.db.flush()

        closed = await self.stages.close_open_stages(session_id)
        session.status = SessionStatus.COMPLETED
        session.ended_at = now
        await self.db.flush()

        logger.info(
            "work_session_completed",
            session_id=str(session_id),
            closed_stages=closed,
            transcript_cutoff=snapshot.cutoff,
        )
        return CompletionResult(evidence_pack_id=pack.id, share_id=pack.public_share_id)

    # ==========================================================================
    # Read
    # ==========================================================================

    async def get_pack(
        self,
        share_id: Optional[str] = None,
        session_id: Optional[UUID] = None,
    ) -> tuple[EvidencePack, WorkSession]:
        """Stored pack and its session, looked up by share id or session id."""
        if share_id is None and session_id is None:
            raise ValidationError("share_id or session_id is required")

        query = select(EvidencePack, WorkSession).join(
            WorkSession, WorkSession.id == EvidencePack.session_id
        )
        if share_id is not None:
            query = query.where(EvidencePack.public_share_id == share_id)
        else:
            query = query.where(EvidencePack.session_id == session_id)

        row = (await self.db.execute(query)).first()
        if row is None:
            raise NotFoundError("Evidence pack not found")
        return row[0], row[1]
