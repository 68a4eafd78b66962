"""
Prompt Generation Policy
========================

Decides the next interview question and whether the current stage has
enough signal.

One call runs in three phases so the per-session lock is never held
across the generation round trip:

1. Snapshot (locked): validate the stage, read the log into plain data
2. Generate (unlocked): ask the collaborator, bounded by a timeout
3. Commit (locked): re-check no PROMPT or RESPONSE landed meanwhile,
   append RESPONSE/PROMPT, advance the stage; all in one transaction

A timeout or a concurrent write fails the call as retryable with nothing
persisted. Malformed collaborator output degrades to a fallback prompt.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from humiq.core.config import settings
from humiq.core.models import EventType, SessionStatus, StageName
from humiq.core.schemas import NextPromptDecision, OpeningPrompt
from humiq.core.work_session.errors import ConflictError, RetryableError, SchemaError
from humiq.core.work_session.event_log import CONVERSATION_EVENTS, EventLog
from humiq.core.work_session.generation import GenerationClient
from humiq.core.work_session.lifecycle import load_session
from humiq.core.work_session.locks import SessionLocks, session_locks
from humiq.core.work_session.prompts import (
    FALLBACK_QUESTION,
    INTERVIEWER_INSTRUCTIONS,
    NEXT_PROMPT_SCHEMA,
    OPENING_PROMPT_SCHEMA,
    build_prompt_context,
)
from humiq.core.work_session.stages import (
    StageController,
    decide_stage_complete,
    parse_stage_name,
)

logger = structlog.get_logger()


@dataclass
class PromptDecision:
    """Outcome of one nextPrompt call."""
    next_prompt: str
    stage_complete: bool
    signal_tags: list[str]
    current_stage: Optional[StageName]
    fallback: bool = False
    event_id: Optional[UUID] = None


@dataclass
class _Snapshot:
    """Everything phase 2 needs, detached from the ORM session."""
    stage: StageName
    head: int
    role_track: str
    level: str
    duration_minutes: int
    is_demo: bool
    evidence: Optional[str]
    job_context: Optional[dict]
    conversation: list[tuple[str, str]] = field(default_factory=list)
    latest_response: Optional[str] = None
    pending_response: Optional[str] = None
    responses_in_stage: int = 0


@dataclass
class _Generated:
    text: str
    collaborator_vote: bool
    signal_tags: list[str]
    degraded: bool
    source: str


class PromptGenerationPolicy:
    """
    Drives the interview one question at a time.

    Usage:
        policy = PromptGenerationPolicy(db, generator)
        decision = await policy.next_prompt(session_id, "framing", "I'd start by...")
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
        self.timeout = timeout or settings.PROMPT_TIMEOUT_SECONDS
        self.stages = StageController(db)
        self.events = EventLog(db)

    async def next_prompt(
        self,
        session_id: UUID,
        current_stage: str,
        candidate_response: Optional[str] = None,
    ) -> PromptDecision:
        """
        Generate and persist the next interviewer prompt.

        Args:
            session_id: Work session id
            current_stage: Stage the caller believes is open
            candidate_response: Latest answer, if the candidate just replied

        Returns:
            PromptDecision with the prompt, the final stage decision and the
            stage open after the call

        Raises:
            ValidationError: Unknown stage name
            NotFoundError: Unknown session, or stage not in the session's plan
            ConflictError: Session completed or stage out of sequence
            RetryableError: Collaborator timeout/rate limit or a concurrent write
            GenerationError: Collaborator rejected the request
        """
        stage_name = parse_stage_name(current_stage)
        response_text = (candidate_response or "").strip() or None
        log = logger.bind(session_id=str(session_id), stage=stage_name.value)

        async with self.locks.hold(session_id):
            snapshot = await self._snapshot(session_id, stage_name, response_text)

        generated = await self._generate(snapshot, log)

        async with self.locks.hold(session_id):
            try:
                decision = await self._commit(session_id, snapshot, generated, log)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        log.info(
            "prompt_generated",
            stage_complete=decision.stage_complete,
            signal_tags=decision.signal_tags,
            fallback=decision.fallback,
            current_stage=decision.current_stage.value if decision.current_stage else None,
        )
        return decision

    # ==========================================================================
    # Phase 1: Snapshot
    # ==========================================================================

    async def _snapshot(
        self,
        session_id: UUID,
        stage_name: StageName,
        response_text: Optional[str],
    ) -> _Snapshot:
        try:
            self.db.expire_all()
            session = await load_session(self.db, session_id)
            await self.stages.require_open_stage(session, stage_name)

            events = await self.events.list_events(session_id, CONVERSATION_EVENTS)
            head = events[-1].seq if events else 0
            last_in_stage = next(
                (e for e in reversed(events) if e.stage_name == stage_name), None
            )
            responses = await self.events.count(
                session_id, EventType.RESPONSE, stage_name=stage_name
            )

            snapshot = _Snapshot(
                stage=stage_name,
                head=head,
                role_track=session.role_track.value,
                level=session.level.value,
                duration_minutes=session.duration_minutes,
                is_demo=session.is_demo,
                evidence=session.raw_work_evidence,
                job_context=session.job_context,
                responses_in_stage=responses,
            )

            already_logged = (
                last_in_stage is not None
                and last_in_stage.event_type == EventType.RESPONSE
            )
            if response_text is not None:
                snapshot.latest_response = response_text
                if not (already_logged and last_in_stage.text == response_text):
                    snapshot.pending_response = response_text
                    snapshot.responses_in_stage += 1
            elif already_logged:
                # Answer was recorded through the event endpoint
                snapshot.latest_response = last_in_stage.text

            latest_id = last_in_stage.id if already_logged else None
            for event in events:
                if event.id == latest_id and snapshot.latest_response == event.text:
                    continue
                speaker = "Interviewer" if event.event_type == EventType.PROMPT else "Candidate"
                snapshot.conversation.append((speaker, event.text))

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return snapshot

    # ==========================================================================
    # Phase 2: Generate
    # ==========================================================================

    async def _generate(self, snapshot: _Snapshot, log) -> _Generated:
        opening = snapshot.latest_response is None
        schema = OPENING_PROMPT_SCHEMA if opening else NEXT_PROMPT_SCHEMA
        context = build_prompt_context(
            role_track=snapshot.role_track,
            level=snapshot.level,
            duration_minutes=snapshot.duration_minutes,
            is_demo=snapshot.is_demo,
            stage_name=snapshot.stage.value,
            conversation=snapshot.conversation,
            candidate_response=snapshot.latest_response,
            evidence=snapshot.evidence,
            job_context=snapshot.job_context,
            evidence_chars=settings.PROMPT_EVIDENCE_CHARS,
        )

        result: dict[str, Any] = {}
        try:
            result = await asyncio.wait_for(
                self.generator.generate(INTERVIEWER_INSTRUCTIONS, schema, context),
                timeout=self.timeout,
            )
            if opening:
                parsed = OpeningPrompt.model_validate(result)
                return _Generated(parsed.next_prompt, False, [], degraded=False, source="opening")
            parsed = NextPromptDecision.model_validate(result)
            return _Generated(
                parsed.next_prompt,
                parsed.stage_complete,
                [tag.value for tag in parsed.signal_tags],
                degraded=False,
                source="collaborator",
            )
        except asyncio.TimeoutError as e:
            log.warning("prompt_generation_timeout", timeout=self.timeout)
            raise RetryableError("Prompt generation timed out. Please retry.") from e
        except SchemaError as e:
            log.warning("prompt_fallback_used", reason=e.message)
            return self._fallback(e.raw_text)
        except SchemaValidationError as e:
            log.warning("prompt_fallback_used", reason=f"{e.error_count()} validation errors")
            candidate = result.get("nextPrompt") if isinstance(result, dict) else None
            return self._fallback(candidate if isinstance(candidate, str) else None)

    @staticmethod
    def _fallback(raw_text: Optional[str]) -> _Generated:
        text = (raw_text or "").strip() or FALLBACK_QUESTION
        return _Generated(text, False, [], degraded=True, source="fallback")

    # ==========================================================================
    # Phase 3: Commit
    # ==========================================================================

    async def _commit(
        self,
        session_id: UUID,
        snapshot: _Snapshot,
        generated: _Generated,
        log,
    ) -> PromptDecision:
        self.db.expire_all()
        session = await load_session(self.db, session_id, for_update=True)
        if session.status == SessionStatus.COMPLETED:
            raise ConflictError(f"Session {session_id} was completed while generating")

        stage = await self.stages.open_stage(session_id)
        if stage is None or stage.stage_name != snapshot.stage:
            raise RetryableError("Stage changed while generating. Please retry.")
        if await self.events.head(session_id, CONVERSATION_EVENTS) != snapshot.head:
            log.info("prompt_commit_raced", expected_head=snapshot.head)
            raise RetryableError("Session changed while generating. Please retry.")

        if snapshot.pending_response is not None:
            await self.events.append(
                session_id,
                EventType.RESPONSE,
                snapshot.stage,
                {"text": snapshot.pending_response},
            )

        if snapshot.latest_response is None:
            stage_complete = False
        else:
            stage_complete = decide_stage_complete(
                responses_in_stage=snapshot.responses_in_stage,
                collaborator_vote=generated.collaborator_vote,
                degraded=generated.degraded,
                is_demo=snapshot.is_demo,
            )

        prompt = await self.events.append(
            session_id,
            EventType.PROMPT,
            snapshot.stage,
            {
                "text": generated.text,
                "signal_tags": generated.signal_tags,
                "decision": {
                    "stage_complete": stage_complete,
                    "collaborator_stage_complete": generated.collaborator_vote,
                    "source": generated.source,
                },
            },
        )

        current: Optional[StageName] = snapshot.stage
        if stage_complete:
            next_stage = await self.stages.advance(session, stage, snapshot.responses_in_stage)
            current = next_stage.stage_name if next_stage else None
            log.info(
                "stage_advanced",
                from_stage=snapshot.stage.value,
                to_stage=current.value if current else None,
            )

        return PromptDecision(
            next_prompt=generated.text,
            stage_complete=stage_complete,
            signal_tags=generated.signal_tags,
            current_stage=current,
            fallback=generated.degraded,
            event_id=prompt.id,
        )
