"""
Stage Controller - sequences interview stages.

framing → approach → build → review (demo tier: framing → build)

The current stage is never cached: it is the session's single stage row
with ended_at = NULL, re-read on every operation.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from humiq.core.config import settings
from humiq.core.models import (
    SessionStatus,
    StageName,
    WorkSession,
    WorkSessionStage,
    utcnow,
)
from humiq.core.work_session.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


# Stage execution order
FULL_STAGE_PLAN = [
    StageName.FRAMING,
    StageName.APPROACH,
    StageName.BUILD,
    StageName.REVIEW,
]

# Demo sessions: one exchange in each of two stages
DEMO_STAGE_PLAN = [
    StageName.FRAMING,
    StageName.BUILD,
]


def stage_plan(duration_minutes: int) -> list[StageName]:
    """Ordered stages for a session of the given length."""
    if duration_minutes == settings.DEMO_DURATION_MINUTES:
        return list(DEMO_STAGE_PLAN)
    return list(FULL_STAGE_PLAN)


def parse_stage_name(value: str | StageName) -> StageName:
    try:
        return StageName(value)
    except ValueError:
        valid = ", ".join(s.value for s in StageName)
        raise ValidationError(f"Unknown stage '{value}'. Valid: {valid}")


def decide_stage_complete(
    *,
    responses_in_stage: int,
    collaborator_vote: bool,
    degraded: bool,
    is_demo: bool,
    max_responses: Optional[int] = None,
) -> bool:
    """
    Final stage-close decision after a candidate response.

    The collaborator's `stageComplete` is only a vote:
    - no response in the stage: never close
    - degraded (fallback) decision: never close
    - demo tier: close after the first response
    - response cap reached: close
    - otherwise: follow the vote
    """
    if max_responses is None:
        max_responses = settings.MAX_RESPONSES_PER_STAGE

    if responses_in_stage < 1:
        return False
    if degraded:
        return False
    if is_demo:
        return True
    if responses_in_stage >= max_responses:
        return True
    return collaborator_vote


class StageController:
    """
    Stage state machine backed by the work_session_stages table.

    Invariants:
    - at most one open stage per session
    - stage names only move forward through the session's plan
    - a stage closes only after a RESPONSE was logged for it
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_stages(self, session_id: UUID) -> list[WorkSessionStage]:
        """Stage rows of a session in plan order."""
        result = await self.db.execute(
            select(WorkSessionStage).where(WorkSessionStage.session_id == session_id)
        )
        order = list(StageName)
        return sorted(result.scalars().all(), key=lambda s: order.index(s.stage_name))

    async def open_stage(self, session_id: UUID) -> Optional[WorkSessionStage]:
        """The session's single open stage, if any."""
        result = await self.db.execute(
            select(WorkSessionStage).where(
                WorkSessionStage.session_id == session_id,
                WorkSessionStage.ended_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def start_first(self, session: WorkSession) -> WorkSessionStage:
        """Open the first stage of a freshly created session."""
        first = stage_plan(session.duration_minutes)[0]
        stage = WorkSessionStage(
            session_id=session.id,
            stage_name=first,
            started_at=utcnow(),
        )
        self.db.add(stage)
        await self.db.flush()

        logger.info(f"Opened stage {first.value} for session {session.id}")
        return stage

    async def require_open_stage(
        self, session: WorkSession, stage_name: StageName
    ) -> WorkSessionStage:
        """
        Resolve the stage a caller claims to be in.

        Raises:
            ConflictError: Session completed, no stage open, or the caller
                is on a different stage than the open one
            NotFoundError: Stage is not part of this session's plan
        """
        if session.status == SessionStatus.COMPLETED:
            raise ConflictError(f"Session {session.id} is already completed")

        plan = stage_plan(session.duration_minutes)
        if stage_name not in plan:
            raise NotFoundError(
                f"Stage '{stage_name.value}' is not part of this session "
                f"({', '.join(s.value for s in plan)})"
            )

        stage = await self.open_stage(session.id)
        if stage is None:
            raise ConflictError(
                f"Session {session.id} has no open stage; it is awaiting completion"
            )
        if stage.stage_name != stage_name:
            raise ConflictError(
                f"Stage '{stage_name.value}' is out of sequence; "
                f"current stage is '{stage.stage_name.value}'"
            )
        return stage

    async def advance(
        self,
        session: WorkSession,
        stage: WorkSessionStage,
        responses_in_stage: int,
    ) -> Optional[WorkSessionStage]:
        """
        Close `stage` and open the next one in the plan.

        Flushes but does not commit. A close request without any response
        in the stage is ignored.

        Returns:
            The stage open after the call: the next stage, the unchanged
            stage when the request was ignored, or None after the last stage
        """
        if responses_in_stage < 1:
            logger.warning(
                f"Ignoring close of stage {stage.stage_name.value} for session "
                f"{session.id}: no response recorded yet"
            )
            return stage

        if stage.ended_at is not None:
            raise ConflictError(f"Stage '{stage.stage_name.value}' is already closed")

        now = utcnow()
        stage.ended_at = now
        await self.db.flush()

        next_name = self._get_next_stage(session, stage.stage_name)
        if next_name is None:
            logger.info(
                f"Closed final stage {stage.stage_name.value} for session {session.id}; "
                "eligible for completion"
            )
            return None

        existing = await self.db.execute(
            select(WorkSessionStage.id).where(
                WorkSessionStage.session_id == session.id,
                WorkSessionStage.stage_name == next_name,
            )
        )
        if existing.first() is not None:
            raise ConflictError(f"Stage '{next_name.value}' was already run for this session")

        next_stage = WorkSessionStage(
            session_id=session.id,
            stage_name=next_name,
            started_at=now,
        )
        self.db.add(next_stage)
        await self.db.flush()

        logger.info(
            f"Advanced session {session.id}: {stage.stage_name.value} -> {next_name.value}"
        )
        return next_stage

    async def close_open_stages(self, session_id: UUID) -> int:
        """Close whatever stage is still open. Returns how many were closed."""
        result = await self.db.execute(
            select(WorkSessionStage).where(
                WorkSessionStage.session_id == session_id,
                WorkSessionStage.ended_at.is_(None),
            )
        )
        now = utcnow()
        closed = 0
        for stage in result.scalars().all():
            stage.ended_at = now
            closed += 1
        if closed:
            await self.db.flush()
        return closed

    def _get_next_stage(
        self, session: WorkSession, current: StageName
    ) -> Optional[StageName]:
        """Get the next stage in the session's plan."""
        plan = stage_plan(session.duration_minutes)
        idx = plan.index(current)
        if idx + 1 < len(plan):
            return plan[idx + 1]
        return None
