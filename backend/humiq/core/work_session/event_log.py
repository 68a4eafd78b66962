"""
Event Log - append-only record of interview actions.

Events are written through `EventLog.append` only, in per-session
sequence order, and are never updated or deleted. Callers hold the
session lock (see `locks.py`) around any append.
"""

import hashlib
from collections.abc import Iterable, Sequence
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from humiq.core.models import EventType, StageName, WorkSessionEvent, utcnow

logger = structlog.get_logger()

# Code snapshots never invalidate a prompt decision or a transcript cutoff
CONVERSATION_EVENTS = (EventType.PROMPT, EventType.RESPONSE)


class EventLog:
    """Reads and appends work session events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_events(
        self,
        session_id: UUID,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> list[WorkSessionEvent]:
        """All events of a session in write order."""
        query = (
            select(WorkSessionEvent)
            .where(WorkSessionEvent.session_id == session_id)
            .order_by(WorkSessionEvent.seq)
        )
        if event_types is not None:
            query = query.where(WorkSessionEvent.event_type.in_(list(event_types)))

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def head(
        self,
        session_id: UUID,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> int:
        """Sequence number of the latest event, optionally of the given types (0 if none)."""
        query = select(func.max(WorkSessionEvent.seq)).where(
            WorkSessionEvent.session_id == session_id
        )
        if event_types is not None:
            query = query.where(WorkSessionEvent.event_type.in_(list(event_types)))

        result = await self.db.execute(query)
        return result.scalar_one_or_none() or 0

    async def last_event(
        self,
        session_id: UUID,
        event_type: Optional[EventType] = None,
        stage_name: Optional[StageName] = None,
    ) -> Optional[WorkSessionEvent]:
        query = select(WorkSessionEvent).where(WorkSessionEvent.session_id == session_id)
        if event_type is not None:
            query = query.where(WorkSessionEvent.event_type == event_type)
        if stage_name is not None:
            query = query.where(WorkSessionEvent.stage_name == stage_name)

        result = await self.db.execute(
            query.order_by(WorkSessionEvent.seq.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def count(
        self,
        session_id: UUID,
        event_type: Optional[EventType] = None,
        stage_name: Optional[StageName] = None,
    ) -> int:
        query = select(func.count(WorkSessionEvent.id)).where(
            WorkSessionEvent.session_id == session_id
        )
        if event_type is not None:
            query = query.where(WorkSessionEvent.event_type == event_type)
        if stage_name is not None:
            query = query.where(WorkSessionEvent.stage_name == stage_name)

        result = await self.db.execute(query)
        return result.scalar_one()

    async def append(
        self,
        session_id: UUID,
        event_type: EventType,
        stage_name: StageName,
        payload: dict,
        content_hash: Optional[str] = None,
    ) -> WorkSessionEvent:
        """
        Append one event at the end of the session's log.

        Flushes but does not commit; the caller owns the transaction.

        Args:
            session_id: Session the event belongs to
            event_type: PROMPT, RESPONSE or CODE_SNAPSHOT
            stage_name: Stage the event was recorded in
            payload: Event content
            content_hash: sha256 of snapshot code, if any

        Returns:
            The pending WorkSessionEvent
        """
        last = await self.last_event(session_id)
        seq = last.seq + 1 if last else 1

        # Clock skew must not reorder the log
        created_at = utcnow()
        if last and last.created_at > created_at:
            created_at = last.created_at

        event = WorkSessionEvent(
            session_id=session_id,
            seq=seq,
            event_type=event_type,
            stage_name=stage_name,
            payload=payload,
            content_hash=content_hash,
            created_at=created_at,
        )
        self.db.add(event)
        await self.db.flush()

        logger.debug(
            "event_appended",
            session_id=str(session_id),
            seq=seq,
            event_type=event_type.value,
            stage=stage_name.value,
        )
        return event


# ==========================================================================
# Log Views
# ==========================================================================

def content_hash(code: str) -> str:
    """Stable hash used to drop identical consecutive code snapshots."""
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def build_transcript(events: Sequence[WorkSessionEvent], preview_chars: int) -> str:
    """
    Render the log as one ordered transcript.

    Code snapshots are cut to `preview_chars` to respect downstream
    size limits.
    """
    lines = []
    for event in events:
        timestamp = event.created_at.strftime("%H:%M:%S")
        if event.event_type == EventType.PROMPT:
            lines.append(f"[{timestamp}] INTERVIEWER ({event.stage_name.value}): {event.text}")
        elif event.event_type == EventType.RESPONSE:
            lines.append(f"[{timestamp}] CANDIDATE ({event.stage_name.value}): {event.text}")
        elif event.event_type == EventType.CODE_SNAPSHOT:
            code = (event.payload.get("code") or "")[:preview_chars]
            lines.append(f"[{timestamp}] CODE ({event.stage_name.value}):\n```\n{code}\n```")
    return "\n\n".join(lines)


def collect_signal_tags(events: Iterable[WorkSessionEvent]) -> list[str]:
    """Signal tags recorded on PROMPT events, in log order."""
    tags: list[str] = []
    for event in events:
        if event.event_type == EventType.PROMPT:
            tags.extend(event.signal_tags)
    return tags
