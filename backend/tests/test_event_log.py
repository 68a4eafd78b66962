"""
HumIQ Work Sessions - Event Log Tests
======================================

Append-only log: per-session sequence, monotonic timestamps, transcript
rendering.
"""

from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from humiq.core.models import EventType, StageName, WorkSessionEvent, utcnow
from humiq.core.work_session.event_log import (
    CONVERSATION_EVENTS,
    EventLog,
    build_transcript,
    collect_signal_tags,
    content_hash,
)


# ==========================================================================
# Append
# ==========================================================================

class TestAppend:
    """Tests for EventLog.append."""

    async def test_sequence_starts_at_one(self, db_session: AsyncSession, create_session):
        session_id = await create_session()
        log = EventLog(db_session)

        assert await log.head(session_id) == 0

        first = await log.append(session_id, EventType.PROMPT, StageName.FRAMING, {"text": "Q1"})
        second = await log.append(session_id, EventType.RESPONSE, StageName.FRAMING, {"text": "A1"})
        await db_session.commit()

        assert (first.seq, second.seq) == (1, 2)
        assert await log.head(session_id) == 2

    async def test_conversation_head_skips_snapshots(self, db_session: AsyncSession, create_session):
        session_id = await create_session()
        log = EventLog(db_session)

        await log.append(session_id, EventType.PROMPT, StageName.FRAMING, {"text": "Q1"})
        await log.append(session_id, EventType.CODE_SNAPSHOT, StageName.FRAMING, {"code": "x = 1"})
        await db_session.commit()

        assert await log.head(session_id) == 2
        assert await log.head(session_id, CONVERSATION_EVENTS) == 1
        assert await log.head(session_id, [EventType.RESPONSE]) == 0

    async def test_sequences_are_per_session(self, db_session: AsyncSession, create_session):
        one = await create_session()
        two = await create_session()
        log = EventLog(db_session)

        await log.append(one, EventType.PROMPT, StageName.FRAMING, {"text": "Q"})
        await log.append(one, EventType.RESPONSE, StageName.FRAMING, {"text": "A"})
        event = await log.append(two, EventType.PROMPT, StageName.FRAMING, {"text": "Q"})

        assert event.seq == 1

    async def test_created_at_never_goes_backwards(self, db_session: AsyncSession, create_session):
        """A clock stepping back must not reorder the log."""
        session_id = await create_session()
        log = EventLog(db_session)

        first = await log.append(session_id, EventType.PROMPT, StageName.FRAMING, {"text": "Q"})
        future = utcnow() + timedelta(minutes=5)
        first.created_at = future
        await db_session.flush()

        second = await log.append(session_id, EventType.RESPONSE, StageName.FRAMING, {"text": "A"})

        assert second.created_at >= first.created_at
        assert second.seq > first.seq

    async def test_list_events_in_write_order(self, db_session: AsyncSession, create_session):
        session_id = await create_session()
        log = EventLog(db_session)
        for i in range(3):
            await log.append(session_id, EventType.PROMPT, StageName.FRAMING, {"text": f"Q{i}"})
            await log.append(session_id, EventType.RESPONSE, StageName.FRAMING, {"text": f"A{i}"})
        await log.append(
            session_id, EventType.CODE_SNAPSHOT, StageName.FRAMING, {"code": "x = 1"}
        )
        await db_session.commit()

        events = await log.list_events(session_id)
        seqs = [e.seq for e in events]
        assert seqs == sorted(seqs)
        assert len(events) == 7

        dialogue = await log.list_events(session_id, [EventType.RESPONSE])
        assert [e.text for e in dialogue] == ["A0", "A1", "A2"]

    async def test_count_and_last_event_filters(self, db_session: AsyncSession, create_session):
        session_id = await create_session()
        log = EventLog(db_session)
        await log.append(session_id, EventType.PROMPT, StageName.FRAMING, {"text": "Q"})
        await log.append(session_id, EventType.RESPONSE, StageName.FRAMING, {"text": "A"})
        await log.append(session_id, EventType.PROMPT, StageName.APPROACH, {"text": "Q2"})

        assert await log.count(session_id) == 3
        assert await log.count(session_id, EventType.RESPONSE, StageName.FRAMING) == 1
        assert await log.count(session_id, EventType.RESPONSE, StageName.APPROACH) == 0

        last_prompt = await log.last_event(session_id, EventType.PROMPT)
        assert last_prompt.text == "Q2"
        assert await log.last_event(session_id, stage_name=StageName.BUILD) is None


# ==========================================================================
# Views
# ==========================================================================

def _event(seq: int, kind: EventType, stage: StageName, payload: dict) -> WorkSessionEvent:
    return WorkSessionEvent(
        seq=seq,
        event_type=kind,
        stage_name=stage,
        payload=payload,
        created_at=utcnow(),
    )


class TestTranscript:
    """Tests for transcript rendering."""

    def test_labels_speakers_and_stages(self):
        transcript = build_transcript(
            [
                _event(1, EventType.PROMPT, StageName.FRAMING, {"text": "What are we building?"}),
                _event(2, EventType.RESPONSE, StageName.FRAMING, {"text": "A ledger."}),
            ],
            preview_chars=500,
        )

        assert "INTERVIEWER (framing): What are we building?" in transcript
        assert "CANDIDATE (framing): A ledger." in transcript
        assert transcript.index("INTERVIEWER") < transcript.index("CANDIDATE")

    def test_code_snapshots_are_truncated(self):
        code = "a" * 600 + "TAIL"
        transcript = build_transcript(
            [_event(1, EventType.CODE_SNAPSHOT, StageName.BUILD, {"code": code})],
            preview_chars=500,
        )

        assert "CODE (build):" in transcript
        assert "a" * 500 in transcript
        assert "TAIL" not in transcript

    def test_empty_log(self):
        assert build_transcript([], preview_chars=500) == ""

    def test_collect_signal_tags_from_prompts_only(self):
        events = [
            _event(1, EventType.PROMPT, StageName.FRAMING, {"text": "Q", "signal_tags": []}),
            _event(2, EventType.RESPONSE, StageName.FRAMING, {"text": "A"}),
            _event(3, EventType.PROMPT, StageName.FRAMING, {"text": "Q", "signal_tags": ["Judgment"]}),
            _event(
                4, EventType.PROMPT, StageName.BUILD,
                {"text": "Q", "signal_tags": ["Execution", "Ownership"]},
            ),
        ]

        assert collect_signal_tags(events) == ["Judgment", "Execution", "Ownership"]

    def test_content_hash(self):
        assert content_hash("print(1)") == content_hash("print(1)")
        assert content_hash("print(1)") != content_hash("print(2)")
        assert len(content_hash("")) == 64
