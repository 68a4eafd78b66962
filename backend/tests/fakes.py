"""
Deterministic stand-ins for the engine collaborators, plus query helpers
that read committed state through a fresh session.
"""

import asyncio
from typing import Any, Optional, Union
from uuid import UUID

from sqlalchemy import select

from humiq.core.models import (
    EvidencePack,
    StageName,
    WorkSession,
    WorkSessionEvent,
    WorkSessionStage,
)
from humiq.core.work_session.generation import StructuredSchema


def evidence_pack_payload(**overrides: Any) -> dict[str, Any]:
    """A valid generate_evidence_pack result."""
    payload: dict[str, Any] = {
        "roleTrack": "backend",
        "levelEstimate": "mid",
        "confidence": "medium",
        "strengths": [
            {"signal": "Judgment", "evidence": "Chose a queue over polling to keep writes ordered"},
        ],
        "risks_or_unknowns": [
            {"signal": "Testing", "evidence_gap": "No discussion of failure-mode tests"},
        ],
        "decision_log": [
            {
                "decision": "Use a single writer per session",
                "tradeoff": "Simplicity over throughput",
                "example": "\"One writer keeps the log ordered\"",
            },
        ],
        "execution_observations": [
            {"observation": "Sketched the schema first", "example": "Wrote the table before handlers"},
        ],
        "recommended_next_step": "15-min follow-up on testing strategy",
        "highlights": ["Clear tradeoffs", "Ordered log design", "Concise communication"],
    }
    payload.update(overrides)
    return payload


def candidate_brief_payload(**overrides: Any) -> dict[str, Any]:
    """A valid generate_candidate_brief result."""
    payload: dict[str, Any] = {
        "candidateName": "Alice Doe",
        "verdict": "pass",
        "confidence": "medium",
        "rationale": "Ships a ledger service with idempotent writes.",
        "workArtifacts": [
            {
                "id": "ledger",
                "title": "alice/ledger",
                "url": "https://github.com/alice/ledger",
                "whatItIs": "Double-entry ledger service",
                "whyItMatters": "Correctness under retries",
                "signals": ["Shipping", "Judgment"],
            },
        ],
        "signalSynthesis": [
            {"name": "Execution", "level": "high", "evidence": "Idempotent write path in alice/ledger"},
        ],
        "risksUnknowns": [{"id": "r1", "description": "No evidence of production operations"}],
        "validationPlan": {
            "riskToValidate": "Operating the ledger in production",
            "question": "How would you detect a double-posted entry?",
            "strongAnswer": "Reconciliation job plus an idempotency key per write",
        },
        "recommendation": {"verdict": "pass", "reasons": ["Real shipped service"]},
    }
    payload.update(overrides)
    return payload


Scripted = Union[dict[str, Any], Exception]


class FakeGenerator:
    """
    Scripted generation collaborator.

    Queued results are consumed per schema name; when a queue is empty a
    valid default for that schema is returned. An Exception in the queue
    is raised instead of returned.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.queues: dict[str, list[Scripted]] = {}
        self.calls: list[tuple[str, str]] = []

    def script(self, schema_name: str, *results: Scripted) -> None:
        self.queues.setdefault(schema_name, []).extend(results)

    async def generate(
        self,
        system_instructions: str,
        schema: StructuredSchema,
        context: str,
    ) -> dict[str, Any]:
        self.calls.append((schema.name, context))
        if self.delay:
            await asyncio.sleep(self.delay)

        queue = self.queues.get(schema.name) or []
        if queue:
            result = queue.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return self.default(schema.name)

    @staticmethod
    def default(schema_name: str) -> dict[str, Any]:
        if schema_name == "generate_opening_prompt":
            return {"nextPrompt": "What problem are we solving, and for whom?"}
        if schema_name == "generate_next_prompt":
            return {
                "nextPrompt": "Thanks. How would you handle a slow dependency?",
                "stageComplete": False,
                "signalTags": ["Judgment"],
            }
        if schema_name == "generate_evidence_pack":
            return evidence_pack_payload()
        if schema_name == "generate_candidate_brief":
            return candidate_brief_payload()
        raise AssertionError(f"Unexpected schema {schema_name}")

    def calls_for(self, schema_name: str) -> list[str]:
        return [context for name, context in self.calls if name == schema_name]


class FakeEvidenceFetcher:
    """Returns fixed evidence text, or raises a scripted error."""

    def __init__(self, evidence: Optional[str] = None, error: Optional[Exception] = None):
        self.evidence = evidence
        self.error = error
        self.refs: list[str] = []

    async def fetch(self, evidence_source_ref: str) -> Optional[str]:
        self.refs.append(evidence_source_ref)
        if self.error is not None:
            raise self.error
        return self.evidence

    async def aclose(self) -> None:
        pass


class StaticJobContextProvider:
    def __init__(self, contexts: dict[str, dict]):
        self.contexts = contexts

    async def get_job_context(self, job_posting_id: str) -> Optional[dict]:
        return self.contexts.get(job_posting_id)


# ==========================================================================
# Query Helpers
# ==========================================================================

async def fetch_events(session_factory, session_id: UUID) -> list[WorkSessionEvent]:
    """Events as committed, read through a fresh session."""
    async with session_factory() as db:
        result = await db.execute(
            select(WorkSessionEvent)
            .where(WorkSessionEvent.session_id == session_id)
            .order_by(WorkSessionEvent.seq)
        )
        return list(result.scalars().all())


async def fetch_stages(session_factory, session_id: UUID) -> list[WorkSessionStage]:
    """Stage rows in plan order."""
    async with session_factory() as db:
        result = await db.execute(
            select(WorkSessionStage).where(WorkSessionStage.session_id == session_id)
        )
        order = list(StageName)
        return sorted(result.scalars().all(), key=lambda s: order.index(s.stage_name))


async def fetch_session(session_factory, session_id: UUID) -> WorkSession:
    async with session_factory() as db:
        return await db.get(WorkSession, session_id)


async def fetch_packs(session_factory, session_id: UUID) -> list[EvidencePack]:
    async with session_factory() as db:
        result = await db.execute(
            select(EvidencePack).where(EvidencePack.session_id == session_id)
        )
        return list(result.scalars().all())
