"""
HumIQ Work Session Engine
=========================

Runs a timed, staged interview as an append-only event log and closes it
with an Evidence Pack.

Components:
- EventLog: append-only interview record
- StageController: stage state machine (one open stage per session)
- SessionLifecycleManager: session creation, candidate events, state
- PromptGenerationPolicy: next question and stage decision
- EvidenceSynthesisPipeline: transcript -> Evidence Pack, session completion
- GatewayGenerationClient / GitHubEvidenceFetcher: collaborator clients
"""

from humiq.core.work_session.errors import (
    ConflictError,
    GenerationError,
    NotFoundError,
    RetryableError,
    SchemaError,
    ValidationError,
    WorkSessionError,
)
from humiq.core.work_session.event_log import EventLog
from humiq.core.work_session.evidence import EvidenceFetcher, GitHubEvidenceFetcher
from humiq.core.work_session.generation import (
    GatewayGenerationClient,
    GenerationClient,
    StructuredSchema,
)
from humiq.core.work_session.lifecycle import JobContextProvider, SessionLifecycleManager
from humiq.core.work_session.locks import SessionLocks, session_locks
from humiq.core.work_session.prompt_policy import PromptDecision, PromptGenerationPolicy
from humiq.core.work_session.stages import StageController, decide_stage_complete
from humiq.core.work_session.synthesis import CompletionResult, EvidenceSynthesisPipeline

__all__ = [
    "CompletionResult",
    "ConflictError",
    "EventLog",
    "EvidenceFetcher",
    "EvidenceSynthesisPipeline",
    "GatewayGenerationClient",
    "GenerationClient",
    "GenerationError",
    "GitHubEvidenceFetcher",
    "JobContextProvider",
    "NotFoundError",
    "PromptDecision",
    "PromptGenerationPolicy",
    "RetryableError",
    "SchemaError",
    "SessionLifecycleManager",
    "SessionLocks",
    "StageController",
    "StructuredSchema",
    "ValidationError",
    "WorkSessionError",
    "decide_stage_complete",
    "session_locks",
]
