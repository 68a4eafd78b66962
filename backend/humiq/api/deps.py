"""
HumIQ Work Sessions - API Dependencies
=======================================

Shared dependencies for FastAPI endpoints: collaborator clients, the
session lock registry and the engine components built on top of them.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from humiq.core.config import settings
from humiq.core.database import get_db
from humiq.core.work_session import (
    EvidenceFetcher,
    EvidenceSynthesisPipeline,
    GatewayGenerationClient,
    GenerationClient,
    GitHubEvidenceFetcher,
    JobContextProvider,
    PromptGenerationPolicy,
    SessionLifecycleManager,
    SessionLocks,
    session_locks,
)


# ==========================================================================
# Collaborators
# ==========================================================================

@lru_cache
def get_prompt_generator() -> GenerationClient:
    """Fast model with a tight token budget for interview prompts."""
    return GatewayGenerationClient(
        model=settings.PROMPT_MODEL,
        max_tokens=settings.PROMPT_MAX_TOKENS,
        timeout=settings.PROMPT_TIMEOUT_SECONDS,
    )


@lru_cache
def get_synthesis_generator() -> GenerationClient:
    """Larger model for Evidence Pack synthesis."""
    return GatewayGenerationClient(
        model=settings.SYNTHESIS_MODEL,
        timeout=settings.SYNTHESIS_TIMEOUT_SECONDS,
    )


@lru_cache
def get_evidence_fetcher() -> EvidenceFetcher:
    return GitHubEvidenceFetcher()


def get_brief_generator(
    generator: GenerationClient = Depends(get_synthesis_generator),
) -> Optional[GenerationClient]:
    """Candidate briefs run on the synthesis model, unless disabled."""
    return generator if settings.BRIEF_ENABLED else None


def get_job_context_provider() -> Optional[JobContextProvider]:
    """No job posting store is wired in, so a bare job_posting_id is rejected."""
    return None


def get_session_locks() -> SessionLocks:
    return session_locks


async def close_collaborators() -> None:
    """Close HTTP clients of collaborators that were created."""
    for factory in (get_prompt_generator, get_synthesis_generator, get_evidence_fetcher):
        if factory.cache_info().currsize:
            await factory().aclose()
            factory.cache_clear()


# ==========================================================================
# Engine Components
# ==========================================================================

def get_lifecycle_manager(
    db: AsyncSession = Depends(get_db),
    evidence_fetcher: EvidenceFetcher = Depends(get_evidence_fetcher),
    job_context_provider: Optional[JobContextProvider] = Depends(get_job_context_provider),
    brief_generator: Optional[GenerationClient] = Depends(get_brief_generator),
    locks: SessionLocks = Depends(get_session_locks),
) -> SessionLifecycleManager:
    return SessionLifecycleManager(
        db,
        evidence_fetcher=evidence_fetcher,
        job_context_provider=job_context_provider,
        locks=locks,
        brief_generator=brief_generator,
    )


def get_prompt_policy(
    db: AsyncSession = Depends(get_db),
    generator: GenerationClient = Depends(get_prompt_generator),
    locks: SessionLocks = Depends(get_session_locks),
) -> PromptGenerationPolicy:
    return PromptGenerationPolicy(db, generator, locks=locks)


def get_synthesis_pipeline(
    db: AsyncSession = Depends(get_db),
    generator: GenerationClient = Depends(get_synthesis_generator),
    locks: SessionLocks = Depends(get_session_locks),
) -> EvidenceSynthesisPipeline:
    return EvidenceSynthesisPipeline(db, generator, locks=locks)
