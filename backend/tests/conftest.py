"""
HumIQ Work Sessions - Test Fixtures
====================================

Shared pytest fixtures for all tests.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")

from collections.abc import AsyncGenerator, Awaitable, Callable  # noqa: E402
from typing import Any  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from humiq.api import deps  # noqa: E402
from humiq.api.main import app  # noqa: E402
from humiq.core.database import create_engine, get_db, init_db, make_session_factory  # noqa: E402
from humiq.core.work_session import (  # noqa: E402
    EvidenceSynthesisPipeline,
    PromptGenerationPolicy,
    SessionLifecycleManager,
    SessionLocks,
)
from tests.fakes import FakeEvidenceFetcher, FakeGenerator  # noqa: E402


SAMPLE_EVIDENCE = (
    "SOURCE: GitHub README - ledger\n"
    "Repository: alice/ledger\n"
    "TEXT:\nDouble-entry ledger service with idempotent writes."
)


# ==========================================================================
# Test Database Setup
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    File-backed SQLite database per test.

    A file (not :memory:) lets concurrent sessions use separate
    connections, as they do in production.
    """
    test_engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(test_engine)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for each test."""
    async with session_factory() as session:
        yield session


# ==========================================================================
# Collaborator Fixtures
# ==========================================================================

@pytest.fixture
def locks() -> SessionLocks:
    """Fresh lock registry, so tests never share locks."""
    return SessionLocks()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def evidence_fetcher() -> FakeEvidenceFetcher:
    return FakeEvidenceFetcher(evidence=SAMPLE_EVIDENCE)


@pytest.fixture
def lifecycle(
    db_session: AsyncSession,
    evidence_fetcher: FakeEvidenceFetcher,
    locks: SessionLocks,
) -> SessionLifecycleManager:
    return SessionLifecycleManager(db_session, evidence_fetcher, locks=locks)


@pytest.fixture
def policy(
    db_session: AsyncSession,
    generator: FakeGenerator,
    locks: SessionLocks,
) -> PromptGenerationPolicy:
    return PromptGenerationPolicy(db_session, generator, locks=locks)


@pytest.fixture
def pipeline(
    db_session: AsyncSession,
    generator: FakeGenerator,
    locks: SessionLocks,
) -> EvidenceSynthesisPipeline:
    return EvidenceSynthesisPipeline(db_session, generator, locks=locks)


@pytest.fixture
def create_session(
    lifecycle: SessionLifecycleManager,
) -> Callable[..., Awaitable[UUID]]:
    """Factory creating a session and returning its id."""

    async def _create(duration_minutes: int = 15, **kwargs: Any) -> UUID:
        created = await lifecycle.create_session(
            evidence_source_ref=kwargs.pop("evidence_source_ref", "https://github.com/alice"),
            role_track=kwargs.pop("role_track", "backend"),
            level=kwargs.pop("level", "mid"),
            duration_minutes=duration_minutes,
            **kwargs,
        )
        return created.session_id

    return _create


# ==========================================================================
# HTTP Client
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    generator: FakeGenerator,
    evidence_fetcher: FakeEvidenceFetcher,
    locks: SessionLocks,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client with database and collaborator overrides.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_prompt_generator] = lambda: generator
    app.dependency_overrides[deps.get_synthesis_generator] = lambda: generator
    app.dependency_overrides[deps.get_evidence_fetcher] = lambda: evidence_fetcher
    app.dependency_overrides[deps.get_session_locks] = lambda: locks

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
