"""Shared fixtures: a file-backed SQLite database and seeded users."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
import pytest_asyncio

from canvas_backend.db.models import UserRole
from canvas_backend.db.session import create_tables, make_engine, make_session_factory
from canvas_backend.repositories.agent_repo import SQLAlchemyAgentRepository
from canvas_backend.repositories.user_repo import SQLAlchemyUserRepository
from canvas_backend.services.artifact_store import ArtifactStore


@pytest.fixture
def database_url(tmp_path):
    # A file database: concurrent sessions need separate connections.
    return f"sqlite+aiosqlite:///{tmp_path / 'canvas-test.db'}"


@pytest_asyncio.fixture
async def engine(database_url):
    engine = make_engine(database_url)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def users(session_factory):
    async with session_factory() as session:
        async with session.begin():
            repo = SQLAlchemyUserRepository(session)
            alice = await repo.create("Alice", "alice@example.com")
            bob = await repo.create("Bob", "bob@example.com")
            carol = await repo.create("Carol", "carol@example.com")
            admin = await repo.create("Admin", "admin@example.com", role=UserRole.ADMIN)
    return SimpleNamespace(alice=alice, bob=bob, carol=carol, admin=admin)


@pytest.fixture
def store(session_factory):
    return ArtifactStore(session_factory, max_attempts=5, backoff_seconds=0.01)


@pytest.fixture
def make_agent(session_factory):
    async def _make(owner_id, visibility, name="Helper"):
        async with session_factory() as session:
            async with session.begin():
                return await SQLAlchemyAgentRepository(session).create(owner_id, name, visibility=visibility)

    return _make
