"""
Pytest configuration and fixtures.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from agvote.core.database import build_engine, build_session_maker, init_db
from agvote.voting.models import MeetingStatus
from agvote.voting.services import SessionCoordinator

from factories import Assembly, RecordingEmitter, seed_assembly


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest."""
    config.addinivalue_line("markers", "integration: marks tests that go through the HTTP API")


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """A fresh SQLite database file per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'agvote.db'}"


@pytest.fixture
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    db_engine = build_engine(database_url)
    await init_db(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def coordinator(engine: AsyncEngine, emitter: RecordingEmitter) -> SessionCoordinator:
    return SessionCoordinator(build_session_maker(engine), emitter=emitter)


@pytest.fixture
async def live_assembly(coordinator: SessionCoordinator) -> Assembly:
    """Ten members, six present, live meeting, no policies."""
    return await seed_assembly(coordinator, members=10, present=6, status=MeetingStatus.LIVE)
