"""Shared pytest fixtures for the BingoSim test suite.

Provides:
- db_engine: in-memory SQLite async engine with all tables
- db_session: SAVEPOINT-isolated async session (app commits don't leak)
- session_factory: session maker on db_engine, for the SQL store
- make_board: factory for small, valid board definitions
- runtime / client: in-memory runtime and an AsyncClient wired to it
"""

from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bingosim.config.settings import Settings
from bingosim.db.session import Base
import bingosim.db.tables  # noqa: F401 (registers ORM models on Base.metadata)
from bingosim.models.board import BoardSnapshot
from bingosim.stores.memory import InMemorySimulationStore

EVENT_ID = UUID("01920000-0000-7000-8000-00000000e001")
TEAM_A_ID = UUID("01920000-0000-7000-8000-0000000000a1")
TEAM_B_ID = UUID("01920000-0000-7000-8000-0000000000b2")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with all tables."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Provide a SAVEPOINT-isolated session.

    The outer transaction is never committed; it rolls back at teardown.
    Application code calling session.commit() releases the SAVEPOINT, which
    is then restarted so later operations stay in the same outer transaction.
    """
    async with db_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        nested = await conn.begin_nested()

        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(sync_session, transaction):  # noqa: ARG001
            nonlocal nested
            if transaction.nested and not transaction._parent.nested:
                nested = conn.sync_connection.begin_nested()

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Boards
# ---------------------------------------------------------------------------


def _board_dict(
    *,
    rows: list[dict] | None = None,
    teams: list[dict] | None = None,
    **overrides,
) -> dict:
    if rows is None:
        rows = [
            {
                "index": 0,
                "tasks": [
                    {
                        "key": "easy",
                        "points": 1,
                        "probability": 0.5,
                        "time_model": {"min_seconds": 10, "max_seconds": 20},
                    },
                    {
                        "key": "medium",
                        "points": 2,
                        "probability": 0.25,
                        "time_model": {"min_seconds": 20, "max_seconds": 40},
                    },
                ],
            },
            {
                "index": 1,
                "tasks": [
                    {
                        "key": "hard",
                        "points": 5,
                        "probability": 0.1,
                        "time_model": {"min_seconds": 60, "max_seconds": 120},
                    },
                ],
            },
        ]
    if teams is None:
        teams = [
            {
                "team_id": str(TEAM_A_ID),
                "name": "Alpha",
                "player_count": 3,
                "strategy": {"strategy_key": "row_unlocking"},
            },
            {
                "team_id": str(TEAM_B_ID),
                "name": "Bravo",
                "player_count": 2,
                "strategy": {"strategy_key": "greedy_points"},
            },
        ]
    return {
        "event_id": str(EVENT_ID),
        "event_name": "Test Event",
        "max_attempts": 2_000,
        "rows": rows,
        "teams": teams,
        **overrides,
    }


@pytest.fixture
def board_dict():
    """Factory returning a board definition as a JSON-ready dict."""
    return _board_dict


@pytest.fixture
def make_board():
    """Factory returning a validated BoardSnapshot."""

    def _make(**kwargs) -> BoardSnapshot:
        return BoardSnapshot.model_validate(_board_dict(**kwargs))

    return _make


# ---------------------------------------------------------------------------
# Runtime + API client
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        MAX_CONCURRENT_RUNS=4,
        QUEUE_POLL_INTERVAL_MS=5,
        MAINTENANCE_INTERVAL_SECONDS=0.05,
        CELERY_BROKER_URL="",
    )


@pytest.fixture
def runtime(test_settings):
    """Local runtime over an in-memory store. Nothing is dispatched until a test runs it."""
    from bingosim.dispatch.runtime import build_local_runtime

    return build_local_runtime(test_settings, InMemorySimulationStore())


@pytest.fixture
async def client(runtime):
    """AsyncClient with the batch service overridden to use the test runtime."""
    from bingosim.api.dependencies import get_runtime
    from bingosim.api.main import app

    async def _override_runtime():
        return runtime

    app.dependency_overrides[get_runtime] = _override_runtime

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
