"""Shared fixtures.

Provides:
- An in-memory SQLite engine (aiosqlite + StaticPool) with every table created
- The session factory, mapping repository and error logger bound to it
- CRM / platform clients backed by httpx.MockTransport routers
- A SyncContext over spec-ed client mocks and the real mapping store
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from src.rentsync.clients.base import BackoffPolicy  # noqa: E402
from src.rentsync.clients.crm import CrmClient  # noqa: E402
from src.rentsync.clients.ops import OpsClient  # noqa: E402
from src.rentsync.core.database import Base, create_session_factory, init_db  # noqa: E402
from src.rentsync.mapping.store import MappingRepository  # noqa: E402
from src.rentsync.observability.errors import ErrorLogger  # noqa: E402
from src.rentsync.sync.context import SyncContext  # noqa: E402
from src.rentsync.sync.locks import KeyedLock  # noqa: E402

Handler = Callable[[httpx.Request], httpx.Response]


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # SQLite leaves foreign keys (and ON DELETE SET NULL) off unless asked
    @event.listens_for(test_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    await init_db(test_engine)
    yield test_engine
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def mappings(session_factory) -> MappingRepository:
    return MappingRepository(session_factory)


@pytest.fixture
def error_logger(session_factory) -> ErrorLogger:
    return ErrorLogger(session_factory)


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_crm_client(sleeper) -> Callable[[Handler], CrmClient]:
    def _make(handler: Handler, **kwargs) -> CrmClient:
        return CrmClient(
            "crm-token",
            "https://crm.test",
            backoff=kwargs.pop("backoff", BackoffPolicy(max_attempts=5, base_delay=5.0, max_delay=80.0)),
            sleep=sleeper,
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_ops_client(sleeper) -> Callable[[Handler], OpsClient]:
    def _make(handler: Handler, **kwargs) -> OpsClient:
        return OpsClient(
            "ops-token",
            "https://ops.test",
            app_url="https://app.ops.test",
            sleep=sleeper,
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    return _make


# ── Sync context with mocked remote systems ────────────────────────────────


@pytest.fixture
def crm():
    """CRM client mock: async methods are AsyncMocks, payload helpers stay real."""
    mock = MagicMock(spec=CrmClient)
    mock.association.side_effect = CrmClient.association
    return mock


@pytest.fixture
def ops():
    mock = MagicMock(spec=OpsClient)
    mock.build_request_url.side_effect = lambda request_id: f"https://app.ops.test/#/requests/{request_id}/details"
    mock.list_project_requests.return_value = []
    mock.get_project_subprojects.return_value = []
    return mock


@pytest.fixture
def ctx(crm, ops, mappings) -> SyncContext:
    return SyncContext(
        crm=crm,
        ops=ops,
        mappings=mappings,
        locks=KeyedLock(timeout=5.0),
        order_pipeline_id="pipeline-1",
        lookup_attempts=2,
        lookup_delay=0,
        sleep=AsyncMock(),
    )
