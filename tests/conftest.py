"""
Shared test fixtures.

These replace real infrastructure with lightweight in-memory alternatives:
- PostgreSQL → SQLite in memory (aiosqlite for the API, StaticPool for threads)
- Redis → fakeredis (pure Python Redis mock)
- HTTP server → httpx.AsyncClient with ASGI transport (no network)
- Outbound task calls → httpx.MockTransport
- Wall clock → FakeClock, moved by hand

This means tests:
- Run without Docker
- Run in milliseconds (no network, no disk, no sleeping for backoff)
- Are fully isolated (each test gets a fresh database and Redis)
"""

from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from api.dependencies import get_db, get_redis
from api.main import create_app
from ledger.executions import ExecutionLedger
from models.base import Base, build_sync_session_factory
from models.job import JobDefinition
from workqueue.items import QueueOptions
from workqueue.redis_queue import RedisWorkQueue

# SQLite in-memory database, created fresh for each test
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Callable clock for components that take `clock=`; tests move it explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def epoch(self) -> float:
        return self.now.timestamp()

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now


# ── API (async) ────────────────────────────────────────────────


@pytest_asyncio.fixture
async def async_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(async_engine):
    """Create a database session bound to the test engine."""
    factory = async_sessionmaker(async_engine, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis():
    """Create a fake Redis instance (in-memory, no real Redis needed)."""
    r = FakeRedis()
    yield r
    await r.flushall()


@pytest_asyncio.fixture
async def client(async_session, fake_redis):
    """
    Create a test HTTP client that talks directly to the FastAPI app.

    dependency_overrides tells FastAPI: "instead of using the real get_db
    and get_redis, use these test versions." This is how you test endpoints
    without a real database or Redis.

    ASGITransport means requests go directly to the app in-process,
    no HTTP server or network involved.
    """
    app = create_app()

    async def override_get_db():
        yield async_session

    async def override_get_redis():
        return fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ── Scheduler / worker (sync) ──────────────────────────────────


@pytest.fixture
def sync_engine():
    """
    One shared in-memory SQLite connection.

    StaticPool + check_same_thread=False lets scheduler and worker threads
    see the same database, the way they share PostgreSQL in production.
    """
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sync_engine):
    return build_sync_session_factory(sync_engine)


@pytest.fixture
def redis_client():
    r = fakeredis.FakeRedis(decode_responses=True)
    r.flushall()
    yield r
    r.flushall()


@pytest.fixture
def clock():
    """Starts one minute before a 02:00 UTC nightly occurrence."""
    return FakeClock(datetime(2024, 1, 2, 1, 59, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger(session_factory, clock):
    return ExecutionLedger(session_factory, clock=clock)


@pytest.fixture
def queue(redis_client, clock):
    """Small retention limits and 1s base backoff so tests stay readable."""
    return RedisWorkQueue(
        redis_client,
        "test-tasks",
        options=QueueOptions(
            max_attempts=3,
            backoff_ms=1000,
            keep_completed=3,
            keep_failed=3,
            visibility_timeout=30.0,
        ),
        key_prefix="test",
        clock=clock.epoch,
    )


@pytest.fixture
def api_call_payload():
    return {
        "type": "API_CALL",
        "config": {"url": "https://reports.example.com/nightly", "method": "POST"},
    }


@pytest.fixture
def make_job(session_factory, api_call_payload):
    """Insert a job definition directly (no API validation) and return its id."""

    def _make(name="nightly-report", cron_expression="0 2 * * *", task_payload=None, is_active=True):
        session = session_factory()
        try:
            job = JobDefinition(
                name=name,
                cron_expression=cron_expression,
                task_payload=task_payload if task_payload is not None else api_call_payload,
                is_active=is_active,
            )
            session.add(job)
            session.commit()
            return job.id
        finally:
            session.close()

    return _make
