"""
Test configuration for BizModelAI backend tests.

sys.path is configured so 'from bizmodel...' resolves whether pytest is run
from the project root or from bizmodel/.

Fixtures:
  engine           — in-memory SQLite (aiosqlite, StaticPool) with SAVEPOINT + FK support
  session_factory  — async_sessionmaker bound to that engine
  db               — one AsyncSession for service-level tests
  fake_redis       — dict-backed stand-in for redis.asyncio (get / setex / delete)
  stripe_gateway   — AsyncMock gateway, provider = "stripe"
  email_client     — MagicMock Resend client whose send is an AsyncMock
  mistral          — MagicMock client whose chat.complete_async is an AsyncMock
  client           — httpx AsyncClient over ASGITransport, get_db overridden

API tests must not hold a `db` transaction open across a request (StaticPool
shares one connection) — use short `async with session_factory()` blocks.
"""
import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

_package_dir = Path(__file__).parent.parent        # .../bizmodel/
_project_root = _package_dir.parent                # project root

if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import bizmodel.models  # noqa: F401  (registers every table on Base.metadata)
from bizmodel.ai.rate_limiter import RateLimiter
from bizmodel.database import Base, get_db
from bizmodel.identity.cookie_session import RedisSessionBackend
from bizmodel.identity.session_cache import SessionCache
from bizmodel.main import app
from bizmodel.notifications.cooldown import EmailCooldown
from bizmodel.payments.stripe_gateway import ProviderPayment
from bizmodel.tests.fakes import FakeRedis, make_mistral_response


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(eng.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # pysqlite's own BEGIN handling breaks SAVEPOINT; emit BEGIN ourselves
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(eng.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Provider fakes
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def stripe_gateway() -> MagicMock:
    gateway = MagicMock()
    gateway.provider = "stripe"
    counter = {"n": 0}

    async def _create_payment(**kwargs) -> ProviderPayment:
        counter["n"] += 1
        ref = f"pi_test_{counter['n']}"
        return ProviderPayment(reference=ref, client_secret=f"{ref}_secret", status="requires_payment_method")

    gateway.create_payment = AsyncMock(side_effect=_create_payment)
    gateway.retrieve_payment_intent = AsyncMock(return_value={"id": "pi_test_1", "status": "processing"})
    gateway.list_succeeded_payment_intents = AsyncMock(return_value=[])
    gateway.create_refund = AsyncMock(return_value={"id": "re_test_1", "status": "succeeded"})
    gateway.construct_event = MagicMock()
    return gateway


@pytest.fixture
def email_client() -> MagicMock:
    client = MagicMock()
    client.send = AsyncMock(return_value="em_test_1")
    return client


@pytest.fixture
def mistral() -> MagicMock:
    client = MagicMock()
    client.chat.complete_async = AsyncMock(
        return_value=make_mistral_response('{"recommendations": [], "summary": "ok"}')
    )
    return client


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory, fake_redis, stripe_gateway, mistral, email_client):
    """Async httpx client using ASGI transport — no live server, no lifespan."""

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.state.redis = fake_redis
    app.state.session_backend = RedisSessionBackend(fake_redis)
    app.state.session_cache = SessionCache()
    app.state.rate_limiter = RateLimiter()
    app.state.stripe_gateway = stripe_gateway
    app.state.paypal_gateway = None
    app.state.mistral = mistral
    app.state.ai_semaphore = asyncio.Semaphore(2)
    app.state.email_client = email_client
    app.state.email_cooldown = EmailCooldown()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
