import hashlib
import hmac
import json
import time

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from imagestudio.config import settings
from imagestudio.database import get_db, get_session_factory
from imagestudio.main import app
from imagestudio.models import Base

TEST_IDENTITY_SECRET = "test-identity-secret"
TEST_WEBHOOK_SECRET = "whsec_test_secret"
TEST_PRICE_BASIC = "price_basic_test"
TEST_PRICE_PRO = "price_pro_test"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch, tmp_path):
    """Point every secret and price id at deterministic test values."""
    monkeypatch.setattr(settings, "IDENTITY_TOKEN_SECRET", TEST_IDENTITY_SECRET)
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_dummy")
    monkeypatch.setattr(settings, "STRIPE_PRICE_BASIC", TEST_PRICE_BASIC)
    monkeypatch.setattr(settings, "STRIPE_PRICE_PRO", TEST_PRICE_PRO)
    monkeypatch.setattr(settings, "IMAGE_STORAGE_DIR", str(tmp_path / "images"))
    return settings


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with writer-serialising transactions.

    ``BEGIN IMMEDIATE`` makes each transaction take the write lock up front,
    so concurrent sessions queue on it the way row locks queue in Postgres.
    """
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(eng.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    """API client wired to the per-test SQLite database."""

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Token and signature helpers
# ---------------------------------------------------------------------------

def make_identity_token(sub: str = "user-1", email: str | None = "author@contoso.com",
                        name: str | None = "Site Author") -> str:
    claims = {"sub": sub}
    if email is not None:
        claims["email"] = email
    if name is not None:
        claims["name"] = name
    return jwt.encode(claims, TEST_IDENTITY_SECRET, algorithm="HS256")


def auth_headers(sub: str = "user-1", **kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_identity_token(sub, **kwargs)}"}


def sign_webhook(payload: str, secret: str = TEST_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header for *payload*."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def stripe_event(event_id: str, event_type: str, obj: dict) -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def checkout_completed(event_id: str, user_id: str, tier: str = "basic",
                       customer: str | None = "cus_123") -> dict:
    return stripe_event(event_id, "checkout.session.completed", {
        "id": f"cs_{event_id}",
        "object": "checkout.session",
        "customer": customer,
        "metadata": {"userId": user_id, "targetTier": tier},
    })


def encode_event(evt: dict) -> str:
    return json.dumps(evt)
