"""
Pytest configuration and fixtures for testing
"""
import os

# Must be set before the application settings are loaded
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-the-test-suite")
os.environ["RATE_LIMIT_PER_MINUTE"] = "100000"
os.environ.pop("REDIS_URL", None)
os.environ.pop("RENDER", None)
os.environ.pop("ENV", None)

import hashlib
import hmac
import json
import time

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from database import Base, get_db
from database_models import User
from models.subscription import SubscriptionType
from services.billing_context import BillingContext, get_billing_context
from services.price_tiers import PriceTierMap
from services.stripe_gateway import StripeGateway

WEBHOOK_SECRET = "whsec_test_secret"

TEST_PRICES = {
    "ADOB_SENSE": "price_adob_sense",
    "DOBE_ONE": "price_dobe_one",
    "DEMANDX": "price_demandx",
}


@pytest.fixture
async def test_engine(tmp_path):
    """
    A fresh SQLite database file per test.

    A file database (rather than :memory:) lets several sessions see each
    other's committed rows, as they do in the running app.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
async def test_db(session_factory):
    """
    Fixture that provides an AsyncSession on the per-test database.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@pytest.fixture
def billing_context():
    """Billing configuration with a dummy Stripe key; SDK calls are patched in tests."""
    return BillingContext(
        gateway=StripeGateway("sk_test_dummy"),
        prices=PriceTierMap(TEST_PRICES),
        webhook_secret=WEBHOOK_SECRET,
        webhook_tolerance=300,
        site_url="http://localhost:3001",
    )


@pytest.fixture
async def async_client(session_factory, billing_context):
    """
    Async HTTP client against the app, with the database and billing
    configuration dependencies pointed at the test fixtures.
    """
    from main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_context] = lambda: billing_context

    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def create_user(session_factory):
    """Insert a committed user row."""
    async def _create(user_id="user_1", **fields):
        fields.setdefault("subscription_type", SubscriptionType.FREE.value)
        fields.setdefault("trial_used", False)
        async with session_factory() as session:
            session.add(User(id=user_id, **fields))
            await session.commit()
    return _create


@pytest.fixture
def load_user(session_factory):
    """Read a user row in a fresh session."""
    async def _load(user_id="user_1"):
        async with session_factory() as session:
            return await session.get(User, user_id)
    return _load


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe signs deliveries."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def sign_payload():
    return sign


@pytest.fixture
def stripe_event():
    """Factory for Stripe event envelopes."""
    counter = {"n": 0}

    def _event(event_type, obj, event_id=None, created=None):
        counter["n"] += 1
        return {
            "id": event_id or f"evt_test_{counter['n']}",
            "object": "event",
            "type": event_type,
            "created": created if created is not None else int(time.time()),
            "data": {"object": obj},
        }
    return _event


@pytest.fixture
def post_webhook(async_client):
    """Sign and deliver an event to the webhook endpoint."""
    async def _post(event, signature=None):
        payload = json.dumps(event).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Stripe-Signature": signature or sign(payload),
        }
        return await async_client.post("/api/billing/webhook", content=payload, headers=headers)
    return _post
