"""Shared fixtures: a throwaway SQLite database per test, a fake gateway and the ASGI client."""
import os
import tempfile
import uuid
from datetime import datetime

os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="anchor-logs-"))
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.core.config import PaymentSettings
from backend.core.database import get_db, init_db, make_engine, utcnow
from backend.models.account import Account
from backend.models.payment import Payment
from backend.services import ledger_service
from backend.services.activation_service import ActivationEngine
from backend.services.auth_service import hash_password
from backend.services.gateway_service import CheckoutSession, GatewayUnavailable, PaymentGateway

PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)


class FakeGateway(PaymentGateway):
    name = "mpesa"

    def __init__(self, settings, fail=False):
        super().__init__(settings)
        self.fail = fail
        self.calls = []

    async def start_checkout(self, amount, contact, callback_url, reference):
        self.calls.append({"amount": amount, "contact": contact, "callback_url": callback_url, "reference": reference})
        if self.fail:
            raise GatewayUnavailable("provider down")
        return CheckoutSession(
            checkout_ref=f"ws_CO_TEST{len(self.calls):04d}",
            message="Please enter your M-Pesa PIN",
        )


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def settings():
    return PaymentSettings(callback_base_url="https://anchor.test", gateway_timeout=2.0)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'anchor.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def gateway(settings):
    return FakeGateway(settings)


@pytest.fixture
def clock():
    return Clock(utcnow())


@pytest.fixture
def activation_engine(session_factory, gateway, settings, clock):
    return ActivationEngine(session_factory, {"mpesa": gateway}, settings, clock=clock)


@pytest.fixture
def make_account(session_factory):
    async def _make(**overrides) -> Account:
        data = dict(
            id=str(uuid.uuid4()),
            email=f"{uuid.uuid4().hex[:10]}@anchor.test",
            password_hash=PASSWORD_HASH,
            avatar="fox",
            plan="free",
            is_admin=False,
            is_banned=False,
            is_active=False,
            is_premium=False,
            premium_until=None,
            created_at=utcnow(),
        )
        data.update(overrides)
        async with session_factory() as db:
            account = Account(**data)
            db.add(account)
            await db.commit()
        return account

    return _make


@pytest.fixture
def make_attempt(session_factory):
    async def _make(account_id: str, purpose: str = "activation", amount: int = 50, checkout_ref: str = None) -> Payment:
        async with session_factory() as db:
            payment = ledger_service.record_attempt(
                db,
                account_id=account_id,
                provider="mpesa",
                purpose=purpose,
                amount=amount,
                currency="KES",
                contact="254712345678",
                reference=ledger_service.new_reference(),
                checkout_ref=checkout_ref or f"ws_CO_{uuid.uuid4().hex[:16]}",
            )
            await db.commit()
        return payment

    return _make


@pytest.fixture
def load(session_factory):
    async def _load(model, pk):
        async with session_factory() as db:
            return await db.get(model, pk)

    return _load


@pytest_asyncio.fixture
async def client(session_factory, activation_engine):
    from backend.api.deps import get_activation_engine
    from backend.server import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_activation_engine] = lambda: activation_engine
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
