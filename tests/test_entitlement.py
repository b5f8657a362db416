from datetime import timedelta

import pytest
from sqlalchemy import update

from backend.core.database import utcnow
from backend.models.account import Account
from backend.services.entitlement_service import (
    AccountBanned,
    AccountInactive,
    InvalidCredentials,
    authenticate,
    check_and_lazily_expire,
    is_premium_now,
    poll_activation,
)
from tests.conftest import PASSWORD


@pytest.mark.asyncio
async def test_lazy_expiry_persists(session_factory, make_account, load):
    account = await make_account(is_active=True, is_premium=True, premium_until=utcnow() - timedelta(days=1))

    async with session_factory() as db:
        view = await check_and_lazily_expire(db, account.id)
    assert view.is_premium is False
    assert view.premium_until is None

    stored = await load(Account, account.id)
    assert stored.is_premium is False
    assert stored.premium_until is None


@pytest.mark.asyncio
async def test_lazy_expiry_leaves_live_premium_alone(session_factory, make_account):
    until = utcnow() + timedelta(days=3)
    account = await make_account(is_active=True, is_premium=True, premium_until=until)
    async with session_factory() as db:
        view = await check_and_lazily_expire(db, account.id)
    assert view.is_premium is True
    assert view.premium_until == until


@pytest.mark.asyncio
async def test_unbounded_premium_never_expires(session_factory, make_account):
    account = await make_account(is_active=True, is_premium=True, premium_until=None)
    async with session_factory() as db:
        view = await check_and_lazily_expire(db, account.id)
    assert is_premium_now(view) is True


@pytest.mark.asyncio
async def test_expiry_does_not_clobber_newer_renewal(session_factory, make_account, load):
    now = utcnow()
    renewed_until = now + timedelta(days=30)
    account = await make_account(is_active=True, is_premium=True, premium_until=now - timedelta(days=1))

    async with session_factory() as reader:
        # reader holds the expired copy while a renewal commits elsewhere
        await reader.get(Account, account.id)
        async with session_factory() as writer:
            await writer.execute(
                update(Account).where(Account.id == account.id).values(premium_until=renewed_until)
            )
            await writer.commit()
        view = await check_and_lazily_expire(reader, account.id, now=now)

    assert view.is_premium is True
    assert view.premium_until == renewed_until
    stored = await load(Account, account.id)
    assert stored.is_premium is True


def test_is_premium_now_ignores_stale_flag():
    account = Account(is_premium=True, premium_until=utcnow() - timedelta(seconds=1))
    assert is_premium_now(account) is False


@pytest.mark.asyncio
async def test_poll_activation_returns_minimal_fields(session_factory, make_account):
    account = await make_account(is_active=True, is_premium=True, premium_until=utcnow() - timedelta(hours=1))
    async with session_factory() as db:
        status = await poll_activation(db, account.id)
    assert status == {"is_active": True, "is_premium": False, "premium_until": None}


@pytest.mark.asyncio
async def test_poll_activation_unknown_account(session_factory):
    async with session_factory() as db:
        assert await poll_activation(db, "missing") is None


@pytest.mark.asyncio
async def test_inactive_account_cannot_log_in(session_factory, make_account):
    account = await make_account(email="pending@anchor.test")
    async with session_factory() as db:
        with pytest.raises(AccountInactive):
            await authenticate(db, account.email, PASSWORD)
        with pytest.raises(InvalidCredentials):
            await authenticate(db, account.email, "wrong-password")
        with pytest.raises(InvalidCredentials):
            await authenticate(db, "nobody@anchor.test", PASSWORD)


@pytest.mark.asyncio
async def test_login_is_case_insensitive_and_expires_premium(session_factory, make_account):
    await make_account(
        email="w@anchor.test", is_active=True, is_premium=True, premium_until=utcnow() - timedelta(days=2),
    )
    async with session_factory() as db:
        account = await authenticate(db, "  W@Anchor.TEST ", PASSWORD)
    assert account.is_premium is False
    assert account.premium_until is None


@pytest.mark.asyncio
async def test_banned_account_rejected(session_factory, make_account):
    account = await make_account(is_active=True, is_banned=True)
    async with session_factory() as db:
        with pytest.raises(AccountBanned):
            await authenticate(db, account.email, PASSWORD)
