# FILE: backend/services/entitlement_service.py
"""Read side of entitlements.

Every path that hands an account to a caller (login, session refresh, status
polling) goes through ``check_and_lazily_expire`` so an expired premium flag is
corrected on read instead of waiting for a sweep.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.core.database import utcnow
from backend.models.account import Account
from backend.services.auth_service import verify_password

logger = logging.getLogger("anchor.auth")


class AuthError(Exception):
    status_code = 401


class InvalidCredentials(AuthError):
    def __init__(self):
        super().__init__("Invalid credentials")


class AccountInactive(AuthError):
    status_code = 403

    def __init__(self):
        super().__init__("Account not activated. Complete the activation payment to log in.")


class AccountBanned(AuthError):
    status_code = 403

    def __init__(self):
        super().__init__("Account banned")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def premium_expired(account: Account, now: datetime) -> bool:
    return bool(account.is_premium and account.premium_until is not None and now > account.premium_until)


def is_premium_now(account: Account, now: Optional[datetime] = None) -> bool:
    """Effective premium flag; holds even if the stored flag is stale."""
    return bool(account.is_premium) and not premium_expired(account, now or utcnow())


async def check_and_lazily_expire(
    db: AsyncSession,
    account_id: str,
    now: Optional[datetime] = None,
) -> Optional[Account]:
    now = now or utcnow()
    account = await db.get(Account, account_id)
    if account is None:
        return None

    if premium_expired(account, now):
        # Guarded on the stored expiry so a renewal written in between is left alone
        result = await db.execute(
            update(Account)
            .where(
                Account.id == account_id,
                Account.is_premium.is_(True),
                Account.premium_until.is_not(None),
                Account.premium_until < now,
            )
            .values(is_premium=False, premium_until=None)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount:
            logger.info("Premium expired for account %s", account_id)
        await db.refresh(account)

    return account


async def poll_activation(db: AsyncSession, account_id: str, now: Optional[datetime] = None) -> Optional[dict]:
    account = await check_and_lazily_expire(db, account_id, now)
    if account is None:
        return None
    now = now or utcnow()
    premium = is_premium_now(account, now)
    return {
        "is_active": bool(account.is_active),
        "is_premium": premium,
        "premium_until": account.premium_until if premium else None,
    }


async def find_by_email(db: AsyncSession, email: str) -> Optional[Account]:
    result = await db.execute(select(Account).where(Account.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def authenticate(
    db: AsyncSession,
    email: str,
    password: str,
    now: Optional[datetime] = None,
) -> Account:
    account = await find_by_email(db, email)
    if not account or not verify_password(password, account.password_hash):
        raise InvalidCredentials()
    if account.is_banned:
        logger.warning("Banned account %s tried to log in", account.id)
        raise AccountBanned()
    if not account.is_active:
        raise AccountInactive()
    return await check_and_lazily_expire(db, account.id, now)
