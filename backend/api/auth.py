# FILE: backend/api/auth.py
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.core.config import get_payment_settings
from backend.core.database import get_db, utcnow
from backend.models.account import Account
from backend.schemas.auth import (
    AccountResponse, LoginRequest, PaymentDetails, SignupRequest, TokenResponse, iso_utc,
)
from backend.services.auth_service import hash_password, create_token
from backend.services.entitlement_service import AuthError, authenticate, find_by_email, is_premium_now
from backend.api.deps import get_current_account

logger = logging.getLogger("anchor.auth")

router = APIRouter(prefix="/api", tags=["auth"])


def account_view(account: Account) -> AccountResponse:
    premium = is_premium_now(account)
    return AccountResponse(
        id=account.id,
        email=account.email,
        avatar=account.avatar,
        plan=account.plan,
        is_admin=account.is_admin,
        is_active=account.is_active,
        is_premium=premium,
        premium_until=iso_utc(account.premium_until) if premium else None,
        created_at=iso_utc(account.created_at),
    )


@router.post("/auth/signup", response_model=TokenResponse)
async def signup(data: SignupRequest, db: AsyncSession = Depends(get_db)):
    if await find_by_email(db, data.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    account = Account(
        id=str(uuid.uuid4()),
        email=data.email,
        password_hash=hash_password(data.password),
        avatar=data.avatar,
        plan=data.plan,
        is_admin=False,
        is_banned=False,
        is_active=False,
        is_premium=False,
        created_at=utcnow(),
    )
    db.add(account)
    await db.commit()
    logger.info("Account %s created (pending activation, plan=%s)", account.id, account.plan)

    settings = get_payment_settings()
    # The token only reaches the payment endpoints until the account is activated
    return TokenResponse(
        token=create_token(account.id, account.avatar),
        account=account_view(account),
        payment_details=PaymentDetails(
            amount=settings.price_for("activation", account.plan),
            purpose="activation",
            currency=settings.currency,
        ),
        message="Account created. Complete the activation payment to start chatting.",
    )


@router.post("/auth/login", response_model=TokenResponse)
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    try:
        account = await authenticate(db, data.email, data.password)
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))

    return TokenResponse(
        token=create_token(account.id, account.avatar),
        account=account_view(account),
    )


@router.get("/session/me", response_model=AccountResponse)
async def session_me(account: Account = Depends(get_current_account)):
    return account_view(account)


@router.get("/auth/me", response_model=AccountResponse)
async def auth_me(account: Account = Depends(get_current_account)):
    return account_view(account)
