# FILE: backend/api/deps.py

from functools import lru_cache

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from backend.core.config import JWT_SECRET, JWT_ALGORITHM, get_payment_settings
from backend.core.database import SessionLocal, get_db
from backend.models.account import Account
from backend.services.activation_service import ActivationEngine
from backend.services.entitlement_service import check_and_lazily_expire
from backend.services.gateway_service import build_gateways

security = HTTPBearer(auto_error=False)


@lru_cache()
def get_activation_engine() -> ActivationEngine:
    settings = get_payment_settings()
    return ActivationEngine(SessionLocal, build_gateways(settings), settings)


async def get_current_account(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        db: AsyncSession = Depends(get_db),
) -> Account:
    """Any signed-in account, pending ones included (they need to reach the payment endpoints)."""
    if not credentials or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = jwt.decode(
            credentials.credentials.strip(),
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    account_id = payload.get("user_id") or payload.get("id")
    if not account_id or not isinstance(account_id, str):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    account = await check_and_lazily_expire(db, account_id)
    if not account:
        raise HTTPException(status_code=401, detail="User not found")
    if account.is_banned:
        raise HTTPException(status_code=403, detail="Account banned")
    return account
