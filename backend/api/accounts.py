# FILE: backend/api/accounts.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.core.database import get_db
from backend.schemas.auth import ActivationStatus, iso_utc
from backend.services.entitlement_service import poll_activation

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


@router.get("/{account_id}/activation-status", response_model=ActivationStatus)
async def activation_status(account_id: str, db: AsyncSession = Depends(get_db)):
    """Polled by the signup page while the customer confirms the payment on their phone."""
    status = await poll_activation(db, account_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return ActivationStatus(
        is_active=status["is_active"],
        is_premium=status["is_premium"],
        premium_until=iso_utc(status["premium_until"]),
    )
