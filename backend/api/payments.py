# /backend/api/payments.py
"""Payment endpoints: initiation for clients, callback for providers."""

import logging
import os
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import get_activation_engine, get_current_account
from backend.core.config import LOG_DIR
from backend.core.database import get_db
from backend.models.account import Account
from backend.schemas.payments import (
    CALLBACK_ACK, PaymentInitRequest, PaymentInitResponse, PaymentRecord, PlanPrices,
)
from backend.services import ledger_service
from backend.services.activation_service import ActivationEngine, PaymentError
from backend.services.gateway_service import GatewayUnavailable

os.makedirs(LOG_DIR, exist_ok=True)
payments_logger = logging.getLogger("anchor.payments")
if not payments_logger.handlers:
    handler = logging.FileHandler(os.path.join(LOG_DIR, "payments.log"))
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    handler.setFormatter(formatter)
    payments_logger.setLevel(logging.INFO)
    payments_logger.addHandler(handler)

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.get("/plans", response_model=PlanPrices)
async def get_plans(engine: ActivationEngine = Depends(get_activation_engine)):
    """Server-side prices; clients never choose what a plan costs."""
    s = engine.settings
    return PlanPrices(
        currency=s.currency,
        prices=dict(s.prices),
        premium_days=s.premium_days,
        providers=sorted(engine.gateways),
    )


@router.post("/init", response_model=PaymentInitResponse)
async def init_payment(
    req: PaymentInitRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    engine: ActivationEngine = Depends(get_activation_engine),
):
    """Start an STK push / checkout for the signed-in account."""
    try:
        initiated = await engine.initiate_payment(
            db,
            account.id,
            contact=req.phone_number,
            purpose=req.purpose,
            amount=req.amount,
            provider=req.provider,
        )
    except PaymentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
    except GatewayUnavailable as exc:
        raise HTTPException(status_code=502, detail=f"Payment provider unavailable: {exc}")

    return PaymentInitResponse(
        payment_id=initiated.payment_id,
        checkout_ref=initiated.checkout_ref,
        message=initiated.message,
        amount=initiated.amount,
        provider=initiated.provider,
        checkout_url=initiated.checkout_url,
    )


@router.post("/callback")
async def payment_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    engine: ActivationEngine = Depends(get_activation_engine),
):
    """Provider callback. Acknowledged at once; effects are applied after the response is sent."""
    try:
        payload = await request.json()
    except ValueError:
        payments_logger.warning("Callback with non-JSON body from %s", request.client.host if request.client else "?")
        return CALLBACK_ACK

    background_tasks.add_task(engine.process_callback, payload)
    return CALLBACK_ACK


@router.get("/history", response_model=List[PaymentRecord])
async def payment_history(
    limit: int = Query(50, ge=1, le=200),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """The caller's own payment attempts, newest first."""
    payments = await ledger_service.list_for_account(db, account.id, limit=limit)
    return [
        PaymentRecord(
            id=p.id,
            provider=p.provider,
            purpose=p.purpose,
            amount=p.amount,
            currency=p.currency,
            status=p.status,
            checkout_ref=p.checkout_ref,
            transaction_id=p.transaction_id,
            failure_reason=p.failure_reason,
            created_at=p.created_at,
            resolved_at=p.resolved_at,
        )
        for p in payments
    ]
