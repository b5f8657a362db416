# FILE: backend/services/ledger_service.py
"""Payment ledger: append-mostly record of payment attempts.

Rows are inserted pending and leave that state at most once, through
``transition_attempt`` which is a conditional single-row update.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.models.payment import Payment, PENDING


def new_reference() -> str:
    # M-Pesa truncates AccountReference to 12 characters
    return uuid.uuid4().hex[:12].upper()


def record_attempt(
    db: AsyncSession,
    *,
    account_id: str,
    provider: str,
    purpose: str,
    amount: int,
    currency: str,
    contact: str,
    reference: str,
    checkout_ref: str,
) -> Payment:
    payment = Payment(
        id=str(uuid.uuid4()),
        account_id=account_id,
        provider=provider,
        purpose=purpose,
        amount=amount,
        currency=currency,
        contact=contact,
        reference=reference,
        checkout_ref=checkout_ref,
        status=PENDING,
    )
    db.add(payment)
    return payment


async def find_by_correlation(db: AsyncSession, token: str) -> Optional[Payment]:
    """Lookup by gateway token; IntaSend echoes our own reference instead, so accept that too."""
    if not token:
        return None
    result = await db.execute(
        select(Payment).where(or_(Payment.checkout_ref == token, Payment.reference == token))
    )
    return result.scalars().first()


async def transition_attempt(
    db: AsyncSession,
    payment_id: str,
    *,
    status: str,
    now: datetime,
    transaction_id: Optional[str] = None,
    failure_reason: Optional[str] = None,
    raw: Optional[Dict[str, Any]] = None,
) -> bool:
    """Compare-and-swap pending -> status. Returns False when another writer got there first."""
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == PENDING)
        .values(
            status=status,
            transaction_id=transaction_id,
            failure_reason=failure_reason,
            resolved_at=now,
            raw=raw,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def list_for_account(db: AsyncSession, account_id: str, limit: int = 50) -> List[Payment]:
    result = await db.execute(
        select(Payment)
        .where(Payment.account_id == account_id)
        .order_by(Payment.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
