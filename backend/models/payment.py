# /backend/models/payment.py
from datetime import datetime
from typing import Optional, Any
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, ForeignKey, DateTime, JSON

from backend.core.database import Base, utcnow

PENDING = "pending"
SUCCESS = "success"
FAILED = "failed"
TERMINAL_STATUSES = frozenset({SUCCESS, FAILED})

PURPOSES = ("activation", "premium")
PROVIDERS = ("mpesa", "intasend")


class Payment(Base):
    """One payment attempt, correlated to exactly one gateway checkout session."""
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # No cascade: the ledger outlives a deleted account
    account_id: Mapped[str] = mapped_column(String(36), ForeignKey("accounts.id"), index=True)

    # Payment provider: mpesa, intasend
    provider: Mapped[str] = mapped_column(String(40))

    # activation or premium
    purpose: Mapped[str] = mapped_column(String(20))

    # Whole currency units (M-Pesa only accepts integers)
    amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="KES")

    # Phone number the prompt was pushed to
    contact: Mapped[str] = mapped_column(String(20))

    # Our reference, sent to the gateway as account reference / api_ref
    reference: Mapped[str] = mapped_column(String(40), unique=True, index=True)

    # Gateway-issued correlation token (CheckoutRequestID, checkout id)
    checkout_ref: Mapped[str] = mapped_column(String(190), unique=True, index=True)

    # External receipt, only on success
    transaction_id: Mapped[Optional[str]] = mapped_column(String(190), nullable=True)

    # Status: pending, success, failed
    status: Mapped[str] = mapped_column(String(20), default=PENDING)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Raw callback payload that resolved the attempt
    raw: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
