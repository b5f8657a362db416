# FILE: backend/schemas/payments.py
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from backend.schemas.auth import CamelModel


class PaymentInitRequest(CamelModel):
    # Loosely typed: the activation engine validates these and answers 400
    phone_number: Any = None
    purpose: Any = "activation"
    amount: Any = None
    provider: Any = None


class PaymentInitResponse(CamelModel):
    payment_id: str
    checkout_ref: str
    message: str
    amount: int
    provider: str
    checkout_url: Optional[str] = None


class PaymentRecord(CamelModel):
    id: str
    provider: str
    purpose: str
    amount: int
    currency: str
    status: str
    checkout_ref: str
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None


class PlanPrices(BaseModel):
    currency: str
    prices: Dict[str, int]
    premium_days: int
    providers: List[str] = Field(default_factory=list)


# Daraja expects exactly this body; IntaSend only looks at the status code
CALLBACK_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}
