# FILE: backend/schemas/auth.py
from datetime import datetime, timezone
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from backend.models.account import AVATARS


def iso_utc(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignupRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    avatar: str = "fox"
    plan: Literal["free", "premium"] = "free"

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str):
        v = (v or "").strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("email is not valid")
        return v

    @field_validator("avatar")
    @classmethod
    def validate_avatar(cls, v: str):
        v = (v or "fox").lower().strip()
        if v not in AVATARS:
            raise ValueError(f"avatar must be one of {list(AVATARS)}")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str


class AccountResponse(CamelModel):
    id: str
    email: str
    avatar: str
    plan: str
    is_admin: bool
    is_active: bool
    is_premium: bool
    premium_until: Optional[str] = None
    created_at: str


class ActivationStatus(CamelModel):
    is_active: bool
    is_premium: bool
    premium_until: Optional[str] = None


class PaymentDetails(BaseModel):
    amount: int
    purpose: str
    currency: str


class TokenResponse(CamelModel):
    token: str
    account: AccountResponse
    payment_details: Optional[PaymentDetails] = None
    message: Optional[str] = None
