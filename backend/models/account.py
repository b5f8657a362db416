# /backend/models/account.py
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Boolean, DateTime

from backend.core.database import Base, utcnow

AVATARS = ("fox", "bear", "owl", "lion", "tiger", "panda", "wolf", "elephant", "dog", "cat")
PLANS = ("free", "premium")


class Account(Base):
    """A chat user and their entitlement state."""
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(190), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    avatar: Mapped[str] = mapped_column(String(20), default="fox")

    # Plan chosen at signup: decides what the activation payment buys
    plan: Mapped[str] = mapped_column(String(20), default="free")

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False)

    # Set once by the activation engine, never reverts
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)

    is_premium: Mapped[bool] = mapped_column(Boolean, default=False)
    # Null while premium means unbounded (legacy grants)
    premium_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
