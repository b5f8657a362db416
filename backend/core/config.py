# backend/core/config.py
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional
from dotenv import load_dotenv

# ================== ENV ==================

ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(ROOT_DIR / "backend/.env", override=False)

def env(*names: str, default: Optional[str] = None) -> str:
    for n in names:
        v = os.environ.get(n)
        if v is not None and str(v).strip() != "":
            return v
    if default is not None:
        return default
    raise KeyError(f"Missing required env var. Tried: {', '.join(names)}")


def env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}

# ================== JWT ==================

JWT_SECRET = os.environ.get("JWT_SECRET", "default_secret_key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_HOURS = int(os.environ.get("JWT_EXPIRATION_HOURS", "720"))

# ================== LOGGING ==================

LOG_DIR = os.getenv("LOG_DIR", str(ROOT_DIR / "logs"))

# ================== DATABASE ==================
# SQLite for local development, any async SQLAlchemy URL in production

DATABASE_URL = os.environ.get("DATABASE_URL", "")

def get_database_url() -> str:
    """Get database URL - DATABASE_URL wins, otherwise a local SQLite file."""
    if DATABASE_URL:
        return DATABASE_URL

    mysql_host = os.environ.get("MYSQL_HOST")
    if mysql_host:
        mysql_port = int(os.environ.get("MYSQL_PORT", "3306"))
        mysql_user = os.environ.get("MYSQL_USER", "root")
        mysql_password = os.environ.get("MYSQL_PASSWORD", "")
        mysql_db = os.environ.get("MYSQL_DB", "anchor")
        return f"mysql+aiomysql://{mysql_user}:{mysql_password}@{mysql_host}:{mysql_port}/{mysql_db}?charset=utf8mb4"

    db_path = ROOT_DIR / "backend" / "anchor.db"
    return f"sqlite+aiosqlite:///{db_path}"

# ================== PAYMENTS ==================

MPESA_SANDBOX_URL = "https://sandbox.safaricom.co.ke"
INTASEND_SANDBOX_URL = "https://sandbox.intasend.com"


@dataclass(frozen=True)
class PaymentSettings:
    """Everything the gateways and the activation engine need, passed in explicitly."""

    callback_base_url: str = "http://localhost:8000"
    default_provider: str = "mpesa"
    gateway_timeout: float = 15.0
    currency: str = "KES"
    premium_days: int = 30
    # Ksh 50 sign-up fee for free users, Ksh 300/month premium
    prices: Dict[str, int] = field(default_factory=lambda: {"activation": 50, "premium": 300})
    # Local/dev mode: gateways are replaced by a stub that never leaves the process
    test_mode: bool = False

    mpesa_base_url: str = MPESA_SANDBOX_URL
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_short_code: str = ""
    mpesa_passkey: str = ""

    intasend_base_url: str = INTASEND_SANDBOX_URL
    intasend_public_key: str = ""
    intasend_redirect_url: str = ""

    @property
    def callback_url(self) -> str:
        return f"{self.callback_base_url.rstrip('/')}/api/payments/callback"

    def price_for(self, purpose: str, plan: str = "free") -> int:
        # A premium signup pays the premium price for its activation
        if purpose == "activation" and plan == "premium":
            return self.prices["premium"]
        return self.prices[purpose]

    @classmethod
    def from_env(cls) -> "PaymentSettings":
        return cls(
            callback_base_url=env("CALLBACK_BASE_URL", "CALLBACK_URL", default="http://localhost:8000"),
            default_provider=env("PAYMENT_PROVIDER", default="mpesa").lower(),
            gateway_timeout=float(env("PAYMENT_GATEWAY_TIMEOUT", default="15")),
            currency=env("PAYMENT_CURRENCY", default="KES"),
            premium_days=int(env("PREMIUM_DAYS", default="30")),
            prices={
                "activation": int(env("SIGNUP_FEE", default="50")),
                "premium": int(env("PREMIUM_PRICE", default="300")),
            },
            test_mode=env_flag("PAYMENT_TEST_MODE"),
            mpesa_base_url=env("MPESA_BASE_URL", default=MPESA_SANDBOX_URL),
            mpesa_consumer_key=env("CONSUMER_KEY", "MPESA_CONSUMER_KEY", default=""),
            mpesa_consumer_secret=env("CONSUMER_SECRET", "MPESA_CONSUMER_SECRET", default=""),
            mpesa_short_code=env("BUSINESS_SHORT_CODE", "MPESA_SHORT_CODE", default=""),
            mpesa_passkey=env("PASSKEY", "MPESA_PASSKEY", default=""),
            intasend_base_url=env("INTASEND_BASE_URL", default=INTASEND_SANDBOX_URL),
            intasend_public_key=env("INTASEND_PUBLISHABLE_KEY", default=""),
            intasend_redirect_url=env("INTASEND_REDIRECT_URL", "FRONTEND_URL", default=""),
        )


@lru_cache()
def get_payment_settings() -> PaymentSettings:
    """Cached settings singleton."""
    return PaymentSettings.from_env()
