from backend.models.account import Account
from backend.models.payment import Payment

__all__ = ["Account", "Payment"]
