# FILE: backend/services/activation_service.py
"""Activation engine.

Two entry points:

* ``initiate_payment``: opens a checkout with the gateway, then records a
  pending attempt carrying the gateway's correlation token.
* ``resolve_callback``: applies a provider callback to the ledger and the
  account. Safe under duplicate and concurrent delivery: the pending ->
  terminal move is a conditional update and only its winner touches the account.

The decision itself lives in ``plan_transition``, a pure function.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.core.config import PaymentSettings
from backend.core.database import utcnow
from backend.models.account import Account
from backend.models.payment import FAILED, PURPOSES, SUCCESS, TERMINAL_STATUSES
from backend.services import ledger_service
from backend.services.gateway_service import GatewayUnavailable, PaymentGateway

logger = logging.getLogger("anchor.payments.activation")

_PHONE_RE = re.compile(r"^(?:\+?254|0)?([17]\d{8})$")

# Daraja result codes worth naming in the logs
MPESA_RESULT_CODES = {
    0: "success",
    1: "insufficient funds",
    1032: "cancelled by user",
    1037: "timed out waiting for user",
    2001: "wrong PIN",
}


# ─────────────────────────────────────────────
# ERRORS
# ─────────────────────────────────────────────

class PaymentError(Exception):
    status_code = 400


class InvalidInput(PaymentError):
    pass


class AccountNotFound(PaymentError):
    status_code = 404


class CallbackError(Exception):
    """Callback problems: logged, never reported back to the provider."""


class UnknownCorrelation(CallbackError):
    pass


class AlreadyResolved(CallbackError):
    pass


class AccountMissing(CallbackError):
    pass


class InvalidCallback(CallbackError, ValueError):
    pass


# ─────────────────────────────────────────────
# VALUE TYPES
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class CallbackOutcome:
    correlation_token: str
    success: bool
    receipt_id: Optional[str] = None
    failure_reason: Optional[str] = None
    amount: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AttemptState:
    status: str
    purpose: str
    amount: int


@dataclass(frozen=True)
class AccountMutation:
    activate: bool = True
    premium_until: Optional[datetime] = None

    def values(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {"is_active": True} if self.activate else {}
        if self.premium_until is not None:
            values.update(is_premium=True, premium_until=self.premium_until)
        return values


@dataclass(frozen=True)
class Transition:
    status: str
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    account_mutation: Optional[AccountMutation] = None


@dataclass(frozen=True)
class InitiatedPayment:
    payment_id: str
    checkout_ref: str
    message: str
    amount: int
    provider: str
    checkout_url: Optional[str] = None


class CallbackResult(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    INVALID = "invalid"
    UNKNOWN = "unknown"
    ALREADY_RESOLVED = "already_resolved"
    ACCOUNT_MISSING = "account_missing"
    ERROR = "error"


# ─────────────────────────────────────────────
# PURE HELPERS
# ─────────────────────────────────────────────

def normalize_phone(raw: Any) -> str:
    """0712345678 / +254712345678 / 254112345678 -> 2547XXXXXXXX or 2541XXXXXXXX."""
    digits = re.sub(r"[\s\-()]", "", str(raw or ""))
    m = _PHONE_RE.match(digits)
    if not m:
        raise InvalidInput("Phone number must be a Kenyan mobile number, e.g. 0712345678 or 254712345678")
    return f"254{m.group(1)}"


def plan_transition(
    attempt: AttemptState,
    callback: CallbackOutcome,
    now: datetime,
    account_plan: Optional[str] = None,
    premium_days: int = 30,
) -> Transition:
    if attempt.status in TERMINAL_STATUSES:
        raise AlreadyResolved(f"attempt already {attempt.status}")

    if not callback.success:
        return Transition(status=FAILED, failure_reason=callback.failure_reason or "Payment failed")

    premium = attempt.purpose == "premium" or account_plan == "premium"
    # Renewal starts a fresh window from confirmation; it never stacks on remaining time
    premium_until = now + timedelta(days=premium_days) if premium else None
    return Transition(
        status=SUCCESS,
        transaction_id=callback.receipt_id,
        account_mutation=AccountMutation(activate=True, premium_until=premium_until),
    )


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _parse_daraja(stk: Dict[str, Any], payload: Dict[str, Any]) -> CallbackOutcome:
    token = stk.get("CheckoutRequestID")
    code = _as_int(stk.get("ResultCode"))
    if not token or code is None:
        raise InvalidCallback("stkCallback without CheckoutRequestID/ResultCode")

    items = (stk.get("CallbackMetadata") or {}).get("Item") or []
    meta = {i.get("Name"): i.get("Value") for i in items if isinstance(i, dict)}
    if code == 0:
        return CallbackOutcome(
            correlation_token=token,
            success=True,
            receipt_id=meta.get("MpesaReceiptNumber"),
            amount=_as_int(meta.get("Amount")),
            raw=payload,
        )
    reason = stk.get("ResultDesc") or MPESA_RESULT_CODES.get(code) or f"M-Pesa result code {code}"
    return CallbackOutcome(correlation_token=token, success=False, failure_reason=reason, raw=payload)


def _parse_intasend(payload: Dict[str, Any]) -> Optional[CallbackOutcome]:
    state = str(payload.get("state") or "").upper()
    token = payload.get("checkout_id") or payload.get("api_ref") or payload.get("invoice_id")
    if not token:
        raise InvalidCallback("IntaSend event without checkout_id/api_ref")
    if state == "COMPLETE":
        return CallbackOutcome(
            correlation_token=str(token),
            success=True,
            receipt_id=payload.get("mpesa_reference") or payload.get("invoice_id"),
            amount=_as_int(payload.get("value")),
            raw=payload,
        )
    if state == "FAILED":
        return CallbackOutcome(
            correlation_token=str(token),
            success=False,
            failure_reason=payload.get("failed_reason") or "Payment failed",
            raw=payload,
        )
    # PENDING / PROCESSING are progress notes, not outcomes
    return None


def parse_callback(payload: Any) -> Optional[CallbackOutcome]:
    """Turn a provider payload into an outcome; None means nothing to apply yet."""
    if not isinstance(payload, dict):
        raise InvalidCallback("callback body is not an object")

    stk = (payload.get("Body") or {}).get("stkCallback") if isinstance(payload.get("Body"), dict) else None
    if isinstance(stk, dict):
        return _parse_daraja(stk, payload)

    if "state" in payload and ("invoice_id" in payload or "api_ref" in payload):
        return _parse_intasend(payload)

    token = payload.get("correlationToken") or payload.get("checkoutRef") or payload.get("checkout_ref")
    outcome = str(payload.get("outcome") or payload.get("status") or "").lower()
    if not token or outcome not in {"success", "failure", "failed"}:
        raise InvalidCallback("unrecognised callback payload")
    return CallbackOutcome(
        correlation_token=str(token),
        success=outcome == "success",
        receipt_id=payload.get("receiptId") or payload.get("transactionId"),
        failure_reason=payload.get("failureReason") or payload.get("reason"),
        amount=_as_int(payload.get("amount")),
        raw=payload,
    )


# ─────────────────────────────────────────────
# ENGINE
# ─────────────────────────────────────────────

class ActivationEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        gateways: Dict[str, PaymentGateway],
        settings: PaymentSettings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.gateways = gateways
        self.settings = settings
        self.clock = clock

    async def initiate_payment(
        self,
        db: AsyncSession,
        account_id: str,
        *,
        contact: Any,
        purpose: Any = "activation",
        amount: Any = None,
        provider: Any = None,
    ) -> InitiatedPayment:
        """Arguments arrive as the client sent them; anything malformed is InvalidInput."""
        account = await db.get(Account, account_id)
        if account is None:
            raise AccountNotFound("Account not found")

        if purpose not in PURPOSES:
            raise InvalidInput(f"purpose must be one of {list(PURPOSES)}")
        if purpose == "activation" and account.is_active:
            raise InvalidInput("Account is already active")

        provider = provider or self.settings.default_provider
        if not isinstance(provider, str):
            raise InvalidInput("provider must be a string")
        provider = provider.lower()
        gateway = self.gateways.get(provider)
        if gateway is None:
            raise InvalidInput(f"Unsupported provider: {provider}")

        price = self.settings.price_for(purpose, account.plan)
        if amount is None:
            amount = price
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidInput("amount must be a positive whole number")
        if amount < price:
            raise InvalidInput(f"amount is below the {purpose} price of {self.settings.currency} {price}")

        contact = normalize_phone(contact)
        reference = ledger_service.new_reference()

        try:
            session = await asyncio.wait_for(
                gateway.start_checkout(amount, contact, self.settings.callback_url, reference),
                timeout=self.settings.gateway_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Gateway %s timed out for account %s", provider, account_id)
            raise GatewayUnavailable(f"{provider} did not answer in time") from exc
        except GatewayUnavailable:
            logger.error("Gateway %s unavailable for account %s", provider, account_id, exc_info=True)
            raise
        except Exception as exc:
            logger.exception("Gateway %s failed for account %s", provider, account_id)
            raise GatewayUnavailable(f"{provider} checkout failed: {exc}") from exc

        # The row exists only once the gateway has issued a token
        payment = ledger_service.record_attempt(
            db,
            account_id=account_id,
            provider=provider,
            purpose=purpose,
            amount=amount,
            currency=self.settings.currency,
            contact=contact,
            reference=reference,
            checkout_ref=session.checkout_ref,
        )
        await db.commit()

        logger.info(
            "Payment %s initiated: account=%s purpose=%s amount=%s checkout=%s",
            payment.id, account_id, purpose, amount, session.checkout_ref,
        )
        return InitiatedPayment(
            payment_id=payment.id,
            checkout_ref=session.checkout_ref,
            message=session.message,
            amount=amount,
            provider=provider,
            checkout_url=session.checkout_url,
        )

    async def resolve_callback(self, callback: CallbackOutcome) -> Transition:
        now = self.clock()
        async with self.session_factory() as db:
            attempt = await ledger_service.find_by_correlation(db, callback.correlation_token)
            if attempt is None:
                raise UnknownCorrelation(callback.correlation_token)
            # Rollback expires loaded rows; keep what the log lines need
            attempt_id, account_id = attempt.id, attempt.account_id

            account = await db.get(Account, account_id)
            transition = plan_transition(
                AttemptState(status=attempt.status, purpose=attempt.purpose, amount=attempt.amount),
                callback,
                now,
                account_plan=account.plan if account else None,
                premium_days=self.settings.premium_days,
            )

            if callback.amount is not None and callback.success and callback.amount != attempt.amount:
                logger.warning(
                    "Amount mismatch on %s: expected %s, provider reported %s",
                    attempt_id, attempt.amount, callback.amount,
                )

            won = await ledger_service.transition_attempt(
                db,
                attempt_id,
                status=transition.status,
                now=now,
                transaction_id=transition.transaction_id,
                failure_reason=transition.failure_reason,
                raw=callback.raw or None,
            )
            if not won:
                await db.rollback()
                raise AlreadyResolved(f"attempt {attempt_id} resolved concurrently")

            if account is None:
                await db.commit()
                raise AccountMissing(f"attempt {attempt_id} references deleted account {account_id}")

            if transition.account_mutation is not None:
                await db.execute(
                    update(Account)
                    .where(Account.id == account_id)
                    .values(**transition.account_mutation.values())
                    .execution_options(synchronize_session=False)
                )
            # Attempt status and entitlement land in the same commit
            await db.commit()

        logger.info(
            "Payment %s -> %s (account=%s receipt=%s)",
            attempt_id, transition.status, account_id, transition.transaction_id,
        )
        return transition

    async def process_callback(self, payload: Any) -> CallbackResult:
        """Background half of the callback endpoint. Never raises."""
        try:
            outcome = parse_callback(payload)
        except InvalidCallback as exc:
            logger.warning("Discarding callback: %s payload=%s", exc, payload)
            return CallbackResult.INVALID
        if outcome is None:
            logger.info("Callback carries no final outcome yet: %s", payload)
            return CallbackResult.IGNORED

        try:
            await self.resolve_callback(outcome)
        except UnknownCorrelation:
            logger.warning("Callback for unknown checkout %s ignored", outcome.correlation_token)
            return CallbackResult.UNKNOWN
        except AlreadyResolved as exc:
            logger.info("Duplicate callback for %s: %s", outcome.correlation_token, exc)
            return CallbackResult.ALREADY_RESOLVED
        except AccountMissing as exc:
            logger.error("Data integrity: %s", exc)
            return CallbackResult.ACCOUNT_MISSING
        except Exception:
            # Left for manual reconciliation, no automatic retry
            logger.exception("Callback processing failed for %s", outcome.correlation_token)
            return CallbackResult.ERROR
        return CallbackResult.APPLIED
