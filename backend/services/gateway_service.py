# FILE: backend/services/gateway_service.py
import base64
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import httpx

from backend.core.config import PaymentSettings
from backend.models.payment import PROVIDERS

logger = logging.getLogger("anchor.payments.gateway")

# Daraja validates the password timestamp in East Africa Time (UTC+3, no DST)
EAT = timezone(timedelta(hours=3), "EAT")


class GatewayUnavailable(Exception):
    """The provider could not be reached or refused to open a checkout session."""


@dataclass(frozen=True)
class CheckoutSession:
    checkout_ref: str
    message: str
    checkout_url: Optional[str] = None


class PaymentGateway:
    """Outbound side of a mobile-money provider.

    Implementations only open checkout sessions. Confirmation arrives later on
    the callback endpoint; nothing here waits for the customer.
    """

    name = "base"

    def __init__(self, settings: PaymentSettings):
        self.settings = settings

    async def start_checkout(
        self,
        amount: int,
        contact: str,
        callback_url: str,
        reference: str,
    ) -> CheckoutSession:
        raise NotImplementedError

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.gateway_timeout)


def json_object(resp: httpx.Response) -> dict:
    data = resp.json()
    if not isinstance(data, dict):
        raise GatewayUnavailable(f"Unexpected response body from {resp.request.url.path}: {data!r}")
    return data


def mpesa_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(EAT)
    if now.tzinfo is not None:
        now = now.astimezone(EAT)
    return now.strftime("%Y%m%d%H%M%S")


def mpesa_password(short_code: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{short_code}{passkey}{timestamp}".encode()).decode()


class MpesaGateway(PaymentGateway):
    """Safaricom Daraja STK push."""

    name = "mpesa"

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        s = self.settings
        resp = await client.get(
            f"{s.mpesa_base_url}/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(s.mpesa_consumer_key, s.mpesa_consumer_secret),
        )
        resp.raise_for_status()
        token = json_object(resp).get("access_token")
        if not token:
            raise GatewayUnavailable("No access token in OAuth response")
        return token

    async def start_checkout(self, amount, contact, callback_url, reference):
        s = self.settings
        if not (s.mpesa_consumer_key and s.mpesa_short_code and s.mpesa_passkey):
            raise GatewayUnavailable("M-Pesa is not configured")

        timestamp = mpesa_timestamp()
        body = {
            "BusinessShortCode": s.mpesa_short_code,
            "Password": mpesa_password(s.mpesa_short_code, s.mpesa_passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount,
            "PartyA": contact,
            "PartyB": s.mpesa_short_code,
            "PhoneNumber": contact,
            "CallBackURL": callback_url,
            "AccountReference": reference[:12],
            "TransactionDesc": "Anchor Payment",
        }
        try:
            async with self._client() as client:
                token = await self._access_token(client)
                resp = await client.post(
                    f"{s.mpesa_base_url}/mpesa/stkpush/v1/processrequest",
                    json=body,
                    headers={"Authorization": f"Bearer {token}"},
                )
                resp.raise_for_status()
                data = json_object(resp)
        except (httpx.HTTPError, ValueError) as exc:
            raise GatewayUnavailable(f"STK push request failed: {exc}") from exc

        if str(data.get("ResponseCode")) != "0" or not data.get("CheckoutRequestID"):
            raise GatewayUnavailable(data.get("errorMessage") or data.get("ResponseDescription") or "STK push rejected")

        logger.info("STK push accepted checkout=%s ref=%s", data["CheckoutRequestID"], reference)
        return CheckoutSession(
            checkout_ref=data["CheckoutRequestID"],
            message=data.get("CustomerMessage") or "Please enter your M-Pesa PIN to complete the transaction",
        )


class IntaSendGateway(PaymentGateway):
    """IntaSend hosted checkout."""

    name = "intasend"

    async def start_checkout(self, amount, contact, callback_url, reference):
        s = self.settings
        if not s.intasend_public_key:
            raise GatewayUnavailable("IntaSend is not configured")

        body = {
            "public_key": s.intasend_public_key,
            "amount": amount,
            "currency": s.currency,
            "phone_number": contact,
            "api_ref": reference,
            "redirect_url": s.intasend_redirect_url or None,
            "method": "M-PESA",
        }
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{s.intasend_base_url}/api/v1/checkout/",
                    json=body,
                    headers={"X-IntaSend-Public-API-Key": s.intasend_public_key},
                )
                resp.raise_for_status()
                data = json_object(resp)
        except (httpx.HTTPError, ValueError) as exc:
            raise GatewayUnavailable(f"IntaSend checkout failed: {exc}") from exc

        if not data.get("id") or not data.get("url"):
            raise GatewayUnavailable("IntaSend checkout response missing id/url")

        logger.info("IntaSend checkout created checkout=%s ref=%s", data["id"], reference)
        return CheckoutSession(
            checkout_ref=str(data["id"]),
            message="Complete the payment on the IntaSend checkout page",
            checkout_url=data["url"],
        )


class StubGateway(PaymentGateway):
    """Development gateway: issues tokens locally, the callback has to be posted by hand."""

    def __init__(self, settings: PaymentSettings, name: str = "mpesa"):
        super().__init__(settings)
        self.name = name

    async def start_checkout(self, amount, contact, callback_url, reference):
        checkout_ref = f"ws_CO_{uuid.uuid4().hex[:20].upper()}"
        logger.info("Stub checkout %s for %s (Ksh %s)", checkout_ref, contact, amount)
        return CheckoutSession(
            checkout_ref=checkout_ref,
            message=f"Simulated {self.name} push for Ksh {amount} to {contact}",
        )


def build_gateways(settings: PaymentSettings) -> Dict[str, PaymentGateway]:
    if settings.test_mode:
        return {name: StubGateway(settings, name) for name in PROVIDERS}
    live = {cls.name: cls for cls in (MpesaGateway, IntaSendGateway)}
    return {name: live[name](settings) for name in PROVIDERS}
