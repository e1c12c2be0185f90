"""Payment gateway client.

Supports two backends:
- Razorpay via httpx (production): orders for escrow holds, RazorpayX
  payouts for milestone releases
- Sandbox (development / testing): issues local ids and logs each call

Set PAYMENT_GATEWAY_BACKEND=razorpay and the RAZORPAY_* settings for
production. Both backends verify checkout signatures the same way:
HMAC-SHA256 over ``order_id|payment_id`` keyed by the gateway secret.
"""

import hashlib
import hmac
import logging
import secrets
from decimal import Decimal
from typing import Protocol

import httpx

from freelance_escrow.config import settings
from freelance_escrow.services.payout_destinations import PayoutDestination

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """The gateway rejected the call or could not be reached."""


class PaymentGateway(Protocol):
    key_id: str

    async def create_order(
        self, amount: Decimal, currency: str, receipt: str, metadata: dict[str, str]
    ) -> str: ...

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool: ...

    async def create_payout(
        self, destination: PayoutDestination, amount: Decimal, currency: str, reference: str
    ) -> str: ...


def to_minor_units(amount: Decimal) -> int:
    """Rupees to paise (the gateway only accepts integer minor units)."""
    return int((Decimal(amount) * 100).to_integral_value())


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    message = f"{order_id}|{payment_id}"
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def signature_matches(secret: str, order_id: str, payment_id: str, signature: str) -> bool:
    expected = compute_signature(secret, order_id, payment_id)
    return hmac.compare_digest(expected, signature or "")


class SandboxGateway:
    """Development gateway. No money moves; ids are generated locally."""

    def __init__(self, key_id: str | None = None, key_secret: str | None = None) -> None:
        self.key_id = key_id or settings.razorpay_key_id
        self._secret = key_secret or settings.razorpay_key_secret

    async def create_order(
        self, amount: Decimal, currency: str, receipt: str, metadata: dict[str, str]
    ) -> str:
        order_id = f"order_sbx{secrets.token_hex(7)}"
        logger.info("SANDBOX order %s amount=%s %s receipt=%s", order_id, amount, currency, receipt)
        return order_id

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return signature_matches(self._secret, order_id, payment_id, signature)

    def sign(self, order_id: str, payment_id: str) -> str:
        """Produce the signature a real checkout would hand back to the client."""
        return compute_signature(self._secret, order_id, payment_id)

    async def create_payout(
        self, destination: PayoutDestination, amount: Decimal, currency: str, reference: str
    ) -> str:
        payout_id = f"pout_sbx{secrets.token_hex(7)}"
        logger.info(
            "SANDBOX payout %s amount=%s %s to %s ref=%s",
            payout_id, amount, currency, destination.masked_account, reference,
        )
        return payout_id


class RazorpayGateway:
    """Production gateway backed by the Razorpay Orders and RazorpayX Payouts APIs."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self.key_id = settings.razorpay_key_id
        self._secret = settings.razorpay_key_secret
        self._client = client

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=settings.razorpay_api_url,
            auth=(self.key_id, self._secret),
            timeout=settings.gateway_timeout_seconds,
        )

    async def _post(self, path: str, payload: dict, headers: dict[str, str] | None = None) -> dict:
        client = self._client or self._new_client()
        try:
            resp = await client.post(path, json=payload, headers=headers)
        except httpx.TimeoutException:
            logger.error("Razorpay %s timed out", path)
            raise GatewayError(f"Payment gateway timed out on {path}")
        except httpx.RequestError as e:
            logger.error("Razorpay %s request failed: %s", path, e)
            raise GatewayError(f"Failed to reach payment gateway: {e}")
        finally:
            if self._client is None:
                await client.aclose()

        if resp.status_code not in (200, 201):
            logger.error("Razorpay %s returned %d: %s", path, resp.status_code, resp.text[:500])
            try:
                description = resp.json().get("error", {}).get("description")
            except ValueError:
                description = None
            raise GatewayError(
                description or f"Payment gateway returned status {resp.status_code}"
            )

        data = resp.json()
        if not data.get("id"):
            raise GatewayError(f"Payment gateway response from {path} has no id")
        return data

    async def create_order(
        self, amount: Decimal, currency: str, receipt: str, metadata: dict[str, str]
    ) -> str:
        data = await self._post("/orders", {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": receipt,
            "notes": metadata,
        })
        return data["id"]

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return signature_matches(self._secret, order_id, payment_id, signature)

    async def create_payout(
        self, destination: PayoutDestination, amount: Decimal, currency: str, reference: str
    ) -> str:
        if not settings.razorpay_payout_account_number:
            raise GatewayError("Payout source account is not configured")

        if destination.account_number and destination.ifsc_code:
            fund_account = {
                "account_type": "bank_account",
                "bank_account": {
                    "name": destination.holder_name,
                    "ifsc": destination.ifsc_code,
                    "account_number": destination.account_number,
                },
            }
            mode = settings.payout_mode
        else:
            fund_account = {"account_type": "vpa", "vpa": {"address": destination.upi_id}}
            mode = "UPI"
        fund_account["contact"] = {
            "name": destination.holder_name,
            "type": "vendor",
            "reference_id": str(destination.recipient_id),
        }

        data = await self._post(
            "/payouts",
            {
                "account_number": settings.razorpay_payout_account_number,
                "fund_account": fund_account,
                "amount": to_minor_units(amount),
                "currency": currency,
                "mode": mode,
                "purpose": "payout",
                "queue_if_low_balance": True,
                "reference_id": reference,
                "narration": "Milestone payment",
            },
            headers={"X-Payout-Idempotency": reference},
        )
        return data["id"]


def get_payment_gateway() -> PaymentGateway:
    if settings.payment_gateway_backend == "razorpay":
        return RazorpayGateway()
    return SandboxGateway()
