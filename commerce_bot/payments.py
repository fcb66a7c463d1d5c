"""Paystack payment adapter."""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from commerce_bot.clients import get_http_client
from commerce_bot.config import config
from commerce_bot.errors import PaymentError

logger = logging.getLogger(__name__)

PLACEHOLDER_PAYMENT_URL = "https://payment.example.com/pay/{order_id}"


SUCCESS_STATUS = "success"


class PaymentVerification(BaseModel):
    amount: Decimal
    status: str = ""
    metadata: dict[str, Any] = {}
    paid_at: Optional[str] = None

    @property
    def is_successful(self) -> bool:
        return self.status == SUCCESS_STATUS


def to_minor_units(amount) -> int:
    """Convert a major-unit amount (naira) into kobo, rounding half up."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise PaymentError(f"Invalid order amount for payment: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise PaymentError("Invalid order amount for payment. Amount must be > 0.")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(int(amount)) / 100).quantize(Decimal("0.01"))


class PaystackClient:
    def __init__(self, secret_key: str = None, base_url: str = None, app_base_url: str = None):
        self.secret_key = secret_key if secret_key is not None else config.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or config.PAYSTACK_BASE_URL).rstrip("/")
        self.app_base_url = app_base_url if app_base_url is not None else config.APP_BASE_URL

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    @property
    def callback_url(self) -> Optional[str]:
        if not self.app_base_url:
            return None
        return f"{self.app_base_url.rstrip('/')}/webhook/payment/verify"

    async def generate_payment_link(
        self,
        order_id: str,
        amount,
        email: str,
        metadata: Optional[dict] = None,
    ) -> str:
        """Initialize a transaction whose reference is the order id; returns the checkout URL."""
        if not self.secret_key:
            logger.warning("⚠️ Paystack secret key not configured, returning placeholder link")
            return PLACEHOLDER_PAYMENT_URL.format(order_id=order_id)

        amount_in_kobo = to_minor_units(amount)
        body = {
            "email": email,
            "amount": amount_in_kobo,
            "reference": order_id,
            "metadata": {"orderId": order_id, **(metadata or {})},
        }
        if self.callback_url:
            body["callback_url"] = self.callback_url

        logger.info(f"Initializing Paystack payment: order={order_id}, amount_kobo={amount_in_kobo}")

        client = get_http_client()
        try:
            response = await client.post(
                f"{self.base_url}/transaction/initialize",
                headers=self._headers(),
                json=body,
            )
        except httpx.HTTPError as e:
            logger.error(f"Paystack request failed: {type(e).__name__}")
            raise PaymentError("Failed to generate payment link") from e

        if response.status_code >= 400:
            logger.error(f"Paystack API error: {response.status_code} - {response.text}")
            raise PaymentError(f"Failed to generate payment link: {response.reason_phrase}")

        data = response.json()
        url = (data.get("data") or {}).get("authorization_url")
        if not data.get("status") or not url:
            logger.error(f"Paystack returned error: {data.get('message')}")
            raise PaymentError(data.get("message") or "Failed to generate payment link")

        return url

    async def verify_payment(self, reference: str) -> PaymentVerification:
        if not self.secret_key:
            logger.warning("⚠️ Paystack secret key not configured, refusing to verify payment")
            raise PaymentError("Payment verification is not configured")

        client = get_http_client()
        try:
            response = await client.get(
                f"{self.base_url}/transaction/verify/{reference}",
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.error(f"Paystack verify request failed: {type(e).__name__}")
            raise PaymentError("Failed to verify payment") from e

        if response.status_code >= 400:
            logger.error(f"Paystack verify API error: {response.status_code} - {response.text}")
            raise PaymentError(f"Failed to verify payment: {response.reason_phrase}")

        data = response.json()
        payload = data.get("data")
        if not data.get("status") or not payload:
            logger.error(f"Paystack verify returned error: {data.get('message')}")
            raise PaymentError(data.get("message") or "Failed to verify payment")

        return PaymentVerification(
            amount=from_minor_units(payload.get("amount", 0)),
            status=payload.get("status") or "",
            metadata=payload.get("metadata") or {},
            paid_at=payload.get("paid_at"),
        )
