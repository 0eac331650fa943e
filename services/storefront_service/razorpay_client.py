"""
Razorpay API client for checkout orders and payment signatures.

Provides:
- Gateway order creation (amount in paise)
- Payment signature computation / verification
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import tracing_headers

logger = logging.getLogger(__name__)


@dataclass
class GatewayOrder:
    """Order created on the Razorpay side before opening the widget."""

    gateway_order_id: str
    amount: int  # in paise
    currency: str
    receipt: str
    key_id: str
    status: str


class GatewayError(Exception):
    """Base exception for Razorpay API errors."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


def to_minor_units(amount: Decimal) -> int:
    """Convert rupees to paise."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_signature(secret: str, gateway_order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 of ``order_id|payment_id``, hex encoded."""
    message = f"{gateway_order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class RazorpayClient:
    """Async client for the Razorpay Orders API."""

    def __init__(
        self,
        key_id: str = None,
        key_secret: str = None,
        base_url: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        if not self.key_id or not self.key_secret:
            raise GatewayError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET are required")
        self.base_url = (base_url or settings.RAZORPAY_BASE_URL).rstrip("/")
        self._transport = transport

    async def _request(self, method: str, endpoint: str, json_data: dict = None):
        url = f"{self.base_url}{endpoint}"

        async with httpx.AsyncClient(
            timeout=30.0,
            transport=self._transport,
            headers=tracing_headers(),
            auth=(self.key_id, self.key_secret),
        ) as client:
            try:
                response = await client.request(method=method, url=url, json=json_data)
            except httpx.HTTPError as e:
                logger.error(f"Razorpay request failed: {e}")
                raise GatewayError(f"Razorpay unreachable: {e}") from e

            try:
                data = response.json()
            except ValueError:
                data = {}

            if not response.is_success:
                logger.error(f"Razorpay API error: {response.status_code} - {data}")
                error = data.get("error") or {}
                raise GatewayError(
                    message=error.get("description", "Unknown Razorpay error"),
                    status_code=response.status_code,
                    response_data=data,
                )

            return data

    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        receipt: str,
        notes: Optional[dict] = None,
    ) -> GatewayOrder:
        """
        Create a Razorpay order.

        Args:
            amount: Order total in major units (rupees)
            currency: ISO currency code
            receipt: Our receipt token, echoed back by Razorpay
            notes: Free-form key/value pairs shown on the dashboard

        Returns:
            GatewayOrder with the Razorpay order id and our public key id
        """
        data = await self._request(
            "POST",
            "/orders",
            json_data={
                "amount": to_minor_units(amount),
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
            },
        )

        if not data.get("id"):
            raise GatewayError("Razorpay order response missing id", response_data=data)

        return GatewayOrder(
            gateway_order_id=data["id"],
            amount=data.get("amount", to_minor_units(amount)),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt),
            key_id=self.key_id,
            status=data.get("status", "created"),
        )

    def verify_signature(
        self, gateway_order_id: str, payment_id: str, signature: str
    ) -> bool:
        expected = compute_signature(self.key_secret, gateway_order_id, payment_id)
        return hmac.compare_digest(expected.encode(), (signature or "").encode())
