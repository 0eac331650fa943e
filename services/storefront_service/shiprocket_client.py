"""
Shiprocket API client for shipments, cancellations and returns.

Provides async methods for:
- Logging in (email/password exchanged for a bearer token)
- Creating adhoc shipment orders
- Cancelling shipment orders
- Creating return shipments
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import tracing_headers
from pydantic import BaseModel

logger = logging.getLogger(__name__)


# =============================================================================
# Request payloads
# =============================================================================


class ShipmentItem(BaseModel):
    name: str
    sku: str
    units: int
    selling_price: float
    discount: float = 0
    tax: float = 0
    hsn: str = "6911"


class ShipmentOrderRequest(BaseModel):
    """Payload for POST /orders/create/adhoc."""

    order_id: str
    order_date: str
    pickup_location: str
    comment: str = ""
    shipping_is_billing: bool = True

    billing_customer_name: str
    billing_last_name: str = ""
    billing_address: str
    billing_address_2: str = ""
    billing_city: str
    billing_pincode: str
    billing_state: str
    billing_country: str = "India"
    billing_email: str
    billing_phone: str

    shipping_customer_name: str
    shipping_last_name: str = ""
    shipping_address: str
    shipping_address_2: str = ""
    shipping_city: str
    shipping_pincode: str
    shipping_state: str
    shipping_country: str = "India"
    shipping_email: str
    shipping_phone: str

    order_items: List[ShipmentItem]
    payment_method: str = "Prepaid"
    sub_total: float
    length: int
    breadth: int
    height: int
    weight: float  # kilograms


class ReturnItem(BaseModel):
    name: str
    sku: str
    units: int
    selling_price: float


class ReturnShipmentRequest(BaseModel):
    """Payload for POST /orders/return."""

    order_id: str  # carrier order id of the original shipment
    channel_id: str = "1"
    pickup_customer_name: str
    pickup_customer_phone: str
    pickup_customer_email: str
    pickup_address: str
    pickup_city: str
    pickup_state: str
    pickup_pincode: str
    pickup_country: str = "India"
    return_reason: str
    return_type: str = "refund"
    return_items: List[ReturnItem]


# =============================================================================
# Results
# =============================================================================


@dataclass
class ShipmentResult:
    """Result of creating a shipment order."""

    carrier_order_id: str
    shipment_id: Optional[str]
    status: str
    awb_codes: List[str] = field(default_factory=list)
    courier_name: Optional[str] = None


@dataclass
class ReturnShipmentResult:
    return_id: str
    status: str
    awb: Optional[str] = None


class CarrierError(Exception):
    """Base exception for Shiprocket API errors."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


class ShiprocketClient:
    """Async client for the Shiprocket external API."""

    def __init__(
        self,
        email: str = None,
        password: str = None,
        base_url: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.email = email or settings.SHIPROCKET_EMAIL
        self.password = password or settings.SHIPROCKET_PASSWORD
        if not self.email or not self.password:
            raise CarrierError("SHIPROCKET_EMAIL and SHIPROCKET_PASSWORD are required")
        self.base_url = (base_url or settings.SHIPROCKET_BASE_URL).rstrip("/")
        self._transport = transport
        self._token: Optional[str] = None

    async def _send(
        self,
        method: str,
        endpoint: str,
        json_data: dict = None,
        token: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"Content-Type": "application/json", **tracing_headers()}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            try:
                return await client.request(
                    method=method,
                    url=f"{self.base_url}{endpoint}",
                    headers=headers,
                    json=json_data,
                )
            except httpx.HTTPError as e:
                logger.error(f"Shiprocket request failed: {endpoint} - {e}")
                raise CarrierError(f"Shiprocket unreachable: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            return {"raw": response.text}
        return data if isinstance(data, dict) else {"data": data}

    async def login(self) -> str:
        """Exchange credentials for a bearer token (cached per client)."""
        response = await self._send(
            "POST",
            "/auth/login",
            json_data={"email": self.email, "password": self.password},
        )
        data = self._json(response)
        if not response.is_success or not data.get("token"):
            logger.error(f"Shiprocket auth failed: {response.status_code}")
            raise CarrierError(
                "Shiprocket authentication failed",
                status_code=response.status_code,
                response_data=data,
            )
        self._token = data["token"]
        return self._token

    async def _request(self, method: str, endpoint: str, json_data: dict = None):
        """Authenticated request; logs in again once if the token has expired."""
        token = self._token or await self.login()
        response = await self._send(method, endpoint, json_data, token=token)
        if response.status_code == 401:
            token = await self.login()
            response = await self._send(method, endpoint, json_data, token=token)

        data = self._json(response)
        if not response.is_success:
            logger.error(
                f"Shiprocket API error: {endpoint} {response.status_code} - {data}"
            )
            raise CarrierError(
                message=data.get("message", "Unknown Shiprocket error"),
                status_code=response.status_code,
                response_data=data,
            )
        return data

    # =========================================================================
    # Shipments
    # =========================================================================

    async def create_order(self, payload: ShipmentOrderRequest) -> ShipmentResult:
        data = await self._request(
            "POST", "/orders/create/adhoc", json_data=payload.model_dump(mode="json")
        )

        if not data.get("order_id"):
            raise CarrierError(
                data.get("message", "Shiprocket did not return an order id"),
                response_data=data,
            )

        awb_codes = data.get("awb_codes") or []
        if isinstance(awb_codes, str):
            awb_codes = [awb_codes]
        if data.get("awb_code") and data["awb_code"] not in awb_codes:
            awb_codes.append(data["awb_code"])

        shipment_id = data.get("shipment_id")
        return ShipmentResult(
            carrier_order_id=str(data["order_id"]),
            shipment_id=str(shipment_id) if shipment_id else None,
            status=str(data.get("status", "NEW")),
            awb_codes=[str(code) for code in awb_codes if code],
            courier_name=data.get("courier_name") or None,
        )

    async def get_order(self, carrier_order_id: str) -> dict:
        data = await self._request("GET", f"/orders/show/{carrier_order_id}")
        return data.get("data", data)

    async def cancel_orders(self, carrier_order_ids: List[str]) -> dict:
        """
        Cancel one or more shipment orders.

        Raises:
            CarrierError: If the carrier refuses or cannot be reached
        """
        ids = [int(i) if str(i).isdigit() else i for i in carrier_order_ids]
        return await self._request("POST", "/orders/cancel", json_data={"ids": ids})

    # =========================================================================
    # Returns
    # =========================================================================

    async def create_return(
        self, payload: ReturnShipmentRequest
    ) -> ReturnShipmentResult:
        data = await self._request(
            "POST", "/orders/return", json_data=payload.model_dump(mode="json")
        )

        return_id = data.get("return_id") or data.get("order_id")
        if not return_id:
            raise CarrierError(
                data.get("message", "Shiprocket did not return a return id"),
                response_data=data,
            )

        awb = data.get("awb_code") or None
        return ReturnShipmentResult(
            return_id=str(return_id),
            status=str(data.get("status", "RETURN PENDING")),
            awb=str(awb) if awb else None,
        )
