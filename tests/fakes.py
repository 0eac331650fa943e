"""
In-memory stand-ins for the payment gateway, carrier and postal directory.

Each fake builds the real client class on top of an ``httpx.MockTransport``
so request/response handling is exercised end to end without network calls.
"""

import json
from decimal import Decimal

import httpx
from services.storefront_service.postal_client import PostalClient
from services.storefront_service.razorpay_client import (
    RazorpayClient,
    compute_signature,
)
from services.storefront_service.shiprocket_client import ShiprocketClient

RAZORPAY_KEY_ID = "rzp_test_key"
RAZORPAY_SECRET = "rzp_test_secret"


def _body(request: httpx.Request) -> dict:
    return json.loads(request.content) if request.content else {}


class FakeRazorpay:
    def __init__(self):
        self.orders: list[dict] = []
        self.fail_with: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail_with:
            return httpx.Response(
                self.fail_with,
                json={"error": {"description": "Gateway unavailable"}},
            )
        body = _body(request)
        order = {
            "id": f"order_test_{len(self.orders) + 1}",
            "amount": body["amount"],
            "currency": body["currency"],
            "receipt": body["receipt"],
            "status": "created",
        }
        self.orders.append(order)
        return httpx.Response(200, json=order)

    def client(self) -> RazorpayClient:
        return RazorpayClient(
            key_id=RAZORPAY_KEY_ID,
            key_secret=RAZORPAY_SECRET,
            base_url="https://razorpay.test/v1",
            transport=httpx.MockTransport(self.handler),
        )

    @staticmethod
    def sign(gateway_order_id: str, payment_id: str) -> str:
        return compute_signature(RAZORPAY_SECRET, gateway_order_id, payment_id)


class FakeShiprocket:
    def __init__(self):
        self.calls: list[tuple[str, str, dict]] = []
        self.carrier_status = "NEW"
        self.fail_create = False
        self.fail_cancel = False
        self.fail_return = False
        self._next_order_id = 9001

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1/external")
        self.calls.append((request.method, path, _body(request)))

        if path == "/auth/login":
            return httpx.Response(200, json={"token": "carrier-token"})

        if path == "/orders/create/adhoc":
            if self.fail_create:
                return httpx.Response(500, json={"message": "Carrier is down"})
            carrier_id = self._next_order_id
            self._next_order_id += 1
            return httpx.Response(
                200,
                json={
                    "order_id": carrier_id,
                    "shipment_id": carrier_id + 100,
                    "status": "NEW",
                    "awb_code": f"AWB{carrier_id}",
                    "courier_name": "Delhivery",
                },
            )

        if path.startswith("/orders/show/"):
            return httpx.Response(200, json={"data": {"status": self.carrier_status}})

        if path == "/orders/cancel":
            if self.fail_cancel:
                return httpx.Response(502, json={"message": "Cancellation failed"})
            return httpx.Response(200, json={"message": "Orders cancelled"})

        if path == "/orders/return":
            if self.fail_return:
                return httpx.Response(422, json={"message": "Pickup not serviceable"})
            return httpx.Response(
                200,
                json={"order_id": 7001, "status": "RETURN PENDING", "awb_code": "RAWB1"},
            )

        return httpx.Response(404, json={"message": f"Unhandled {path}"})

    def calls_to(self, path: str) -> list[dict]:
        return [body for _, called, body in self.calls if called == path]

    def client(self) -> ShiprocketClient:
        return ShiprocketClient(
            email="ops@test.com",
            password="secret",
            base_url="https://shiprocket.test/v1/external",
            transport=httpx.MockTransport(self.handler),
        )


KNOWN_PINCODES = {
    "400001": {"Name": "Mumbai GPO", "District": "Mumbai", "State": "Maharashtra"},
    "560001": {"Name": "Bangalore GPO", "District": "Bengaluru", "State": "Karnataka"},
}


class FakePostal:
    def __init__(self):
        self.lookups: list[str] = []
        self.unavailable = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        code = request.url.path.rsplit("/", 1)[-1]
        self.lookups.append(code)
        if self.unavailable:
            return httpx.Response(503, text="Service Unavailable")
        office = KNOWN_PINCODES.get(code)
        if office is None:
            return httpx.Response(
                200,
                json=[{"Status": "Error", "Message": "No records found", "PostOffice": None}],
            )
        return httpx.Response(
            200, json=[{"Status": "Success", "PostOffice": [office]}]
        )

    def client(self) -> PostalClient:
        return PostalClient(
            base_url="https://postal.test",
            transport=httpx.MockTransport(self.handler),
        )


def checkout_details(pincode: str = "400001", **overrides) -> dict:
    details = {
        "customer_name": "Asha Rao",
        "customer_email": "asha@test.com",
        "customer_phone": "9876543210",
        "shipping_address": {
            "address": "12 Clay Lane",
            "city": "",
            "state": "",
            "pincode": pincode,
        },
        "billing_same_as_shipping": True,
    }
    details.update(overrides)
    return details


def money(value) -> Decimal:
    return Decimal(str(value))
