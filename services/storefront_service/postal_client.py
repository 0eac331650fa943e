"""
Postal code (PIN) lookup client.

Resolves a 6-digit Indian PIN code to post office, district and state using
the public India Post directory API.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import tracing_headers

logger = logging.getLogger(__name__)

PINCODE_PATTERN = re.compile(r"^[1-9][0-9]{5}$")


@dataclass
class PostalLookup:
    """Result of a PIN code lookup."""

    pincode: str
    found: bool
    post_office: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None


class PostalLookupError(Exception):
    """Lookup service unreachable or returned garbage."""

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def is_valid_pincode(code: str) -> bool:
    return bool(code and PINCODE_PATTERN.match(code.strip()))


class PostalClient:
    """Async client for the postal directory."""

    def __init__(
        self,
        base_url: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.POSTAL_LOOKUP_URL).rstrip("/")
        self._transport = transport

    async def lookup(self, code: str) -> PostalLookup:
        """
        Look up a PIN code.

        Malformed codes resolve to not-found without a network call.

        Raises:
            PostalLookupError: If the directory cannot be reached
        """
        code = (code or "").strip()
        if not is_valid_pincode(code):
            return PostalLookup(pincode=code, found=False)

        async with httpx.AsyncClient(
            timeout=10.0, transport=self._transport, headers=tracing_headers()
        ) as client:
            try:
                response = await client.get(f"{self.base_url}/pincode/{code}")
            except httpx.HTTPError as e:
                logger.warning(f"Postal lookup failed for {code}: {e}")
                raise PostalLookupError(f"Postal lookup unreachable: {e}") from e

        if not response.is_success:
            raise PostalLookupError(
                f"Postal lookup returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise PostalLookupError("Postal lookup returned invalid JSON") from e

        # Response is a one-element list: [{"Status": ..., "PostOffice": [...]}]
        entry = data[0] if isinstance(data, list) and data else {}
        offices = entry.get("PostOffice") or []
        if entry.get("Status") != "Success" or not offices:
            return PostalLookup(pincode=code, found=False)

        office = offices[0]
        return PostalLookup(
            pincode=code,
            found=True,
            post_office=office.get("Name"),
            district=office.get("District"),
            state=office.get("State"),
        )
