"""FastAPI dependencies: external provider clients and the admin guard.

Provider getters return None when the provider is not configured so that endpoints that
only sometimes need it keep working; the service layer raises
ExternalServiceFailure when it actually needs a missing client.
"""

from typing import Optional

from fastapi import Depends
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from services.storefront_service.errors import AdminRequired, AuthenticationRequired
from services.storefront_service.postal_client import PostalClient
from services.storefront_service.razorpay_client import GatewayError, RazorpayClient
from services.storefront_service.shiprocket_client import (
    CarrierError,
    ShiprocketClient,
)

logger = get_logger(__name__)


def get_razorpay_client() -> Optional[RazorpayClient]:
    try:
        return RazorpayClient()
    except GatewayError as e:
        logger.warning("Payment gateway not configured: %s", e.message)
        return None


def get_shiprocket_client() -> Optional[ShiprocketClient]:
    try:
        return ShiprocketClient()
    except CarrierError as e:
        logger.warning("Carrier not configured: %s", e.message)
        return None


def get_postal_client() -> PostalClient:
    return PostalClient()


async def require_store_admin(
    user: Optional[AuthUser] = Depends(get_optional_user),
) -> AuthUser:
    """Admin console guard: 401 without a token, 403 for non-admins."""
    if user is None:
        raise AuthenticationRequired()
    if not user.is_admin:
        raise AdminRequired()
    return user
