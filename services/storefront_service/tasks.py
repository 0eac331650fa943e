"""Background maintenance tasks for the storefront service."""

from __future__ import annotations

from datetime import timedelta

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.session import session_scope
from services.storefront_service.dependencies import get_shiprocket_client
from services.storefront_service.services.cart import release_stale_reservations
from services.storefront_service.services.payment_verification import (
    retry_side_effects,
)

logger = get_logger(__name__)


async def retry_pending_side_effects() -> dict:
    """Retry post-payment steps (cart clear, stock commit, shipment) that failed."""
    shiprocket = get_shiprocket_client()
    async with session_scope() as db:
        summary = await retry_side_effects(db, shiprocket=shiprocket)

    if summary["retried"] or summary["abandoned"]:
        logger.info(
            "Side-effect retry: %d retried, %d succeeded, %d abandoned",
            summary["retried"],
            summary["succeeded"],
            summary["abandoned"],
            extra={"extra_fields": summary},
        )
    return summary


async def release_stale_cart_reservations() -> int:
    """Return reserved stock from carts left idle longer than the configured window."""
    minutes = get_settings().CART_RESERVATION_MINUTES
    if minutes <= 0:
        return 0

    cutoff = utc_now() - timedelta(minutes=minutes)
    async with session_scope() as db:
        released = await release_stale_reservations(db, older_than=cutoff)

    if released:
        logger.info("Released %d stale cart reservations", released)
    return released
