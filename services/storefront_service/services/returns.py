"""Return request workflow."""

import uuid
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.storefront_service.errors import (
    AuthenticationRequired,
    ExternalServiceFailure,
    NoCarrierShipment,
    NotFound,
    StateTransitionInvalid,
    ValidationFailure,
)
from services.storefront_service.models import (
    FulfillmentStatus,
    ReturnReason,
    ReturnRequest,
    ReturnStatus,
)
from services.storefront_service.schemas import Address
from services.storefront_service.services.orders import get_order, get_user_order
from services.storefront_service.shiprocket_client import (
    CarrierError,
    ReturnItem,
    ReturnShipmentRequest,
    ShiprocketClient,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

RETURN_TRANSITIONS = {
    ReturnStatus.PENDING: {ReturnStatus.APPROVED, ReturnStatus.REJECTED},
    ReturnStatus.APPROVED: {ReturnStatus.RETURN_SHIPPED},
    ReturnStatus.RETURN_SHIPPED: {ReturnStatus.RETURNED},
    ReturnStatus.RETURNED: {ReturnStatus.REFUNDED},
    ReturnStatus.REJECTED: set(),
    ReturnStatus.REFUNDED: set(),
}


def _check(return_request: ReturnRequest, target: ReturnStatus) -> None:
    if target not in RETURN_TRANSITIONS[return_request.status]:
        raise StateTransitionInvalid(
            f"Return is {return_request.status.value} and cannot become {target.value}"
        )


async def get_return_request(
    db: AsyncSession, return_id: uuid.UUID
) -> ReturnRequest:
    return_request = await db.get(ReturnRequest, return_id)
    if return_request is None:
        raise NotFound("Return request not found")
    return return_request


async def find_for_order(
    db: AsyncSession, order_id: uuid.UUID
) -> Optional[ReturnRequest]:
    result = await db.execute(
        select(ReturnRequest).where(ReturnRequest.order_id == order_id)
    )
    return result.scalars().first()


async def get_user_return(
    db: AsyncSession, *, user: Optional[AuthUser], order_id: uuid.UUID
) -> ReturnRequest:
    if user is None:
        raise AuthenticationRequired()
    await get_user_order(db, order_id, user.user_id)
    return_request = await find_for_order(db, order_id)
    if return_request is None:
        raise NotFound("No return request for this order")
    return return_request


async def create_return_request(
    db: AsyncSession,
    *,
    user: Optional[AuthUser],
    order_id: uuid.UUID,
    reason: ReturnReason,
    description: Optional[str] = None,
    pickup_address: Optional[Address] = None,
) -> ReturnRequest:
    """File a return for a delivered order owned by the user (one per order)."""
    if user is None:
        raise AuthenticationRequired()

    order = await get_user_order(db, order_id, user.user_id, for_update=True)
    if order.fulfillment_status != FulfillmentStatus.DELIVERED:
        raise StateTransitionInvalid("Only delivered orders can be returned")
    if await find_for_order(db, order.id):
        raise StateTransitionInvalid("A return request already exists for this order")

    if pickup_address is not None:
        pickup = pickup_address.model_dump()
    else:
        pickup = dict(order.address_snapshot or order.shipping_address)

    return_request = ReturnRequest(
        order_id=order.id,
        user_id=user.user_id,
        reason=reason,
        description=description,
        pickup_address=pickup,
        status=ReturnStatus.PENDING,
    )
    db.add(return_request)
    await db.commit()

    logger.info(
        "Return request %s filed for order %s (%s)",
        return_request.id,
        order.id,
        reason.value,
    )
    return return_request


async def list_returns(
    db: AsyncSession, *, status: Optional[ReturnStatus] = None
) -> list[ReturnRequest]:
    query = select(ReturnRequest).order_by(ReturnRequest.created_at.desc())
    if status:
        query = query.where(ReturnRequest.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


async def approve_return(db: AsyncSession, *, return_id: uuid.UUID) -> ReturnRequest:
    return_request = await get_return_request(db, return_id)
    _check(return_request, ReturnStatus.APPROVED)
    return_request.status = ReturnStatus.APPROVED
    return_request.approved_at = utc_now()
    await db.commit()
    logger.info("Return %s approved", return_id)
    return return_request


async def reject_return(
    db: AsyncSession, *, return_id: uuid.UUID, reason: str
) -> ReturnRequest:
    if not reason or not reason.strip():
        raise ValidationFailure("A rejection reason is required")

    return_request = await get_return_request(db, return_id)
    _check(return_request, ReturnStatus.REJECTED)
    return_request.status = ReturnStatus.REJECTED
    return_request.rejected_at = utc_now()
    return_request.description = reason.strip()
    await db.commit()
    logger.info("Return %s rejected", return_id)
    return return_request


async def create_return_shipment(
    db: AsyncSession,
    *,
    return_id: uuid.UUID,
    shiprocket: Optional[ShiprocketClient],
) -> ReturnRequest:
    """Book the return pickup against the original carrier shipment."""
    return_request = await get_return_request(db, return_id)
    _check(return_request, ReturnStatus.RETURN_SHIPPED)

    order = await get_order(db, return_request.order_id)
    if not order.shiprocket_order_id:
        raise NoCarrierShipment("Original order does not have a carrier shipment")
    if shiprocket is None:
        raise ExternalServiceFailure("Carrier is not configured")

    pickup = return_request.pickup_address or {}
    payload = ReturnShipmentRequest(
        order_id=order.shiprocket_order_id,
        pickup_customer_name=order.customer_name,
        pickup_customer_phone=pickup.get("phone") or order.customer_phone,
        pickup_customer_email=order.customer_email,
        pickup_address=pickup.get("address", ""),
        pickup_city=pickup.get("city", ""),
        pickup_state=pickup.get("state", ""),
        pickup_pincode=pickup.get("pincode", ""),
        pickup_country=pickup.get("country") or "India",
        return_reason=return_request.reason.value,
        return_items=[
            ReturnItem(
                name=item.product_name,
                sku=f"SKU-{item.product_id}",
                units=item.quantity,
                selling_price=float(item.product_price),
            )
            for item in order.items
        ],
    )

    try:
        result = await shiprocket.create_return(payload)
    except CarrierError as e:
        logger.error(
            "Return shipment failed for return %s: %s",
            return_id,
            e.message,
            extra={"extra_fields": {"return_id": str(return_id)}},
        )
        raise ExternalServiceFailure(
            f"Carrier rejected the return shipment: {e.message}"
        ) from e

    return_request.status = ReturnStatus.RETURN_SHIPPED
    return_request.return_shipment_id = result.return_id
    return_request.return_awb = result.awb or result.return_id
    await db.commit()

    logger.info(
        "Return shipment %s created for return %s", result.return_id, return_id
    )
    return return_request


async def mark_returned(db: AsyncSession, *, return_id: uuid.UUID) -> ReturnRequest:
    return_request = await get_return_request(db, return_id)
    _check(return_request, ReturnStatus.RETURNED)
    return_request.status = ReturnStatus.RETURNED
    return_request.returned_at = utc_now()
    await db.commit()
    return return_request


async def mark_refunded(db: AsyncSession, *, return_id: uuid.UUID) -> ReturnRequest:
    return_request = await get_return_request(db, return_id)
    _check(return_request, ReturnStatus.REFUNDED)
    return_request.status = ReturnStatus.REFUNDED
    return_request.refunded_at = utc_now()
    await db.commit()
    return return_request
