"""Order fulfillment state machine, carrier shipments and carrier webhooks."""

from datetime import datetime
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import parse_timestamp, utc_now
from libs.common.logging import get_logger
from services.storefront_service.errors import (
    ExternalServiceFailure,
    NotFound,
    StateTransitionInvalid,
)
from services.storefront_service.models import (
    FulfillmentStatus,
    Order,
    OrderEvent,
    Product,
    ReturnRequest,
    ReturnStatus,
)
from services.storefront_service.models.catalog import (
    DEFAULT_HEIGHT_CM,
    DEFAULT_HSN,
    DEFAULT_LENGTH_CM,
    DEFAULT_WEIGHT_GRAMS,
    DEFAULT_WIDTH_CM,
)
from services.storefront_service.schemas import CarrierWebhookPayload
from services.storefront_service.shiprocket_client import (
    CarrierError,
    ShipmentItem,
    ShipmentOrderRequest,
    ShiprocketClient,
)
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# Linear delivery path; any forward step along it is allowed
FORWARD_PATH = [
    FulfillmentStatus.PENDING,
    FulfillmentStatus.PROCESSING,
    FulfillmentStatus.SHIPPED,
    FulfillmentStatus.OUT_FOR_DELIVERY,
    FulfillmentStatus.DELIVERED,
]

CANCELLABLE = {FulfillmentStatus.PENDING, FulfillmentStatus.PROCESSING}
RETURNABLE = {
    FulfillmentStatus.SHIPPED,
    FulfillmentStatus.OUT_FOR_DELIVERY,
    FulfillmentStatus.DELIVERED,
}

# Shiprocket status_code -> fulfillment status
CARRIER_STATUS_CODES = {
    1: FulfillmentStatus.PROCESSING,  # Pending
    2: FulfillmentStatus.PROCESSING,  # Confirmed
    3: FulfillmentStatus.SHIPPED,  # Picked up
    4: FulfillmentStatus.SHIPPED,  # In transit
    5: FulfillmentStatus.OUT_FOR_DELIVERY,
    6: FulfillmentStatus.DELIVERED,
    7: FulfillmentStatus.RETURNED,  # RTO
    8: FulfillmentStatus.CANCELLED,
}
CARRIER_DELIVERED_CODE = 6

# Carrier-side statuses after which a shipment can no longer be cancelled
CARRIER_DISPATCHED = {
    "picked up",
    "shipped",
    "in transit",
    "out for delivery",
    "delivered",
}


def is_transition_allowed(
    current: FulfillmentStatus, target: FulfillmentStatus
) -> bool:
    if target == FulfillmentStatus.CANCELLED:
        return current in CANCELLABLE
    if target == FulfillmentStatus.RETURNED:
        return current in RETURNABLE
    if current in FORWARD_PATH and target in FORWARD_PATH:
        return FORWARD_PATH.index(target) > FORWARD_PATH.index(current)
    return False


def check_transition(current: FulfillmentStatus, target: FulfillmentStatus) -> None:
    if not is_transition_allowed(current, target):
        raise StateTransitionInvalid(
            f"Cannot move order from {current.value} to {target.value}"
        )


def apply_status(
    db: AsyncSession,
    order: Order,
    new_status: FulfillmentStatus,
    note: Optional[str] = None,
    at: Optional[datetime] = None,
) -> OrderEvent:
    """Set the status, stamp the matching timestamp and append a timeline event."""
    at = at or utc_now()
    order.fulfillment_status = new_status

    if new_status == FulfillmentStatus.SHIPPED and order.shipped_at is None:
        order.shipped_at = at
    elif new_status == FulfillmentStatus.DELIVERED and order.delivered_at is None:
        order.delivered_at = at
    elif new_status == FulfillmentStatus.CANCELLED:
        order.cancelled_at = at

    if new_status in RETURNABLE and order.address_snapshot is None:
        order.address_snapshot = dict(order.shipping_address)

    event = OrderEvent(order_id=order.id, status=new_status.value, note=note)
    db.add(event)
    return event


# ============================================================================
# ADMIN / CUSTOMER TRANSITIONS
# ============================================================================


async def update_fulfillment_status(
    db: AsyncSession,
    *,
    order: Order,
    new_status: FulfillmentStatus,
    note: Optional[str] = None,
    shiprocket: Optional[ShiprocketClient] = None,
    performed_by: Optional[str] = None,
) -> Order:
    """Admin status change, edge-checked. Same-status updates are no-ops."""
    if order.fulfillment_status == new_status:
        return order

    if new_status == FulfillmentStatus.CANCELLED:
        return await cancel_order(
            db, order=order, shiprocket=shiprocket, reason=note, actor=performed_by
        )

    check_transition(order.fulfillment_status, new_status)
    previous = order.fulfillment_status
    apply_status(db, order, new_status, note or f"Status updated by {performed_by}")
    await db.commit()

    logger.info(
        "Order %s fulfillment %s -> %s",
        order.id,
        previous.value,
        new_status.value,
        extra={"extra_fields": {"order_id": str(order.id), "actor": performed_by}},
    )
    return order


async def cancel_order(
    db: AsyncSession,
    *,
    order: Order,
    shiprocket: Optional[ShiprocketClient],
    reason: Optional[str] = None,
    actor: Optional[str] = None,
) -> Order:
    """Cancel an order, cancelling its carrier shipment first when one exists.

    If the carrier cannot cancel, the order is left untouched and a retryable
    ExternalServiceFailure is raised.
    """
    if order.fulfillment_status == FulfillmentStatus.CANCELLED:
        return order
    check_transition(order.fulfillment_status, FulfillmentStatus.CANCELLED)

    if order.shiprocket_order_id:
        if shiprocket is None:
            raise ExternalServiceFailure(
                "Carrier is not configured; try again later", retryable=True
            )
        try:
            carrier_order = await shiprocket.get_order(order.shiprocket_order_id)
            carrier_status = str(carrier_order.get("status", "")).strip().lower()
            if carrier_status in CARRIER_DISPATCHED:
                raise StateTransitionInvalid(
                    f"Shipment is already {carrier_status} and cannot be cancelled"
                )
            await shiprocket.cancel_orders([order.shiprocket_order_id])
        except CarrierError as e:
            logger.error(
                "Carrier cancellation failed for order %s: %s",
                order.id,
                e.message,
                extra={
                    "extra_fields": {
                        "order_id": str(order.id),
                        "shiprocket_order_id": order.shiprocket_order_id,
                    }
                },
            )
            raise ExternalServiceFailure(
                "Could not cancel the shipment with the carrier; please retry",
                retryable=True,
            ) from e

    apply_status(
        db,
        order,
        FulfillmentStatus.CANCELLED,
        reason or (f"Cancelled by {actor}" if actor else "Order cancelled"),
    )
    await db.commit()
    logger.info("Order %s cancelled by %s", order.id, actor or "system")
    return order


# ============================================================================
# SHIPMENT CREATION
# ============================================================================


def _package_dimensions(order: Order, products: dict[int, Product]) -> dict:
    """Total weight (kg) and the largest dimension of any item."""
    weight_grams = 0
    length = width = height = 0
    for item in order.items:
        product = products.get(item.product_id)
        weight_grams += (
            product.weight_grams if product and product.weight_grams else 0
        ) * item.quantity
        if product:
            length = max(length, product.length_cm or 0)
            width = max(width, product.width_cm or 0)
            height = max(height, product.height_cm or 0)

    return {
        "weight": (weight_grams or DEFAULT_WEIGHT_GRAMS) / 1000,
        "length": length or DEFAULT_LENGTH_CM,
        "breadth": width or DEFAULT_WIDTH_CM,
        "height": height or DEFAULT_HEIGHT_CM,
    }


def build_shipment_request(
    order: Order, products: dict[int, Product]
) -> ShipmentOrderRequest:
    settings = get_settings()
    shipping = order.address_snapshot or order.shipping_address
    billing = order.billing_address or shipping

    return ShipmentOrderRequest(
        order_id=str(order.id),
        order_date=order.created_at.strftime("%Y-%m-%d %H:%M"),
        pickup_location=settings.SHIPROCKET_PICKUP_LOCATION,
        shipping_is_billing=billing == shipping,
        billing_customer_name=order.customer_name,
        billing_address=billing.get("address", ""),
        billing_address_2=billing.get("address_2", ""),
        billing_city=billing.get("city", ""),
        billing_pincode=billing.get("pincode", ""),
        billing_state=billing.get("state", ""),
        billing_country=billing.get("country") or "India",
        billing_email=order.customer_email,
        billing_phone=billing.get("phone") or order.customer_phone,
        shipping_customer_name=order.customer_name,
        shipping_address=shipping.get("address", ""),
        shipping_address_2=shipping.get("address_2", ""),
        shipping_city=shipping.get("city", ""),
        shipping_pincode=shipping.get("pincode", ""),
        shipping_state=shipping.get("state", ""),
        shipping_country=shipping.get("country") or "India",
        shipping_email=order.customer_email,
        shipping_phone=shipping.get("phone") or order.customer_phone,
        order_items=[
            ShipmentItem(
                name=item.product_name,
                sku=f"SKU-{item.product_id}",
                units=item.quantity,
                selling_price=float(item.product_price),
                hsn=(
                    products[item.product_id].hsn
                    if item.product_id in products and products[item.product_id].hsn
                    else DEFAULT_HSN
                ),
            )
            for item in order.items
        ],
        sub_total=float(order.total_amount),
        **_package_dimensions(order, products),
    )


async def create_shipment(
    db: AsyncSession, *, order: Order, shiprocket: ShiprocketClient
) -> Order:
    """Register the order with the carrier.

    Orders that already carry a carrier id are never resubmitted. Raises
    CarrierError on failure; the caller decides how to surface it.
    """
    if order.shiprocket_order_id:
        return order
    if order.fulfillment_status not in (
        FulfillmentStatus.PENDING,
        FulfillmentStatus.PROCESSING,
    ):
        raise StateTransitionInvalid(
            f"Cannot ship an order that is {order.fulfillment_status.value}"
        )

    product_ids = [item.product_id for item in order.items if item.product_id]
    result = await db.execute(select(Product).where(Product.id.in_(product_ids)))
    products = {product.id: product for product in result.scalars().all()}

    payload = build_shipment_request(order, products)
    shipment = await shiprocket.create_order(payload)

    order.shiprocket_order_id = shipment.carrier_order_id
    order.shipment_id = shipment.shipment_id
    if shipment.awb_codes:
        order.awb = shipment.awb_codes[0]
        order.tracking_url = f"{get_settings().SHIPROCKET_TRACKING_URL}{order.awb}"
    if shipment.courier_name:
        order.courier = shipment.courier_name
    if order.address_snapshot is None:
        order.address_snapshot = dict(order.shipping_address)

    if order.fulfillment_status == FulfillmentStatus.PENDING:
        apply_status(
            db,
            order,
            FulfillmentStatus.PROCESSING,
            f"Shipment created with carrier (#{shipment.carrier_order_id})",
        )
    await db.commit()

    logger.info(
        "Created carrier shipment %s for order %s",
        shipment.carrier_order_id,
        order.id,
        extra={
            "extra_fields": {
                "order_id": str(order.id),
                "shiprocket_order_id": shipment.carrier_order_id,
            }
        },
    )
    return order


async def ship_order(
    db: AsyncSession, *, order: Order, shiprocket: Optional[ShiprocketClient]
) -> Order:
    """Admin-triggered shipment creation, mapping carrier errors."""
    if shiprocket is None:
        raise ExternalServiceFailure("Carrier is not configured")
    try:
        return await create_shipment(db, order=order, shiprocket=shiprocket)
    except CarrierError as e:
        raise ExternalServiceFailure(
            f"Carrier rejected the shipment: {e.message}"
        ) from e


# ============================================================================
# CARRIER WEBHOOK
# ============================================================================


async def _record_tracking_events(
    db: AsyncSession, order: Order, payload: CarrierWebhookPayload
) -> int:
    """Insert tracking entries not seen before, keyed on (order, status, time).

    Entries without a status_date are keyed on (order, status) alone.
    """
    added = 0
    seen: set[tuple[str, Optional[datetime]]] = set()
    for entry in payload.tracking_data:
        dated = parse_timestamp(entry.status_date)
        key = (entry.status, dated)
        if key in seen:
            continue
        seen.add(key)

        query = select(OrderEvent.id).where(
            OrderEvent.order_id == order.id,
            OrderEvent.status == entry.status,
        )
        if dated is not None:
            query = query.where(OrderEvent.created_at == dated)
        if await db.scalar(query.limit(1)):
            continue
        at = dated or utc_now()

        location = entry.status_location or ""
        db.add(
            OrderEvent(
                order_id=order.id,
                status=entry.status,
                note=f"{entry.status} - {location}",
                created_at=at,
            )
        )
        added += 1
    return added


async def _handle_return_webhook(
    db: AsyncSession, carrier_id: str, payload: CarrierWebhookPayload
) -> Optional[str]:
    result = await db.execute(
        select(ReturnRequest).where(ReturnRequest.return_shipment_id == carrier_id)
    )
    return_request = result.scalar_one_or_none()
    if return_request is None:
        return None

    if (
        payload.status_code == CARRIER_DELIVERED_CODE
        and return_request.status == ReturnStatus.RETURN_SHIPPED
    ):
        return_request.status = ReturnStatus.RETURNED
        return_request.returned_at = utc_now()
        await db.commit()
        logger.info("Return %s received back via carrier", return_request.id)
        return "Return marked as returned"
    return "Return shipment update recorded"


async def handle_carrier_webhook(
    db: AsyncSession, *, payload: CarrierWebhookPayload
) -> str:
    """Apply a carrier status update to the matching order.

    Unknown codes leave the status alone; disallowed or regressing edges
    are logged and ignored. Tracking metadata is always refreshed.
    """
    carrier_id = str(payload.order_id)

    result = await db.execute(
        select(Order)
        .where(Order.shiprocket_order_id == carrier_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        message = await _handle_return_webhook(db, carrier_id, payload)
        if message:
            return message
        logger.warning(
            "Carrier webhook for unknown shipment %s",
            carrier_id,
            extra={"extra_fields": {"shiprocket_order_id": carrier_id}},
        )
        raise NotFound("Order not found")

    if payload.awb_code:
        order.awb = str(payload.awb_code)
        order.tracking_url = f"{get_settings().SHIPROCKET_TRACKING_URL}{order.awb}"
    if payload.courier_name:
        order.courier = payload.courier_name

    new_status = CARRIER_STATUS_CODES.get(payload.status_code)
    current = order.fulfillment_status
    if new_status is None:
        logger.info(
            "Unknown carrier status code %s for order %s",
            payload.status_code,
            order.id,
        )
    elif new_status != current:
        if is_transition_allowed(current, new_status):
            apply_status(
                db,
                order,
                new_status,
                f"Carrier update: {payload.status or new_status.value}",
            )
        else:
            logger.warning(
                "Ignoring carrier transition %s -> %s for order %s",
                current.value,
                new_status.value,
                order.id,
                extra={
                    "extra_fields": {
                        "order_id": str(order.id),
                        "status_code": payload.status_code,
                    }
                },
            )

    added = await _record_tracking_events(db, order, payload)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent delivery of the same webhook won the insert
        await db.rollback()
        logger.info("Duplicate carrier webhook for shipment %s ignored", carrier_id)
        return "Duplicate webhook ignored"

    logger.info(
        "Carrier webhook applied to order %s: %s (%d new events)",
        order.id,
        order.fulfillment_status.value,
        added,
    )
    return "Webhook processed successfully"
