"""Unit tests for the fulfillment state machine, carrier shipments and webhooks."""

from decimal import Decimal

import pytest
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
)
from services.storefront_service.schemas import CarrierWebhookPayload
from services.storefront_service.services.fulfillment import (
    cancel_order,
    create_shipment,
    handle_carrier_webhook,
    is_transition_allowed,
    ship_order,
    update_fulfillment_status,
)
from services.storefront_service.services.orders import get_order
from sqlalchemy import func, select
from tests.factories import OrderFactory, OrderItemFactory, ProductFactory, persist
from tests.fakes import FakeShiprocket


async def _order_with_item(db, **overrides) -> Order:
    product = await persist(db, ProductFactory.create(stock_quantity=8))
    order = await persist(db, OrderFactory.create(**overrides))
    await persist(db, OrderItemFactory.create(order_id=order.id, product_id=product.id))
    return await get_order(db, order.id)


async def _status(db, order_id) -> FulfillmentStatus:
    return await db.scalar(
        select(Order.fulfillment_status).where(Order.id == order_id)
    )


async def _event_count(db, order_id) -> int:
    return await db.scalar(
        select(func.count(OrderEvent.id)).where(OrderEvent.order_id == order_id)
    )


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (FulfillmentStatus.PENDING, FulfillmentStatus.PROCESSING, True),
        (FulfillmentStatus.PENDING, FulfillmentStatus.DELIVERED, True),
        (FulfillmentStatus.SHIPPED, FulfillmentStatus.PENDING, False),
        (FulfillmentStatus.DELIVERED, FulfillmentStatus.SHIPPED, False),
        (FulfillmentStatus.PROCESSING, FulfillmentStatus.CANCELLED, True),
        (FulfillmentStatus.SHIPPED, FulfillmentStatus.CANCELLED, False),
        (FulfillmentStatus.DELIVERED, FulfillmentStatus.RETURNED, True),
        (FulfillmentStatus.PENDING, FulfillmentStatus.RETURNED, False),
        (FulfillmentStatus.CANCELLED, FulfillmentStatus.PROCESSING, False),
    ],
)
def test_transition_rules(current, target, allowed):
    assert is_transition_allowed(current, target) is allowed


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_status_rejects_regression(db_session):
    order = await _order_with_item(
        db_session, fulfillment_status=FulfillmentStatus.SHIPPED
    )

    with pytest.raises(StateTransitionInvalid):
        await update_fulfillment_status(
            db_session, order=order, new_status=FulfillmentStatus.PENDING
        )

    assert await _status(db_session, order.id) == FulfillmentStatus.SHIPPED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_status_stamps_timestamps_and_timeline(db_session):
    order = await _order_with_item(db_session)

    await update_fulfillment_status(
        db_session,
        order=order,
        new_status=FulfillmentStatus.SHIPPED,
        performed_by="admin-1",
    )

    order = await get_order(db_session, order.id)
    assert order.fulfillment_status == FulfillmentStatus.SHIPPED
    assert order.shipped_at is not None
    assert order.address_snapshot == order.shipping_address
    assert await _event_count(db_session, order.id) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_same_status_update_is_noop(db_session):
    order = await _order_with_item(db_session)

    await update_fulfillment_status(
        db_session, order=order, new_status=FulfillmentStatus.PENDING
    )

    assert await _event_count(db_session, order.id) == 0


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_pending_order_without_carrier(db_session):
    order = await _order_with_item(db_session)
    product_id = order.items[0].product_id

    await cancel_order(db_session, order=order, shiprocket=None, actor="shopper-1")

    order = await get_order(db_session, order.id)
    assert order.fulfillment_status == FulfillmentStatus.CANCELLED
    assert order.cancelled_at is not None
    # Cancellation does not restock
    stock = await db_session.scalar(
        select(Product.stock_quantity).where(Product.id == product_id)
    )
    assert stock == 8


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_shipped_order_is_refused(db_session):
    order = await _order_with_item(
        db_session, fulfillment_status=FulfillmentStatus.SHIPPED
    )

    with pytest.raises(StateTransitionInvalid):
        await cancel_order(db_session, order=order, shiprocket=None)

    assert await _status(db_session, order.id) == FulfillmentStatus.SHIPPED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_with_carrier_cancels_shipment_first(db_session):
    order = await _order_with_item(
        db_session,
        fulfillment_status=FulfillmentStatus.PROCESSING,
        shiprocket_order_id="9001",
    )
    carrier = FakeShiprocket()

    await cancel_order(db_session, order=order, shiprocket=carrier.client())

    assert carrier.calls_to("/orders/cancel") == [{"ids": [9001]}]
    assert await _status(db_session, order.id) == FulfillmentStatus.CANCELLED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_refused_once_carrier_dispatched(db_session):
    order = await _order_with_item(
        db_session,
        fulfillment_status=FulfillmentStatus.PROCESSING,
        shiprocket_order_id="9001",
    )
    carrier = FakeShiprocket()
    carrier.carrier_status = "PICKED UP"

    with pytest.raises(StateTransitionInvalid, match="picked up"):
        await cancel_order(db_session, order=order, shiprocket=carrier.client())

    assert carrier.calls_to("/orders/cancel") == []
    assert await _status(db_session, order.id) == FulfillmentStatus.PROCESSING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_cancel_failure_leaves_order_untouched(db_session):
    order = await _order_with_item(
        db_session,
        fulfillment_status=FulfillmentStatus.PROCESSING,
        shiprocket_order_id="9001",
    )
    carrier = FakeShiprocket()
    carrier.fail_cancel = True

    with pytest.raises(ExternalServiceFailure) as exc_info:
        await cancel_order(db_session, order=order, shiprocket=carrier.client())

    assert exc_info.value.status_code == 503
    assert await _status(db_session, order.id) == FulfillmentStatus.PROCESSING
    assert await _event_count(db_session, order.id) == 0


# ---------------------------------------------------------------------------
# Shipment creation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_shipment_payload_and_idempotency(db_session):
    order = await _order_with_item(db_session)
    carrier = FakeShiprocket()

    await create_shipment(db_session, order=order, shiprocket=carrier.client())
    order = await get_order(db_session, order.id)
    await create_shipment(db_session, order=order, shiprocket=carrier.client())

    created = carrier.calls_to("/orders/create/adhoc")
    assert len(created) == 1
    payload = created[0]
    assert payload["order_id"] == str(order.id)
    assert payload["shipping_pincode"] == "400001"
    assert payload["order_items"][0]["units"] == 2
    assert payload["sub_total"] == float(Decimal("500.00"))

    assert order.shiprocket_order_id == "9001"
    assert order.shipment_id == "9101"
    assert order.awb == "AWB9001"
    assert order.courier == "Delhivery"
    assert order.tracking_url.endswith("AWB9001")
    assert order.fulfillment_status == FulfillmentStatus.PROCESSING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_ship_order_maps_carrier_error(db_session):
    order = await _order_with_item(db_session)
    carrier = FakeShiprocket()
    carrier.fail_create = True

    with pytest.raises(ExternalServiceFailure, match="Carrier rejected"):
        await ship_order(db_session, order=order, shiprocket=carrier.client())

    with pytest.raises(ExternalServiceFailure, match="not configured"):
        await ship_order(db_session, order=order, shiprocket=None)


# ---------------------------------------------------------------------------
# Carrier webhook
# ---------------------------------------------------------------------------


def _webhook(status_code, **overrides) -> CarrierWebhookPayload:
    payload = {
        "order_id": 9001,
        "status": "IN TRANSIT",
        "status_code": status_code,
        "awb_code": 1234567890,
        "courier_name": "BlueDart",
        "tracking_data": [
            {
                "status": "Picked Up",
                "status_date": "2026-10-01 10:00:00",
                "status_location": "Mumbai Hub",
            }
        ],
    }
    payload.update(overrides)
    return CarrierWebhookPayload.model_validate(payload)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_maps_status_code(db_session):
    order = await _order_with_item(
        db_session,
        fulfillment_status=FulfillmentStatus.PROCESSING,
        shiprocket_order_id="9001",
    )

    message = await handle_carrier_webhook(db_session, payload=_webhook(4))

    assert message == "Webhook processed successfully"
    order = await get_order(db_session, order.id)
    assert order.fulfillment_status == FulfillmentStatus.SHIPPED
    assert order.shipped_at is not None
    assert order.awb == "1234567890"
    assert order.courier == "BlueDart"
    statuses = {event.status for event in order.events}
    assert statuses == {"shipped", "Picked Up"}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_tracking_events_are_not_duplicated(db_session):
    order = await _order_with_item(
        db_session,
        fulfillment_status=FulfillmentStatus.PROCESSING,
        shiprocket_order_id="9001",
    )

    await handle_carrier_webhook(db_session, payload=_webhook(4))
    await handle_carrier_webhook(db_session, payload=_webhook(4))

    picked_up = await db_session.scalar(
        select(func.count(OrderEvent.id)).where(
            OrderEvent.order_id == order.id, OrderEvent.status == "Picked Up"
        )
    )
    assert picked_up == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_undated_tracking_entry_is_not_duplicated_on_replay(db_session):
    order = await _order_with_item(
        db_session,
        fulfillment_status=FulfillmentStatus.PROCESSING,
        shiprocket_order_id="555",
    )
    undated = {"order_id": 555, "tracking_data": [{"status": "In Transit"}]}

    await handle_carrier_webhook(db_session, payload=_webhook(4, **undated))
    await handle_carrier_webhook(db_session, payload=_webhook(4, **undated))

    in_transit = await db_session.scalar(
        select(func.count(OrderEvent.id)).where(
            OrderEvent.order_id == order.id, OrderEvent.status == "In Transit"
        )
    )
    assert in_transit == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_ignores_regression(db_session):
    order = await _order_with_item(
        db_session,
        fulfillment_status=FulfillmentStatus.DELIVERED,
        shiprocket_order_id="9001",
    )

    await handle_carrier_webhook(db_session, payload=_webhook(2, tracking_data=[]))

    assert await _status(db_session, order.id) == FulfillmentStatus.DELIVERED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_unknown_code_keeps_status(db_session):
    order = await _order_with_item(
        db_session,
        fulfillment_status=FulfillmentStatus.PROCESSING,
        shiprocket_order_id="9001",
    )

    await handle_carrier_webhook(db_session, payload=_webhook(42, tracking_data=[]))

    order = await get_order(db_session, order.id)
    assert order.fulfillment_status == FulfillmentStatus.PROCESSING
    # Metadata still refreshed
    assert order.courier == "BlueDart"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_for_unknown_shipment(db_session):
    with pytest.raises(NotFound):
        await handle_carrier_webhook(db_session, payload=_webhook(4))
