"""Unit tests for the return request workflow."""

import uuid

import pytest
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
from services.storefront_service.schemas import Address, CarrierWebhookPayload
from services.storefront_service.services import returns as return_ops
from services.storefront_service.services.fulfillment import handle_carrier_webhook
from sqlalchemy import func, select
from tests.conftest import make_user
from tests.factories import (
    OrderFactory,
    OrderItemFactory,
    ProductFactory,
    ReturnRequestFactory,
    persist,
)
from tests.fakes import FakeShiprocket


async def _delivered_order(db, **overrides):
    product = await persist(db, ProductFactory.create())
    defaults = {
        "fulfillment_status": FulfillmentStatus.DELIVERED,
        "shiprocket_order_id": "9001",
    }
    defaults.update(overrides)
    order = await persist(db, OrderFactory.create(**defaults))
    await persist(db, OrderItemFactory.create(order_id=order.id, product_id=product.id))
    return order


async def _return_in(db, status: ReturnStatus, **order_overrides) -> ReturnRequest:
    order = await _delivered_order(db, **order_overrides)
    return await persist(db, ReturnRequestFactory.create(order_id=order.id, status=status))


# ---------------------------------------------------------------------------
# Filing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_return_for_delivered_order(db_session):
    order = await _delivered_order(db_session)

    return_request = await return_ops.create_return_request(
        db_session,
        user=make_user(),
        order_id=order.id,
        reason=ReturnReason.DEFECTIVE,
        description="Hairline crack in the glaze",
    )

    assert return_request.status == ReturnStatus.PENDING
    assert return_request.pickup_address["pincode"] == "400001"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_return_uses_given_pickup_address(db_session):
    order = await _delivered_order(db_session)

    return_request = await return_ops.create_return_request(
        db_session,
        user=make_user(),
        order_id=order.id,
        reason=ReturnReason.CHANGED_MIND,
        pickup_address=Address(address="4 Kiln Road", city="Bengaluru", pincode="560001"),
    )

    assert return_request.pickup_address["city"] == "Bengaluru"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_return_requires_delivery(db_session):
    order = await _delivered_order(
        db_session, fulfillment_status=FulfillmentStatus.PROCESSING
    )

    with pytest.raises(StateTransitionInvalid, match="delivered"):
        await return_ops.create_return_request(
            db_session,
            user=make_user(),
            order_id=order.id,
            reason=ReturnReason.DEFECTIVE,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_one_return_per_order(db_session):
    order = await _delivered_order(db_session)
    user = make_user()
    await return_ops.create_return_request(
        db_session, user=user, order_id=order.id, reason=ReturnReason.DEFECTIVE
    )

    with pytest.raises(StateTransitionInvalid, match="already exists"):
        await return_ops.create_return_request(
            db_session, user=user, order_id=order.id, reason=ReturnReason.OTHER
        )

    count = await db_session.scalar(select(func.count(ReturnRequest.id)))
    assert count == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_return_for_someone_elses_order(db_session):
    order = await _delivered_order(db_session)

    with pytest.raises(NotFound):
        await return_ops.create_return_request(
            db_session,
            user=make_user(user_id="intruder"),
            order_id=order.id,
            reason=ReturnReason.DEFECTIVE,
        )
    with pytest.raises(AuthenticationRequired):
        await return_ops.create_return_request(
            db_session, user=None, order_id=order.id, reason=ReturnReason.DEFECTIVE
        )


# ---------------------------------------------------------------------------
# Admin workflow
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_approve_and_reject(db_session):
    pending = await _return_in(db_session, ReturnStatus.PENDING)

    approved = await return_ops.approve_return(db_session, return_id=pending.id)
    assert approved.status == ReturnStatus.APPROVED
    assert approved.approved_at is not None

    with pytest.raises(StateTransitionInvalid):
        await return_ops.reject_return(
            db_session, return_id=pending.id, reason="Too late"
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reject_requires_reason(db_session):
    pending = await _return_in(db_session, ReturnStatus.PENDING)

    with pytest.raises(ValidationFailure):
        await return_ops.reject_return(db_session, return_id=pending.id, reason="  ")

    rejected = await return_ops.reject_return(
        db_session, return_id=pending.id, reason="Outside the return window"
    )
    assert rejected.status == ReturnStatus.REJECTED
    assert rejected.description == "Outside the return window"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_return_shipment_books_pickup(db_session):
    approved = await _return_in(db_session, ReturnStatus.APPROVED)
    carrier = FakeShiprocket()

    shipped = await return_ops.create_return_shipment(
        db_session, return_id=approved.id, shiprocket=carrier.client()
    )

    assert shipped.status == ReturnStatus.RETURN_SHIPPED
    assert shipped.return_shipment_id == "7001"
    assert shipped.return_awb == "RAWB1"
    payload = carrier.calls_to("/orders/return")[0]
    assert payload["order_id"] == "9001"
    assert payload["return_reason"] == "defective"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_return_shipment_needs_carrier_shipment(db_session):
    approved = await _return_in(
        db_session, ReturnStatus.APPROVED, shiprocket_order_id=None
    )

    with pytest.raises(NoCarrierShipment):
        await return_ops.create_return_shipment(
            db_session, return_id=approved.id, shiprocket=FakeShiprocket().client()
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_return_shipment_carrier_failure(db_session):
    approved = await _return_in(db_session, ReturnStatus.APPROVED)
    carrier = FakeShiprocket()
    carrier.fail_return = True

    with pytest.raises(ExternalServiceFailure, match="Pickup not serviceable"):
        await return_ops.create_return_shipment(
            db_session, return_id=approved.id, shiprocket=carrier.client()
        )

    status = await db_session.scalar(
        select(ReturnRequest.status).where(ReturnRequest.id == approved.id)
    )
    assert status == ReturnStatus.APPROVED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_received_then_refunded(db_session):
    in_transit = await _return_in(db_session, ReturnStatus.RETURN_SHIPPED)

    with pytest.raises(StateTransitionInvalid):
        await return_ops.mark_refunded(db_session, return_id=in_transit.id)

    returned = await return_ops.mark_returned(db_session, return_id=in_transit.id)
    assert returned.returned_at is not None
    refunded = await return_ops.mark_refunded(db_session, return_id=in_transit.id)
    assert refunded.status == ReturnStatus.REFUNDED
    assert refunded.refunded_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_delivery_of_return_marks_returned(db_session):
    in_transit = await _return_in(
        db_session, ReturnStatus.RETURN_SHIPPED, shiprocket_order_id="9001"
    )
    in_transit.return_shipment_id = "7001"
    await db_session.commit()

    message = await handle_carrier_webhook(
        db_session,
        payload=CarrierWebhookPayload(order_id=7001, status="DELIVERED", status_code=6),
    )

    assert message == "Return marked as returned"
    status = await db_session.scalar(
        select(ReturnRequest.status).where(ReturnRequest.id == in_transit.id)
    )
    assert status == ReturnStatus.RETURNED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_return_not_found(db_session):
    with pytest.raises(NotFound):
        await return_ops.approve_return(db_session, return_id=uuid.uuid4())
