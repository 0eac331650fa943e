"""Admin order management router."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.storefront_service.dependencies import (
    get_shiprocket_client,
    require_store_admin,
)
from services.storefront_service.models import FulfillmentStatus, SideEffectStatus
from services.storefront_service.schemas import (
    AdminOrderResponse,
    CancelOrderRequest,
    FulfillmentStatusUpdate,
    OrderListResponse,
    PaymentStatusUpdate,
)
from services.storefront_service.services import fulfillment
from services.storefront_service.services.orders import get_order, list_orders
from services.storefront_service.services.payment_verification import (
    SIDE_EFFECT_STEPS,
    run_side_effects,
)
from services.storefront_service.shiprocket_client import ShiprocketClient
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/orders", tags=["admin-storefront"])
logger = get_logger(__name__)


@router.get("", response_model=OrderListResponse)
async def list_all_orders(
    fulfillment_status: Optional[FulfillmentStatus] = None,
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """List orders, filterable by fulfillment status and a free-text search."""
    orders, total = await list_orders(
        db,
        fulfillment_status=fulfillment_status,
        search=search,
        limit=limit,
        offset=offset,
    )
    return OrderListResponse(orders=orders, total=total)


@router.get("/{order_id}", response_model=AdminOrderResponse)
async def get_order_detail(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await get_order(db, order_id)


@router.patch("/{order_id}/fulfillment", response_model=AdminOrderResponse)
async def update_order_fulfillment(
    order_id: uuid.UUID,
    payload: FulfillmentStatusUpdate,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
    shiprocket: Optional[ShiprocketClient] = Depends(get_shiprocket_client),
):
    """Move an order along the fulfillment path. Backward moves are refused."""
    order = await get_order(db, order_id, for_update=True)
    await fulfillment.update_fulfillment_status(
        db,
        order=order,
        new_status=payload.fulfillment_status,
        note=payload.note,
        shiprocket=shiprocket,
        performed_by=current_user.user_id,
    )
    return await get_order(db, order_id)


@router.patch("/{order_id}/payment", response_model=AdminOrderResponse)
async def update_order_payment(
    order_id: uuid.UUID,
    payload: PaymentStatusUpdate,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Record an out-of-band payment status change, such as a manual refund."""
    order = await get_order(db, order_id, for_update=True)
    previous = order.payment_status
    order.payment_status = payload.payment_status
    await db.commit()
    logger.info(
        "Order %s payment %s -> %s by %s",
        order_id,
        previous.value,
        payload.payment_status.value,
        current_user.user_id,
    )
    return await get_order(db, order_id)


@router.post("/{order_id}/ship", response_model=AdminOrderResponse)
async def ship_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
    shiprocket: Optional[ShiprocketClient] = Depends(get_shiprocket_client),
):
    """Create the carrier shipment by hand, e.g. after automatic creation failed."""
    order = await get_order(db, order_id, for_update=True)
    await fulfillment.ship_order(db, order=order, shiprocket=shiprocket)
    return await get_order(db, order_id)


@router.post("/{order_id}/cancel", response_model=AdminOrderResponse)
async def cancel_order(
    order_id: uuid.UUID,
    payload: Optional[CancelOrderRequest] = None,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
    shiprocket: Optional[ShiprocketClient] = Depends(get_shiprocket_client),
):
    order = await get_order(db, order_id, for_update=True)
    await fulfillment.cancel_order(
        db,
        order=order,
        shiprocket=shiprocket,
        reason=payload.reason if payload else None,
        actor=current_user.user_id,
    )
    return await get_order(db, order_id)


@router.post("/{order_id}/retry-side-effects", response_model=AdminOrderResponse)
async def retry_order_side_effects(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
    shiprocket: Optional[ShiprocketClient] = Depends(get_shiprocket_client),
):
    """Re-run post-payment steps that have not completed."""
    order = await get_order(db, order_id)
    steps = tuple(
        step
        for step in SIDE_EFFECT_STEPS
        if ((order.side_effects or {}).get(step) or {}).get("status")
        != SideEffectStatus.DONE.value
    )
    if steps:
        await run_side_effects(
            db, order_id=order_id, shiprocket=shiprocket, steps=steps
        )
    return await get_order(db, order_id)
