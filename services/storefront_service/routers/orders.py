"""Customer order router: history, tracking, cancellation, returns."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.storefront_service.dependencies import get_shiprocket_client
from services.storefront_service.errors import AuthenticationRequired
from services.storefront_service.schemas import (
    CancelOrderRequest,
    OrderDetailResponse,
    OrderResponse,
    ReturnRequestCreate,
    ReturnRequestResponse,
)
from services.storefront_service.services import returns as return_ops
from services.storefront_service.services.fulfillment import cancel_order
from services.storefront_service.services.orders import (
    get_order,
    get_user_order,
    list_user_orders,
)
from services.storefront_service.shiprocket_client import ShiprocketClient
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/orders", tags=["storefront-orders"])


def _require(user: Optional[AuthUser]) -> AuthUser:
    if user is None:
        raise AuthenticationRequired("Please sign in to view your orders")
    return user


@router.get("", response_model=list[OrderResponse])
async def list_my_orders(
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List the shopper's orders, newest first."""
    user = _require(current_user)
    return await list_user_orders(db, user.user_id)


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_my_order(
    order_id: uuid.UUID,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Order detail with its tracking timeline."""
    user = _require(current_user)
    return await get_user_order(db, order_id, user.user_id)


@router.post("/{order_id}/cancel", response_model=OrderDetailResponse)
async def cancel_my_order(
    order_id: uuid.UUID,
    payload: Optional[CancelOrderRequest] = None,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
    shiprocket: Optional[ShiprocketClient] = Depends(get_shiprocket_client),
):
    """Cancel an order that has not shipped yet."""
    user = _require(current_user)
    order = await get_user_order(db, order_id, user.user_id, for_update=True)
    await cancel_order(
        db,
        order=order,
        shiprocket=shiprocket,
        reason=payload.reason if payload else None,
        actor=user.user_id,
    )
    return await get_order(db, order_id)


@router.post(
    "/{order_id}/return", response_model=ReturnRequestResponse, status_code=201
)
async def request_return(
    order_id: uuid.UUID,
    payload: ReturnRequestCreate,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """File a return for a delivered order."""
    return await return_ops.create_return_request(
        db,
        user=current_user,
        order_id=order_id,
        reason=payload.reason,
        description=payload.description,
        pickup_address=payload.pickup_address,
    )


@router.get("/{order_id}/return", response_model=ReturnRequestResponse)
async def get_my_return(
    order_id: uuid.UUID,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await return_ops.get_user_return(db, user=current_user, order_id=order_id)
