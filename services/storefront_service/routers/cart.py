"""Cart router. Every route needs a signed-in shopper."""

from typing import Optional

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.storefront_service.schemas import (
    CartItemAdd,
    CartItemUpdate,
    CartResponse,
)
from services.storefront_service.services import cart as cart_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/cart", tags=["storefront-cart"])


def _to_response(summary: cart_ops.CartSummary) -> CartResponse:
    return CartResponse(
        items=summary.items,
        item_count=summary.item_count,
        total_price=summary.total_price,
    )


@router.get("", response_model=CartResponse)
async def get_cart(
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    return _to_response(await cart_ops.get_cart(db, current_user))


@router.post("/items", response_model=CartResponse)
async def add_to_cart(
    payload: CartItemAdd,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Add one unit of a product (reserves stock for new lines)."""
    summary = await cart_ops.add_item(
        db, user=current_user, product_id=payload.product_id
    )
    return _to_response(summary)


@router.patch("/items/{product_id}", response_model=CartResponse)
async def update_cart_item(
    product_id: int,
    payload: CartItemUpdate,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Set a line's quantity. Values below 1 leave the cart unchanged."""
    summary = await cart_ops.update_quantity(
        db, user=current_user, product_id=product_id, quantity=payload.quantity
    )
    return _to_response(summary)


@router.delete("/items/{product_id}", response_model=CartResponse)
async def remove_cart_item(
    product_id: int,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    summary = await cart_ops.remove_item(db, user=current_user, product_id=product_id)
    return _to_response(summary)


@router.delete("", response_model=CartResponse)
async def clear_cart(
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    return _to_response(await cart_ops.clear_cart(db, user=current_user))
