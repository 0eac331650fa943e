"""Cart operations with reservation-on-add stock handling."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from services.storefront_service.errors import (
    AuthenticationRequired,
    InsufficientStock,
    NotFound,
    OutOfStock,
)
from services.storefront_service.models import (
    CartItem,
    InventoryMovementType,
    Product,
)
from services.storefront_service.services.inventory import (
    adjust_stock,
    get_product_for_update,
)
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)

RESERVATION_NOTE = "Added to cart"
RELEASE_NOTE = "Cart reservation released"


@dataclass
class CartSummary:
    items: list[CartItem]
    item_count: int
    total_price: Decimal


def require_user(user: Optional[AuthUser]) -> AuthUser:
    if user is None:
        raise AuthenticationRequired("Please sign in to use your cart")
    return user


def summarize(items: list[CartItem]) -> CartSummary:
    """Derive totals from the lines as they are now."""
    return CartSummary(
        items=items,
        item_count=sum(item.quantity for item in items),
        total_price=sum(
            (item.product_price * item.quantity for item in items), Decimal("0")
        ),
    )


async def list_items(db: AsyncSession, user_id: str) -> list[CartItem]:
    result = await db.execute(
        select(CartItem)
        .where(CartItem.user_id == user_id)
        .options(selectinload(CartItem.product))
        .order_by(CartItem.created_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_cart(db: AsyncSession, user: Optional[AuthUser]) -> CartSummary:
    user = require_user(user)
    return summarize(await list_items(db, user.user_id))


async def _get_line(
    db: AsyncSession, user_id: str, product_id: int
) -> Optional[CartItem]:
    result = await db.execute(
        select(CartItem)
        .where(CartItem.user_id == user_id, CartItem.product_id == product_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _check_capacity(
    db: AsyncSession, product: Product, line: CartItem, new_quantity: int
) -> None:
    # Reserved units were already taken out of stock_quantity
    needed = new_quantity - line.reserved_quantity
    if needed > product.stock_quantity:
        message = (
            f"Only {product.stock_quantity + line.reserved_quantity} "
            f"of {product.name} available"
        )
        await db.rollback()
        raise InsufficientStock(message)


async def add_item(
    db: AsyncSession,
    *,
    user: Optional[AuthUser],
    product_id: int,
) -> CartSummary:
    """Add one unit of a product to the cart.

    A new line reserves one unit of stock (a "sale" movement). Adding a
    product that is already in the cart bumps its quantity instead.
    """
    user = require_user(user)

    product = await get_product_for_update(db, product_id)
    if not product.is_active:
        await db.rollback()
        raise NotFound("Product not found")
    if product.stock_quantity <= 0:
        message = f"{product.name} is out of stock"
        await db.rollback()
        raise OutOfStock(message)

    line = await _get_line(db, user.user_id, product_id)
    if line:
        await _check_capacity(db, product, line, line.quantity + 1)
        return await update_quantity(
            db, user=user, product_id=product_id, quantity=line.quantity + 1
        )

    line = CartItem(
        user_id=user.user_id,
        product_id=product.id,
        product_name=product.name,
        product_price=product.price,
        product_image=product.image_url,
        quantity=1,
        reserved_quantity=1,
    )
    db.add(line)
    try:
        await adjust_stock(
            db,
            product_id=product.id,
            quantity_change=-1,
            movement_type=InventoryMovementType.SALE,
            notes=RESERVATION_NOTE,
            performed_by=user.user_id,
            commit=False,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _get_line(db, user.user_id, product_id)
        if not existing:
            raise
        # Another request inserted the same line first
        logger.info(
            "Concurrent add for user %s product %s, bumping existing line",
            user.user_id,
            product_id,
        )
        return await update_quantity(
            db, user=user, product_id=product_id, quantity=existing.quantity + 1
        )

    logger.info("User %s added product %s to cart", user.user_id, product_id)
    return await get_cart(db, user)


async def update_quantity(
    db: AsyncSession,
    *,
    user: Optional[AuthUser],
    product_id: int,
    quantity: int,
) -> CartSummary:
    """Set a line's quantity. Quantities below 1 are ignored."""
    user = require_user(user)
    if quantity < 1:
        return await get_cart(db, user)

    line = await _get_line(db, user.user_id, product_id)
    if not line:
        raise NotFound("Item is not in your cart")

    if quantity > line.quantity:
        product = await get_product_for_update(db, product_id)
        await _check_capacity(db, product, line, quantity)

    line.quantity = quantity
    await db.commit()
    return await get_cart(db, user)


async def _release(db: AsyncSession, line: CartItem, performed_by: str) -> None:
    if line.reserved_quantity <= 0:
        return
    await adjust_stock(
        db,
        product_id=line.product_id,
        quantity_change=line.reserved_quantity,
        movement_type=InventoryMovementType.ADJUSTMENT,
        notes=RELEASE_NOTE,
        performed_by=performed_by,
        commit=False,
    )
    line.reserved_quantity = 0


async def remove_item(
    db: AsyncSession,
    *,
    user: Optional[AuthUser],
    product_id: int,
) -> CartSummary:
    user = require_user(user)
    line = await _get_line(db, user.user_id, product_id)
    if line:
        await _release(db, line, user.user_id)
        await db.delete(line)
        await db.commit()
    return await get_cart(db, user)


async def clear_cart(
    db: AsyncSession,
    *,
    user: Optional[AuthUser],
    release_reservations: bool = True,
) -> CartSummary:
    user = require_user(user)
    for line in await list_items(db, user.user_id):
        if release_reservations:
            await _release(db, line, user.user_id)
        await db.delete(line)
    await db.commit()
    return summarize([])


async def release_stale_reservations(db: AsyncSession, *, older_than: datetime) -> int:
    """Return reserved units of lines untouched since ``older_than`` to stock.

    The lines stay in the cart; checkout then takes the full quantity.
    """
    result = await db.execute(
        select(CartItem).where(
            CartItem.reserved_quantity > 0,
            CartItem.updated_at < older_than,
        )
    )
    released = 0
    for line in result.scalars().all():
        released += line.reserved_quantity
        await _release(db, line, "system")
    await db.commit()
    return released
