"""Wishlist operations (set semantics per user)."""

from typing import Optional

from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from services.storefront_service.errors import AuthenticationRequired, NotFound
from services.storefront_service.models import Product, WishlistItem
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)


def _require_user(user: Optional[AuthUser]) -> AuthUser:
    if user is None:
        raise AuthenticationRequired("Please sign in to use your wishlist")
    return user


async def list_wishlist(
    db: AsyncSession, *, user: Optional[AuthUser]
) -> list[WishlistItem]:
    user = _require_user(user)
    result = await db.execute(
        select(WishlistItem)
        .where(WishlistItem.user_id == user.user_id)
        .options(selectinload(WishlistItem.product))
        .order_by(WishlistItem.created_at.desc())
    )
    return list(result.scalars().all())


async def is_in_wishlist(
    db: AsyncSession, *, user: Optional[AuthUser], product_id: int
) -> bool:
    user = _require_user(user)
    found = await db.scalar(
        select(WishlistItem.id).where(
            WishlistItem.user_id == user.user_id,
            WishlistItem.product_id == product_id,
        )
    )
    return found is not None


async def add_to_wishlist(
    db: AsyncSession, *, user: Optional[AuthUser], product_id: int
) -> bool:
    """Save a product. Returns False if it was already saved."""
    user = _require_user(user)
    if await is_in_wishlist(db, user=user, product_id=product_id):
        return False

    if await db.get(Product, product_id) is None:
        raise NotFound("Product not found")

    db.add(WishlistItem(user_id=user.user_id, product_id=product_id))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return False
    return True


async def remove_from_wishlist(
    db: AsyncSession, *, user: Optional[AuthUser], product_id: int
) -> bool:
    user = _require_user(user)
    result = await db.execute(
        delete(WishlistItem).where(
            WishlistItem.user_id == user.user_id,
            WishlistItem.product_id == product_id,
        )
    )
    await db.commit()
    return result.rowcount > 0


async def clear_wishlist(db: AsyncSession, *, user: Optional[AuthUser]) -> int:
    user = _require_user(user)
    result = await db.execute(
        delete(WishlistItem).where(WishlistItem.user_id == user.user_id)
    )
    await db.commit()
    return result.rowcount
