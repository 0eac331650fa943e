"""Wishlist router."""

from typing import Optional

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.storefront_service.schemas import (
    WishlistAddRequest,
    WishlistAddResponse,
    WishlistCheckResponse,
    WishlistItemResponse,
)
from services.storefront_service.services import wishlist as wishlist_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/wishlist", tags=["storefront-wishlist"])


@router.get("", response_model=list[WishlistItemResponse])
async def list_wishlist(
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await wishlist_ops.list_wishlist(db, user=current_user)


@router.post("", response_model=WishlistAddResponse)
async def add_to_wishlist(
    payload: WishlistAddRequest,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    added = await wishlist_ops.add_to_wishlist(
        db, user=current_user, product_id=payload.product_id
    )
    return WishlistAddResponse(product_id=payload.product_id, added=added)


@router.get("/{product_id}", response_model=WishlistCheckResponse)
async def check_wishlist(
    product_id: int,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    in_wishlist = await wishlist_ops.is_in_wishlist(
        db, user=current_user, product_id=product_id
    )
    return WishlistCheckResponse(product_id=product_id, in_wishlist=in_wishlist)


@router.delete("/{product_id}", status_code=204)
async def remove_from_wishlist(
    product_id: int,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    await wishlist_ops.remove_from_wishlist(
        db, user=current_user, product_id=product_id
    )


@router.delete("", status_code=204)
async def clear_wishlist(
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    await wishlist_ops.clear_wishlist(db, user=current_user)
