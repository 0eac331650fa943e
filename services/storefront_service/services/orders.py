"""Order lookups shared by customer and admin routers."""

import uuid
from typing import Optional

from services.storefront_service.errors import NotFound
from services.storefront_service.models import FulfillmentStatus, Order
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload


async def get_order(
    db: AsyncSession, order_id: uuid.UUID, *, for_update: bool = False
) -> Order:
    query = (
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items), selectinload(Order.events))
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    order = result.scalar_one_or_none()
    if not order:
        raise NotFound("Order not found")
    return order


async def get_user_order(
    db: AsyncSession, order_id: uuid.UUID, user_id: str, *, for_update: bool = False
) -> Order:
    """Fetch an order owned by ``user_id``. Other users' orders read as missing."""
    order = await get_order(db, order_id, for_update=for_update)
    if order.user_id != user_id:
        raise NotFound("Order not found")
    return order


async def list_user_orders(db: AsyncSession, user_id: str) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .options(selectinload(Order.items))
        .order_by(Order.created_at.desc())
    )
    return list(result.scalars().all())


async def list_orders(
    db: AsyncSession,
    *,
    fulfillment_status: Optional[FulfillmentStatus] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    query = select(Order)
    if fulfillment_status:
        query = query.where(Order.fulfillment_status == fulfillment_status)
    if search:
        term = f"%{search.strip()}%"
        query = query.where(
            or_(
                Order.customer_name.ilike(term),
                Order.customer_email.ilike(term),
                Order.customer_phone.ilike(term),
                Order.gateway_order_id.ilike(term),
                Order.awb.ilike(term),
            )
        )

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.options(selectinload(Order.items))
        .order_by(Order.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0
