"""Stock operations: atomic adjust-and-record plus inventory reporting."""

from decimal import Decimal
from typing import Optional

from libs.common.logging import get_logger
from services.storefront_service.errors import InsufficientStock, NotFound
from services.storefront_service.models import (
    InventoryMovement,
    InventoryMovementType,
    Product,
)
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

MOVEMENT_HISTORY_LIMIT = 50


async def get_product_for_update(db: AsyncSession, product_id: int) -> Product:
    """Load and lock a product row, refreshing any copy already in the session."""
    result = await db.execute(
        select(Product)
        .where(Product.id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    product = result.scalar_one_or_none()
    if not product:
        raise NotFound("Product not found")
    return product


async def adjust_stock(
    db: AsyncSession,
    *,
    product_id: int,
    quantity_change: int,
    movement_type: InventoryMovementType,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
    commit: bool = True,
) -> InventoryMovement:
    """Adjust a product's stock by a delta and record the movement.

    The row is locked for the duration so the counter and its audit trail
    stay consistent. Fails with InsufficientStock when the result would be
    negative; nothing is written in that case.
    """
    product = await get_product_for_update(db, product_id)

    previous_stock = product.stock_quantity
    new_stock = previous_stock + quantity_change
    if new_stock < 0:
        logger.warning(
            "Rejected stock adjustment for product %s: %d %+d",
            product_id,
            previous_stock,
            quantity_change,
            extra={
                "extra_fields": {
                    "product_id": product_id,
                    "previous_stock": previous_stock,
                    "quantity_change": quantity_change,
                }
            },
        )
        raise InsufficientStock(
            f"Only {previous_stock} left in stock for {product.name}"
        )

    product.stock_quantity = new_stock
    movement = InventoryMovement(
        product_id=product.id,
        movement_type=movement_type,
        quantity_change=quantity_change,
        previous_stock=previous_stock,
        new_stock=new_stock,
        notes=notes,
        performed_by=performed_by,
    )
    db.add(movement)
    await db.flush()

    if commit:
        await db.commit()

    logger.info(
        "Stock %s for product %s: %d -> %d",
        movement_type.value,
        product_id,
        previous_stock,
        new_stock,
    )
    return movement


async def list_movements(
    db: AsyncSession,
    *,
    product_id: Optional[int] = None,
    movement_type: Optional[InventoryMovementType] = None,
    limit: int = MOVEMENT_HISTORY_LIMIT,
) -> list[InventoryMovement]:
    query = select(InventoryMovement).order_by(
        InventoryMovement.created_at.desc()
    )
    if product_id is not None:
        query = query.where(InventoryMovement.product_id == product_id)
    if movement_type is not None:
        query = query.where(InventoryMovement.movement_type == movement_type)

    result = await db.execute(query.limit(limit))
    return list(result.scalars().all())


async def list_low_stock(db: AsyncSession) -> list[Product]:
    result = await db.execute(
        select(Product)
        .where(
            Product.is_active.is_(True),
            Product.stock_quantity <= Product.low_stock_threshold,
        )
        .order_by(Product.stock_quantity.asc(), Product.id.asc())
    )
    return list(result.scalars().all())


async def inventory_overview(db: AsyncSession) -> dict:
    """Aggregate counts over active products."""
    active = Product.is_active.is_(True)

    totals = await db.execute(
        select(
            func.count(Product.id),
            func.coalesce(func.sum(Product.stock_quantity), 0),
            func.coalesce(func.sum(Product.stock_quantity * Product.price), 0),
        ).where(active)
    )
    product_count, total_units, stock_value = totals.one()

    low_stock = await db.scalar(
        select(func.count(Product.id)).where(
            active,
            Product.stock_quantity > 0,
            Product.stock_quantity <= Product.low_stock_threshold,
        )
    )
    out_of_stock = await db.scalar(
        select(func.count(Product.id)).where(active, Product.stock_quantity <= 0)
    )

    return {
        "product_count": product_count or 0,
        "total_units": int(total_units or 0),
        "low_stock_count": low_stock or 0,
        "out_of_stock_count": out_of_stock or 0,
        "stock_value": Decimal(str(stock_value or 0)).quantize(Decimal("0.01")),
    }
