"""Unit tests for stock adjustment and inventory reporting.

Tests call inventory functions directly with the db_session fixture.
"""

from decimal import Decimal

import pytest
from services.storefront_service.errors import InsufficientStock, NotFound
from services.storefront_service.models import (
    InventoryMovement,
    InventoryMovementType,
    Product,
    StockStatus,
)
from services.storefront_service.services.inventory import (
    adjust_stock,
    inventory_overview,
    list_low_stock,
    list_movements,
)
from sqlalchemy import func, select
from tests.factories import ProductFactory, persist


async def _stock(db, product_id: int) -> int:
    return await db.scalar(
        select(Product.stock_quantity).where(Product.id == product_id)
    )


async def _movement_total(db, product_id: int) -> int:
    return await db.scalar(
        select(func.coalesce(func.sum(InventoryMovement.quantity_change), 0)).where(
            InventoryMovement.product_id == product_id
        )
    )


# ---------------------------------------------------------------------------
# adjust_stock
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_adjust_stock_records_movement(db_session):
    product = await persist(db_session, ProductFactory.create(stock_quantity=0))

    movement = await adjust_stock(
        db_session,
        product_id=product.id,
        quantity_change=12,
        movement_type=InventoryMovementType.RESTOCK,
        notes="Kiln batch 14",
        performed_by="admin-1",
    )

    assert movement.previous_stock == 0
    assert movement.new_stock == 12
    assert movement.movement_type == InventoryMovementType.RESTOCK
    assert await _stock(db_session, product.id) == 12


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stock_equals_sum_of_movements(db_session):
    """After any sequence of adjustments, stock == sum of recorded deltas."""
    product = await persist(db_session, ProductFactory.create(stock_quantity=0))

    deltas = [
        (10, InventoryMovementType.RESTOCK),
        (-3, InventoryMovementType.SALE),
        (-2, InventoryMovementType.ADJUSTMENT),
        (5, InventoryMovementType.RESTOCK),
        (-10, InventoryMovementType.SALE),
    ]
    for change, movement_type in deltas:
        await adjust_stock(
            db_session,
            product_id=product.id,
            quantity_change=change,
            movement_type=movement_type,
        )

    stock = await _stock(db_session, product.id)
    assert stock == 0
    assert stock == await _movement_total(db_session, product.id)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_adjust_stock_never_goes_negative(db_session):
    product = await persist(db_session, ProductFactory.create(stock_quantity=2))

    with pytest.raises(InsufficientStock):
        await adjust_stock(
            db_session,
            product_id=product.id,
            quantity_change=-3,
            movement_type=InventoryMovementType.SALE,
        )

    await db_session.rollback()
    assert await _stock(db_session, product.id) == 2
    assert await _movement_total(db_session, product.id) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_adjust_stock_unknown_product(db_session):
    with pytest.raises(NotFound):
        await adjust_stock(
            db_session,
            product_id=4242,
            quantity_change=1,
            movement_type=InventoryMovementType.RESTOCK,
        )


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_movements_filters_by_product(db_session):
    mug = ProductFactory.create(stock_quantity=0)
    bowl = ProductFactory.create(stock_quantity=0)
    await persist(db_session, mug, bowl)

    for product in (mug, bowl):
        await adjust_stock(
            db_session,
            product_id=product.id,
            quantity_change=4,
            movement_type=InventoryMovementType.RESTOCK,
        )
    await adjust_stock(
        db_session,
        product_id=mug.id,
        quantity_change=-1,
        movement_type=InventoryMovementType.SALE,
    )

    movements = await list_movements(db_session, product_id=mug.id)
    assert len(movements) == 2
    assert {m.product_id for m in movements} == {mug.id}

    sales = await list_movements(
        db_session, movement_type=InventoryMovementType.SALE
    )
    assert [m.quantity_change for m in sales] == [-1]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stock_status_and_overview(db_session):
    plenty = ProductFactory.create(stock_quantity=20, price=Decimal("100.00"))
    low = ProductFactory.create(stock_quantity=3, price=Decimal("50.00"))
    empty = ProductFactory.create(stock_quantity=0, price=Decimal("75.00"))
    retired = ProductFactory.create(stock_quantity=1, is_active=False)
    await persist(db_session, plenty, low, empty, retired)

    assert plenty.stock_status == StockStatus.IN_STOCK
    assert low.stock_status == StockStatus.LOW_STOCK
    assert empty.stock_status == StockStatus.OUT_OF_STOCK

    low_stock = await list_low_stock(db_session)
    assert [p.id for p in low_stock] == [empty.id, low.id]

    overview = await inventory_overview(db_session)
    assert overview["product_count"] == 3
    assert overview["total_units"] == 23
    assert overview["low_stock_count"] == 1
    assert overview["out_of_stock_count"] == 1
    assert Decimal(str(overview["stock_value"])) == Decimal("2150.00")
