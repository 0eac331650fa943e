"""Unit tests for cart operations and add-to-cart stock reservation."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from libs.common.datetime_utils import utc_now
from services.storefront_service.errors import (
    AuthenticationRequired,
    InsufficientStock,
    NotFound,
    OutOfStock,
)
from services.storefront_service.models import (
    CartItem,
    InventoryMovement,
    InventoryMovementType,
    Product,
)
from services.storefront_service.services import cart as cart_ops
from sqlalchemy import func, select, update
from tests.conftest import make_user
from tests.factories import ProductFactory, persist


async def _stock(db, product_id: int) -> int:
    return await db.scalar(
        select(Product.stock_quantity).where(Product.id == product_id)
    )


async def _line_count(db, user_id: str, product_id: int) -> int:
    return await db.scalar(
        select(func.count(CartItem.id)).where(
            CartItem.user_id == user_id, CartItem.product_id == product_id
        )
    )


# ---------------------------------------------------------------------------
# add_item
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_item_reserves_one_unit(db_session):
    product = await persist(db_session, ProductFactory.create(stock_quantity=5))
    user = make_user()

    summary = await cart_ops.add_item(db_session, user=user, product_id=product.id)

    assert summary.item_count == 1
    assert summary.items[0].reserved_quantity == 1
    assert await _stock(db_session, product.id) == 4

    movement = await db_session.scalar(
        select(InventoryMovement).where(InventoryMovement.product_id == product.id)
    )
    assert movement.movement_type == InventoryMovementType.SALE
    assert movement.quantity_change == -1
    assert movement.notes == cart_ops.RESERVATION_NOTE


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_same_product_is_additive(db_session):
    """Re-adding a product bumps quantity; never a second line."""
    product = await persist(db_session, ProductFactory.create(stock_quantity=5))
    user = make_user()

    await cart_ops.add_item(db_session, user=user, product_id=product.id)
    summary = await cart_ops.add_item(db_session, user=user, product_id=product.id)

    assert await _line_count(db_session, user.user_id, product.id) == 1
    assert summary.items[0].quantity == 2
    # Only the first unit is reserved
    assert summary.items[0].reserved_quantity == 1
    assert await _stock(db_session, product.id) == 4


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_item_out_of_stock(db_session):
    product = await persist(db_session, ProductFactory.create(stock_quantity=0))
    product_id = product.id

    with pytest.raises(OutOfStock):
        await cart_ops.add_item(db_session, user=make_user(), product_id=product_id)

    assert await _stock(db_session, product_id) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_adds_for_out_of_stock_product_both_fail(session_factory):
    async with session_factory() as setup:
        product = await persist(setup, ProductFactory.create(stock_quantity=0))
        product_id = product.id

    async def attempt(user_id: str):
        async with session_factory() as db:
            return await cart_ops.add_item(
                db, user=make_user(user_id=user_id), product_id=product_id
            )

    results = await asyncio.gather(
        attempt("shopper-a"), attempt("shopper-b"), return_exceptions=True
    )

    assert all(isinstance(result, OutOfStock) for result in results)
    async with session_factory() as check:
        assert await _stock(check, product_id) == 0
        assert await check.scalar(select(func.count(CartItem.id))) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_item_requires_user(db_session):
    product = await persist(db_session, ProductFactory.create())

    with pytest.raises(AuthenticationRequired):
        await cart_ops.add_item(db_session, user=None, product_id=product.id)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_inactive_product_not_found(db_session):
    hidden = ProductFactory.create(is_active=False)
    mug = ProductFactory.create(stock_quantity=2)
    await persist(db_session, hidden, mug)
    hidden_id, mug_id = hidden.id, mug.id
    user = make_user()

    with pytest.raises(NotFound):
        await cart_ops.add_item(db_session, user=user, product_id=hidden_id)

    # The row lock is released and the session stays usable
    assert not db_session.in_transaction()
    summary = await cart_ops.add_item(db_session, user=user, product_id=mug_id)
    assert summary.item_count == 1
    assert await _stock(db_session, mug_id) == 1


# ---------------------------------------------------------------------------
# update_quantity / totals
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_total_price_tracks_every_mutation(db_session):
    mug = ProductFactory.create(price=Decimal("250.00"), stock_quantity=10)
    vase = ProductFactory.create(price=Decimal("1200.50"), stock_quantity=10)
    await persist(db_session, mug, vase)
    user = make_user()

    await cart_ops.add_item(db_session, user=user, product_id=mug.id)
    summary = await cart_ops.add_item(db_session, user=user, product_id=vase.id)
    assert summary.total_price == Decimal("1450.50")

    summary = await cart_ops.update_quantity(
        db_session, user=user, product_id=mug.id, quantity=3
    )
    assert summary.total_price == Decimal("1950.50")
    assert summary.item_count == 4
    assert summary.total_price == sum(
        line.product_price * line.quantity for line in summary.items
    )

    summary = await cart_ops.remove_item(db_session, user=user, product_id=vase.id)
    assert summary.total_price == Decimal("750.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_quantity_below_one_is_ignored(db_session):
    product = await persist(db_session, ProductFactory.create(stock_quantity=5))
    user = make_user()
    await cart_ops.add_item(db_session, user=user, product_id=product.id)

    summary = await cart_ops.update_quantity(
        db_session, user=user, product_id=product.id, quantity=0
    )

    assert summary.items[0].quantity == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_quantity_beyond_stock(db_session):
    product = await persist(db_session, ProductFactory.create(stock_quantity=3))
    user = make_user()
    await cart_ops.add_item(db_session, user=user, product_id=product.id)

    # 1 reserved + 2 remaining = 3 available in total
    await cart_ops.update_quantity(
        db_session, user=user, product_id=product.id, quantity=3
    )
    product_id = product.id
    with pytest.raises(InsufficientStock):
        await cart_ops.update_quantity(
            db_session, user=user, product_id=product_id, quantity=4
        )

    assert not db_session.in_transaction()
    summary = await cart_ops.get_cart(db_session, user)
    assert summary.items[0].quantity == 3
    assert await _stock(db_session, product_id) == 2


# ---------------------------------------------------------------------------
# Reservation release
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_remove_item_releases_reservation(db_session):
    product = await persist(db_session, ProductFactory.create(stock_quantity=5))
    user = make_user()
    await cart_ops.add_item(db_session, user=user, product_id=product.id)

    summary = await cart_ops.remove_item(
        db_session, user=user, product_id=product.id
    )

    assert summary.items == []
    assert summary.total_price == Decimal("0")
    assert await _stock(db_session, product.id) == 5


@pytest.mark.asyncio
@pytest.mark.unit
async def test_clear_cart_releases_all_reservations(db_session):
    mug = ProductFactory.create(stock_quantity=5)
    bowl = ProductFactory.create(stock_quantity=2)
    await persist(db_session, mug, bowl)
    user = make_user()
    await cart_ops.add_item(db_session, user=user, product_id=mug.id)
    await cart_ops.add_item(db_session, user=user, product_id=bowl.id)

    summary = await cart_ops.clear_cart(db_session, user=user)

    assert summary.item_count == 0
    assert await _stock(db_session, mug.id) == 5
    assert await _stock(db_session, bowl.id) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_release_stale_reservations_keeps_lines(db_session):
    product = await persist(db_session, ProductFactory.create(stock_quantity=5))
    user = make_user()
    await cart_ops.add_item(db_session, user=user, product_id=product.id)

    stale = utc_now() - timedelta(hours=2)
    await db_session.execute(
        update(CartItem).where(CartItem.user_id == user.user_id).values(updated_at=stale)
    )
    await db_session.commit()

    released = await cart_ops.release_stale_reservations(
        db_session, older_than=utc_now() - timedelta(minutes=30)
    )

    assert released == 1
    assert await _stock(db_session, product.id) == 5
    cart = await cart_ops.get_cart(db_session, user)
    assert cart.items[0].quantity == 1
    assert cart.items[0].reserved_quantity == 0
