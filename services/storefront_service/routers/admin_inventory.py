"""Admin inventory router: stock adjustments, movement history, reports."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.storefront_service.dependencies import require_store_admin
from services.storefront_service.errors import ValidationFailure
from services.storefront_service.models import InventoryMovementType, Product
from services.storefront_service.schemas import (
    InventoryMovementResponse,
    InventoryOverview,
    ProductResponse,
    StockAdjustment,
    StockAdjustmentResponse,
)
from services.storefront_service.services import inventory as inventory_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["admin-storefront"])


@router.post(
    "/products/{product_id}/stock", response_model=StockAdjustmentResponse
)
async def adjust_product_stock(
    product_id: int,
    adjustment: StockAdjustment,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Restock or correct a product's stock by a delta."""
    if adjustment.quantity_change == 0:
        raise ValidationFailure("quantity_change must not be zero")
    if (
        adjustment.movement_type == InventoryMovementType.RESTOCK
        and adjustment.quantity_change < 0
    ):
        raise ValidationFailure("A restock must add stock")

    movement = await inventory_ops.adjust_stock(
        db,
        product_id=product_id,
        quantity_change=adjustment.quantity_change,
        movement_type=adjustment.movement_type,
        notes=adjustment.notes,
        performed_by=current_user.user_id,
    )
    product = await db.get(Product, product_id)
    return StockAdjustmentResponse(
        product=ProductResponse.model_validate(product),
        movement=InventoryMovementResponse.model_validate(movement),
    )


@router.get(
    "/inventory/movements", response_model=list[InventoryMovementResponse]
)
async def list_inventory_movements(
    product_id: Optional[int] = None,
    movement_type: Optional[InventoryMovementType] = None,
    limit: int = Query(inventory_ops.MOVEMENT_HISTORY_LIMIT, ge=1, le=200),
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Latest stock movements, optionally for one product."""
    return await inventory_ops.list_movements(
        db, product_id=product_id, movement_type=movement_type, limit=limit
    )


@router.get("/inventory/low-stock", response_model=list[ProductResponse])
async def list_low_stock_products(
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await inventory_ops.list_low_stock(db)


@router.get("/inventory/overview", response_model=InventoryOverview)
async def get_inventory_overview(
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return InventoryOverview(**await inventory_ops.inventory_overview(db))
