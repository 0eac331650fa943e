"""Admin product management router."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.storefront_service.dependencies import require_store_admin
from services.storefront_service.errors import NotFound
from services.storefront_service.models import InventoryMovementType, Product
from services.storefront_service.schemas import (
    ProductCreate,
    ProductResponse,
    ProductUpdate,
)
from services.storefront_service.services.inventory import adjust_stock
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["admin-storefront"])
logger = get_logger(__name__)


@router.get("/products", response_model=list[ProductResponse])
async def list_all_products(
    include_inactive: bool = True,
    search: Optional[str] = Query(None, max_length=100),
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    query = select(Product).order_by(Product.created_at.desc(), Product.id.desc())
    if not include_inactive:
        query = query.where(Product.is_active.is_(True))
    if search:
        query = query.where(Product.name.ilike(f"%{search}%"))
    result = await db.execute(query)
    return result.scalars().all()


@router.post("/products", response_model=ProductResponse, status_code=201)
async def create_product(
    product_in: ProductCreate,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Create a product. Opening stock is recorded as a restock movement."""
    data = product_in.model_dump(exclude={"stock_quantity"})
    if not data.get("image_url") and data.get("images"):
        data["image_url"] = data["images"][0]

    product = Product(**data, stock_quantity=0)
    db.add(product)
    await db.flush()

    if product_in.stock_quantity > 0:
        await adjust_stock(
            db,
            product_id=product.id,
            quantity_change=product_in.stock_quantity,
            movement_type=InventoryMovementType.RESTOCK,
            notes="Initial stock",
            performed_by=current_user.user_id,
            commit=False,
        )
    await db.commit()
    await db.refresh(product)

    logger.info("Product %s created by %s", product.id, current_user.user_id)
    return product


@router.patch("/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    product_in: ProductUpdate,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    product = await db.get(Product, product_id)
    if not product:
        raise NotFound("Product not found")

    for field, value in product_in.model_dump(exclude_unset=True).items():
        setattr(product, field, value)

    await db.commit()
    await db.refresh(product)
    return product


@router.delete("/products/{product_id}", status_code=204)
async def delete_product(
    product_id: int,
    permanent: bool = False,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Deactivate a product, or delete it with ``permanent=true``.

    Order history keeps its denormalized copy either way.
    """
    product = await db.get(Product, product_id)
    if not product:
        raise NotFound("Product not found")

    if permanent:
        await db.delete(product)
    else:
        product.is_active = False
    await db.commit()
    logger.info(
        "Product %s %s by %s",
        product_id,
        "deleted" if permanent else "deactivated",
        current_user.user_id,
    )
