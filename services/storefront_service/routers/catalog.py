"""Public catalog router."""

from fastapi import APIRouter, Depends
from libs.db.session import get_async_db
from services.storefront_service.errors import NotFound
from services.storefront_service.models import Product
from services.storefront_service.schemas import ProductResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["storefront"])


@router.get("/products", response_model=list[ProductResponse])
async def list_products(
    featured_only: bool = False,
    db: AsyncSession = Depends(get_async_db),
):
    """List active products, featured first."""
    query = select(Product).where(Product.is_active.is_(True))
    if featured_only:
        query = query.where(Product.is_featured.is_(True))
    query = query.order_by(
        Product.is_featured.desc(), Product.created_at.asc(), Product.id.asc()
    )

    result = await db.execute(query)
    return result.scalars().all()


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: int,
    db: AsyncSession = Depends(get_async_db),
):
    product = await db.get(Product, product_id)
    if not product or not product.is_active:
        raise NotFound("Product not found")
    return product
