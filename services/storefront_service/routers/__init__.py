"""Storefront service routers package."""

from services.storefront_service.routers.admin_catalog import (
    router as admin_catalog_router,
)
from services.storefront_service.routers.admin_inventory import (
    router as admin_inventory_router,
)
from services.storefront_service.routers.admin_orders import (
    router as admin_orders_router,
)
from services.storefront_service.routers.admin_returns import (
    router as admin_returns_router,
)
from services.storefront_service.routers.cart import router as cart_router
from services.storefront_service.routers.catalog import router as catalog_router
from services.storefront_service.routers.checkout import router as checkout_router
from services.storefront_service.routers.orders import router as orders_router
from services.storefront_service.routers.webhooks import router as webhooks_router
from services.storefront_service.routers.wishlist import router as wishlist_router

__all__ = [
    "admin_catalog_router",
    "admin_inventory_router",
    "admin_orders_router",
    "admin_returns_router",
    "cart_router",
    "catalog_router",
    "checkout_router",
    "orders_router",
    "webhooks_router",
    "wishlist_router",
]
