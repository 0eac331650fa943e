"""FastAPI application for the Storefront Service."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from libs.common.config import get_settings
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from services.storefront_service.routers import (
    admin_catalog_router,
    admin_inventory_router,
    admin_orders_router,
    admin_returns_router,
    cart_router,
    catalog_router,
    checkout_router,
    orders_router,
    webhooks_router,
    wishlist_router,
)


def create_app() -> FastAPI:
    """Create and configure the Storefront Service FastAPI app."""
    settings = get_settings()
    app = FastAPI(
        title=f"{settings.STORE_NAME} Storefront Service",
        version="0.1.0",
        description="Pottery storefront - catalog, cart, checkout, orders, returns.",
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Structured logging + request tracing
    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "storefront"}

    # Public store routes
    app.include_router(catalog_router, prefix="/store")
    app.include_router(cart_router, prefix="/store")
    app.include_router(wishlist_router, prefix="/store")
    app.include_router(checkout_router, prefix="/store")
    app.include_router(orders_router, prefix="/store")
    app.include_router(webhooks_router, prefix="/store")

    # Admin routes
    app.include_router(admin_catalog_router, prefix="/admin/store")
    app.include_router(admin_inventory_router, prefix="/admin/store")
    app.include_router(admin_orders_router, prefix="/admin/store")
    app.include_router(admin_returns_router, prefix="/admin/store")

    return app


app = create_app()
