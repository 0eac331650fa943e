"""Storefront Service models package."""

from services.storefront_service.models.catalog import InventoryMovement, Product
from services.storefront_service.models.commerce import (
    CartItem,
    CheckoutAttempt,
    Order,
    OrderEvent,
    OrderItem,
    WishlistItem,
)
from services.storefront_service.models.enums import (
    CheckoutState,
    FulfillmentStatus,
    InventoryMovementType,
    PaymentStatus,
    ReturnReason,
    ReturnStatus,
    SideEffectStatus,
    StockStatus,
)
from services.storefront_service.models.returns import ReturnRequest

__all__ = [
    "CartItem",
    "CheckoutAttempt",
    "CheckoutState",
    "FulfillmentStatus",
    "InventoryMovement",
    "InventoryMovementType",
    "Order",
    "OrderEvent",
    "OrderItem",
    "PaymentStatus",
    "Product",
    "ReturnReason",
    "ReturnRequest",
    "ReturnStatus",
    "SideEffectStatus",
    "StockStatus",
    "WishlistItem",
]
