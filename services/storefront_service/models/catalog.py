"""Storefront catalog models: products and the stock movement audit trail."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.storefront_service.models.enums import (
    InventoryMovementType,
    StockStatus,
    enum_values,
)
from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

# Package defaults used when a product has no shipping metadata
DEFAULT_WEIGHT_GRAMS = 500
DEFAULT_LENGTH_CM = 20
DEFAULT_WIDTH_CM = 15
DEFAULT_HEIGHT_CM = 10
DEFAULT_HSN = "6911"  # Ceramic tableware / kitchenware

MAX_PRODUCT_IMAGES = 5


# ============================================================================
# PRODUCT MODELS
# ============================================================================


class Product(Base):
    """Products offered in the shop."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    original_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )  # Shown struck-through when discounted

    image_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    images: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Stock is only changed through services.inventory.adjust_stock
    stock_quantity: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    low_stock_threshold: Mapped[int] = mapped_column(
        Integer, default=5, server_default="5", nullable=False
    )

    is_featured: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )

    rating: Mapped[Decimal] = mapped_column(
        Numeric(3, 2), default=0, server_default="0"
    )
    review_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    # Shipping metadata
    weight_grams: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    length_cm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    width_cm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height_cm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    hsn: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="non_negative_stock"),
        CheckConstraint("price >= 0", name="non_negative_price"),
    )

    movements = relationship(
        "InventoryMovement",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="InventoryMovement.created_at",
    )

    @property
    def stock_status(self) -> StockStatus:
        if self.stock_quantity <= 0:
            return StockStatus.OUT_OF_STOCK
        if self.stock_quantity <= self.low_stock_threshold:
            return StockStatus.LOW_STOCK
        return StockStatus.IN_STOCK

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.low_stock_threshold

    def __repr__(self):
        return f"<Product {self.id} {self.name!r} stock={self.stock_quantity}>"


class InventoryMovement(Base):
    """Audit trail for stock changes (one row per adjustment)."""

    __tablename__ = "inventory_movements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    movement_type: Mapped[InventoryMovementType] = mapped_column(
        SAEnum(
            InventoryMovementType,
            values_callable=enum_values,
            name="inventory_movement_type_enum",
        ),
        nullable=False,
    )
    quantity_change: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # Positive = add, negative = subtract
    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "new_stock = previous_stock + quantity_change", name="movement_balances"
        ),
        CheckConstraint("new_stock >= 0", name="movement_non_negative"),
        Index("ix_inventory_movements_created_at", "created_at"),
    )

    product = relationship("Product", back_populates="movements")

    def __repr__(self):
        return f"<InventoryMovement {self.movement_type} qty={self.quantity_change}>"
