"""Pydantic schemas for storefront service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from services.storefront_service.models import (
    CheckoutState,
    FulfillmentStatus,
    InventoryMovementType,
    PaymentStatus,
    ReturnReason,
    ReturnStatus,
    StockStatus,
)
from services.storefront_service.models.catalog import MAX_PRODUCT_IMAGES

# ============================================================================
# PRODUCT SCHEMAS
# ============================================================================


class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    original_price: Optional[Decimal] = Field(None, ge=0)
    image_url: Optional[str] = None
    images: list[str] = Field(default_factory=list, max_length=MAX_PRODUCT_IMAGES)
    low_stock_threshold: int = Field(5, ge=0)
    is_featured: bool = False
    is_active: bool = True

    weight_grams: Optional[int] = Field(None, gt=0)
    length_cm: Optional[int] = Field(None, gt=0)
    width_cm: Optional[int] = Field(None, gt=0)
    height_cm: Optional[int] = Field(None, gt=0)
    hsn: Optional[str] = Field(None, max_length=20)


class ProductCreate(ProductBase):
    # Opening stock is recorded as a restock movement
    stock_quantity: int = Field(0, ge=0)


class ProductUpdate(BaseModel):
    """Partial update. Stock is changed through the stock endpoint only."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    original_price: Optional[Decimal] = Field(None, ge=0)
    image_url: Optional[str] = None
    images: Optional[list[str]] = Field(None, max_length=MAX_PRODUCT_IMAGES)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None
    weight_grams: Optional[int] = Field(None, gt=0)
    length_cm: Optional[int] = Field(None, gt=0)
    width_cm: Optional[int] = Field(None, gt=0)
    height_cm: Optional[int] = Field(None, gt=0)
    hsn: Optional[str] = Field(None, max_length=20)


class ProductResponse(ProductBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    stock_quantity: int
    stock_status: StockStatus
    rating: Decimal
    review_count: int
    created_at: datetime
    updated_at: datetime


# ============================================================================
# INVENTORY SCHEMAS
# ============================================================================


class StockAdjustment(BaseModel):
    quantity_change: int = Field(..., description="Positive to add, negative to remove")
    movement_type: InventoryMovementType = InventoryMovementType.ADJUSTMENT
    notes: Optional[str] = Field(None, max_length=500)


class InventoryMovementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: int
    movement_type: InventoryMovementType
    quantity_change: int
    previous_stock: int
    new_stock: int
    notes: Optional[str]
    performed_by: Optional[str]
    created_at: datetime


class StockAdjustmentResponse(BaseModel):
    product: ProductResponse
    movement: InventoryMovementResponse


class InventoryOverview(BaseModel):
    product_count: int
    total_units: int
    low_stock_count: int
    out_of_stock_count: int
    stock_value: Decimal


# ============================================================================
# CART / WISHLIST SCHEMAS
# ============================================================================


class CartItemAdd(BaseModel):
    product_id: int


class CartItemUpdate(BaseModel):
    quantity: int


class CartItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: int
    product_name: str
    product_price: Decimal
    product_image: Optional[str]
    quantity: int
    reserved_quantity: int
    line_total: Decimal


class CartResponse(BaseModel):
    items: list[CartItemResponse] = []
    item_count: int = 0
    total_price: Decimal = Decimal("0")


class WishlistItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: int
    created_at: datetime
    product: Optional[ProductResponse] = None


class WishlistAddRequest(BaseModel):
    product_id: int


class WishlistAddResponse(BaseModel):
    product_id: int
    added: bool


class WishlistCheckResponse(BaseModel):
    product_id: int
    in_wishlist: bool


# ============================================================================
# CHECKOUT SCHEMAS
# ============================================================================


class Address(BaseModel):
    """Postal address. City/state may be left blank and filled from the PIN code."""

    address: str = ""
    address_2: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    country: str = "India"
    phone: Optional[str] = None


class CheckoutDetails(BaseModel):
    customer_name: str = ""
    customer_email: Optional[EmailStr] = None
    customer_phone: str = ""
    shipping_address: Address = Field(default_factory=Address)
    billing_same_as_shipping: bool = True
    billing_address: Optional[Address] = None


class GatewayOrderRequest(CheckoutDetails):
    pass


class GatewayOrderResponse(BaseModel):
    attempt_id: uuid.UUID
    state: CheckoutState
    gateway_order_id: str
    key_id: str
    amount: int  # minor units
    currency: str
    receipt: str


class CartLineSnapshot(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    price: Decimal = Field(..., ge=0)
    name: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    attempt_id: Optional[uuid.UUID] = None
    gateway_order_id: str
    gateway_payment_id: str
    signature: str
    order_details: CheckoutDetails
    cart_items: list[CartLineSnapshot]
    total_amount: Optional[Decimal] = None


class VerifyPaymentResponse(BaseModel):
    success: bool
    order_id: uuid.UUID
    payment_verified: bool
    message: str


class CheckoutOutcome(BaseModel):
    error: Optional[str] = Field(None, max_length=1000)


class CheckoutAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    state: CheckoutState
    receipt: str
    amount: Decimal
    currency: str
    gateway_order_id: Optional[str]
    order_id: Optional[uuid.UUID]
    error: Optional[str]
    created_at: datetime
    updated_at: datetime


class PostalLookupResponse(BaseModel):
    pincode: str
    found: bool
    post_office: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: Optional[int]
    product_name: str
    product_price: Decimal
    product_image: Optional[str]
    quantity: int
    subtotal: Decimal


class OrderEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: str
    note: Optional[str]
    created_at: datetime


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    customer_name: str
    customer_email: str
    customer_phone: str
    shipping_address: dict
    billing_address: dict
    address_snapshot: Optional[dict]
    total_amount: Decimal
    payment_status: PaymentStatus
    fulfillment_status: FulfillmentStatus
    gateway_order_id: str
    shiprocket_order_id: Optional[str]
    awb: Optional[str]
    courier: Optional[str]
    tracking_url: Optional[str]
    label_url: Optional[str]
    shipped_at: Optional[datetime]
    delivered_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    items: list[OrderItemResponse] = []


class OrderDetailResponse(OrderResponse):
    events: list[OrderEventResponse] = []


class AdminOrderResponse(OrderDetailResponse):
    side_effects: dict = {}


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    total: int


class FulfillmentStatusUpdate(BaseModel):
    fulfillment_status: FulfillmentStatus
    note: Optional[str] = Field(None, max_length=500)


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# ============================================================================
# RETURN SCHEMAS
# ============================================================================


class ReturnRequestCreate(BaseModel):
    reason: ReturnReason
    description: Optional[str] = Field(None, max_length=2000)
    pickup_address: Optional[Address] = None


class ReturnRejectRequest(BaseModel):
    reason: str = ""


class ReturnRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    user_id: str
    reason: ReturnReason
    description: Optional[str]
    pickup_address: dict
    status: ReturnStatus
    approved_at: Optional[datetime]
    rejected_at: Optional[datetime]
    returned_at: Optional[datetime]
    refunded_at: Optional[datetime]
    return_shipment_id: Optional[str]
    return_awb: Optional[str]
    created_at: datetime
    updated_at: datetime


# ============================================================================
# CARRIER WEBHOOK SCHEMAS
# ============================================================================


class CarrierTrackingEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: str
    status_code: Optional[int] = None
    status_date: Optional[str] = None
    status_location: Optional[str] = None


class CarrierWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    order_id: Union[int, str]
    status: Optional[str] = None
    status_code: Optional[int] = None
    awb_code: Optional[Union[int, str]] = None
    courier_name: Optional[str] = None
    tracking_data: list[CarrierTrackingEntry] = []


class WebhookAck(BaseModel):
    success: bool = True
    message: str
