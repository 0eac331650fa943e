"""Server-side payment verification and post-payment side effects.

Verification records the paid order atomically. Clearing the cart, committing
stock and creating the carrier shipment run afterwards as best-effort steps;
each step's outcome is written to ``Order.side_effects`` so that the worker
can retry failures later.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger
from services.storefront_service.errors import (
    AuthenticationRequired,
    ExternalServiceFailure,
    InvalidSignature,
    PaymentVerificationFailed,
    StoreError,
    ValidationFailure,
)
from services.storefront_service.models import (
    CartItem,
    CheckoutAttempt,
    CheckoutState,
    FulfillmentStatus,
    InventoryMovementType,
    Order,
    OrderEvent,
    OrderItem,
    PaymentStatus,
    SideEffectStatus,
)
from services.storefront_service.postal_client import PostalClient
from services.storefront_service.razorpay_client import RazorpayClient, to_minor_units
from services.storefront_service.schemas import (
    CartLineSnapshot,
    CheckoutDetails,
    VerifyPaymentRequest,
)
from services.storefront_service.services.cart import list_items
from services.storefront_service.services.checkout import (
    advance_attempt,
    prepare_details,
    validate_details,
)
from services.storefront_service.services.fulfillment import create_shipment
from services.storefront_service.services.inventory import adjust_stock
from services.storefront_service.services.orders import get_order
from services.storefront_service.shiprocket_client import (
    CarrierError,
    ShiprocketClient,
)
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

CLEAR_CART = "clear_cart"
COMMIT_STOCK = "commit_stock"
CREATE_SHIPMENT = "create_shipment"
SIDE_EFFECT_STEPS = (CLEAR_CART, COMMIT_STOCK, CREATE_SHIPMENT)


# ============================================================================
# VERIFICATION
# ============================================================================


def _cross_check(
    live_items: list[CartItem],
    submitted: list[CartLineSnapshot],
    submitted_total: Optional[Decimal],
) -> None:
    """Reject snapshots that disagree with the live cart."""
    live = {item.product_id: item for item in live_items}
    submitted_map: dict[int, CartLineSnapshot] = {}
    for line in submitted:
        if line.product_id in submitted_map:
            raise ValidationFailure(f"Product {line.product_id} listed twice")
        submitted_map[line.product_id] = line

    if not submitted_map:
        raise ValidationFailure("Order has no items")
    if set(submitted_map) != set(live):
        raise ValidationFailure("Submitted items do not match your cart")

    for product_id, line in submitted_map.items():
        item = live[product_id]
        if line.quantity != item.quantity or line.price != item.product_price:
            raise ValidationFailure(
                f"Quantity or price for product {product_id} does not match your cart"
            )

    live_total = sum(
        (item.product_price * item.quantity for item in live_items), Decimal("0")
    )
    if submitted_total is not None and submitted_total != live_total:
        raise ValidationFailure("Order total does not match your cart")


async def _existing_order(db: AsyncSession, gateway_order_id: str) -> Optional[Order]:
    order_id = await db.scalar(
        select(Order.id).where(Order.gateway_order_id == gateway_order_id)
    )
    if order_id is None:
        return None
    return await get_order(db, order_id)


async def _attempt_for_payment(
    db: AsyncSession, user: AuthUser, request: VerifyPaymentRequest
) -> CheckoutAttempt:
    """The shopper's checkout attempt that created this gateway order."""
    attempt = await db.scalar(
        select(CheckoutAttempt)
        .where(
            CheckoutAttempt.user_id == user.user_id,
            CheckoutAttempt.gateway_order_id == request.gateway_order_id,
        )
        .order_by(CheckoutAttempt.created_at.desc())
        .limit(1)
    )
    if attempt is None:
        logger.error(
            "No checkout attempt for captured payment %s (gateway order %s)",
            request.gateway_payment_id,
            request.gateway_order_id,
            extra={"extra_fields": {"user_id": user.user_id}},
        )
        raise PaymentVerificationFailed("Checkout attempt not found")
    if request.attempt_id and request.attempt_id != attempt.id:
        raise PaymentVerificationFailed(
            "Payment does not belong to this checkout attempt"
        )
    return attempt


async def _check_captured_amount(
    db: AsyncSession,
    attempt: CheckoutAttempt,
    live_items: list[CartItem],
    request: VerifyPaymentRequest,
) -> None:
    """The cart being ordered must cost what the gateway order charged."""
    cart_total = sum(
        (item.product_price * item.quantity for item in live_items), Decimal("0")
    )
    paid = to_minor_units(attempt.amount)
    due = to_minor_units(cart_total)
    if paid == due:
        return

    logger.error(
        "Captured payment %s covers %d minor units but the cart totals %d "
        "(gateway order %s); refund required",
        request.gateway_payment_id,
        paid,
        due,
        request.gateway_order_id,
        extra={
            "extra_fields": {
                "attempt_id": str(attempt.id),
                "gateway_payment_id": request.gateway_payment_id,
                "paid_minor_units": paid,
                "cart_minor_units": due,
            }
        },
    )
    attempt.error = (
        f"Cart changed after payment {request.gateway_payment_id}: "
        f"paid {paid}, cart {due} (minor units)"
    )
    await db.commit()
    raise PaymentVerificationFailed(
        "Your cart changed after payment; the payment will be refunded"
    )


async def _resolve_details(
    request: VerifyPaymentRequest, postal: Optional[PostalClient]
) -> CheckoutDetails:
    """Validate the submitted form and fill blank city/state from the PIN code."""
    details = validate_details(request.order_details)
    if postal is None:
        return details
    try:
        return await prepare_details(details, postal)
    except ValidationFailure as e:
        # Payment is already captured; keep what the shopper entered
        logger.warning(
            "Address lookup failed while verifying %s: %s",
            request.gateway_order_id,
            e.detail,
        )
        return details


async def verify_payment(
    db: AsyncSession,
    *,
    user: Optional[AuthUser],
    request: VerifyPaymentRequest,
    razorpay: Optional[RazorpayClient],
    shiprocket: Optional[ShiprocketClient],
    postal: Optional[PostalClient] = None,
) -> tuple[Order, bool]:
    """Verify a gateway payment and record the order.

    Returns ``(order, created)``. A replay for a gateway order that already
    produced an order returns that order with ``created=False``.
    """
    if user is None:
        raise AuthenticationRequired()
    if razorpay is None:
        raise ExternalServiceFailure("Payment gateway is not configured")

    if not razorpay.verify_signature(
        request.gateway_order_id, request.gateway_payment_id, request.signature
    ):
        logger.warning(
            "Payment signature mismatch for gateway order %s",
            request.gateway_order_id,
            extra={
                "extra_fields": {
                    "gateway_order_id": request.gateway_order_id,
                    "gateway_payment_id": request.gateway_payment_id,
                    "user_id": user.user_id,
                }
            },
        )
        raise InvalidSignature()

    existing = await _existing_order(db, request.gateway_order_id)
    if existing:
        if existing.user_id != user.user_id:
            raise PaymentVerificationFailed("Payment belongs to another account")
        logger.info(
            "Verification replay for gateway order %s -> order %s",
            request.gateway_order_id,
            existing.id,
        )
        return existing, False

    attempt = await _attempt_for_payment(db, user, request)

    details = await _resolve_details(request, postal)
    live_items = await list_items(db, user.user_id)
    try:
        _cross_check(live_items, request.cart_items, request.total_amount)
    except ValidationFailure:
        logger.error(
            "Cart mismatch after captured payment %s (gateway order %s)",
            request.gateway_payment_id,
            request.gateway_order_id,
            extra={"extra_fields": {"user_id": user.user_id}},
        )
        raise
    await _check_captured_amount(db, attempt, live_items, request)

    order = Order(
        user_id=user.user_id,
        customer_name=details.customer_name.strip(),
        customer_email=str(details.customer_email),
        customer_phone=details.customer_phone.strip(),
        shipping_address=details.shipping_address.model_dump(),
        billing_address=details.billing_address.model_dump(),
        payment_status=PaymentStatus.PAID,
        fulfillment_status=FulfillmentStatus.PENDING,
        gateway_order_id=request.gateway_order_id,
        gateway_payment_id=request.gateway_payment_id,
        side_effects={
            step: {"status": SideEffectStatus.PENDING.value, "attempts": 0}
            for step in SIDE_EFFECT_STEPS
        },
    )
    total = Decimal("0")
    for item in live_items:
        subtotal = item.product_price * item.quantity
        total += subtotal
        order.items.append(
            OrderItem(
                product_id=item.product_id,
                product_name=item.product_name,
                product_price=item.product_price,
                product_image=item.product_image,
                quantity=item.quantity,
                subtotal=subtotal,
                reserved_quantity=item.reserved_quantity,
            )
        )
    order.total_amount = total
    db.add(order)
    await db.flush()

    db.add(
        OrderEvent(
            order_id=order.id,
            status=FulfillmentStatus.PENDING.value,
            note=f"Order placed, payment {request.gateway_payment_id} verified",
        )
    )
    advance_attempt(attempt, CheckoutState.PAYMENT_SUCCEEDED)
    attempt.order_id = order.id

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _existing_order(db, request.gateway_order_id)
        if existing and existing.user_id == user.user_id:
            return existing, False
        raise

    logger.info(
        "Order %s created for payment %s (%d items, total %s)",
        order.id,
        request.gateway_payment_id,
        len(order.items),
        order.total_amount,
        extra={"extra_fields": {"order_id": str(order.id), "user_id": user.user_id}},
    )

    await run_side_effects(db, order_id=order.id, shiprocket=shiprocket)
    return await get_order(db, order.id), True


# ============================================================================
# SIDE EFFECTS
# ============================================================================


def _record(
    order: Order,
    step: str,
    status: SideEffectStatus,
    error: Optional[str] = None,
    retry_minutes: Optional[int] = None,
) -> None:
    # Reassign so the JSON column is flagged dirty
    effects = dict(order.side_effects or {})
    entry = dict(effects.get(step) or {"attempts": 0})
    now = utc_now()
    if status in (SideEffectStatus.DONE, SideEffectStatus.FAILED):
        entry["attempts"] = entry.get("attempts", 0) + 1
    entry["status"] = status.value
    entry["last_error"] = error
    entry["updated_at"] = now.isoformat()
    entry["next_retry_at"] = (
        (now + timedelta(minutes=retry_minutes)).isoformat()
        if status == SideEffectStatus.FAILED and retry_minutes is not None
        else None
    )
    effects[step] = entry
    order.side_effects = effects


async def _clear_cart(db: AsyncSession, order: Order, **_) -> None:
    """Remove the ordered lines; their reservations became the sale."""
    product_ids = [item.product_id for item in order.items if item.product_id]
    await db.execute(
        delete(CartItem).where(
            CartItem.user_id == order.user_id,
            CartItem.product_id.in_(product_ids),
        )
    )
    await db.commit()


async def _commit_stock(db: AsyncSession, order: Order, **_) -> None:
    for item in order.items:
        if item.stock_committed or item.product_id is None:
            continue
        quantity = item.quantity - item.reserved_quantity
        if quantity > 0:
            await adjust_stock(
                db,
                product_id=item.product_id,
                quantity_change=-quantity,
                movement_type=InventoryMovementType.SALE,
                notes=f"Order {order.id} - {item.product_name}",
                commit=False,
            )
        item.stock_committed = True
        await db.commit()


async def _create_shipment(
    db: AsyncSession, order: Order, shiprocket: Optional[ShiprocketClient] = None
) -> None:
    if shiprocket is None:
        raise ExternalServiceFailure("Carrier is not configured")
    await create_shipment(db, order=order, shiprocket=shiprocket)


STEP_HANDLERS = {
    CLEAR_CART: _clear_cart,
    COMMIT_STOCK: _commit_stock,
    CREATE_SHIPMENT: _create_shipment,
}


def _error_text(exc: Exception) -> str:
    if isinstance(exc, StoreError):
        return str(exc.detail)
    if isinstance(exc, CarrierError):
        return exc.message
    return str(exc)


async def _run_step(
    db: AsyncSession,
    order_id,
    step: str,
    shiprocket: Optional[ShiprocketClient],
) -> bool:
    settings = get_settings()
    order = await get_order(db, order_id)
    try:
        await STEP_HANDLERS[step](db, order, shiprocket=shiprocket)
    except (StoreError, CarrierError, SQLAlchemyError) as e:
        await db.rollback()
        error = _error_text(e)
        logger.error(
            "Post-payment step %s failed for order %s: %s",
            step,
            order_id,
            error,
            extra={"extra_fields": {"order_id": str(order_id), "step": step}},
        )
        order = await get_order(db, order_id)
        _record(
            order,
            step,
            SideEffectStatus.FAILED,
            error=error,
            retry_minutes=settings.FULFILLMENT_RETRY_MINUTES,
        )
        await db.commit()
        return False

    order = await get_order(db, order_id)
    _record(order, step, SideEffectStatus.DONE)
    await db.commit()
    return True


async def run_side_effects(
    db: AsyncSession,
    *,
    order_id,
    shiprocket: Optional[ShiprocketClient],
    steps: tuple[str, ...] = SIDE_EFFECT_STEPS,
) -> dict:
    """Run each post-payment step independently. Failures never raise."""
    for step in steps:
        await _run_step(db, order_id, step, shiprocket)
    order = await get_order(db, order_id)
    return order.side_effects


def _pending_steps(order: Order, now: datetime, max_attempts: int) -> list[str]:
    due = []
    for step in SIDE_EFFECT_STEPS:
        entry = (order.side_effects or {}).get(step) or {}
        status = entry.get("status", SideEffectStatus.PENDING.value)
        if status not in (SideEffectStatus.PENDING.value, SideEffectStatus.FAILED.value):
            continue
        if entry.get("attempts", 0) >= max_attempts:
            continue
        next_retry = entry.get("next_retry_at")
        if next_retry and ensure_utc(datetime.fromisoformat(next_retry)) > now:
            continue
        due.append(step)
    return due


def _abandon_exhausted(order: Order, max_attempts: int) -> list[str]:
    abandoned = []
    for step in SIDE_EFFECT_STEPS:
        entry = (order.side_effects or {}).get(step) or {}
        if (
            entry.get("status") == SideEffectStatus.FAILED.value
            and entry.get("attempts", 0) >= max_attempts
        ):
            _record(order, step, SideEffectStatus.ABANDONED, entry.get("last_error"))
            abandoned.append(step)
    return abandoned


async def retry_side_effects(
    db: AsyncSession,
    *,
    shiprocket: Optional[ShiprocketClient],
    now: Optional[datetime] = None,
) -> dict:
    """Retry due post-payment steps on paid orders; abandon exhausted ones."""
    settings = get_settings()
    now = now or utc_now()
    max_attempts = settings.FULFILLMENT_MAX_ATTEMPTS

    result = await db.execute(
        select(Order.id).where(Order.payment_status == PaymentStatus.PAID)
    )
    summary = {"retried": 0, "succeeded": 0, "abandoned": 0}
    for order_id in result.scalars().all():
        order = await get_order(db, order_id)
        if order.fulfillment_status == FulfillmentStatus.CANCELLED:
            continue

        abandoned = _abandon_exhausted(order, max_attempts)
        if abandoned:
            await db.commit()
            summary["abandoned"] += len(abandoned)
            logger.error(
                "Abandoned post-payment steps %s for order %s after %d attempts",
                ", ".join(abandoned),
                order_id,
                max_attempts,
                extra={"extra_fields": {"order_id": str(order_id)}},
            )

        for step in _pending_steps(order, now, max_attempts):
            summary["retried"] += 1
            if await _run_step(db, order_id, step, shiprocket):
                summary["succeeded"] += 1

    return summary
