"""Checkout attempts: preconditions, address verification, gateway orders."""

import uuid
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.storefront_service.errors import (
    AuthenticationRequired,
    CheckoutFailed,
    NotFound,
    StateTransitionInvalid,
    ValidationFailure,
)
from services.storefront_service.models import CheckoutAttempt, CheckoutState
from services.storefront_service.postal_client import (
    PostalClient,
    PostalLookup,
    PostalLookupError,
)
from services.storefront_service.razorpay_client import (
    GatewayError,
    GatewayOrder,
    RazorpayClient,
    to_minor_units,
)
from services.storefront_service.schemas import Address, CheckoutDetails
from services.storefront_service.services.cart import list_items, summarize
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

S = CheckoutState
ATTEMPT_TRANSITIONS = {
    S.IDLE: {S.FORM_VALIDATING},
    S.FORM_VALIDATING: {S.SCRIPT_LOADING},
    S.SCRIPT_LOADING: {S.GATEWAY_ORDER_CREATED},
    S.GATEWAY_ORDER_CREATED: {
        S.WIDGET_OPEN,
        S.PAYMENT_SUCCEEDED,
        S.PAYMENT_FAILED,
        S.WIDGET_DISMISSED,
    },
    S.WIDGET_OPEN: {S.PAYMENT_SUCCEEDED, S.PAYMENT_FAILED, S.WIDGET_DISMISSED},
    # The widget lets shoppers retry after a failure or reopen after closing
    S.PAYMENT_FAILED: {S.WIDGET_OPEN, S.PAYMENT_SUCCEEDED, S.WIDGET_DISMISSED},
    S.WIDGET_DISMISSED: {S.WIDGET_OPEN, S.PAYMENT_SUCCEEDED},
    S.PAYMENT_SUCCEEDED: set(),
}


def advance_attempt(attempt: CheckoutAttempt, new_state: CheckoutState) -> None:
    if new_state == attempt.state:
        return
    if new_state not in ATTEMPT_TRANSITIONS[attempt.state]:
        raise StateTransitionInvalid(
            f"Checkout cannot move from {attempt.state.value} to {new_state.value}"
        )
    attempt.state = new_state


# ============================================================================
# FORM VALIDATION
# ============================================================================


def _missing_address_fields(address: Address) -> list[str]:
    return [
        name
        for name in ("address", "pincode")
        if not getattr(address, name).strip()
    ]


def validate_details(details: CheckoutDetails) -> CheckoutDetails:
    """Check required contact/address fields and normalise billing."""
    missing = [
        name
        for name in ("customer_name", "customer_phone")
        if not getattr(details, name).strip()
    ]
    if not details.customer_email:
        missing.append("customer_email")
    missing += [
        f"shipping_address.{name}"
        for name in _missing_address_fields(details.shipping_address)
    ]

    billing = details.billing_address
    if details.billing_same_as_shipping or billing is None:
        billing = details.shipping_address
    else:
        missing += [
            f"billing_address.{name}" for name in _missing_address_fields(billing)
        ]

    if missing:
        raise ValidationFailure(f"Missing required fields: {', '.join(missing)}")

    return details.model_copy(
        update={
            "billing_address": billing,
            "billing_same_as_shipping": billing == details.shipping_address,
        }
    )


def _require_city_state(address: Address, label: str) -> None:
    if not address.city.strip() or not address.state.strip():
        raise ValidationFailure(f"{label} city and state are required")


async def verify_address(
    postal: PostalClient, address: Address, label: str
) -> Address:
    """Resolve the PIN code and fill in blank city/state.

    A not-found code blocks checkout. An unreachable lookup service does not,
    as long as the shopper supplied city and state themselves.
    """
    try:
        lookup: PostalLookup = await postal.lookup(address.pincode)
    except PostalLookupError as e:
        logger.warning(
            "Postal lookup unavailable for %s PIN %s: %s",
            label,
            address.pincode,
            e.message,
        )
        _require_city_state(address, label)
        return address

    if not lookup.found:
        raise ValidationFailure(f"{label} PIN code {address.pincode} was not found")

    return address.model_copy(
        update={
            "city": address.city.strip() or lookup.district or "",
            "state": address.state.strip() or lookup.state or "",
        }
    )


async def prepare_details(
    details: CheckoutDetails, postal: Optional[PostalClient]
) -> CheckoutDetails:
    details = validate_details(details)

    if not get_settings().CHECKOUT_VERIFY_PINCODE or postal is None:
        _require_city_state(details.shipping_address, "Shipping")
        _require_city_state(details.billing_address, "Billing")
        return details

    shipping = await verify_address(postal, details.shipping_address, "Shipping")
    if details.billing_same_as_shipping:
        billing = shipping
    else:
        billing = await verify_address(postal, details.billing_address, "Billing")
    return details.model_copy(
        update={"shipping_address": shipping, "billing_address": billing}
    )


# ============================================================================
# GATEWAY ORDER
# ============================================================================


async def _find_by_idempotency_key(
    db: AsyncSession, user_id: str, key: str
) -> Optional[CheckoutAttempt]:
    result = await db.execute(
        select(CheckoutAttempt).where(
            CheckoutAttempt.user_id == user_id,
            CheckoutAttempt.idempotency_key == key,
        )
    )
    return result.scalar_one_or_none()


def _replay(attempt: CheckoutAttempt, razorpay: RazorpayClient) -> GatewayOrder:
    return GatewayOrder(
        gateway_order_id=attempt.gateway_order_id,
        amount=to_minor_units(attempt.amount),
        currency=attempt.currency,
        receipt=attempt.receipt,
        key_id=razorpay.key_id,
        status="created",
    )


async def start_checkout(
    db: AsyncSession,
    *,
    user: Optional[AuthUser],
    details: CheckoutDetails,
    razorpay: Optional[RazorpayClient],
    postal: Optional[PostalClient],
    idempotency_key: Optional[str] = None,
) -> tuple[CheckoutAttempt, GatewayOrder]:
    """Run checkout preconditions and create the gateway order.

    A failure here leaves the cart untouched. Repeating a call with the same
    idempotency key returns the original attempt and gateway order.
    """
    if user is None:
        raise AuthenticationRequired("Please sign in to check out")
    if razorpay is None:
        raise CheckoutFailed("Payment gateway is not configured")

    if idempotency_key:
        existing = await _find_by_idempotency_key(db, user.user_id, idempotency_key)
        if existing and not existing.gateway_order_id:
            raise CheckoutFailed("Checkout already in progress, please retry")
        if existing:
            logger.info(
                "Idempotent replay of checkout attempt %s (key=%s)",
                existing.id,
                idempotency_key,
            )
            return existing, _replay(existing, razorpay)

    attempt = CheckoutAttempt(
        user_id=user.user_id,
        state=CheckoutState.IDLE,
        receipt=f"rcpt_{uuid.uuid4().hex[:20]}",
        currency=get_settings().STORE_CURRENCY,
        idempotency_key=idempotency_key,
    )

    advance_attempt(attempt, CheckoutState.FORM_VALIDATING)
    cart = summarize(await list_items(db, user.user_id))
    if not cart.items:
        raise ValidationFailure("Your cart is empty")
    details = await prepare_details(details, postal)

    advance_attempt(attempt, CheckoutState.SCRIPT_LOADING)
    attempt.amount = cart.total_price
    db.add(attempt)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if not idempotency_key:
            raise
        existing = await _find_by_idempotency_key(db, user.user_id, idempotency_key)
        if existing and existing.gateway_order_id:
            return existing, _replay(existing, razorpay)
        raise CheckoutFailed("Checkout already in progress, please retry")

    try:
        gateway_order = await razorpay.create_order(
            amount=cart.total_price,
            currency=attempt.currency,
            receipt=attempt.receipt,
            notes={
                "customer_name": details.customer_name,
                "customer_email": str(details.customer_email),
                "checkout_attempt_id": str(attempt.id),
            },
        )
    except GatewayError as e:
        attempt.error = e.message
        # Free the key so the shopper can retry with it
        attempt.idempotency_key = None
        await db.commit()
        logger.error(
            "Gateway order creation failed for attempt %s: %s",
            attempt.id,
            e.message,
            extra={"extra_fields": {"attempt_id": str(attempt.id)}},
        )
        raise CheckoutFailed(f"Could not create payment order: {e.message}") from e

    attempt.gateway_order_id = gateway_order.gateway_order_id
    advance_attempt(attempt, CheckoutState.GATEWAY_ORDER_CREATED)
    await db.commit()

    logger.info(
        "Checkout attempt %s created gateway order %s for %s %s",
        attempt.id,
        gateway_order.gateway_order_id,
        attempt.amount,
        attempt.currency,
    )
    return attempt, gateway_order


async def get_attempt(
    db: AsyncSession, *, user: Optional[AuthUser], attempt_id: uuid.UUID
) -> CheckoutAttempt:
    if user is None:
        raise AuthenticationRequired()
    attempt = await db.get(CheckoutAttempt, attempt_id)
    if attempt is None or attempt.user_id != user.user_id:
        raise NotFound("Checkout attempt not found")
    return attempt


async def record_widget_outcome(
    db: AsyncSession,
    *,
    user: Optional[AuthUser],
    attempt_id: uuid.UUID,
    state: CheckoutState,
    error: Optional[str] = None,
) -> CheckoutAttempt:
    """Record what the payment widget reported (opened, failed, dismissed)."""
    attempt = await get_attempt(db, user=user, attempt_id=attempt_id)
    advance_attempt(attempt, state)
    if error:
        attempt.error = error
    await db.commit()

    if state == CheckoutState.PAYMENT_FAILED:
        logger.warning(
            "Payment failed for checkout attempt %s: %s", attempt.id, error
        )
    return attempt
