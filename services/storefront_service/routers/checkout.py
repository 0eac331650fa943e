"""Checkout router: gateway orders, payment verification, postal lookup."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.common.rate_limit import PAYMENT_LIMIT, limiter
from libs.db.session import get_async_db
from services.storefront_service.dependencies import (
    get_postal_client,
    get_razorpay_client,
    get_shiprocket_client,
)
from services.storefront_service.errors import ExternalServiceFailure
from services.storefront_service.models import CheckoutState
from services.storefront_service.postal_client import PostalClient, PostalLookupError
from services.storefront_service.razorpay_client import RazorpayClient
from services.storefront_service.schemas import (
    CheckoutAttemptResponse,
    CheckoutOutcome,
    GatewayOrderRequest,
    GatewayOrderResponse,
    PostalLookupResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from services.storefront_service.services import checkout as checkout_ops
from services.storefront_service.services.payment_verification import verify_payment
from services.storefront_service.shiprocket_client import ShiprocketClient
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["storefront-checkout"])


@router.post("/checkout/gateway-order", response_model=GatewayOrderResponse)
@limiter.limit(PAYMENT_LIMIT)
async def create_gateway_order(
    request: Request,
    payload: GatewayOrderRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
    razorpay: Optional[RazorpayClient] = Depends(get_razorpay_client),
    postal: PostalClient = Depends(get_postal_client),
):
    """
    Validate the checkout form and create a payment gateway order.

    The cart is never modified here. Send an `Idempotency-Key` header to make
    retries safe.
    """
    attempt, gateway_order = await checkout_ops.start_checkout(
        db,
        user=current_user,
        details=payload,
        razorpay=razorpay,
        postal=postal,
        idempotency_key=idempotency_key,
    )
    return GatewayOrderResponse(
        attempt_id=attempt.id,
        state=attempt.state,
        gateway_order_id=gateway_order.gateway_order_id,
        key_id=gateway_order.key_id,
        amount=gateway_order.amount,
        currency=gateway_order.currency,
        receipt=gateway_order.receipt,
    )


@router.post("/checkout/verify", response_model=VerifyPaymentResponse)
@limiter.limit(PAYMENT_LIMIT)
async def verify_checkout_payment(
    request: Request,
    payload: VerifyPaymentRequest,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
    razorpay: Optional[RazorpayClient] = Depends(get_razorpay_client),
    shiprocket: Optional[ShiprocketClient] = Depends(get_shiprocket_client),
    postal: PostalClient = Depends(get_postal_client),
):
    """Verify the gateway signature and record the paid order."""
    order, created = await verify_payment(
        db,
        user=current_user,
        request=payload,
        razorpay=razorpay,
        shiprocket=shiprocket,
        postal=postal,
    )
    return VerifyPaymentResponse(
        success=True,
        order_id=order.id,
        payment_verified=True,
        message=(
            "Payment verified and order created"
            if created
            else "Payment already verified"
        ),
    )


@router.get("/checkout/{attempt_id}", response_model=CheckoutAttemptResponse)
async def get_checkout_attempt(
    attempt_id: uuid.UUID,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await checkout_ops.get_attempt(db, user=current_user, attempt_id=attempt_id)


@router.post("/checkout/{attempt_id}/opened", response_model=CheckoutAttemptResponse)
async def checkout_widget_opened(
    attempt_id: uuid.UUID,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await checkout_ops.record_widget_outcome(
        db,
        user=current_user,
        attempt_id=attempt_id,
        state=CheckoutState.WIDGET_OPEN,
    )


@router.post("/checkout/{attempt_id}/failed", response_model=CheckoutAttemptResponse)
async def checkout_payment_failed(
    attempt_id: uuid.UUID,
    payload: CheckoutOutcome,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await checkout_ops.record_widget_outcome(
        db,
        user=current_user,
        attempt_id=attempt_id,
        state=CheckoutState.PAYMENT_FAILED,
        error=payload.error,
    )


@router.post(
    "/checkout/{attempt_id}/dismissed", response_model=CheckoutAttemptResponse
)
async def checkout_widget_dismissed(
    attempt_id: uuid.UUID,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await checkout_ops.record_widget_outcome(
        db,
        user=current_user,
        attempt_id=attempt_id,
        state=CheckoutState.WIDGET_DISMISSED,
    )


@router.get("/postal/{code}", response_model=PostalLookupResponse)
async def lookup_postal_code(
    code: str,
    postal: PostalClient = Depends(get_postal_client),
):
    """Resolve a PIN code for address auto-fill."""
    try:
        result = await postal.lookup(code)
    except PostalLookupError as e:
        raise ExternalServiceFailure(
            "Postal lookup is unavailable", retryable=True
        ) from e
    return PostalLookupResponse(
        pincode=result.pincode,
        found=result.found,
        post_office=result.post_office,
        district=result.district,
        state=result.state,
    )
