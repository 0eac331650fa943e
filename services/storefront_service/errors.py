"""Storefront error taxonomy.

Every error is an HTTPException so service functions can raise them directly
and FastAPI renders them with the right status code.
"""

from typing import Optional

from fastapi import HTTPException, status


class StoreError(HTTPException):
    """Base class for storefront errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Store request failed"

    def __init__(self, detail: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(
            status_code=self.status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class AuthenticationRequired(StoreError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Please sign in to continue"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class AdminRequired(StoreError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Admin privileges required"


class NotFound(StoreError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class OutOfStock(StoreError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Product is out of stock"


class InsufficientStock(StoreError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Not enough stock available"


class InvalidSignature(StoreError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid payment signature"


class ValidationFailure(StoreError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Validation failed"


class PaymentVerificationFailed(StoreError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Payment verification failed"


class StateTransitionInvalid(StoreError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Transition not allowed"


class NoCarrierShipment(StateTransitionInvalid):
    default_detail = "Order has no carrier shipment"


class CheckoutFailed(StoreError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Could not start checkout"


class ExternalServiceFailure(StoreError):
    """Upstream provider failed. Retryable failures are reported as 503."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "External service failed"

    def __init__(self, detail: Optional[str] = None, retryable: bool = False):
        self.retryable = retryable
        if retryable:
            self.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        super().__init__(detail)
