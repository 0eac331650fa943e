"""Admin return-request router."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.storefront_service.dependencies import (
    get_shiprocket_client,
    require_store_admin,
)
from services.storefront_service.models import ReturnStatus
from services.storefront_service.schemas import (
    ReturnRejectRequest,
    ReturnRequestResponse,
)
from services.storefront_service.services import returns as return_ops
from services.storefront_service.shiprocket_client import ShiprocketClient
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/returns", tags=["admin-storefront"])


@router.get("", response_model=list[ReturnRequestResponse])
async def list_return_requests(
    status: Optional[ReturnStatus] = None,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await return_ops.list_returns(db, status=status)


@router.get("/{return_id}", response_model=ReturnRequestResponse)
async def get_return_request(
    return_id: uuid.UUID,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await return_ops.get_return_request(db, return_id)


@router.post("/{return_id}/approve", response_model=ReturnRequestResponse)
async def approve_return(
    return_id: uuid.UUID,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await return_ops.approve_return(db, return_id=return_id)


@router.post("/{return_id}/reject", response_model=ReturnRequestResponse)
async def reject_return(
    return_id: uuid.UUID,
    payload: ReturnRejectRequest,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Reject a pending return. A reason is required and shown to the customer."""
    return await return_ops.reject_return(
        db, return_id=return_id, reason=payload.reason
    )


@router.post("/{return_id}/ship", response_model=ReturnRequestResponse)
async def create_return_shipment(
    return_id: uuid.UUID,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
    shiprocket: Optional[ShiprocketClient] = Depends(get_shiprocket_client),
):
    """Book the reverse pickup with the carrier for an approved return."""
    return await return_ops.create_return_shipment(
        db, return_id=return_id, shiprocket=shiprocket
    )


@router.post("/{return_id}/received", response_model=ReturnRequestResponse)
async def mark_return_received(
    return_id: uuid.UUID,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await return_ops.mark_returned(db, return_id=return_id)


@router.post("/{return_id}/refunded", response_model=ReturnRequestResponse)
async def mark_return_refunded(
    return_id: uuid.UUID,
    current_user: AuthUser = Depends(require_store_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await return_ops.mark_refunded(db, return_id=return_id)
