"""Carrier webhook router."""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.rate_limit import WEBHOOK_LIMIT, limiter
from libs.db.session import get_async_db
from services.storefront_service.schemas import CarrierWebhookPayload, WebhookAck
from services.storefront_service.services.fulfillment import handle_carrier_webhook
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/webhooks", tags=["storefront-webhooks"])
logger = get_logger(__name__)


def _verify_token(token: Optional[str]) -> bool:
    expected = get_settings().SHIPROCKET_WEBHOOK_TOKEN
    if not expected:
        return True
    return hmac.compare_digest(expected.encode(), (token or "").encode())


@router.post("/shiprocket", response_model=WebhookAck)
@limiter.limit(WEBHOOK_LIMIT)
async def shiprocket_webhook(
    request: Request,
    payload: CarrierWebhookPayload,
    x_api_key: Optional[str] = Header(None, alias="x-api-key"),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Shiprocket tracking webhook (no user auth; checked against the shared
    token when SHIPROCKET_WEBHOOK_TOKEN is set).
    """
    if not _verify_token(x_api_key):
        logger.warning("Rejected carrier webhook with bad token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook token"
        )

    message = await handle_carrier_webhook(db, payload=payload)
    return WebhookAck(success=True, message=message)
