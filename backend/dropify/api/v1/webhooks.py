import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.db.session import get_session
from dropify.schemas.redemption import OrderWebhookAck
from dropify.services import redemptions as redemptions_service

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/shopify/orders", response_model=OrderWebhookAck)
async def shopify_order_created(
    request: Request,
    x_shopify_shop_domain: str | None = Header(default=None),
    x_shopify_hmac_sha256: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> OrderWebhookAck:
    body = await request.body()
    try:
        redemptions_service.verify_webhook_signature(body, x_shopify_hmac_sha256)
    except redemptions_service.WebhookSignatureError as exc:
        logger.warning("order_webhook_rejected", extra={"shop_domain": x_shopify_shop_domain, "error": str(exc)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    try:
        payload = json.loads(body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid order payload")

    try:
        redemption = await redemptions_service.record_order_redemption(
            session, shop_domain=x_shopify_shop_domain, payload=payload
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if redemption is None:
        return OrderWebhookAck(recorded=False)
    return OrderWebhookAck(recorded=True, redemption_id=redemption.id)
