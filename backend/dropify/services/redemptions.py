from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.core import metrics
from dropify.core.config import settings
from dropify.models.owner import Owner
from dropify.models.redemption import Redemption
from dropify.services import owners as owners_service

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    pass


def verify_webhook_signature(body: bytes, signature: str | None, *, secret: str | None = None) -> None:
    """Check `X-Shopify-Hmac-Sha256` (base64 HMAC-SHA256 of the raw body).

    Skipped when no webhook secret is configured.
    """
    key = secret if secret is not None else settings.shopify_webhook_secret
    if not key:
        return
    if not signature:
        raise WebhookSignatureError("Missing webhook signature")
    digest = hmac.new(key.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    if not hmac.compare_digest(expected, signature.strip()):
        raise WebhookSignatureError("Invalid webhook signature")


def _text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


async def _existing(session: AsyncSession, shop_domain: str, order_id: str) -> Redemption | None:
    return (
        await session.execute(
            select(Redemption).where(Redemption.shop_domain == shop_domain, Redemption.order_id == order_id)
        )
    ).scalar_one_or_none()


async def record_order_redemption(
    session: AsyncSession, *, shop_domain: str | None, payload: dict[str, Any]
) -> Redemption | None:
    """Store the first discount code of an order event. Returns None when the order used no code.

    Repeated deliveries of the same order return the stored row.
    """
    codes = payload.get("discount_codes") or []
    if not isinstance(codes, list) or not codes:
        logger.info("order_webhook_skipped", extra={"shop_domain": shop_domain, "reason": "no_discount_codes"})
        return None
    order_id = _text(payload.get("id"))
    if order_id is None:
        raise ValueError("Order payload is missing an id")

    domain = (shop_domain or "").strip().lower()
    existing = await _existing(session, domain, order_id)
    if existing is not None:
        return existing

    first = codes[0] if isinstance(codes[0], dict) else {"code": codes[0]}
    customer = payload.get("customer") if isinstance(payload.get("customer"), dict) else {}
    owner = await owners_service.get_owner_by_shop_domain(session, domain)

    redemption = Redemption(
        owner_id=owner.id if owner else None,
        owner_login=owner.login if owner else None,
        shop_domain=domain,
        order_id=order_id,
        order_number=_text(payload.get("order_number") or payload.get("name")),
        discount_code=_text(first.get("code")),
        discount_amount=_text(first.get("amount")),
        discount_type=_text(first.get("type")) or "unknown",
        customer_email=_text(payload.get("email") or customer.get("email")),
        customer_id=_text(customer.get("id")),
        raw_order=payload,
    )
    session.add(redemption)
    try:
        await session.commit()
    except IntegrityError:
        # Concurrent delivery of the same order.
        await session.rollback()
        existing = await _existing(session, domain, order_id)
        if existing is None:
            raise
        return existing
    await session.refresh(redemption)

    metrics.record_redemption()
    logger.info(
        "order_redemption_recorded",
        extra={
            "shop_domain": domain,
            "order_id": order_id,
            "owner_login": redemption.owner_login,
            "discount_code": redemption.discount_code,
        },
    )
    return redemption


async def list_redemptions(
    session: AsyncSession, *, owner: Owner, limit: int = 20, page: int = 1
) -> tuple[list[Redemption], int]:
    limit = max(1, min(int(limit), 100))
    page = max(1, int(page))
    total = int(
        (await session.execute(select(func.count()).select_from(Redemption).where(Redemption.owner_id == owner.id)))
        .scalar_one()
        or 0
    )
    rows = (
        await session.execute(
            select(Redemption)
            .where(Redemption.owner_id == owner.id)
            .order_by(Redemption.created_at.desc(), Redemption.order_id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars()
    return list(rows.all()), total
