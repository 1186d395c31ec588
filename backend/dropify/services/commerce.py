from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import httpx

from dropify.core.config import settings
from dropify.models.owner import DiscountType, Owner

logger = logging.getLogger(__name__)


class CommerceError(Exception):
    """The commerce platform was unreachable, refused the request or answered with malformed data."""


class PricingRuleError(CommerceError):
    pass


class DiscountCodeError(CommerceError):
    """Raised after the pricing rule exists; the rule is left behind and expires on its own."""

    def __init__(self, message: str, *, rule_id: str) -> None:
        super().__init__(message)
        self.rule_id = rule_id


@dataclass(frozen=True)
class ShopConnection:
    domain: str
    admin_token: str
    api_version: str

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}/admin/api/{self.api_version}"

    @classmethod
    def for_owner(cls, owner: Owner) -> ShopConnection | None:
        if not owner.shop_connected:
            return None
        return cls(
            domain=str(owner.shop_domain),
            admin_token=str(owner.shop_admin_token),
            api_version=(owner.shop_api_version or settings.default_shop_api_version),
        )


@dataclass(frozen=True)
class PricingRuleSpec:
    discount_type: DiscountType
    discount_value: Decimal
    usage_limit: int | None
    duration_minutes: int
    min_subtotal: Decimal = Decimal("0")


def _format_value(discount_type: DiscountType, value: Decimal) -> str:
    amount = Decimal(value)
    if discount_type == DiscountType.percentage:
        # -10.0 = 10% off
        return f"-{amount.normalize():f}" if amount != amount.to_integral_value() else f"-{int(amount)}.0"
    # -10 = 10 off in store currency
    return f"-{amount.normalize():f}"


def build_price_rule_payload(spec: PricingRuleSpec, *, now: datetime) -> dict[str, Any]:
    starts_at = now - timedelta(seconds=1)
    ends_at = now + timedelta(minutes=int(spec.duration_minutes))
    rule: dict[str, Any] = {
        "title": f"Dropify {int(now.timestamp() * 1000)}",
        "target_type": "line_item",
        "target_selection": "all",
        "allocation_method": "across",
        "value_type": spec.discount_type.value,
        "value": _format_value(spec.discount_type, spec.discount_value),
        "customer_selection": "all",
        "usage_limit": spec.usage_limit,
        "once_per_customer": False,
        "starts_at": starts_at.isoformat(),
        "ends_at": ends_at.isoformat(),
    }
    if spec.min_subtotal and Decimal(spec.min_subtotal) > 0:
        rule["prerequisite_subtotal_range"] = {"greater_than_or_equal_to": f"{Decimal(spec.min_subtotal):f}"}
    return {"price_rule": rule}


def _extract_id(data: Any, key: str) -> str | None:
    if not isinstance(data, dict):
        return None
    node = data.get(key)
    if not isinstance(node, dict):
        return None
    raw = node.get("id")
    if raw is None or isinstance(raw, bool) or str(raw).strip() == "":
        return None
    return str(raw)


class ShopifyAdapter:
    """Shopify Admin REST calls used by drop issuance. Each call is bounded by `timeout`."""

    def __init__(self, *, timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.timeout = float(timeout if timeout is not None else settings.commerce_timeout_seconds)
        self._transport = transport

    def _client(self, connection: ShopConnection) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=connection.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "X-Shopify-Access-Token": connection.admin_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    async def _post(self, connection: ShopConnection, path: str, payload: dict[str, Any]) -> Any:
        async with self._client(connection) as client:
            resp = await client.post(path, json=payload)
            resp.raise_for_status()
            return resp.json()

    async def create_pricing_rule(self, connection: ShopConnection, spec: PricingRuleSpec) -> str:
        payload = build_price_rule_payload(spec, now=datetime.now(timezone.utc))
        try:
            data = await self._post(connection, "/price_rules.json", payload)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "shopify_price_rule_failed",
                extra={"shop_domain": connection.domain, "error": _describe(exc)},
            )
            raise PricingRuleError("Shopify price rule request failed") from exc

        rule_id = _extract_id(data, "price_rule")
        if rule_id is None:
            logger.warning("shopify_price_rule_malformed", extra={"shop_domain": connection.domain})
            raise PricingRuleError("Shopify price rule response missing id")
        return rule_id

    async def attach_discount_code(self, connection: ShopConnection, rule_id: str, code: str) -> str:
        try:
            data = await self._post(
                connection,
                f"/price_rules/{rule_id}/discount_codes.json",
                {"discount_code": {"code": code}},
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "shopify_discount_code_failed",
                extra={"shop_domain": connection.domain, "price_rule_id": rule_id, "error": _describe(exc)},
            )
            raise DiscountCodeError("Shopify discount code request failed", rule_id=rule_id) from exc

        discount_id = _extract_id(data, "discount_code")
        if discount_id is None:
            logger.warning(
                "shopify_discount_code_malformed",
                extra={"shop_domain": connection.domain, "price_rule_id": rule_id},
            )
            raise DiscountCodeError("Shopify discount code response missing id", rule_id=rule_id)
        return discount_id


def _describe(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        # Shopify reports duplicate codes as 422 with a JSON errors body.
        return f"status={exc.response.status_code} body={exc.response.text[:300]}"
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    return type(exc).__name__
