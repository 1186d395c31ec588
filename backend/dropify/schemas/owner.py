from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dropify.models.owner import DiscountType


class OwnerSettingsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enabled: bool
    discount_type: DiscountType
    discount_value: Decimal
    discount_prefix: str
    max_per_viewer_per_stream: int
    global_cooldown_seconds: int
    order_min_subtotal: Decimal
    auto_enable_on_stream_start: bool


class OwnerSettingsUpdate(BaseModel):
    """Partial settings update; fields left out keep their stored value."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool | None = None
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    discount_prefix: str | None = Field(default=None, max_length=20)
    max_per_viewer_per_stream: int | None = Field(default=None, ge=0, le=1000)
    global_cooldown_seconds: int | None = Field(default=None, ge=0, le=86400)
    order_min_subtotal: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    auto_enable_on_stream_start: bool | None = None

    @field_validator("discount_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip().upper()
        return cleaned or "DROP-"


class OwnerSettingsResponse(BaseModel):
    ok: bool = True
    login: str
    settings: OwnerSettingsRead


class ShopConnectionUpdate(BaseModel):
    """Empty strings clear a field."""

    model_config = ConfigDict(extra="forbid")

    shop_domain: str | None = Field(default=None, max_length=255)
    shop_admin_token: str | None = Field(default=None, max_length=255)
    shop_api_version: str | None = Field(default=None, max_length=20, pattern=r"^(\d{4}-\d{2})?$")

    @field_validator("shop_domain")
    @classmethod
    def _normalize_domain(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip().lower()
        for scheme in ("https://", "http://"):
            if cleaned.startswith(scheme):
                cleaned = cleaned[len(scheme):]
        return cleaned.rstrip("/")


class ShopConnectionRead(BaseModel):
    login: str
    shop_domain: str | None
    shop_connected: bool


class ShopConnectionResponse(BaseModel):
    ok: bool = True
    owner: ShopConnectionRead


class ChannelListResponse(BaseModel):
    ok: bool = True
    channels: list[str]
