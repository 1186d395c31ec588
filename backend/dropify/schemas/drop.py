from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from dropify.models.drop import DropKind
from dropify.models.owner import DiscountType


class ViewerClaimRequest(BaseModel):
    viewer_id: str = Field(min_length=1, max_length=64)
    viewer_login: str = Field(min_length=1, max_length=64)
    viewer_display_name: str | None = Field(default=None, max_length=120)


class GlobalDropRequest(BaseModel):
    percent: int = Field(ge=1, le=50, strict=True)


class DropIssuedResponse(BaseModel):
    ok: bool = True
    drop_id: UUID
    kind: DropKind
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    cooldown_seconds: int
    max_per_viewer_per_stream: int | None = None


class DropRejectedResponse(BaseModel):
    ok: bool = False
    reason: str
    retry_after_seconds: int | None = None
    used: int | None = None
    limit: int | None = None
    plan: str | None = None
    max_per_viewer_per_stream: int | None = None


class DropRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: DropKind
    claimant_login: str
    claimant_display_name: str | None = None
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    created_at: datetime


class RecentDropsResponse(BaseModel):
    ok: bool = True
    login: str
    drops: list[DropRead]
