from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class RedemptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: str
    order_number: str | None = None
    discount_code: str | None = None
    discount_amount: str | None = None
    discount_type: str | None = None
    customer_email: str | None = None
    customer_id: str | None = None
    shop_domain: str
    created_at: datetime


class PaginationMeta(BaseModel):
    total_items: int
    total_pages: int
    page: int
    limit: int


class RedemptionListResponse(BaseModel):
    login: str
    items: list[RedemptionRead]
    meta: PaginationMeta


class OrderWebhookAck(BaseModel):
    received: bool = True
    recorded: bool
    redemption_id: UUID | None = None
