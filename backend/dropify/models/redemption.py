import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from dropify.db.base import Base


class Redemption(Base):
    __tablename__ = "redemptions"
    __table_args__ = (UniqueConstraint("shop_domain", "order_id", name="uq_redemptions_shop_order"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("owners.id", ondelete="SET NULL"), nullable=True, index=True
    )
    owner_login: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    shop_domain: Mapped[str] = mapped_column(String(255), nullable=False)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    order_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    discount_code: Mapped[str | None] = mapped_column(String(80), nullable=True)
    # Shopify sends amounts as strings ("10.00").
    discount_amount: Mapped[str | None] = mapped_column(String(32), nullable=True)
    discount_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    raw_order: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
