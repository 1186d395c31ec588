import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from dropify.db.base import Base


class DiscountType(str, enum.Enum):
    percentage = "percentage"
    fixed_amount = "fixed_amount"


class Owner(Base):
    """A broadcaster account: identity, commerce connection, plan and drop settings."""

    __tablename__ = "owners"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    login: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    twitch_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(120), nullable=True)

    shop_domain: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    shop_admin_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shop_api_version: Mapped[str | None] = mapped_column(String(20), nullable=True)

    plan: Mapped[str | None] = mapped_column(String(40), nullable=True)

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    discount_type: Mapped[DiscountType] = mapped_column(
        Enum(DiscountType, native_enum=False),
        nullable=False,
        default=DiscountType.percentage,
    )
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("10"))
    discount_prefix: Mapped[str] = mapped_column(String(20), nullable=False, default="DROP-")
    max_per_viewer_per_stream: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    global_cooldown_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=120)
    order_min_subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    auto_enable_on_stream_start: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Bumped under the admission lock; see services.ledger.lock_owner.
    admission_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def shop_connected(self) -> bool:
        return bool(self.shop_domain and self.shop_admin_token)
