import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from dropify.db.base import Base
from dropify.models.owner import DiscountType

GLOBAL_CLAIMANT_ID = "__global__"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class DropKind(str, enum.Enum):
    viewer = "viewer"
    global_ = "global"


class DropReservationStatus(str, enum.Enum):
    reserved = "reserved"
    committed = "committed"
    released = "released"


class DropReservation(Base):
    """Admission slot taken before any commerce call.

    `owner_seq` is set when an owner-wide policy (cooldown or a finite quota) applies and
    `claimant_seq` when the claimant cap applies. Both are allocated as max + 1, read before the
    policy checks, so a slot committed after the checks collides on a unique constraint.
    """

    __tablename__ = "drop_reservations"
    __table_args__ = (
        UniqueConstraint("owner_id", "owner_seq", name="uq_drop_reservations_owner_seq"),
        UniqueConstraint("owner_id", "claimant_id", "claimant_seq", name="uq_drop_reservations_claimant_seq"),
        Index("ix_drop_reservations_owner_reserved_at", "owner_id", "reserved_at"),
        Index("ix_drop_reservations_owner_claimant_reserved_at", "owner_id", "claimant_id", "reserved_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("owners.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[DropKind] = mapped_column(Enum(DropKind, native_enum=False, values_callable=_enum_values), nullable=False)
    claimant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_seq: Mapped[int | None] = mapped_column(Integer, nullable=True)
    claimant_seq: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[DropReservationStatus] = mapped_column(
        Enum(DropReservationStatus, native_enum=False),
        nullable=False,
        default=DropReservationStatus.reserved,
    )
    reserved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class Drop(Base):
    __tablename__ = "drops"
    __table_args__ = (
        Index("ix_drops_owner_created_at", "owner_id", "created_at"),
        Index("ix_drops_owner_claimant_created_at", "owner_id", "claimant_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("owners.id", ondelete="CASCADE"), nullable=False
    )
    owner_login: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    reservation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("drop_reservations.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    kind: Mapped[DropKind] = mapped_column(Enum(DropKind, native_enum=False, values_callable=_enum_values), nullable=False, index=True)
    claimant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    claimant_login: Mapped[str] = mapped_column(String(64), nullable=False)
    claimant_display_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    code: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    discount_type: Mapped[DiscountType] = mapped_column(Enum(DiscountType, native_enum=False), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    price_rule_id: Mapped[str] = mapped_column(String(64), nullable=False)
    discount_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
