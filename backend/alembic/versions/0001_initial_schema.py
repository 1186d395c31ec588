"""initial schema: owners, drop ledger, drops, redemptions

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None

discount_type = sa.Enum("percentage", "fixed_amount", name="discounttype", native_enum=False)
drop_kind = sa.Enum("viewer", "global", name="dropkind", native_enum=False)
reservation_status = sa.Enum("reserved", "committed", "released", name="dropreservationstatus", native_enum=False)


def upgrade() -> None:
    op.create_table(
        "owners",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("login", sa.String(length=64), nullable=False),
        sa.Column("twitch_id", sa.String(length=64), nullable=True),
        sa.Column("display_name", sa.String(length=120), nullable=True),
        sa.Column("shop_domain", sa.String(length=255), nullable=True),
        sa.Column("shop_admin_token", sa.String(length=255), nullable=True),
        sa.Column("shop_api_version", sa.String(length=20), nullable=True),
        sa.Column("plan", sa.String(length=40), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("discount_type", discount_type, nullable=False, server_default="percentage"),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=False, server_default="10"),
        sa.Column("discount_prefix", sa.String(length=20), nullable=False, server_default="DROP-"),
        sa.Column("max_per_viewer_per_stream", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("global_cooldown_seconds", sa.Integer(), nullable=False, server_default="120"),
        sa.Column("order_min_subtotal", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("auto_enable_on_stream_start", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("admission_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("twitch_id", name="uq_owners_twitch_id"),
    )
    op.create_index("ix_owners_login", "owners", ["login"], unique=True)
    op.create_index("ix_owners_shop_domain", "owners", ["shop_domain"])

    op.create_table(
        "drop_reservations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "owner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("owners.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("kind", drop_kind, nullable=False),
        sa.Column("claimant_id", sa.String(length=64), nullable=False),
        sa.Column("owner_seq", sa.Integer(), nullable=True),
        sa.Column("claimant_seq", sa.Integer(), nullable=True),
        sa.Column("status", reservation_status, nullable=False, server_default="reserved"),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("owner_id", "owner_seq", name="uq_drop_reservations_owner_seq"),
        sa.UniqueConstraint("owner_id", "claimant_id", "claimant_seq", name="uq_drop_reservations_claimant_seq"),
    )
    op.create_index("ix_drop_reservations_owner_reserved_at", "drop_reservations", ["owner_id", "reserved_at"])
    op.create_index(
        "ix_drop_reservations_owner_claimant_reserved_at",
        "drop_reservations",
        ["owner_id", "claimant_id", "reserved_at"],
    )
    op.create_index("ix_drop_reservations_expires_at", "drop_reservations", ["expires_at"])

    op.create_table(
        "drops",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "owner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("owners.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("owner_login", sa.String(length=64), nullable=False),
        sa.Column(
            "reservation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("drop_reservations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("kind", drop_kind, nullable=False),
        sa.Column("claimant_id", sa.String(length=64), nullable=False),
        sa.Column("claimant_login", sa.String(length=64), nullable=False),
        sa.Column("claimant_display_name", sa.String(length=120), nullable=True),
        sa.Column("code", sa.String(length=80), nullable=False),
        sa.Column("discount_type", discount_type, nullable=False),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("price_rule_id", sa.String(length=64), nullable=False),
        sa.Column("discount_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("reservation_id", name="uq_drops_reservation_id"),
    )
    op.create_index("ix_drops_owner_login", "drops", ["owner_login"])
    op.create_index("ix_drops_kind", "drops", ["kind"])
    op.create_index("ix_drops_code", "drops", ["code"])
    op.create_index("ix_drops_owner_created_at", "drops", ["owner_id", "created_at"])
    op.create_index("ix_drops_owner_claimant_created_at", "drops", ["owner_id", "claimant_id", "created_at"])

    op.create_table(
        "redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "owner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("owners.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("owner_login", sa.String(length=64), nullable=True),
        sa.Column("shop_domain", sa.String(length=255), nullable=False),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("order_number", sa.String(length=64), nullable=True),
        sa.Column("discount_code", sa.String(length=80), nullable=True),
        sa.Column("discount_amount", sa.String(length=32), nullable=True),
        sa.Column("discount_type", sa.String(length=32), nullable=True),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("customer_id", sa.String(length=64), nullable=True),
        sa.Column("raw_order", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("shop_domain", "order_id", name="uq_redemptions_shop_order"),
    )
    op.create_index("ix_redemptions_owner_id", "redemptions", ["owner_id"])
    op.create_index("ix_redemptions_owner_login", "redemptions", ["owner_login"])


def downgrade() -> None:
    op.drop_index("ix_redemptions_owner_login", table_name="redemptions")
    op.drop_index("ix_redemptions_owner_id", table_name="redemptions")
    op.drop_table("redemptions")
    op.drop_index("ix_drops_owner_claimant_created_at", table_name="drops")
    op.drop_index("ix_drops_owner_created_at", table_name="drops")
    op.drop_index("ix_drops_code", table_name="drops")
    op.drop_index("ix_drops_kind", table_name="drops")
    op.drop_index("ix_drops_owner_login", table_name="drops")
    op.drop_table("drops")
    op.drop_index("ix_drop_reservations_expires_at", table_name="drop_reservations")
    op.drop_index("ix_drop_reservations_owner_claimant_reserved_at", table_name="drop_reservations")
    op.drop_index("ix_drop_reservations_owner_reserved_at", table_name="drop_reservations")
    op.drop_table("drop_reservations")
    op.drop_index("ix_owners_shop_domain", table_name="owners")
    op.drop_index("ix_owners_login", table_name="owners")
    op.drop_table("owners")
