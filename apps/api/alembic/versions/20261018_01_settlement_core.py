"""Settlement core tables: tenants, order sessions, points, referrals, webhooks.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(*values: str, name: str) -> postgresql.ENUM:
    # Types are created explicitly in upgrade(); tables only reference them.
    return postgresql.ENUM(*values, name=name, create_type=False)


tenant_status_enum = _enum("active", "disabled", name="tenant_status_enum")
order_session_status_enum = _enum(
    "pending_payment", "paid", "cancelled", name="order_session_status_enum"
)
points_reservation_state_enum = _enum(
    "none", "reserved", "captured", "released", name="points_reservation_state_enum"
)
points_ledger_event_type = _enum(
    "manual_add",
    "manual_remove",
    "reservation_created",
    "reservation_released_cancelled",
    "reservation_released_expired",
    "reservation_consumed",
    "earned_paid_order",
    "referral_reward_first_paid_order",
    name="points_ledger_event_type",
)
referral_claim_status = _enum(
    "pending", "self_blocked", "rewarded", name="referral_claim_status"
)
webhook_provider_enum = _enum("woocommerce", "voodoopay", name="webhook_provider_enum")
webhook_event_status_enum = _enum(
    "received", "processed", "failed", "duplicate", name="webhook_event_status_enum"
)


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
        )
    return columns


_ENUMS = (
    tenant_status_enum,
    order_session_status_enum,
    points_reservation_state_enum,
    points_ledger_event_type,
    referral_claim_status,
    webhook_provider_enum,
    webhook_event_status_enum,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum in _ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        "tenants",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", tenant_status_enum, nullable=False, server_default="active"),
        *_timestamps(updated=False),
    )

    op.create_table(
        "tenant_members",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(32), nullable=False),
        sa.Column("user_id", sa.String(32), nullable=False),
        sa.Column("role", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members_user"),
    )

    op.create_table(
        "tenant_guilds",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(32), nullable=False),
        sa.Column("guild_id", sa.String(32), nullable=False),
        sa.Column("point_value_minor", sa.Integer(), nullable=False),
        sa.Column("earn_category_keys", sa.JSON(), nullable=False),
        sa.Column("redeem_category_keys", sa.JSON(), nullable=False),
        sa.Column("referral_reward_minor", sa.Integer(), nullable=False),
        sa.Column("referral_thank_you_template", sa.String(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("tenant_id", "guild_id", name="uq_tenant_guilds_guild"),
    )

    op.create_table(
        "order_sessions",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(32), nullable=False),
        sa.Column("guild_id", sa.String(32), nullable=False),
        sa.Column("ticket_channel_id", sa.String(32), nullable=False),
        sa.Column("staff_user_id", sa.String(32), nullable=False),
        sa.Column("customer_discord_id", sa.String(32), nullable=False),
        sa.Column("product_id", sa.String(32), nullable=False),
        sa.Column("variant_id", sa.String(32), nullable=False),
        sa.Column("basket_items", sa.JSON(), nullable=False),
        sa.Column("coupon_code", sa.String(), nullable=True),
        sa.Column("coupon_discount_minor", sa.Integer(), nullable=False),
        sa.Column("customer_email_normalized", sa.String(), nullable=True),
        sa.Column("points_reserved", sa.Integer(), nullable=False),
        sa.Column("points_discount_minor", sa.Integer(), nullable=False),
        sa.Column("points_reservation_state", points_reservation_state_enum, nullable=False, server_default="none"),
        sa.Column("points_config_snapshot", sa.JSON(), nullable=False),
        sa.Column("referral_reward_minor_snapshot", sa.Integer(), nullable=False),
        sa.Column("tip_minor", sa.Integer(), nullable=False),
        sa.Column("subtotal_minor", sa.Integer(), nullable=False),
        sa.Column("total_minor", sa.Integer(), nullable=False),
        sa.Column("status", order_session_status_enum, nullable=False, server_default="pending_payment"),
        sa.Column("answers", sa.JSON(), nullable=False),
        sa.Column("checkout_url", sa.String(), nullable=True),
        sa.Column("checkout_token_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_order_sessions_tenant_id", "order_sessions", ["tenant_id"])

    op.create_table(
        "points_accounts",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(32), nullable=False),
        sa.Column("guild_id", sa.String(32), nullable=False),
        sa.Column("email_normalized", sa.String(320), nullable=False),
        sa.Column("email_display", sa.String(320), nullable=False),
        sa.Column("balance_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved_points", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "guild_id", "email_normalized", name="uq_points_accounts_email"),
    )

    op.create_table(
        "points_ledger_events",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(32), nullable=False),
        sa.Column("guild_id", sa.String(32), nullable=False),
        sa.Column("email_normalized", sa.String(320), nullable=False),
        sa.Column("delta_points", sa.Integer(), nullable=False),
        sa.Column("event_type", points_ledger_event_type, nullable=False),
        sa.Column("order_session_id", sa.String(32), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_points_ledger_events_email_normalized", "points_ledger_events", ["email_normalized"])

    op.create_table(
        "referral_claims",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(32), nullable=False),
        sa.Column("guild_id", sa.String(32), nullable=False),
        sa.Column("referrer_discord_user_id", sa.String(32), nullable=False),
        sa.Column("referrer_email_normalized", sa.String(320), nullable=False),
        sa.Column("referrer_email_display", sa.String(320), nullable=False),
        sa.Column("referred_email_normalized", sa.String(320), nullable=False),
        sa.Column("referred_email_display", sa.String(320), nullable=False),
        sa.Column("status", referral_claim_status, nullable=False, server_default="pending"),
        sa.Column("reward_order_session_id", sa.String(32), nullable=True),
        sa.Column("reward_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rewarded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "tenant_id", "guild_id", "referred_email_normalized", name="uq_referral_claims_referred"
        ),
    )

    op.create_table(
        "referral_first_paid_gates",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(32), nullable=False),
        sa.Column("guild_id", sa.String(32), nullable=False),
        sa.Column("referred_email_normalized", sa.String(320), nullable=False),
        sa.Column("first_order_session_id", sa.String(32), nullable=False),
        sa.Column("claim_id", sa.String(32), nullable=True),
        sa.Column("reward_applied", sa.Boolean(), nullable=False),
        sa.Column("reward_points", sa.Integer(), nullable=False),
        sa.Column("referral_reward_minor_snapshot", sa.Integer(), nullable=False),
        sa.Column("point_value_minor_snapshot", sa.Integer(), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint(
            "tenant_id", "guild_id", "referred_email_normalized", name="uq_referral_gates_referred"
        ),
    )

    op.create_table(
        "webhook_integrations",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(32), nullable=False),
        sa.Column("guild_id", sa.String(32), nullable=False),
        sa.Column("provider", webhook_provider_enum, nullable=False),
        sa.Column("webhook_key", sa.String(64), nullable=False),
        sa.Column("secret_encrypted", sa.String(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "guild_id", "provider", name="uq_webhook_integrations_provider"),
    )
    op.create_index(
        "ix_webhook_integrations_webhook_key", "webhook_integrations", ["webhook_key"], unique=True
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("provider", webhook_provider_enum, nullable=False),
        sa.Column("tenant_id", sa.String(32), nullable=False),
        sa.Column("guild_id", sa.String(32), nullable=False),
        sa.Column("order_session_id", sa.String(32), nullable=True),
        sa.Column("delivery_fingerprint", sa.String(128), nullable=False),
        sa.Column("topic", sa.String(), nullable=True),
        sa.Column("signature_valid", sa.Boolean(), nullable=False),
        sa.Column("status", webhook_event_status_enum, nullable=False, server_default="received"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("provider", "delivery_fingerprint", name="uq_webhook_events_provider_fingerprint"),
    )


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_index("ix_webhook_integrations_webhook_key", table_name="webhook_integrations")
    op.drop_table("webhook_integrations")
    op.drop_table("referral_first_paid_gates")
    op.drop_table("referral_claims")
    op.drop_index("ix_points_ledger_events_email_normalized", table_name="points_ledger_events")
    op.drop_table("points_ledger_events")
    op.drop_table("points_accounts")
    op.drop_index("ix_order_sessions_tenant_id", table_name="order_sessions")
    op.drop_table("order_sessions")
    op.drop_table("tenant_guilds")
    op.drop_table("tenant_members")
    op.drop_table("tenants")

    bind = op.get_bind()
    for enum in reversed(_ENUMS):
        enum.drop(bind, checkfirst=True)
