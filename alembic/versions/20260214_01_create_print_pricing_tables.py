"""create print order / pricing / shipping / ticket tables and seed defaults

Revision ID: 20260214_01_create_print_pricing_tables
Revises:
Create Date: 2026-02-14
"""
from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa
from alembic import op

# Revision identifiers, used by Alembic.
revision = "20260214_01_create_print_pricing_tables"
down_revision = None
branch_labels = None
depends_on = None

BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

ZONES = ("hokkaido", "tohoku", "kanto", "chubu", "kinki", "chugoku", "shikoku", "kyushu", "okinawa")
SIZE_TIERS = ("60", "80", "100", "120")

# 既定の送料（アプリ側の FALLBACK_SHIPPING_RATES と同じ値）
DEFAULT_SHIPPING = {
    "kanto": (700, 900, 1100, 1300),
    "chubu": (750, 950, 1150, 1350),
    "kinki": (750, 950, 1150, 1350),
    "tohoku": (850, 1050, 1250, 1450),
    "chugoku": (950, 1150, 1350, 1550),
    "shikoku": (950, 1150, 1350, 1550),
    "kyushu": (1050, 1250, 1450, 1650),
    "hokkaido": (1200, 1400, 1600, 1800),
    "okinawa": (1400, 1600, 1800, 2000),
}


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, server_default=sa.func.now())


def upgrade() -> None:
    # ---- pricing ----
    op.create_table(
        "pricing_configs",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        _ts("created_at"),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("effective_from"),
        sa.Column("currency", sa.String(8), nullable=False, server_default="JPY"),
        sa.Column("base_fee_yen", sa.Integer(), nullable=False, server_default="800"),
        sa.Column("per_cm3_yen", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("min_fee_yen", sa.Integer(), nullable=False, server_default="1200"),
        sa.Column("rounding_step_yen", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("note", sa.String(200), nullable=True),
    )
    op.create_index(
        "ux_pricing_single_active",
        "pricing_configs",
        ["is_active"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )
    op.create_index("idx_pricing_active_effective", "pricing_configs", ["is_active", "effective_from"])

    # ---- shipping ----
    op.create_table(
        "shipping_configs",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        _ts("created_at"),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("effective_from"),
        sa.Column("currency", sa.String(8), nullable=False, server_default="JPY"),
        sa.Column("note", sa.String(200), nullable=True),
    )
    op.create_index(
        "ux_shipping_single_active",
        "shipping_configs",
        ["is_active"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "shipping_rates",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        _ts("created_at"),
        sa.Column(
            "config_id",
            sa.BigInteger(),
            sa.ForeignKey("shipping_configs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("zone", sa.String(16), nullable=False),
        sa.Column("size_tier", sa.String(8), nullable=False),
        sa.Column("price_yen", sa.Integer(), nullable=False),
        sa.UniqueConstraint("config_id", "zone", "size_tier", name="shipping_rates_unique"),
        sa.CheckConstraint("price_yen >= 0", name="ck_shipping_rates_price_nonneg"),
    )
    op.create_index("ix_shipping_rates_config_id", "shipping_rates", ["config_id"])

    # ---- tickets ----
    op.create_table(
        "tickets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _ts("created_at"),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("code_prefix", sa.String(16), nullable=True),
        sa.Column("value", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(8), nullable=False, server_default="JPY"),
        sa.Column("apply_scope", sa.String(16), nullable=False, server_default="subtotal"),
        sa.Column("shipping_free", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_total_uses", sa.Integer(), nullable=True),
        sa.Column("max_uses_per_user", sa.Integer(), nullable=True),
        sa.Column("constraints", sa.JSON(), nullable=True),
        sa.Column("note", sa.String(200), nullable=True),
        sa.CheckConstraint("type in ('percent','fixed','free','shipping_free')", name="ck_tickets_type"),
    )
    op.create_index("ix_tickets_created_at", "tickets", ["created_at"])
    op.create_index("ix_tickets_code_prefix", "tickets", ["code_prefix"])
    op.create_index("idx_tickets_active_expires", "tickets", ["is_active", "expires_at"])

    # ---- print orders ----
    op.create_table(
        "print_orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("anon_id", sa.String(80), nullable=True),
        sa.Column("session_id", sa.String(80), nullable=True),
        sa.Column("app_version", sa.String(32), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="submitted"),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="unpaid"),
        sa.Column("currency", sa.String(8), nullable=False, server_default="JPY"),
        sa.Column("quote_total_yen", sa.Integer(), nullable=True),
        sa.Column("quote_volume_cm3", sa.Float(), nullable=True),
        sa.Column("quote_breakdown", sa.JSON(), nullable=True),
        sa.Column(
            "pricing_config_id",
            sa.BigInteger(),
            sa.ForeignKey("pricing_configs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("quote_subtotal_yen", sa.Integer(), nullable=True),
        sa.Column("discount_yen", sa.Integer(), nullable=True),
        sa.Column("ticket_id", sa.Uuid(), sa.ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True),
        sa.Column("ticket_apply_scope", sa.String(16), nullable=True),
        sa.Column("shipping_config_id", sa.Integer(), nullable=True),
        sa.Column("shipping_zone", sa.String(16), nullable=True),
        sa.Column("shipping_size_tier", sa.String(8), nullable=True),
        sa.Column("shipping_yen", sa.Integer(), nullable=True),
        sa.Column("model_name", sa.String(80), nullable=True),
        sa.Column("model_fingerprint", sa.String(80), nullable=True),
        sa.Column("block_count", sa.Integer(), nullable=True),
        sa.Column("support_block_count", sa.Integer(), nullable=True),
        sa.Column("max_dim_mm", sa.Float(), nullable=True),
        sa.Column("warn_exceeds_max", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("scale_mode", sa.String(16), nullable=True),
        sa.Column("block_edge_mm", sa.Float(), nullable=True),
        sa.Column("target_max_side_mm", sa.Float(), nullable=True),
        sa.Column("mm_per_unit", sa.Float(), nullable=True),
        sa.Column("model_data", sa.JSON(), nullable=True),
        sa.Column("customer_note", sa.Text(), nullable=True),
        sa.Column("admin_note", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status in ('submitted','confirmed','printing','shipped','done','cancelled')",
            name="ck_print_orders_status",
        ),
        sa.CheckConstraint(
            "payment_status in ('unpaid','pending','paid','refunded','failed')",
            name="ck_print_orders_payment_status",
        ),
    )
    op.create_index("ix_print_orders_pricing_config_id", "print_orders", ["pricing_config_id"])
    op.create_index("ix_print_orders_ticket_id", "print_orders", ["ticket_id"])
    op.create_index("ix_print_orders_model_fingerprint", "print_orders", ["model_fingerprint"])
    op.create_index("idx_print_orders_status_created_at", "print_orders", ["status", "created_at"])
    op.create_index("idx_print_orders_user_created_at", "print_orders", ["user_id", "created_at"])

    op.create_table(
        "print_order_shipping_secure",
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("print_orders.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        _ts("created_at"),
        sa.Column("shipping_enc", sa.Text(), nullable=False),
        sa.Column("email_hash", sa.String(64), nullable=True),
        sa.Column("postal_code_prefix", sa.String(8), nullable=True),
    )
    op.create_index("ix_print_order_shipping_secure_email_hash", "print_order_shipping_secure", ["email_hash"])
    op.create_index(
        "ix_print_order_shipping_secure_postal_code_prefix",
        "print_order_shipping_secure",
        ["postal_code_prefix"],
    )

    op.create_table(
        "ticket_redemptions",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        _ts("redeemed_at"),
        sa.Column("ticket_id", sa.Uuid(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("order_id", sa.Uuid(), sa.ForeignKey("print_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("anon_id", sa.String(80), nullable=True),
        sa.Column("discount_yen", sa.Integer(), nullable=True),
        sa.Column("snapshot", sa.JSON(), nullable=True),
    )
    op.create_index("ix_ticket_redemptions_ticket_id", "ticket_redemptions", ["ticket_id"])
    op.create_index("ix_ticket_redemptions_user_id", "ticket_redemptions", ["user_id"])
    op.create_index("ix_ticket_redemptions_anon_id", "ticket_redemptions", ["anon_id"])

    # ---- logs / roles ----
    op.create_table(
        "audit_logs",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        _ts("created_at"),
        sa.Column("actor_user_id", sa.Uuid(), nullable=True),
        sa.Column("actor_role", sa.String(16), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("target_table", sa.String(64), nullable=True),
        sa.Column("target_id", sa.String(64), nullable=True),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
    )
    op.create_index("idx_audit_logs_action_created_at", "audit_logs", ["action", "created_at"])

    op.create_table(
        "event_logs",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        _ts("created_at"),
        sa.Column("event_name", sa.String(64), nullable=False),
        sa.Column("path", sa.String(200), nullable=False),
        sa.Column("anon_id", sa.String(80), nullable=False),
        sa.Column("session_id", sa.String(80), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("accept_language", sa.String(200), nullable=True),
    )
    op.create_index("idx_event_logs_name_created_at", "event_logs", ["event_name", "created_at"])
    op.create_index("idx_event_logs_anon_created_at", "event_logs", ["anon_id", "created_at"])

    op.create_table(
        "admin_roles",
        sa.Column("user_id", sa.Uuid(), primary_key=True),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email", sa.String(254), nullable=True),
        sa.Column("notify_print_request", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("role in ('owner','admin','ops','analyst')", name="ck_admin_roles_role"),
    )

    # ---- seed defaults ----
    now = datetime.now(timezone.utc)

    pricing = sa.table(
        "pricing_configs",
        sa.column("id", sa.BigInteger()),
        sa.column("is_active", sa.Boolean()),
        sa.column("effective_from", sa.DateTime(timezone=True)),
        sa.column("created_at", sa.DateTime(timezone=True)),
        sa.column("currency", sa.String()),
        sa.column("base_fee_yen", sa.Integer()),
        sa.column("per_cm3_yen", sa.Integer()),
        sa.column("min_fee_yen", sa.Integer()),
        sa.column("rounding_step_yen", sa.Integer()),
        sa.column("note", sa.String()),
    )
    op.bulk_insert(
        pricing,
        [
            {
                "id": 1,
                "is_active": True,
                "effective_from": now,
                "created_at": now,
                "currency": "JPY",
                "base_fee_yen": 800,
                "per_cm3_yen": 60,
                "min_fee_yen": 1200,
                "rounding_step_yen": 10,
                "note": "initial",
            }
        ],
    )

    shipping_configs = sa.table(
        "shipping_configs",
        sa.column("id", sa.BigInteger()),
        sa.column("is_active", sa.Boolean()),
        sa.column("effective_from", sa.DateTime(timezone=True)),
        sa.column("created_at", sa.DateTime(timezone=True)),
        sa.column("currency", sa.String()),
        sa.column("note", sa.String()),
    )
    op.bulk_insert(
        shipping_configs,
        [{"id": 1, "is_active": True, "effective_from": now, "created_at": now, "currency": "JPY", "note": "initial"}],
    )

    shipping_rates = sa.table(
        "shipping_rates",
        sa.column("config_id", sa.BigInteger()),
        sa.column("zone", sa.String()),
        sa.column("size_tier", sa.String()),
        sa.column("price_yen", sa.Integer()),
        sa.column("created_at", sa.DateTime(timezone=True)),
    )
    op.bulk_insert(
        shipping_rates,
        [
            {"config_id": 1, "zone": zone, "size_tier": tier, "price_yen": yen, "created_at": now}
            for zone in ZONES
            for tier, yen in zip(SIZE_TIERS, DEFAULT_SHIPPING[zone])
        ],
    )

    # id を明示して入れたので Postgres の sequence を進めておく
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute("SELECT setval(pg_get_serial_sequence('pricing_configs', 'id'), 1)")
        op.execute("SELECT setval(pg_get_serial_sequence('shipping_configs', 'id'), 1)")


def downgrade() -> None:
    for name in (
        "admin_roles",
        "event_logs",
        "audit_logs",
        "ticket_redemptions",
        "print_order_shipping_secure",
        "print_orders",
        "tickets",
        "shipping_rates",
        "shipping_configs",
        "pricing_configs",
    ):
        op.drop_table(name)
