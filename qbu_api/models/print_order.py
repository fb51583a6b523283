from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from qbu_api.models.base import Base, utcnow


# =========================================================
# print_orders
# =========================================================
# 下記の列は後から追加された snapshot 列。
# 古いDBには無いことがあるので、起動時に SchemaCapabilities で存在確認してから INSERT する。
OPTIONAL_SNAPSHOT_COLUMNS: tuple[str, ...] = (
    "pricing_config_id",
    "ticket_id",
    "discount_yen",
    "quote_subtotal_yen",
    "model_data",
    "shipping_config_id",
    "shipping_zone",
    "shipping_size_tier",
    "shipping_yen",
    "ticket_apply_scope",
)


ORDER_STATUSES: tuple[str, ...] = ("submitted", "confirmed", "printing", "shipped", "done", "cancelled")
PAYMENT_STATUSES: tuple[str, ...] = ("unpaid", "pending", "paid", "refunded", "failed")


class PrintOrderORM(Base):
    __tablename__ = "print_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # who
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    anon_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    app_version: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # lifecycle
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="submitted", server_default="submitted")
    payment_status: Mapped[str] = mapped_column(String(16), nullable=False, default="unpaid", server_default="unpaid")
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="JPY", server_default="JPY")

    # pricing snapshot
    quote_total_yen: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    quote_volume_cm3: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    quote_breakdown: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    pricing_config_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("pricing_configs.id", ondelete="SET NULL"), nullable=True, index=True
    )
    quote_subtotal_yen: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discount_yen: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ticket_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True, index=True
    )
    ticket_apply_scope: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    # shipping snapshot
    shipping_config_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    shipping_zone: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    shipping_size_tier: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    shipping_yen: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # model snapshot
    model_name: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    model_fingerprint: Mapped[Optional[str]] = mapped_column(String(80), nullable=True, index=True)
    block_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    support_block_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_dim_mm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    warn_exceeds_max: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    scale_mode: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    block_edge_mm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    target_max_side_mm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    mm_per_unit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    model_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    customer_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status in ('submitted','confirmed','printing','shipped','done','cancelled')",
            name="ck_print_orders_status",
        ),
        CheckConstraint(
            "payment_status in ('unpaid','pending','paid','refunded','failed')",
            name="ck_print_orders_payment_status",
        ),
        Index("idx_print_orders_status_created_at", "status", "created_at"),
        Index("idx_print_orders_user_created_at", "user_id", "created_at"),
    )


class PrintOrderShippingSecureORM(Base):
    """配送先（AES-GCM で暗号化したトークンのみ保存）"""

    __tablename__ = "print_order_shipping_secure"

    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("print_orders.id", ondelete="CASCADE"),
        primary_key=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    shipping_enc: Mapped[str] = mapped_column(Text, nullable=False)
    email_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    postal_code_prefix: Mapped[Optional[str]] = mapped_column(String(8), nullable=True, index=True)
