from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from qbu_api.models.base import Base, BigIntPK, utcnow


class TicketORM(Base):
    """
    割引チケット

    - 生コードは保存しない（code_hash = salt 付き SHA-256 で検索）
    - 利用回数は ticket_redemptions の行数で数える（カウンタ列は持たない）
    """

    __tablename__ = "tickets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    # 'percent' | 'fixed' | 'free' | 'shipping_free'
    type: Mapped[str] = mapped_column(String(16), nullable=False)

    code_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    code_prefix: Mapped[Optional[str]] = mapped_column(String(16), nullable=True, index=True)

    # percent: 0..100, fixed: yen, others: null
    value: Mapped[Optional[float]] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="JPY", server_default="JPY")

    # 'subtotal' | 'total'
    apply_scope: Mapped[str] = mapped_column(String(16), nullable=False, default="subtotal", server_default="subtotal")
    shipping_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    max_total_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_uses_per_user: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    constraints: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    __table_args__ = (
        CheckConstraint("type in ('percent','fixed','free','shipping_free')", name="ck_tickets_type"),
        Index("idx_tickets_active_expires", "is_active", "expires_at"),
    )


class TicketRedemptionORM(Base):
    __tablename__ = "ticket_redemptions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("print_orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    anon_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True, index=True)

    discount_yen: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    snapshot: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
