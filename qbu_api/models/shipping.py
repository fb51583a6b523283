from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qbu_api.models.base import Base, BigIntPK, utcnow


class ShippingConfigORM(Base):
    __tablename__ = "shipping_configs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="JPY", server_default="JPY")
    note: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    rates: Mapped[List["ShippingRateORM"]] = relationship(
        back_populates="config",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index(
            "ux_shipping_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )


class ShippingRateORM(Base):
    """1 config あたり zone × size_tier の 9×4 行"""

    __tablename__ = "shipping_rates"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    config_id: Mapped[int] = mapped_column(
        ForeignKey("shipping_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    zone: Mapped[str] = mapped_column(String(16), nullable=False)
    size_tier: Mapped[str] = mapped_column(String(8), nullable=False)
    price_yen: Mapped[int] = mapped_column(Integer, nullable=False)

    config: Mapped[ShippingConfigORM] = relationship(back_populates="rates")

    __table_args__ = (
        UniqueConstraint("config_id", "zone", "size_tier", name="shipping_rates_unique"),
        CheckConstraint("price_yen >= 0", name="ck_shipping_rates_price_nonneg"),
    )
