from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from qbu_api.models.base import Base, BigIntPK, utcnow


class PricingConfigORM(Base):
    """
    pricing_configs（履歴 + 有効1件）

    - 追記のみ。更新時は新しい行を is_active=true で追加し、旧行を false にする
    - 配送料は含まない（shipping_configs 側）
    """

    __tablename__ = "pricing_configs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="JPY", server_default="JPY")

    base_fee_yen: Mapped[int] = mapped_column(Integer, nullable=False, default=800, server_default="800")
    per_cm3_yen: Mapped[int] = mapped_column(Integer, nullable=False, default=60, server_default="60")
    min_fee_yen: Mapped[int] = mapped_column(Integer, nullable=False, default=1200, server_default="1200")
    rounding_step_yen: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default="10")

    note: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    __table_args__ = (
        # 有効行は最大1件
        Index(
            "ux_pricing_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("idx_pricing_active_effective", "is_active", "effective_from"),
    )
