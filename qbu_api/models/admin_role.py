from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from qbu_api.models.base import Base, utcnow

ADMIN_ROLES: tuple[str, ...] = ("owner", "admin", "ops", "analyst")


class AdminRoleORM(Base):
    __tablename__ = "admin_roles"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    # 印刷依頼メールの通知先
    email: Mapped[Optional[str]] = mapped_column(String(254), nullable=True)
    notify_print_request: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("role in ('owner','admin','ops','analyst')", name="ck_admin_roles_role"),
    )
