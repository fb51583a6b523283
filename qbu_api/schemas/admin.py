from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from qbu_api.models.admin_role import ADMIN_ROLES
from qbu_api.models.print_order import ORDER_STATUSES, PAYMENT_STATUSES


# =========================================================
# Orders
# =========================================================
class ShippingOut(BaseModel):
    name: str
    email: str
    address: str
    phone: Optional[str] = None
    postal_code: Optional[str] = None
    prefecture: Optional[str] = None
    city: Optional[str] = None
    town: Optional[str] = None
    address_line2: Optional[str] = None


class OrderShippingOut(BaseModel):
    ok: bool = True
    shipping: ShippingOut


class OrderUpdateIn(BaseModel):
    """
    未知の status / payment_status は変更なし扱い。
    admin_note は文字列が来たときだけ更新する（空文字で消せる）。
    """

    status: Optional[str] = None
    payment_status: Optional[str] = None
    admin_note: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> Optional[str]:
        return v if v in ORDER_STATUSES else None

    @field_validator("payment_status", mode="before")
    @classmethod
    def _payment(cls, v: Any) -> Optional[str]:
        return v if v in PAYMENT_STATUSES else None

    @field_validator("admin_note", mode="before")
    @classmethod
    def _note(cls, v: Any) -> Optional[str]:
        return v.strip()[:2000] if isinstance(v, str) else None


class OrderAdminOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: str
    payment_status: str
    admin_note: Optional[str] = None
    updated_at: Optional[datetime] = None


class OrderUpdateOut(BaseModel):
    ok: bool = True
    order: OrderAdminOut


# =========================================================
# Admin roles
# =========================================================
class AdminRoleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    role: str
    is_active: bool
    email: Optional[str] = None
    notify_print_request: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AdminRoleListOut(BaseModel):
    ok: bool = True
    roles: list[AdminRoleOut]


class AdminRoleUpsertIn(BaseModel):
    user_id: UUID
    role: str = "admin"
    is_active: bool = True
    email: Optional[str] = None
    notify_print_request: Optional[bool] = None

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, v: Any) -> str:
        # 不明なロールは admin
        return v if v in ADMIN_ROLES else "admin"

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str) or "@" not in v:
            return None
        return v.strip()[:254]


class AdminRoleUpsertOut(BaseModel):
    ok: bool = True
    role: AdminRoleOut
