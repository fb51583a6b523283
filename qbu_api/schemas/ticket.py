from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from qbu_api.schemas.common import clip_text


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    created_at: datetime
    created_by: Optional[UUID] = None
    type: str
    code_prefix: Optional[str] = None
    value: Optional[float] = None
    currency: str = "JPY"
    apply_scope: str = "subtotal"
    shipping_free: bool = False
    is_active: bool
    expires_at: Optional[datetime] = None
    max_total_uses: Optional[int] = None
    max_uses_per_user: Optional[int] = None
    constraints: Optional[dict[str, Any]] = None
    note: Optional[str] = None


class TicketWithUsageOut(TicketOut):
    used_total: int = 0


class TicketListOut(BaseModel):
    ok: bool = True
    tickets: list[TicketWithUsageOut]


class TicketCreateIn(BaseModel):
    type: Optional[str] = None
    value: Optional[float] = None
    apply_scope: Optional[str] = None
    shipping_free: bool = False
    expires_at: Optional[datetime] = None
    max_total_uses: Optional[float] = None
    max_uses_per_user: Optional[float] = None
    constraints: Optional[dict[str, Any]] = None
    note: Optional[str] = None

    @field_validator("note", mode="before")
    @classmethod
    def _clip_note(cls, v: Any) -> Optional[str]:
        return clip_text(v, 200)

    @field_validator("constraints", mode="before")
    @classmethod
    def _parse_constraints(cls, v: Any) -> Optional[dict[str, Any]]:
        # 管理画面からは JSON 文字列で来ることがある
        if isinstance(v, str):
            try:
                v = json.loads(v) if v.strip() else None
            except ValueError:
                return None
        return v if isinstance(v, dict) else None

    @field_validator("expires_at", mode="before")
    @classmethod
    def _blank_expiry(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class TicketCreateOut(BaseModel):
    ok: bool = True
    ticket: TicketOut
    # 生コードはこのレスポンスでだけ返す
    code: str


class TicketToggleIn(BaseModel):
    # None なら反転
    is_active: Optional[bool] = None


class TicketToggleOut(BaseModel):
    ok: bool = True
    ticket: TicketOut
