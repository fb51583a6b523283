from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, field_validator

from qbu_api.schemas.common import clip_text


class ShippingRateRow(BaseModel):
    zone: str
    size_tier: str
    price_yen: int


class ShippingOut(BaseModel):
    config_id: Optional[int] = None
    currency: str = "JPY"
    effective_from: Optional[datetime] = None
    note: Optional[str] = None
    rates: list[ShippingRateRow]


class ShippingActiveOut(BaseModel):
    ok: bool = True
    shipping: ShippingOut
    source: Literal["db", "fallback"]


class ShippingRateIn(BaseModel):
    zone: Optional[str] = None
    size_tier: Optional[Any] = None
    price_yen: Optional[float] = None


class ShippingUpdateIn(BaseModel):
    rates: list[ShippingRateIn] = []
    note: Optional[str] = None

    @field_validator("note", mode="before")
    @classmethod
    def _clip_note(cls, v: Any) -> Optional[str]:
        return clip_text(v, 200)


class ShippingUpdateOut(BaseModel):
    ok: bool = True
    shipping_config_id: int
