from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, field_validator

from qbu_api.schemas.common import clip_text


class PricingOut(BaseModel):
    config_id: Optional[int] = None
    currency: str = "JPY"
    base_fee_yen: int
    per_cm3_yen: int
    min_fee_yen: int
    rounding_step_yen: int
    effective_from: Optional[datetime] = None
    note: Optional[str] = None


class PricingActiveOut(BaseModel):
    ok: bool = True
    pricing: PricingOut
    source: Literal["db", "fallback"]


class PricingUpdateIn(BaseModel):
    """数値でない / 欠けている値は既定値、範囲外は丸め込む（ルート側で clamp）"""

    base_fee_yen: Optional[float] = None
    per_cm3_yen: Optional[float] = None
    min_fee_yen: Optional[float] = None
    rounding_step_yen: Optional[float] = None
    note: Optional[str] = None

    @field_validator("note", mode="before")
    @classmethod
    def _clip_note(cls, v: Any) -> Optional[str]:
        return clip_text(v, 200)


class PricingUpdateOut(BaseModel):
    ok: bool = True
    pricing: PricingOut
