from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from qbu_api.schemas.common import CamelIn, clip_text

MAX_BLOCKS = 20000


# =========================================================
# Input
# =========================================================
class ScaleSettingIn(CamelIn):
    mode: Optional[str] = None
    max_side_mm: Optional[float] = None
    block_edge_mm: Optional[float] = None


class DraftIn(CamelIn):
    base_name: Optional[str] = None
    model_fingerprint: Optional[str] = None
    blocks: list[str] = Field(default_factory=list)
    support_blocks: list[str] = Field(default_factory=list)
    scale_setting: Optional[ScaleSettingIn] = None
    # legacy
    target_mm: Optional[float] = None

    @field_validator("blocks", "support_blocks", mode="before")
    @classmethod
    def _strings_only(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [x for x in v if isinstance(x, str)][:MAX_BLOCKS]

    @field_validator("base_name", "model_fingerprint", mode="before")
    @classmethod
    def _clip_names(cls, v: Any) -> Optional[str]:
        return clip_text(v, 80)


_CUSTOMER_LIMITS: dict[str, int] = {
    "name": 80,
    "email": 120,
    "phone": 40,
    "address": 400,
    "postal_code": 16,
    "prefecture": 16,
    "city": 80,
    "town": 80,
    "address_line2": 200,
    "ticket_code": 80,
    "notes": 1000,
}


class CustomerIn(CamelIn):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    # 住所は 1 行 (address) か、郵便番号検索の結果 (prefecture/city/town) + 番地 のどちらか
    address: Optional[str] = None
    postal_code: Optional[str] = None
    prefecture: Optional[str] = None
    city: Optional[str] = None
    town: Optional[str] = None
    address_line2: Optional[str] = None

    ticket_code: Optional[str] = None
    notes: Optional[str] = None

    @field_validator(*_CUSTOMER_LIMITS.keys(), mode="before")
    @classmethod
    def _clip(cls, v: Any, info: ValidationInfo) -> Optional[str]:
        return clip_text(v, _CUSTOMER_LIMITS[info.field_name])

    @property
    def full_address(self) -> Optional[str]:
        if self.address:
            return self.address
        parts = [p for p in (self.prefecture, self.city, self.town, self.address_line2) if p]
        return "".join(parts)[:400] or None


class TelemetryIn(CamelIn):
    anon_id: Optional[str] = None
    session_id: Optional[str] = None

    @field_validator("anon_id", "session_id", mode="before")
    @classmethod
    def _clip(cls, v: Any) -> Optional[str]:
        return clip_text(v, 80)


class PrintSubmitIn(CamelIn):
    draft: DraftIn
    customer: CustomerIn = Field(default_factory=CustomerIn)
    telemetry: Optional[TelemetryIn] = None


class PrintQuoteIn(CamelIn):
    draft: DraftIn
    # 見積もりでは任意（送料ゾーンとチケットだけ使う）
    customer: Optional[CustomerIn] = None
    telemetry: Optional[TelemetryIn] = None


# =========================================================
# Output
# =========================================================
class QuoteSummaryOut(BaseModel):
    item_subtotal_yen: int
    shipping_yen: int
    total_before_discount_yen: int
    discount_yen: int
    total_yen: int
    ticket_apply_scope: Optional[str] = None
    shipping_zone: Optional[str] = None
    shipping_size_tier: str


class PrintSubmitOut(BaseModel):
    ok: bool = True
    order_id: UUID
    quote: QuoteSummaryOut
    ticket_id: Optional[UUID] = None


class ScaleOut(BaseModel):
    mode: str
    mm_per_unit: float
    max_side_mm: float
    warn_too_large: bool


class PrintQuoteOut(BaseModel):
    ok: bool = True
    quote: QuoteSummaryOut
    volume_cm3: float
    scale: ScaleOut
    breakdown: dict[str, Any]
    ticket_id: Optional[UUID] = None
