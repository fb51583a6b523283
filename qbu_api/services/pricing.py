from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional


# ============================================================
# Domain
# ============================================================
@dataclass(frozen=True)
class PricingParams:
    """
    価格モデル（配送料は含まない）

    - base_fee_yen: 基本料（準備・手数料）
    - per_cm3_yen: 推定体積 1cm³ あたり
    - min_fee_yen: 最低料金
    - rounding_step_yen: 丸め単位（>= 1）
    """

    base_fee_yen: int = 800
    per_cm3_yen: int = 60
    min_fee_yen: int = 1200
    rounding_step_yen: int = 10

    @classmethod
    def from_values(
        cls,
        base_fee_yen: Any = None,
        per_cm3_yen: Any = None,
        min_fee_yen: Any = None,
        rounding_step_yen: Any = None,
    ) -> "PricingParams":
        """DB / 管理画面の生値から作る。負数は 0、NaN や欠損は既定値、丸め単位は 1 以上。"""
        d = DEFAULT_PRICING
        return cls(
            base_fee_yen=max(0, _to_int_safe(base_fee_yen, default=d.base_fee_yen)),
            per_cm3_yen=max(0, _to_int_safe(per_cm3_yen, default=d.per_cm3_yen)),
            min_fee_yen=max(0, _to_int_safe(min_fee_yen, default=d.min_fee_yen)),
            rounding_step_yen=max(1, _to_int_safe(rounding_step_yen, default=d.rounding_step_yen)),
        )


DEFAULT_PRICING = PricingParams()


@dataclass(frozen=True)
class PricingConfig:
    """有効な pricing_configs 行（型付き）"""

    id: int
    params: PricingParams
    currency: str = "JPY"
    effective_from: Optional[datetime] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class PrintQuote:
    subtotal_yen: int
    volume_cm3: float
    base_fee_yen: int
    volume_fee_yen: int
    per_cm3_yen: int
    min_fee_yen: int
    raw_yen: int
    rounding_step_yen: int

    def breakdown(self) -> Dict[str, Any]:
        return {
            "base_fee_yen": self.base_fee_yen,
            "volume_fee_yen": self.volume_fee_yen,
            "per_cm3_yen": self.per_cm3_yen,
            "min_fee_yen": self.min_fee_yen,
            "raw_yen": self.raw_yen,
            "rounding_step_yen": self.rounding_step_yen,
        }


# ============================================================
# Helpers
# ============================================================
def _round_half_up(v: float) -> int:
    # .5 は切り上げ（負数は 0 から遠い側）
    return int(Decimal(str(v)).to_integral_value(rounding=ROUND_HALF_UP))


def _to_int_safe(value: Any, *, default: int = 0) -> int:
    try:
        if value is None or isinstance(value, bool):
            return default
        v = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(v):
        return default
    return _round_half_up(v)


def round_to_step_yen(amount_yen: Any, step_yen: Any) -> int:
    """
    step 単位に四捨五入（.5 は切り上げ）。結果は必ず step の倍数で、2 回かけても変わらない。
    負数は 0 扱い。
    """
    step = max(1, _to_int_safe(step_yen, default=1))
    a = max(0, _to_int_safe(amount_yen, default=0))
    return ((a + step // 2) // step) * step


# ============================================================
# Quote
# ============================================================
def quote_print_price(volume_cm3: Any, params: Optional[PricingParams] = None) -> PrintQuote:
    # 負の料金・step < 1 はここでも丸める
    p = params or DEFAULT_PRICING
    p = PricingParams.from_values(p.base_fee_yen, p.per_cm3_yen, p.min_fee_yen, p.rounding_step_yen)

    try:
        v = float(volume_cm3)
    except (TypeError, ValueError):
        v = 0.0
    if not math.isfinite(v) or v < 0:
        v = 0.0

    volume_fee = _round_half_up(v * p.per_cm3_yen)
    raw = p.base_fee_yen + volume_fee
    floored = max(p.min_fee_yen, raw)
    subtotal = round_to_step_yen(floored, p.rounding_step_yen)

    return PrintQuote(
        subtotal_yen=subtotal,
        volume_cm3=v,
        base_fee_yen=p.base_fee_yen,
        volume_fee_yen=volume_fee,
        per_cm3_yen=p.per_cm3_yen,
        min_fee_yen=p.min_fee_yen,
        raw_yen=raw,
        rounding_step_yen=p.rounding_step_yen,
    )
