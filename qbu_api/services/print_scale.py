from __future__ import annotations

"""
print_scale.py

印刷スケール（1ブロック何mmか）と推定体積

Q-BU のワールド座標:
- ベースブロックは 1 辺 1 unit
- 補完ブロック（サポート）は 0.5 unit だが、出力スケールは常に「1 unit あたり何 mm」で表す
"""

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from qbu_api.core.config import settings

MODE_MAX_SIDE = "maxSide"
MODE_BLOCK_EDGE = "blockEdge"

DEFAULT_TARGET_MM = 50.0


@dataclass(frozen=True)
class PrintScaleSetting:
    mode: str  # "maxSide" | "blockEdge"
    value_mm: float


@dataclass(frozen=True)
class ResolvedPrintScale:
    mode: str
    mm_per_unit: float
    max_side_mm: float
    warn_too_large: bool


# ============================================================
# Helpers
# ============================================================
def _finite_or_none(value: Any) -> Optional[float]:
    try:
        if value is None or isinstance(value, bool):
            return None
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def _round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


# ============================================================
# Scale
# ============================================================
def parse_scale_setting(raw: Optional[Mapping[str, Any]], fallback_target_mm: Any = None) -> PrintScaleSetting:
    """
    リクエストの scale_setting を解釈する。
    不正 / 未指定なら旧形式 target_mm（それも無ければ 50mm）の maxSide 扱い。
    """
    if raw:
        mode = raw.get("mode")
        if mode == MODE_MAX_SIDE:
            v = _finite_or_none(raw.get("max_side_mm"))
            if v is not None:
                return PrintScaleSetting(MODE_MAX_SIDE, v)
        if mode == MODE_BLOCK_EDGE:
            v = _finite_or_none(raw.get("block_edge_mm"))
            if v is not None:
                return PrintScaleSetting(MODE_BLOCK_EDGE, v)

    t = _finite_or_none(fallback_target_mm)
    return PrintScaleSetting(MODE_MAX_SIDE, t if t is not None else DEFAULT_TARGET_MM)


def resolve_print_scale(
    bbox_max_dim_world: float,
    setting: PrintScaleSetting,
    *,
    clamp_max_side_mm: Optional[Tuple[float, float]] = None,
    clamp_block_edge_mm: Optional[Tuple[float, float]] = None,
    warn_over_mm: Optional[float] = None,
) -> ResolvedPrintScale:
    dim = max(1e-6, _finite_or_none(bbox_max_dim_world) or 1.0)

    max_lo, max_hi = clamp_max_side_mm or (settings.MAX_SIDE_MM_MIN, settings.MAX_SIDE_MM_MAX)
    edge_lo, edge_hi = clamp_block_edge_mm or (settings.BLOCK_EDGE_MM_MIN, settings.BLOCK_EDGE_MM_MAX)
    warn_mm = settings.WARN_TOO_LARGE_MM if warn_over_mm is None else warn_over_mm

    if setting.mode == MODE_MAX_SIDE:
        target = _clamp(float(_round_half_up(setting.value_mm or 0.0)), max_lo, max_hi)
        return ResolvedPrintScale(
            mode=MODE_MAX_SIDE,
            mm_per_unit=target / dim,
            max_side_mm=target,
            warn_too_large=target > warn_mm,
        )

    edge = _clamp(float(setting.value_mm or 0.0), edge_lo, edge_hi)
    max_side = dim * edge
    return ResolvedPrintScale(
        mode=MODE_BLOCK_EDGE,
        mm_per_unit=edge,
        max_side_mm=max_side,
        warn_too_large=max_side > warn_mm,
    )


# ============================================================
# Volume
# ============================================================
def estimate_solid_volume_cm3(base_block_count: Any, support_block_count: Any, mm_per_unit: Any) -> float:
    """
    推定体積（cm³）

    補完ブロックもベースと同じ 1 unit³ として数える（実体積より大きめ＝安全側の見積り）。
    負数 / NaN は 0 扱い。例外は出さない。
    """
    base = _finite_or_none(base_block_count) or 0.0
    support = _finite_or_none(support_block_count) or 0.0
    mm = _finite_or_none(mm_per_unit) or 0.0

    count = max(0, math.floor(max(0.0, base))) + max(0, math.floor(max(0.0, support)))
    edge = max(0.0, mm)
    return count * edge * edge * edge / 1000.0
