from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

RateMap = Dict[str, Dict[str, int]]

ZONES: tuple[str, ...] = (
    "hokkaido",
    "tohoku",
    "kanto",
    "chubu",
    "kinki",
    "chugoku",
    "shikoku",
    "kyushu",
    "okinawa",
)
SIZE_TIERS: tuple[str, ...] = ("60", "80", "100", "120")

DEFAULT_PADDING_MM = 20.0


# ============================================================
# Domain
# ============================================================
@dataclass(frozen=True)
class SizeTierResult:
    size_tier: str
    sum_cm: float
    padded_mm: Tuple[float, float, float]
    # 120 を超えても 120 に丸めている（拒否はしない）
    capped: bool


@dataclass(frozen=True)
class ShippingConfig:
    """有効な shipping_configs 行 + rates（型付き）"""

    id: int
    rates: RateMap = field(default_factory=dict)
    currency: str = "JPY"
    effective_from: Optional[datetime] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class ShippingResolution:
    yen: int
    # "db" | "fallback" | "none"
    source: str
    config_id: Optional[int] = None


# ============================================================
# Helpers
# ============================================================
def _to_num(v: Any) -> float:
    try:
        if v is None or isinstance(v, bool):
            return 0.0
        n = float(v)
    except (TypeError, ValueError):
        return 0.0
    return n if math.isfinite(n) else 0.0


def _to_int_or_none(v: Any) -> Optional[int]:
    try:
        if v is None or isinstance(v, bool):
            return None
        n = float(v)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(n):
        return None
    return int(math.floor(n + 0.5))


def normalize_zone(zone: Any) -> str:
    return str(zone or "").strip().lower()


def normalize_tier(tier: Any) -> str:
    return str(tier or "").strip()


# ============================================================
# Size tier
# ============================================================
def world_size_to_mm(world_size: Iterable[Any], mm_per_unit: Any) -> Tuple[float, float, float]:
    k = max(0.0, _to_num(mm_per_unit))
    x, y, z = (max(0.0, _to_num(v) * k) for v in world_size)
    return (x, y, z)


def derive_size_tier(size_mm: Iterable[Any], padding_mm: Any = DEFAULT_PADDING_MM) -> SizeTierResult:
    """
    梱包サイズ区分（3 辺合計 cm）

    各辺に padding_mm を足して合計し cm に換算する。
    60 / 80 / 100 以下はそのまま、それ超は "120"（capped=True）。
    """
    pad = max(0.0, _to_num(padding_mm))
    px, py, pz = (max(0.0, _to_num(v) + pad) for v in size_mm)
    sum_cm = (px + py + pz) / 10.0
    padded = (px, py, pz)

    if sum_cm <= 60:
        return SizeTierResult("60", sum_cm, padded, False)
    if sum_cm <= 80:
        return SizeTierResult("80", sum_cm, padded, False)
    if sum_cm <= 100:
        return SizeTierResult("100", sum_cm, padded, False)
    return SizeTierResult("120", sum_cm, padded, True)


# ============================================================
# Zone (都道府県 → 配送ゾーン)
# ============================================================
PREFECTURE_TO_ZONE: Mapping[str, str] = {
    "北海道": "hokkaido",
    "青森県": "tohoku",
    "岩手県": "tohoku",
    "宮城県": "tohoku",
    "秋田県": "tohoku",
    "山形県": "tohoku",
    "福島県": "tohoku",
    "茨城県": "kanto",
    "栃木県": "kanto",
    "群馬県": "kanto",
    "埼玉県": "kanto",
    "千葉県": "kanto",
    "東京都": "kanto",
    "神奈川県": "kanto",
    "新潟県": "chubu",
    "富山県": "chubu",
    "石川県": "chubu",
    "福井県": "chubu",
    "山梨県": "chubu",
    "長野県": "chubu",
    "岐阜県": "chubu",
    "静岡県": "chubu",
    "愛知県": "chubu",
    "三重県": "kinki",
    "滋賀県": "kinki",
    "京都府": "kinki",
    "大阪府": "kinki",
    "兵庫県": "kinki",
    "奈良県": "kinki",
    "和歌山県": "kinki",
    "鳥取県": "chugoku",
    "島根県": "chugoku",
    "岡山県": "chugoku",
    "広島県": "chugoku",
    "山口県": "chugoku",
    "徳島県": "shikoku",
    "香川県": "shikoku",
    "愛媛県": "shikoku",
    "高知県": "shikoku",
    "福岡県": "kyushu",
    "佐賀県": "kyushu",
    "長崎県": "kyushu",
    "熊本県": "kyushu",
    "大分県": "kyushu",
    "宮崎県": "kyushu",
    "鹿児島県": "kyushu",
    "沖縄県": "okinawa",
}

_SUFFIX_RE = re.compile(r"[都道府県]$")
_WS_RE = re.compile(r"\s+")


def _strip_suffix(p: str) -> str:
    return _SUFFIX_RE.sub("", p)


_BARE_TO_ZONE: Mapping[str, str] = {_strip_suffix(k): z for k, z in PREFECTURE_TO_ZONE.items()}


def zone_from_prefecture(prefecture: Optional[str]) -> Optional[str]:
    """
    "神奈川県" / " 神奈川 " → "kanto"。該当なしは None。
    """
    p = _WS_RE.sub("", str(prefecture or ""))
    if not p:
        return None
    zone = PREFECTURE_TO_ZONE.get(p)
    if zone:
        return zone
    # "京都" のように末尾が都道府県の字でも県名そのものがある
    return _BARE_TO_ZONE.get(p) or _BARE_TO_ZONE.get(_strip_suffix(p))


# ============================================================
# Rates
# ============================================================
def build_rate_map(rows: Iterable[Mapping[str, Any]]) -> RateMap:
    """
    {zone, size_tier, price_yen} の行から zone → tier → yen を作る。
    zone / tier が空、price が数値でない・負の行は捨てる（その枠は既定の料金表になる）。重複は後勝ち。
    """
    out: RateMap = {}
    for r in rows or ():
        zone = normalize_zone(r.get("zone"))
        tier = normalize_tier(r.get("size_tier"))
        yen = _to_int_or_none(r.get("price_yen"))
        if not zone or not tier or yen is None or yen < 0:
            continue
        out.setdefault(zone, {})[tier] = yen
    return out


def find_shipping_yen(rate_map: Optional[RateMap], zone: Optional[str], tier: Optional[str]) -> Optional[int]:
    z = normalize_zone(zone)
    t = normalize_tier(tier)
    if not rate_map or not z or not t:
        return None
    return rate_map.get(z, {}).get(t)


_FALLBACK_TABLE: Mapping[str, Tuple[int, int, int, int]] = {
    "kanto": (700, 900, 1100, 1300),
    "chubu": (750, 950, 1150, 1350),
    "kinki": (750, 950, 1150, 1350),
    "tohoku": (850, 1050, 1250, 1450),
    "chugoku": (950, 1150, 1350, 1550),
    "shikoku": (950, 1150, 1350, 1550),
    "kyushu": (1050, 1250, 1450, 1650),
    "hokkaido": (1200, 1400, 1600, 1800),
    "okinawa": (1400, 1600, 1800, 2000),
}

# マイグレーションの初期データと同じ値
FALLBACK_SHIPPING_RATES: tuple[dict[str, Any], ...] = tuple(
    {"zone": zone, "size_tier": tier, "price_yen": yen}
    for zone, prices in _FALLBACK_TABLE.items()
    for tier, yen in zip(SIZE_TIERS, prices)
)

FALLBACK_RATE_MAP: RateMap = build_rate_map(FALLBACK_SHIPPING_RATES)


def resolve_shipping_yen(
    config: Optional[ShippingConfig],
    zone: Optional[str],
    tier: Optional[str],
) -> ShippingResolution:
    """
    有効な料金表 → 既定の料金表 → 0 の順に探す。
    """
    if config is not None:
        yen = find_shipping_yen(config.rates, zone, tier)
        if yen is not None:
            return ShippingResolution(yen=yen, source="db", config_id=config.id)

    yen = find_shipping_yen(FALLBACK_RATE_MAP, zone, tier)
    if yen is not None:
        if config is not None:
            logger.warning("shipping rate missing in config_id=%s for %s/%s; using fallback", config.id, zone, tier)
        return ShippingResolution(yen=yen, source="fallback")

    return ShippingResolution(yen=0, source="none")
