import pytest

from qbu_api.services.shipping import (
    FALLBACK_RATE_MAP,
    FALLBACK_SHIPPING_RATES,
    SIZE_TIERS,
    ZONES,
    ShippingConfig,
    build_rate_map,
    derive_size_tier,
    find_shipping_yen,
    resolve_shipping_yen,
    world_size_to_mm,
    zone_from_prefecture,
)


@pytest.mark.parametrize(
    "pref,zone",
    [
        ("神奈川県", "kanto"),
        (" 神奈川 ", "kanto"),
        ("北海道", "hokkaido"),
        ("大阪府", "kinki"),
        ("京都", "kinki"),
        ("沖縄県", "okinawa"),
        ("三重県", "kinki"),
        ("新潟県", "chubu"),
    ],
)
def test_zone_from_prefecture(pref, zone):
    assert zone_from_prefecture(pref) == zone


@pytest.mark.parametrize("pref", [None, "", "カリフォルニア"])
def test_zone_from_prefecture_unknown(pref):
    assert zone_from_prefecture(pref) is None


def _tier_for_sum_cm(sum_cm: float):
    # padding 0 で 1 辺に寄せる
    return derive_size_tier((sum_cm * 10, 0, 0), padding_mm=0)


def test_size_tier_boundaries():
    assert _tier_for_sum_cm(60).size_tier == "60"
    assert _tier_for_sum_cm(60.01).size_tier == "80"
    assert _tier_for_sum_cm(80).size_tier == "80"
    assert _tier_for_sum_cm(100).size_tier == "100"
    assert _tier_for_sum_cm(100.5).size_tier == "120"


def test_oversize_is_capped_not_rejected():
    r = _tier_for_sum_cm(500)
    assert r.size_tier == "120"
    assert r.capped is True
    assert _tier_for_sum_cm(99).capped is False


def test_size_tier_adds_padding_per_side():
    r = derive_size_tier((100, 50, 50), padding_mm=20)
    assert r.padded_mm == (120, 70, 70)
    assert r.sum_cm == pytest.approx(26.0)
    assert r.size_tier == "60"


def test_world_size_to_mm():
    assert world_size_to_mm((10, 1, 1), 10) == (100, 10, 10)
    assert world_size_to_mm((1, -1, 1), -5) == (0, 0, 0)


def test_fallback_table_is_complete():
    assert len(FALLBACK_SHIPPING_RATES) == len(ZONES) * len(SIZE_TIERS)
    for z in ZONES:
        for t in SIZE_TIERS:
            assert find_shipping_yen(FALLBACK_RATE_MAP, z, t) is not None
    assert find_shipping_yen(FALLBACK_RATE_MAP, "kanto", "60") == 700
    assert find_shipping_yen(FALLBACK_RATE_MAP, "okinawa", "120") == 2000


def test_build_rate_map_skips_bad_rows():
    m = build_rate_map(
        [
            {"zone": " KANTO ", "size_tier": 60, "price_yen": "650"},
            {"zone": "", "size_tier": "60", "price_yen": 1},
            {"zone": "kinki", "size_tier": "80", "price_yen": "abc"},
            {"zone": "kanto", "size_tier": "60", "price_yen": 660},
        ]
    )
    assert m == {"kanto": {"60": 660}}


def test_negative_rate_row_falls_back_to_default_table():
    rates = build_rate_map(
        [
            {"zone": "kanto", "size_tier": "60", "price_yen": -5000},
            {"zone": "kanto", "size_tier": "80", "price_yen": 0},
        ]
    )
    assert rates == {"kanto": {"80": 0}}

    r = resolve_shipping_yen(ShippingConfig(id=3, rates=rates), "kanto", "60")
    assert (r.yen, r.source) == (700, "fallback")


def test_resolve_prefers_config():
    cfg = ShippingConfig(id=7, rates={"kanto": {"60": 555}})
    r = resolve_shipping_yen(cfg, "kanto", "60")
    assert (r.yen, r.source, r.config_id) == (555, "db", 7)


def test_resolve_missing_cell_uses_fallback():
    cfg = ShippingConfig(id=7, rates={"kanto": {"60": 555}})
    r = resolve_shipping_yen(cfg, "okinawa", "120")
    assert (r.yen, r.source, r.config_id) == (2000, "fallback", None)


def test_resolve_without_config_or_zone():
    assert resolve_shipping_yen(None, "okinawa", "120").yen == 2000
    r = resolve_shipping_yen(None, None, "60")
    assert (r.yen, r.source) == (0, "none")
