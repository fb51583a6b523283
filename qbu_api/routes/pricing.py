from __future__ import annotations

from fastapi import APIRouter, Depends

from qbu_api.schemas.pricing import PricingActiveOut, PricingOut
from qbu_api.schemas.shipping import ShippingActiveOut, ShippingOut, ShippingRateRow
from qbu_api.services.pricing import DEFAULT_PRICING, PricingConfig
from qbu_api.services.repository import PricingRepository, get_pricing_repository
from qbu_api.services.shipping import FALLBACK_SHIPPING_RATES, SIZE_TIERS, ZONES

router = APIRouter(tags=["pricing"])


def pricing_out(cfg: PricingConfig) -> PricingOut:
    p = cfg.params
    return PricingOut(
        config_id=cfg.id,
        currency=cfg.currency,
        base_fee_yen=p.base_fee_yen,
        per_cm3_yen=p.per_cm3_yen,
        min_fee_yen=p.min_fee_yen,
        rounding_step_yen=p.rounding_step_yen,
        effective_from=cfg.effective_from,
        note=cfg.note,
    )


@router.get("/pricing/active", response_model=PricingActiveOut)
def get_active_pricing(repo: PricingRepository = Depends(get_pricing_repository)):
    cfg = repo.active_pricing()
    if cfg is None:
        d = DEFAULT_PRICING
        fallback = PricingOut(
            base_fee_yen=d.base_fee_yen,
            per_cm3_yen=d.per_cm3_yen,
            min_fee_yen=d.min_fee_yen,
            rounding_step_yen=d.rounding_step_yen,
            note="default",
        )
        return PricingActiveOut(pricing=fallback, source="fallback")
    return PricingActiveOut(pricing=pricing_out(cfg), source="db")


def _sorted_rows(rate_map: dict[str, dict[str, int]]) -> list[ShippingRateRow]:
    out: list[ShippingRateRow] = []
    for zone in sorted(rate_map, key=lambda z: ZONES.index(z) if z in ZONES else len(ZONES)):
        tiers = rate_map[zone]
        for tier in sorted(tiers, key=lambda t: SIZE_TIERS.index(t) if t in SIZE_TIERS else len(SIZE_TIERS)):
            out.append(ShippingRateRow(zone=zone, size_tier=tier, price_yen=tiers[tier]))
    return out


@router.get("/shipping/active", response_model=ShippingActiveOut)
def get_active_shipping(repo: PricingRepository = Depends(get_pricing_repository)):
    cfg = repo.active_shipping()
    if cfg is None:
        fallback = ShippingOut(
            note="default",
            rates=[ShippingRateRow(**r) for r in FALLBACK_SHIPPING_RATES],
        )
        return ShippingActiveOut(shipping=fallback, source="fallback")

    return ShippingActiveOut(
        shipping=ShippingOut(
            config_id=cfg.id,
            currency=cfg.currency,
            effective_from=cfg.effective_from,
            note=cfg.note,
            rates=_sorted_rows(cfg.rates),
        ),
        source="db",
    )
