import uuid

import pytest

from qbu_api.services.order_quote import assemble_order_quote
from qbu_api.services.pricing import PricingParams, quote_print_price
from qbu_api.services.shipping import ShippingResolution, derive_size_tier
from qbu_api.services.tickets import Ticket

SIZE_60 = derive_size_tier((100, 10, 10), padding_mm=20)
KANTO_60 = ShippingResolution(yen=700, source="fallback")


def _ticket(type="percent", value=None, apply_scope="subtotal", shipping_free=False) -> Ticket:
    return Ticket(
        id=uuid.uuid4(),
        type=type,
        value=value,
        apply_scope=apply_scope,
        shipping_free=shipping_free,
        is_active=True,
        expires_at=None,
        max_total_uses=None,
        max_uses_per_user=None,
    )


def _assemble(ticket=None, volume=10, shipping=KANTO_60, params=None):
    return assemble_order_quote(
        quote_print_price(volume, params),
        zone="kanto",
        size=SIZE_60,
        shipping=shipping,
        ticket=ticket,
    )


def test_no_ticket():
    q = _assemble()
    assert q.item_subtotal_yen == 1400
    assert q.shipping_yen == 700
    assert q.total_before_discount_yen == 2100
    assert q.discount_yen == 0
    assert q.total_yen == 2100
    assert q.ticket_apply_scope is None
    assert "ticket" not in q.breakdown


def test_percent_on_subtotal():
    q = _assemble(_ticket("percent", 20))
    assert q.total_yen == 1820
    assert q.discount_yen == 280
    assert q.ticket_apply_scope == "subtotal"
    assert q.breakdown["pre_discount_yen"] == 2100
    assert q.breakdown["ticket"]["type"] == "percent"


def test_percent_on_total():
    q = _assemble(_ticket("percent", 20, apply_scope="total"))
    assert q.discount_yen == 420
    assert q.total_yen == 1680


def test_shipping_free_waives_shipping_before_total():
    q = _assemble(_ticket("shipping_free"))
    assert q.shipping_yen == 0
    assert q.total_before_discount_yen == 1400
    assert q.discount_yen == 0
    assert q.total_yen == 1400
    assert q.breakdown["shipping"]["waived"] is True
    assert q.breakdown["shipping"]["rate_yen"] == 700


def test_shipping_free_flag_on_other_type():
    q = _assemble(_ticket("fixed", 100, shipping_free=True))
    assert q.shipping_yen == 0
    assert q.total_yen == 1300


def test_free_ticket_on_total_is_zero():
    q = _assemble(_ticket("free", apply_scope="total"))
    assert q.total_yen == 0
    assert q.discount_yen == 2100


def test_discount_is_rounded_into_step():
    # 小計 1400 + 送料 700、fixed 333 → 1767 → 1770。割引は差額の 330
    q = _assemble(_ticket("fixed", 333))
    assert q.total_yen == 1770
    assert q.discount_yen == 330


def test_rounding_never_raises_total():
    # 丸め単位 1000 のとき、小さい割引は 0 に丸まる
    params = PricingParams(base_fee_yen=800, per_cm3_yen=60, min_fee_yen=1200, rounding_step_yen=1000)
    ship = ShippingResolution(yen=700, source="db", config_id=1)
    q = _assemble(_ticket("fixed", 1), shipping=ship, params=params)
    assert q.item_subtotal_yen == 1000
    assert q.total_before_discount_yen == 1700
    assert q.total_yen == 1700
    assert q.discount_yen == 0


@pytest.mark.parametrize("kind,value", [("percent", 7), ("percent", 33), ("fixed", 1234), ("fixed", 9), ("free", None)])
@pytest.mark.parametrize("scope", ["subtotal", "total"])
@pytest.mark.parametrize("volume", [0, 3.3, 10, 42.42])
def test_totals_reconcile(kind, value, scope, volume):
    q = _assemble(_ticket(kind, value, apply_scope=scope), volume=volume)
    assert q.item_subtotal_yen + q.shipping_yen - q.discount_yen == q.total_yen
    assert 0 <= q.discount_yen <= q.total_before_discount_yen
    assert q.total_yen <= q.total_before_discount_yen
    assert q.breakdown["total_yen"] == q.total_yen


def test_breakdown_shipping_snapshot():
    ship = ShippingResolution(yen=900, source="db", config_id=3)
    q = _assemble(shipping=ship)
    s = q.breakdown["shipping"]
    assert s["config_id"] == 3
    assert s["source"] == "db"
    assert s["zone"] == "kanto"
    assert s["size_tier"] == "60"
    assert s["capped_tier"] is False
    assert q.shipping_config_id == 3


def test_negative_shipping_never_makes_total_negative():
    q = _assemble(shipping=ShippingResolution(yen=-5000, source="db", config_id=1))
    assert q.shipping_yen == 0
    assert q.total_before_discount_yen == 1400
    assert q.total_yen == 1400
