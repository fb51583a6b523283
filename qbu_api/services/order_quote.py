from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from qbu_api.services.pricing import PrintQuote, round_to_step_yen
from qbu_api.services.shipping import ShippingResolution, SizeTierResult
from qbu_api.services.tickets import Ticket, compute_discount_yen, safe_apply_scope


@dataclass(frozen=True)
class OrderQuote:
    item_subtotal_yen: int
    shipping_yen: int
    total_before_discount_yen: int
    discount_yen: int
    total_yen: int
    ticket_apply_scope: Optional[str]
    shipping_zone: Optional[str]
    shipping_size_tier: str
    shipping_config_id: Optional[int]
    breakdown: Dict[str, Any]

    def summary(self) -> Dict[str, Any]:
        """API レスポンス用"""
        return {
            "item_subtotal_yen": self.item_subtotal_yen,
            "shipping_yen": self.shipping_yen,
            "total_before_discount_yen": self.total_before_discount_yen,
            "discount_yen": self.discount_yen,
            "total_yen": self.total_yen,
            "ticket_apply_scope": self.ticket_apply_scope,
            "shipping_zone": self.shipping_zone,
            "shipping_size_tier": self.shipping_size_tier,
        }


def assemble_order_quote(
    quote: PrintQuote,
    *,
    zone: Optional[str],
    size: SizeTierResult,
    shipping: ShippingResolution,
    ticket: Optional[Ticket] = None,
    pricing_config_id: Optional[int] = None,
) -> OrderQuote:
    """
    小計 + 送料 - 割引 = 合計 を組み立てる（DB アクセスなし）。

    - shipping_free チケットは合計を作る前に送料を 0 にする（breakdown には元の料金を残す）
    - チケットありの場合、合計を丸め単位で丸め直し、割引額はその差額にする
      → item_subtotal + shipping - discount == total が常に成り立つ
    """
    step = quote.rounding_step_yen
    item_subtotal = quote.subtotal_yen

    waived = ticket is not None and ticket.waives_shipping
    shipping_yen = 0 if waived else max(0, shipping.yen)
    total_before = item_subtotal + shipping_yen

    discount = 0
    final = total_before
    scope: Optional[str] = None

    if ticket is not None:
        scope = safe_apply_scope(ticket.apply_scope)
        wanted = compute_discount_yen(ticket.type, ticket.value, item_subtotal, shipping_yen, scope)
        final = round_to_step_yen(max(0, total_before - wanted), step)
        if final > total_before:
            # 丸めで請求額が上がる場合は割引なし
            final = total_before
        discount = total_before - final

    breakdown: Dict[str, Any] = {
        **quote.breakdown(),
        "pricing_config_id": pricing_config_id,
        "volume_cm3": quote.volume_cm3,
        "item_subtotal_yen": item_subtotal,
        "shipping": {
            "config_id": shipping.config_id,
            "source": shipping.source,
            "zone": zone,
            "size_tier": size.size_tier,
            "yen": shipping_yen,
            "rate_yen": shipping.yen,
            "waived": waived,
            "sum_cm": size.sum_cm,
            "capped_tier": size.capped,
        },
        "total_before_discount_yen": total_before,
        "total_yen": final,
    }
    if ticket is not None:
        breakdown["pre_discount_yen"] = total_before
        breakdown["discount_yen"] = discount
        breakdown["ticket"] = ticket.snapshot()

    return OrderQuote(
        item_subtotal_yen=item_subtotal,
        shipping_yen=shipping_yen,
        total_before_discount_yen=total_before,
        discount_yen=discount,
        total_yen=final,
        ticket_apply_scope=scope,
        shipping_zone=zone,
        shipping_size_tier=size.size_tier,
        shipping_config_id=shipping.config_id,
        breakdown=breakdown,
    )
