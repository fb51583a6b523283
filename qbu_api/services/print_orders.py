from __future__ import annotations

"""
print_orders.py

印刷依頼の見積もり〜登録

流れ:
  1) ブロック座標の解釈・パーツ数チェック・スケール決定・体積
  2) 価格（有効な pricing_configs or 既定値）
  3) 送料（梱包サイズ区分 × 配送ゾーン）
  4) チケット検証と割引
  5) 合計の組み立て
登録時はさらに print_orders / print_order_shipping_secure を 1 トランザクションで INSERT する。
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Set

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from qbu_api.core.config import settings
from qbu_api.db.capabilities import SchemaCapabilities
from qbu_api.models.print_order import PrintOrderORM, PrintOrderShippingSecureORM
from qbu_api.schemas.print_order import DraftIn
from qbu_api.services.geometry import Coord, MixedBBox, compute_mixed_bbox, count_components, parse_keys
from qbu_api.services.order_quote import OrderQuote, assemble_order_quote
from qbu_api.services.pricing import PrintQuote, quote_print_price
from qbu_api.services.print_scale import (
    MODE_BLOCK_EDGE,
    MODE_MAX_SIDE,
    PrintScaleSetting,
    ResolvedPrintScale,
    estimate_solid_volume_cm3,
    parse_scale_setting,
    resolve_print_scale,
)
from qbu_api.services.repository import PricingRepository
from qbu_api.services.shipping import (
    PREFECTURE_TO_ZONE,
    SizeTierResult,
    derive_size_tier,
    resolve_shipping_yen,
    world_size_to_mm,
    zone_from_prefecture,
)
from qbu_api.services.tickets import Ticket, validate_ticket

logger = logging.getLogger(__name__)


class PrintOrderError(ValueError):
    """入力が印刷依頼として受け付けられない（400）"""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message


class OrderInsertFailed(RuntimeError):
    pass


# ============================================================
# Model
# ============================================================
@dataclass(frozen=True)
class PreparedModel:
    base: Set[Coord]
    support: Set[Coord]
    bbox: MixedBBox
    setting: PrintScaleSetting
    scale: ResolvedPrintScale
    volume_cm3: float
    size: SizeTierResult


def prepare_model(draft: DraftIn, *, require_single_part: bool = True) -> PreparedModel:
    if not draft.blocks:
        raise PrintOrderError("no_blocks")

    try:
        base = parse_keys(draft.blocks)
        support = parse_keys(draft.support_blocks)
    except ValueError as e:
        raise PrintOrderError("bad_request", str(e)) from e

    if require_single_part:
        parts = count_components(base, support)
        if parts > 1:
            raise PrintOrderError(
                "model_not_ready",
                f"モデルが{parts}パーツに分かれています。\n"
                "エディターで「印刷用につなぎ目を補完」を開き、浮動パーツが無い状態で依頼してください。",
            )

    bbox = compute_mixed_bbox(base, support)
    raw_setting = draft.scale_setting.model_dump() if draft.scale_setting else None
    setting = parse_scale_setting(raw_setting, draft.target_mm)
    scale = resolve_print_scale(bbox.max_dim, setting)

    volume = estimate_solid_volume_cm3(len(base), len(support), scale.mm_per_unit)
    size = derive_size_tier(world_size_to_mm(bbox.size, scale.mm_per_unit), settings.SIZE_PADDING_MM)

    return PreparedModel(
        base=base,
        support=support,
        bbox=bbox,
        setting=setting,
        scale=scale,
        volume_cm3=volume,
        size=size,
    )


# ============================================================
# Quote
# ============================================================
@dataclass(frozen=True)
class PricedOrder:
    model: PreparedModel
    print_quote: PrintQuote
    quote: OrderQuote
    pricing_config_id: Optional[int]
    ticket: Optional[Ticket]


def guess_zone(prefecture: Optional[str], address: Optional[str]) -> Optional[str]:
    """都道府県欄 → 住所の先頭の都道府県名 の順で配送ゾーンを決める"""
    zone = zone_from_prefecture(prefecture)
    if zone:
        return zone
    text = "".join((address or "").split())
    for pref, z in PREFECTURE_TO_ZONE.items():
        if text.startswith(pref):
            return z
    return None


def price_order(
    repo: PricingRepository,
    model: PreparedModel,
    *,
    zone: Optional[str],
    ticket_code: Optional[str] = None,
    user_id: Optional[uuid.UUID] = None,
    anon_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PricedOrder:
    """
    Raises:
        TicketInvalid: チケットが使えない
    """
    pricing = repo.active_pricing()
    if pricing is None:
        logger.warning("no active pricing config; using default pricing")
    print_quote = quote_print_price(model.volume_cm3, pricing.params if pricing else None)

    shipping_config = repo.active_shipping()
    if shipping_config is None:
        logger.warning("no active shipping config; using fallback rates")
    shipping = resolve_shipping_yen(shipping_config, zone, model.size.size_tier)

    ticket = None
    if ticket_code:
        ticket = validate_ticket(repo, ticket_code, user_id=user_id, anon_id=anon_id, now=now)

    quote = assemble_order_quote(
        print_quote,
        zone=zone,
        size=model.size,
        shipping=shipping,
        ticket=ticket,
        pricing_config_id=pricing.id if pricing else None,
    )
    return PricedOrder(
        model=model,
        print_quote=print_quote,
        quote=quote,
        pricing_config_id=pricing.id if pricing else None,
        ticket=ticket,
    )


# ============================================================
# Insert
# ============================================================
def build_order_values(
    priced: PricedOrder,
    draft: DraftIn,
    *,
    order_id: uuid.UUID,
    user_id: Optional[uuid.UUID],
    anon_id: Optional[str],
    session_id: Optional[str],
    customer_note: Optional[str],
) -> dict[str, Any]:
    m = priced.model
    q = priced.quote
    s = m.scale
    now = datetime.now(timezone.utc)

    return {
        "id": order_id,
        "created_at": now,
        "updated_at": now,
        "user_id": user_id,
        "anon_id": anon_id,
        "session_id": session_id,
        "app_version": settings.APP_VERSION,
        "status": "submitted",
        "payment_status": "unpaid",
        "currency": "JPY",
        "pricing_config_id": priced.pricing_config_id,
        "quote_total_yen": q.total_yen,
        "quote_subtotal_yen": q.item_subtotal_yen,
        "discount_yen": q.discount_yen if priced.ticket else None,
        "ticket_id": priced.ticket.id if priced.ticket else None,
        "ticket_apply_scope": q.ticket_apply_scope,
        "shipping_config_id": q.shipping_config_id,
        "shipping_zone": q.shipping_zone,
        "shipping_size_tier": q.shipping_size_tier,
        "shipping_yen": q.shipping_yen,
        "quote_volume_cm3": priced.print_quote.volume_cm3,
        "quote_breakdown": q.breakdown,
        "model_name": draft.base_name or "Q-BU",
        "model_fingerprint": draft.model_fingerprint,
        "block_count": len(m.base),
        "support_block_count": len(m.support),
        "max_dim_mm": s.max_side_mm,
        "warn_exceeds_max": bool(s.warn_too_large),
        "scale_mode": s.mode,
        "block_edge_mm": s.mm_per_unit if s.mode == MODE_BLOCK_EDGE else None,
        "target_max_side_mm": s.max_side_mm if s.mode == MODE_MAX_SIDE else None,
        "mm_per_unit": s.mm_per_unit,
        "customer_note": customer_note,
        "model_data": {
            "version": 4,
            "kind": "print_order",
            "blocks": list(draft.blocks),
            "support_blocks": list(draft.support_blocks),
            "scale_setting": {"mode": m.setting.mode, "value_mm": m.setting.value_mm},
            "mm_per_unit": s.mm_per_unit,
            "max_side_mm": s.max_side_mm,
            "mode": s.mode,
        },
    }


def insert_order(
    db: Session,
    caps: SchemaCapabilities,
    values: dict[str, Any],
    *,
    shipping_enc: str,
    email_hash: Optional[str],
    postal_code_prefix: Optional[str],
) -> uuid.UUID:
    """
    注文と暗号化済み配送先を同じトランザクションで登録する。
    起動時に存在しないと分かっている snapshot 列だけ外す。
    """
    order_id = values["id"]
    try:
        db.execute(insert(PrintOrderORM.__table__).values(**caps.filter_print_order_values(values)))
        db.add(
            PrintOrderShippingSecureORM(
                order_id=order_id,
                shipping_enc=shipping_enc,
                email_hash=email_hash,
                postal_code_prefix=postal_code_prefix,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("print order insert failed")
        raise OrderInsertFailed(str(e.__class__.__name__)) from e

    logger.info(
        "print order accepted order_id=%s total_yen=%s ticket=%s",
        order_id,
        values.get("quote_total_yen"),
        values.get("ticket_id"),
    )
    return order_id
