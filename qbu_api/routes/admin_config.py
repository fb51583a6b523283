from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy import desc, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from qbu_api.core.errors import server_error
from qbu_api.db.session import get_db, get_session_factory
from qbu_api.dependencies.auth import AdminUser
from qbu_api.dependencies.permissions import require_roles
from qbu_api.models.pricing_config import PricingConfigORM
from qbu_api.models.shipping import ShippingConfigORM, ShippingRateORM
from qbu_api.routes.pricing import pricing_out
from qbu_api.schemas.pricing import PricingUpdateIn, PricingUpdateOut
from qbu_api.schemas.shipping import ShippingUpdateIn, ShippingUpdateOut
from qbu_api.services import side_effects
from qbu_api.services.repository import pricing_from_row
from qbu_api.services.shipping import SIZE_TIERS, ZONES, normalize_tier, normalize_zone

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])

MAX_YEN = 1_000_000
MAX_STEP_YEN = 10_000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_int(v: Any, fallback: int) -> int:
    if v is None:
        return fallback
    try:
        f = float(v)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(f):
        return fallback
    return int(math.floor(f + 0.5))


def _clamp(n: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, n))


def _jsonable(row: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in fields:
        v = getattr(row, f, None)
        out[f] = v.isoformat() if isinstance(v, datetime) else v
    return out


_PRICING_FIELDS = (
    "id",
    "is_active",
    "effective_from",
    "currency",
    "base_fee_yen",
    "per_cm3_yen",
    "min_fee_yen",
    "rounding_step_yen",
    "note",
)
_SHIPPING_FIELDS = ("id", "is_active", "effective_from", "currency", "note")


def _active_row(db: Session, model) -> Optional[Any]:
    return db.execute(
        select(model).where(model.is_active == True).order_by(desc(model.effective_from)).limit(1)  # noqa: E712
    ).scalar_one_or_none()


# =========================================================
# Pricing
# =========================================================
@router.post("/admin/pricing/update", response_model=PricingUpdateOut)
def update_pricing(
    body: PricingUpdateIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    admin: AdminUser = Depends(require_roles("owner")),
):
    """
    新しい料金設定を有効化する（owner のみ）。
    旧行の無効化と新行の追加は同じトランザクション。失敗したら旧行が有効なまま残る。
    """
    before = _active_row(db, PricingConfigORM)
    before_snapshot = _jsonable(before, _PRICING_FIELDS) if before else None

    row = PricingConfigORM(
        created_by=admin.user_id,
        is_active=True,
        effective_from=_utcnow(),
        currency="JPY",
        base_fee_yen=_clamp(_to_int(body.base_fee_yen, 800), 0, MAX_YEN),
        per_cm3_yen=_clamp(_to_int(body.per_cm3_yen, 60), 0, MAX_YEN),
        min_fee_yen=_clamp(_to_int(body.min_fee_yen, 1200), 0, MAX_YEN),
        rounding_step_yen=_clamp(_to_int(body.rounding_step_yen, 10), 1, MAX_STEP_YEN),
        note=body.note,
    )

    try:
        db.execute(
            update(PricingConfigORM).where(PricingConfigORM.is_active == True).values(is_active=False)  # noqa: E712
        )
        db.add(row)
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("pricing update failed")
        raise server_error("pricing_update_failed", str(e.__class__.__name__))

    logger.info("pricing config activated id=%s by=%s", row.id, admin.user_id)

    background.add_task(
        side_effects.record_audit,
        session_factory,
        actor_user_id=admin.user_id,
        actor_role=admin.role,
        action="pricing.update",
        target_table="pricing_configs",
        target_id=str(row.id),
        before=before_snapshot,
        after=_jsonable(row, _PRICING_FIELDS),
        note="activate_new_pricing",
    )

    return PricingUpdateOut(pricing=pricing_out(pricing_from_row(row)))


# =========================================================
# Shipping
# =========================================================
def _full_matrix(body: ShippingUpdateIn) -> list[tuple[str, str, int]]:
    """9 ゾーン × 4 区分を必ず全部作る（指定が無いマスは 0 円）"""
    prices: dict[tuple[str, str], int] = {(z, t): 0 for z in ZONES for t in SIZE_TIERS}
    for r in body.rates:
        key = (normalize_zone(r.zone), normalize_tier(r.size_tier))
        if key not in prices:
            continue
        prices[key] = max(0, _to_int(r.price_yen, 0))
    return [(z, t, prices[(z, t)]) for z in ZONES for t in SIZE_TIERS]


@router.post("/admin/shipping/update", response_model=ShippingUpdateOut)
def update_shipping(
    body: ShippingUpdateIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    admin: AdminUser = Depends(require_roles("owner")),
):
    before = _active_row(db, ShippingConfigORM)
    before_snapshot = _jsonable(before, _SHIPPING_FIELDS) if before else None

    matrix = _full_matrix(body)
    cfg = ShippingConfigORM(
        created_by=admin.user_id,
        is_active=True,
        effective_from=_utcnow(),
        currency="JPY",
        note=body.note,
    )
    cfg.rates = [ShippingRateORM(zone=z, size_tier=t, price_yen=yen) for z, t, yen in matrix]

    try:
        db.execute(
            update(ShippingConfigORM).where(ShippingConfigORM.is_active == True).values(is_active=False)  # noqa: E712
        )
        db.add(cfg)
        db.commit()
        db.refresh(cfg)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("shipping update failed")
        raise server_error("shipping_update_failed", str(e.__class__.__name__))

    logger.info("shipping config activated id=%s by=%s", cfg.id, admin.user_id)

    background.add_task(
        side_effects.record_audit,
        session_factory,
        actor_user_id=admin.user_id,
        actor_role=admin.role,
        action="shipping.update",
        target_table="shipping_configs",
        target_id=str(cfg.id),
        before=before_snapshot,
        after={**_jsonable(cfg, _SHIPPING_FIELDS), "rates": [list(r) for r in matrix]},
        note="activate_new_shipping",
    )

    return ShippingUpdateOut(shipping_config_id=int(cfg.id))
