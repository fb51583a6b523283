from __future__ import annotations

"""
repository.py

価格・送料・チケットの読み取り窓口

- DB の行はここで型付きの PricingConfig / ShippingConfig / Ticket に変換する
- 価格・送料の取得失敗は None（呼び出し側が既定値に落とす）
- 利用回数の取得失敗は RedemptionCountError（検証失敗として扱われる）
"""

import logging
import uuid
from typing import Optional

from fastapi import Depends
from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from qbu_api.db.session import get_db
from qbu_api.models.pricing_config import PricingConfigORM
from qbu_api.models.shipping import ShippingConfigORM
from qbu_api.models.ticket import TicketORM, TicketRedemptionORM
from qbu_api.services.pricing import PricingConfig, PricingParams
from qbu_api.services.shipping import ShippingConfig, build_rate_map
from qbu_api.services.tickets import RedemptionCountError, Ticket, safe_apply_scope

logger = logging.getLogger(__name__)


def _opt_int(v) -> Optional[int]:
    try:
        return None if v is None else int(v)
    except (TypeError, ValueError):
        return None


def _opt_float(v) -> Optional[float]:
    try:
        return None if v is None else float(v)
    except (TypeError, ValueError):
        return None


# ============================================================
# Row -> entity
# ============================================================
def pricing_from_row(row: PricingConfigORM) -> PricingConfig:
    return PricingConfig(
        id=int(row.id),
        params=PricingParams.from_values(
            row.base_fee_yen,
            row.per_cm3_yen,
            row.min_fee_yen,
            row.rounding_step_yen,
        ),
        currency=row.currency or "JPY",
        effective_from=row.effective_from,
        note=row.note,
    )


def shipping_from_row(row: ShippingConfigORM) -> ShippingConfig:
    rates = build_rate_map(
        {"zone": r.zone, "size_tier": r.size_tier, "price_yen": r.price_yen} for r in row.rates
    )
    return ShippingConfig(
        id=int(row.id),
        rates=rates,
        currency=row.currency or "JPY",
        effective_from=row.effective_from,
        note=row.note,
    )


def ticket_from_row(row: TicketORM) -> Ticket:
    return Ticket(
        id=row.id,
        type=str(row.type or ""),
        value=_opt_float(row.value),
        apply_scope=safe_apply_scope(row.apply_scope),
        shipping_free=bool(row.shipping_free),
        is_active=row.is_active is True,
        expires_at=row.expires_at,
        max_total_uses=_opt_int(row.max_total_uses),
        max_uses_per_user=_opt_int(row.max_uses_per_user),
        code_prefix=row.code_prefix,
    )


# ============================================================
# Repository
# ============================================================
class PricingRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def active_pricing(self) -> Optional[PricingConfig]:
        try:
            row = self.db.execute(
                select(PricingConfigORM)
                .where(PricingConfigORM.is_active == True)  # noqa: E712
                .order_by(desc(PricingConfigORM.effective_from))
                .limit(1)
            ).scalar_one_or_none()
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning("active pricing lookup failed; using defaults", exc_info=True)
            return None
        return pricing_from_row(row) if row else None

    def active_shipping(self) -> Optional[ShippingConfig]:
        try:
            row = self.db.execute(
                select(ShippingConfigORM)
                .where(ShippingConfigORM.is_active == True)  # noqa: E712
                .order_by(desc(ShippingConfigORM.effective_from))
                .limit(1)
            ).scalar_one_or_none()
            if row is None or not row.rates:
                return None
            return shipping_from_row(row)
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning("active shipping lookup failed; using fallback rates", exc_info=True)
            return None

    def find_ticket_by_hash(self, code_hash: str) -> Optional[Ticket]:
        try:
            row = self.db.execute(
                select(TicketORM).where(TicketORM.code_hash == code_hash)
            ).scalar_one_or_none()
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning("ticket lookup failed", exc_info=True)
            return None
        return ticket_from_row(row) if row else None

    def count_redemptions(
        self,
        ticket_id: uuid.UUID,
        *,
        user_id: Optional[uuid.UUID] = None,
        anon_id: Optional[str] = None,
    ) -> int:
        stmt = select(func.count()).select_from(TicketRedemptionORM).where(TicketRedemptionORM.ticket_id == ticket_id)
        if user_id is not None:
            stmt = stmt.where(TicketRedemptionORM.user_id == user_id)
        elif anon_id:
            stmt = stmt.where(TicketRedemptionORM.anon_id == anon_id)
        try:
            return int(self.db.execute(stmt).scalar_one() or 0)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RedemptionCountError(str(e)) from e


def get_pricing_repository(db: Session = Depends(get_db)) -> PricingRepository:
    return PricingRepository(db)
