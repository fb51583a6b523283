"""テスト用のデータ投入ヘルパー"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from qbu_api.core.security import create_access_token
from qbu_api.models.admin_role import AdminRoleORM
from qbu_api.models.pricing_config import PricingConfigORM
from qbu_api.models.shipping import ShippingConfigORM, ShippingRateORM
from qbu_api.models.ticket import TicketORM
from qbu_api.services.tickets import hash_ticket_code, ticket_code_prefix

BASE = "/api/v1"


def _utcnow():
    return datetime.now(timezone.utc)


def seed_pricing(db, *, base=800, per_cm3=60, min_fee=1200, step=10, note="test") -> PricingConfigORM:
    row = PricingConfigORM(
        is_active=True,
        effective_from=_utcnow(),
        base_fee_yen=base,
        per_cm3_yen=per_cm3,
        min_fee_yen=min_fee,
        rounding_step_yen=step,
        note=note,
    )
    db.add(row)
    db.commit()
    return row


def seed_shipping(db, rates: dict[tuple[str, str], int], note="test") -> ShippingConfigORM:
    cfg = ShippingConfigORM(is_active=True, effective_from=_utcnow(), note=note)
    cfg.rates = [ShippingRateORM(zone=z, size_tier=t, price_yen=yen) for (z, t), yen in rates.items()]
    db.add(cfg)
    db.commit()
    return cfg


def seed_ticket(
    db,
    code: str,
    *,
    type: str = "percent",
    value: Optional[float] = None,
    apply_scope: str = "subtotal",
    shipping_free: bool = False,
    is_active: bool = True,
    expires_at: Optional[datetime] = None,
    max_total_uses: Optional[int] = None,
    max_uses_per_user: Optional[int] = None,
) -> TicketORM:
    row = TicketORM(
        type=type,
        value=value,
        apply_scope=apply_scope,
        shipping_free=shipping_free,
        code_hash=hash_ticket_code(code),
        code_prefix=ticket_code_prefix(code),
        is_active=is_active,
        expires_at=expires_at,
        max_total_uses=max_total_uses,
        max_uses_per_user=max_uses_per_user,
    )
    db.add(row)
    db.commit()
    return row


def seed_admin(
    db,
    role: str = "owner",
    *,
    is_active: bool = True,
    email: Optional[str] = None,
    notify: bool = False,
    user_id: Optional[uuid.UUID] = None,
) -> dict[str, str]:
    """admin_roles に行を入れて Authorization ヘッダを返す"""
    user_id = user_id or uuid.uuid4()
    db.add(AdminRoleORM(user_id=user_id, role=role, is_active=is_active, email=email, notify_print_request=notify))
    db.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user_id))}"}


def row_draft(n: int = 10, edge_mm: float = 10.0) -> dict:
    """x 方向に n 個並べたモデル（blockEdge 指定）"""
    return {
        "baseName": "Bar",
        "modelFingerprint": "fp-test",
        "blocks": [f"{x},0,0" for x in range(n)],
        "supportBlocks": [],
        "scaleSetting": {"mode": "blockEdge", "blockEdgeMm": edge_mm},
    }


def customer(**overrides) -> dict:
    c = {
        "name": "山田 太郎",
        "email": "taro@example.com",
        "postalCode": "220-0012",
        "prefecture": "神奈川県",
        "city": "横浜市西区",
        "town": "みなとみらい",
        "addressLine2": "1-1-1",
    }
    c.update(overrides)
    return c
