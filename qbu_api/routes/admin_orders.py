from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from qbu_api.core.errors import bad_request, not_configured, server_error
from qbu_api.db.session import get_db, get_session_factory
from qbu_api.dependencies.auth import AdminUser
from qbu_api.dependencies.permissions import require_roles
from qbu_api.models.print_order import PrintOrderORM, PrintOrderShippingSecureORM
from qbu_api.schemas.admin import OrderAdminOut, OrderShippingOut, OrderUpdateIn, OrderUpdateOut, ShippingOut
from qbu_api.services import side_effects
from qbu_api.services.shipping_crypto import ShippingCryptoError, ShippingKeyMissing, decrypt_shipping

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])

# 配送先（個人情報）の閲覧と注文の更新は owner / admin / ops のみ
ORDER_ROLES = ("owner", "admin", "ops")


def _audit_view(o: PrintOrderORM) -> dict[str, Any]:
    return OrderAdminOut.model_validate(o).model_dump(mode="json")


# =========================================================
# Shipping (decrypt)
# =========================================================
@router.get("/admin/orders/{order_id}/shipping", response_model=OrderShippingOut)
def get_order_shipping(
    order_id: UUID,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(require_roles(*ORDER_ROLES)),
):
    row = db.get(PrintOrderShippingSecureORM, order_id)
    if row is None or not row.shipping_enc:
        raise HTTPException(status_code=404, detail="Shipping not found")

    try:
        info = decrypt_shipping(row.shipping_enc)
    except ShippingKeyMissing:
        raise not_configured("shipping_encryption", "配送先の暗号化キーが未設定です。")
    except ShippingCryptoError as e:
        logger.exception("shipping decrypt failed order_id=%s", order_id)
        raise server_error("decrypt_failed", str(e))

    logger.info("shipping viewed order_id=%s by=%s role=%s", order_id, admin.user_id, admin.role)
    return OrderShippingOut(shipping=ShippingOut(**asdict(info)))


# =========================================================
# Update (status / payment_status / admin_note)
# =========================================================
@router.post("/admin/orders/{order_id}/update", response_model=OrderUpdateOut)
def update_order(
    order_id: UUID,
    body: OrderUpdateIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    admin: AdminUser = Depends(require_roles(*ORDER_ROLES)),
):
    row = db.get(PrintOrderORM, order_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Order not found")

    patch: dict[str, Any] = {}
    if body.status:
        patch["status"] = body.status
    if body.payment_status:
        patch["payment_status"] = body.payment_status
    if body.admin_note is not None:
        patch["admin_note"] = body.admin_note
    if not patch:
        raise bad_request("no_changes")

    before = _audit_view(row)
    for k, v in patch.items():
        setattr(row, k, v)

    try:
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("print order update failed order_id=%s", order_id)
        raise server_error("update_failed", str(e.__class__.__name__))

    logger.info("print order updated order_id=%s fields=%s", order_id, sorted(patch))

    background.add_task(
        side_effects.record_audit,
        session_factory,
        actor_user_id=admin.user_id,
        actor_role=admin.role,
        action="print_orders.update",
        target_table="print_orders",
        target_id=str(order_id),
        before=before,
        after=_audit_view(row),
        note="admin_api_update",
    )

    return OrderUpdateOut(order=OrderAdminOut.model_validate(row))
