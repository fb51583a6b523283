from __future__ import annotations

import logging
import math
from datetime import timezone
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query
from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from qbu_api.core.errors import bad_request, server_error
from qbu_api.db.session import get_db, get_session_factory
from qbu_api.dependencies.auth import AdminUser, get_current_admin
from qbu_api.dependencies.permissions import require_roles
from qbu_api.models.ticket import TicketORM, TicketRedemptionORM
from qbu_api.schemas.ticket import (
    TicketCreateIn,
    TicketCreateOut,
    TicketListOut,
    TicketOut,
    TicketToggleIn,
    TicketToggleOut,
    TicketWithUsageOut,
)
from qbu_api.services import side_effects
from qbu_api.services.tickets import (
    FIXED_MAX_YEN,
    PERCENT_MAX,
    generate_ticket_code,
    hash_ticket_code,
    safe_apply_scope,
    safe_ticket_type,
    ticket_code_prefix,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])

MAX_USES = 1_000_000


def _int_or_none(v: Optional[float]) -> Optional[int]:
    if v is None or not math.isfinite(v):
        return None
    return int(math.floor(v + 0.5))


def _clamp_opt(v: Optional[int], lo: int, hi: int) -> Optional[int]:
    return None if v is None else max(lo, min(hi, v))


def _audit_view(t: TicketORM) -> dict[str, Any]:
    return TicketOut.model_validate(t).model_dump(mode="json")


# =========================================================
# List
# =========================================================
@router.get("/admin/tickets", response_model=TicketListOut)
def list_tickets(
    limit: int = Query(200, ge=1, le=500),
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    used = (
        select(TicketRedemptionORM.ticket_id, func.count().label("used_total"))
        .group_by(TicketRedemptionORM.ticket_id)
        .subquery()
    )
    stmt = (
        select(TicketORM, func.coalesce(used.c.used_total, 0))
        .outerjoin(used, used.c.ticket_id == TicketORM.id)
        .order_by(desc(TicketORM.created_at))
        .limit(limit)
    )
    try:
        rows = db.execute(stmt).all()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("tickets query failed")
        raise server_error("tickets_query_failed", str(e.__class__.__name__))

    tickets = [
        TicketWithUsageOut(**TicketOut.model_validate(t).model_dump(), used_total=int(n or 0)) for t, n in rows
    ]
    return TicketListOut(tickets=tickets)


# =========================================================
# Create
# =========================================================
@router.post("/admin/tickets", response_model=TicketCreateOut)
def create_ticket(
    body: TicketCreateIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    admin: AdminUser = Depends(require_roles("owner", "admin")),
):
    ticket_type = safe_ticket_type(body.type)
    if ticket_type is None:
        raise bad_request("bad_request", "type が不正です")

    value: Optional[int] = None
    if ticket_type == "percent":
        value = _clamp_opt(_int_or_none(body.value), 0, PERCENT_MAX)
    elif ticket_type == "fixed":
        value = _clamp_opt(_int_or_none(body.value), 0, FIXED_MAX_YEN)

    expires_at = body.expires_at
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)

    # 生コードはこのレスポンスでだけ返す
    code = generate_ticket_code()

    row = TicketORM(
        created_by=admin.user_id,
        type=ticket_type,
        value=value,
        currency="JPY",
        apply_scope=safe_apply_scope(body.apply_scope),
        shipping_free=bool(body.shipping_free or ticket_type == "shipping_free"),
        code_hash=hash_ticket_code(code),
        code_prefix=ticket_code_prefix(code),
        is_active=True,
        expires_at=expires_at,
        max_total_uses=_clamp_opt(_int_or_none(body.max_total_uses), 0, MAX_USES),
        max_uses_per_user=_clamp_opt(_int_or_none(body.max_uses_per_user), 0, MAX_USES),
        constraints=body.constraints,
        note=body.note,
    )

    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("ticket insert failed")
        raise server_error("ticket_insert_failed", str(e.__class__.__name__))

    logger.info("ticket created id=%s type=%s prefix=%s", row.id, row.type, row.code_prefix)

    background.add_task(
        side_effects.record_audit,
        session_factory,
        actor_user_id=admin.user_id,
        actor_role=admin.role,
        action="tickets.create",
        target_table="tickets",
        target_id=str(row.id),
        before=None,
        after=_audit_view(row),
        note=f"code_prefix={row.code_prefix}",
    )

    return TicketCreateOut(ticket=TicketOut.model_validate(row), code=code)


# =========================================================
# Toggle
# =========================================================
@router.post("/admin/tickets/{ticket_id}/toggle", response_model=TicketToggleOut)
def toggle_ticket(
    ticket_id: UUID,
    background: BackgroundTasks,
    body: Optional[TicketToggleIn] = Body(default=None),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    admin: AdminUser = Depends(require_roles("owner", "admin")),
):
    row = db.get(TicketORM, ticket_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Ticket not found")

    before = _audit_view(row)
    wanted = body.is_active if body is not None else None
    row.is_active = (not bool(row.is_active)) if wanted is None else bool(wanted)

    try:
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("ticket toggle failed")
        raise server_error("ticket_update_failed", str(e.__class__.__name__))

    background.add_task(
        side_effects.record_audit,
        session_factory,
        actor_user_id=admin.user_id,
        actor_role=admin.role,
        action="tickets.toggle",
        target_table="tickets",
        target_id=str(row.id),
        before=before,
        after=_audit_view(row),
    )

    return TicketToggleOut(ticket=TicketOut.model_validate(row))
