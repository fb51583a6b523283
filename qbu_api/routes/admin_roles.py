from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from qbu_api.core.errors import bad_request, server_error
from qbu_api.db.session import get_db, get_session_factory
from qbu_api.dependencies.auth import AdminUser, get_current_admin
from qbu_api.dependencies.permissions import require_roles
from qbu_api.models.admin_role import AdminRoleORM
from qbu_api.schemas.admin import AdminRoleListOut, AdminRoleOut, AdminRoleUpsertIn, AdminRoleUpsertOut
from qbu_api.services import side_effects

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


def _audit_view(r: Optional[AdminRoleORM]) -> Optional[dict[str, Any]]:
    return AdminRoleOut.model_validate(r).model_dump(mode="json") if r is not None else None


def _is_active_owner(r: Optional[AdminRoleORM]) -> bool:
    return r is not None and r.is_active is True and r.role == "owner"


# =========================================================
# List
# =========================================================
@router.get("/admin/roles", response_model=AdminRoleListOut)
def list_admin_roles(
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    try:
        rows = db.execute(select(AdminRoleORM).order_by(desc(AdminRoleORM.updated_at))).scalars().all()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("admin roles query failed")
        raise server_error("roles_query_failed", str(e.__class__.__name__))
    return AdminRoleListOut(roles=[AdminRoleOut.model_validate(r) for r in rows])


# =========================================================
# Upsert (owner only)
# =========================================================
@router.post("/admin/roles", response_model=AdminRoleUpsertOut)
def upsert_admin_role(
    body: AdminRoleUpsertIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    admin: AdminUser = Depends(require_roles("owner")),
):
    row = db.get(AdminRoleORM, body.user_id)
    before = _audit_view(row)

    # 最後の有効な owner は無効化・降格できない
    if _is_active_owner(row) and not (body.is_active and body.role == "owner"):
        others = db.execute(
            select(func.count())
            .select_from(AdminRoleORM)
            .where(
                AdminRoleORM.role == "owner",
                AdminRoleORM.is_active.is_(True),
                AdminRoleORM.user_id != body.user_id,
            )
        ).scalar_one()
        if others <= 0:
            raise bad_request("last_owner", "最後のownerは無効化/降格できません")

    if row is None:
        row = AdminRoleORM(user_id=body.user_id)
        db.add(row)
    row.role = body.role
    row.is_active = body.is_active
    if body.email is not None:
        row.email = body.email
    if body.notify_print_request is not None:
        row.notify_print_request = body.notify_print_request

    try:
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("admin role upsert failed user_id=%s", body.user_id)
        raise server_error("roles_upsert_failed", str(e.__class__.__name__))

    logger.info("admin role set user_id=%s role=%s active=%s", row.user_id, row.role, row.is_active)

    background.add_task(
        side_effects.record_audit,
        session_factory,
        actor_user_id=admin.user_id,
        actor_role=admin.role,
        action="admin_roles.upsert",
        target_table="admin_roles",
        target_id=str(row.user_id),
        before=before,
        after=_audit_view(row),
    )

    return AdminRoleUpsertOut(role=AdminRoleOut.model_validate(row))
