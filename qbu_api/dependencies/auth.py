from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from qbu_api.core.errors import ApiError, server_error
from qbu_api.core.security import decode_access_token
from qbu_api.db.session import get_db
from qbu_api.models.admin_role import ADMIN_ROLES, AdminRoleORM

# Bearerトークンを Authorization: Bearer <token> から取得
# auto_error=False にして自前で 401 を統一する
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AdminUser:
    user_id: UUID
    role: str


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _subject_uuid(creds: Optional[HTTPAuthorizationCredentials]) -> Optional[UUID]:
    if creds is None or not creds.credentials:
        return None
    sub = decode_access_token(creds.credentials)
    if not sub:
        return None
    try:
        return UUID(sub)
    except ValueError:
        return None


def get_optional_user_id(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[UUID]:
    """
    ログイン中の顧客なら user_id、そうでなければ None。
    注文は匿名でも受け付けるので、トークンが壊れていてもエラーにしない。
    """
    return _subject_uuid(creds)


def _normalize_role(role: Optional[str]) -> str:
    return role if role in ADMIN_ROLES else "admin"


def get_current_admin(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> AdminUser:
    """
    管理 API の入口。
    - Bearer JWT の sub を user_id とみなす
    - admin_roles に有効な行が無ければ 403 not_admin
    """
    if creds is None or not creds.credentials:
        raise _unauthorized("Not authenticated")

    user_id = _subject_uuid(creds)
    if user_id is None:
        raise _unauthorized()

    try:
        row = db.get(AdminRoleORM, user_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise server_error("admin_roles_query_failed", str(e)) from e

    if row is None or row.is_active is not True:
        raise ApiError(status.HTTP_403_FORBIDDEN, "not_admin")

    return AdminUser(user_id=user_id, role=_normalize_role(row.role))
