from __future__ import annotations

from fastapi import Depends, status

from qbu_api.core.errors import ApiError
from qbu_api.dependencies.auth import AdminUser, get_current_admin


def require_roles(*allowed: str):
    """ロール制御（API側で確実に遮断する）"""

    def _dep(admin: AdminUser = Depends(get_current_admin)) -> AdminUser:
        if admin.role not in allowed:
            raise ApiError(status.HTTP_403_FORBIDDEN, "forbidden")
        return admin

    return _dep
