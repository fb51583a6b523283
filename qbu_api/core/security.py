from __future__ import annotations

"""
security.py

Bearer JWT（python-jose）

- 管理 API の本人確認と、ログイン中の顧客の識別（チケットの利用回数を user_id 単位で数える）に使う
- 検証に失敗したら None（呼び出し側で 401 にするか匿名扱いにするか決める）
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from jose import JWTError, jwt

from qbu_api.core.config import settings

TOKEN_TYPE = "access"


def create_access_token(subject: str, *, expires_minutes: Optional[int] = None) -> str:
    """sub = user_id の文字列。期限は既定で ACCESS_TOKEN_EXPIRE_MINUTES"""
    if not subject:
        raise ValueError("token subject is required")

    issued = datetime.now(timezone.utc)
    ttl = timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES if expires_minutes is None else expires_minutes
    )
    claims = {
        "sub": subject,
        "iat": int(issued.timestamp()),
        "exp": int((issued + ttl).timestamp()),
        "type": TOKEN_TYPE,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _claims(token: str) -> Optional[Mapping[str, Any]]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def decode_access_token(token: Optional[str]) -> Optional[str]:
    """有効なアクセストークンなら sub を返す。期限切れ・署名不一致・type 違いは None"""
    claims = _claims(token) if token else None
    if not claims:
        return None

    if claims.get("type", TOKEN_TYPE) != TOKEN_TYPE:
        return None

    sub = claims.get("sub")
    return sub if isinstance(sub, str) and sub else None
