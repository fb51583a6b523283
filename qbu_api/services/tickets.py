from __future__ import annotations

"""
tickets.py

割引チケット

- 生コードは DB に保存しない（salt 付き SHA-256 の code_hash で引く）
- 利用回数は ticket_redemptions の行数で判定する（ロックなし。同時利用では多少の超過があり得る）
"""

import enum
import hashlib
import logging
import math
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from qbu_api.core.config import settings

logger = logging.getLogger(__name__)

TICKET_TYPES: tuple[str, ...] = ("percent", "fixed", "free", "shipping_free")
APPLY_SCOPES: tuple[str, ...] = ("subtotal", "total")

PERCENT_MAX = 100
FIXED_MAX_YEN = 1_000_000


# ============================================================
# Codes
# ============================================================
_CODE_STRIP_RE = re.compile(r"[\s\-]+")


def normalize_ticket_code(code: Optional[str]) -> str:
    """大文字化して空白とハイフンを除く"""
    return _CODE_STRIP_RE.sub("", str(code or "").strip().upper())


def generate_ticket_code() -> str:
    """表示用コード（作成時に 1 回だけ返す）。12 hex = 48 bit"""
    h = secrets.token_hex(6).upper()
    return f"QBU-{h[0:4]}-{h[4:8]}-{h[8:12]}"


def ticket_code_prefix(code: str) -> str:
    return normalize_ticket_code(code)[:8]


def hash_ticket_code(code: str, salt: Optional[str] = None) -> str:
    s = settings.ticket_salt if salt is None else salt
    return hashlib.sha256(f"{s}|{normalize_ticket_code(code)}".encode("utf-8")).hexdigest()


def safe_ticket_type(v: Any) -> Optional[str]:
    return v if v in TICKET_TYPES else None


def safe_apply_scope(v: Any) -> str:
    return "total" if v == "total" else "subtotal"


# ============================================================
# Domain
# ============================================================
@dataclass(frozen=True)
class Ticket:
    id: uuid.UUID
    type: str  # raw（不正な値もそのまま持ち、検証で弾く）
    value: Optional[float]
    apply_scope: str
    shipping_free: bool
    is_active: bool
    expires_at: Optional[datetime]
    max_total_uses: Optional[int]
    max_uses_per_user: Optional[int]
    code_prefix: Optional[str] = None

    @property
    def waives_shipping(self) -> bool:
        return self.type == "shipping_free" or bool(self.shipping_free)

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type,
            "value": self.value,
            "apply_scope": self.apply_scope,
        }


class TicketRejection(str, enum.Enum):
    NOT_FOUND = "not_found"
    BAD_TYPE = "bad_type"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    TOTAL_LIMIT_REACHED = "total_limit_reached"
    PER_USER_LIMIT_REACHED = "per_user_limit_reached"
    VERIFICATION_FAILED = "verification_failed"


REJECTION_MESSAGES: dict[TicketRejection, str] = {
    TicketRejection.NOT_FOUND: "チケットコードが無効です。",
    TicketRejection.BAD_TYPE: "チケット種別が無効です。",
    TicketRejection.INACTIVE: "このチケットは無効です。",
    TicketRejection.EXPIRED: "このチケットは期限切れです。",
    TicketRejection.TOTAL_LIMIT_REACHED: "このチケットは上限回数に達しています。",
    TicketRejection.PER_USER_LIMIT_REACHED: "このチケットは使用済みです。",
    TicketRejection.VERIFICATION_FAILED: "チケットの検証に失敗しました。",
}


class TicketInvalid(Exception):
    """チケットが使えない（理由つき）。API では 400 invalid_ticket になる。"""

    def __init__(self, reason: TicketRejection) -> None:
        self.reason = reason
        self.message = REJECTION_MESSAGES[reason]
        super().__init__(f"{reason.value}: {self.message}")


class RedemptionCountError(RuntimeError):
    """ticket_redemptions の件数が取れない"""


class TicketStore(Protocol):
    def find_ticket_by_hash(self, code_hash: str) -> Optional[Ticket]: ...

    def count_redemptions(
        self,
        ticket_id: uuid.UUID,
        *,
        user_id: Optional[uuid.UUID] = None,
        anon_id: Optional[str] = None,
    ) -> int: ...


# ============================================================
# Validation
# ============================================================
def _as_aware(dt: datetime) -> datetime:
    # SQLite は tz を落とすので UTC とみなす
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def validate_ticket(
    store: TicketStore,
    code: str,
    *,
    user_id: Optional[uuid.UUID] = None,
    anon_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Ticket:
    """
    コードを検証して使えるチケットを返す。最初に引っかかった理由で TicketInvalid を投げる。

    順番: not_found → bad_type → inactive → expired → total_limit_reached → per_user_limit_reached
    件数取得に失敗したら verification_failed。
    """
    ticket = store.find_ticket_by_hash(hash_ticket_code(code))
    if ticket is None:
        raise TicketInvalid(TicketRejection.NOT_FOUND)

    if safe_ticket_type(ticket.type) is None:
        raise TicketInvalid(TicketRejection.BAD_TYPE)

    if not ticket.is_active:
        raise TicketInvalid(TicketRejection.INACTIVE)

    current = now or datetime.now(timezone.utc)
    if ticket.expires_at is not None and _as_aware(ticket.expires_at) <= current:
        raise TicketInvalid(TicketRejection.EXPIRED)

    try:
        if ticket.max_total_uses is not None and ticket.max_total_uses >= 0:
            used = store.count_redemptions(ticket.id)
            if used >= ticket.max_total_uses:
                raise TicketInvalid(TicketRejection.TOTAL_LIMIT_REACHED)

        if ticket.max_uses_per_user is not None and ticket.max_uses_per_user >= 0:
            # ログイン中は user_id、未ログインは anon_id 単位。どちらも無ければ数えない
            if user_id is not None:
                used = store.count_redemptions(ticket.id, user_id=user_id)
            elif anon_id:
                used = store.count_redemptions(ticket.id, anon_id=anon_id)
            else:
                used = None
            if used is not None and used >= ticket.max_uses_per_user:
                raise TicketInvalid(TicketRejection.PER_USER_LIMIT_REACHED)
    except RedemptionCountError:
        logger.warning("ticket redemption count failed ticket_id=%s", ticket.id, exc_info=True)
        raise TicketInvalid(TicketRejection.VERIFICATION_FAILED)

    return ticket


# ============================================================
# Discount
# ============================================================
def _finite_or_none(v: Any) -> Optional[float]:
    try:
        if v is None or isinstance(v, bool):
            return None
        n = float(v)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def compute_discount_yen(
    ticket_type: str,
    value: Any,
    subtotal_yen: int,
    shipping_yen: int = 0,
    apply_scope: str = "subtotal",
) -> int:
    """
    割引額（円）。対象額は subtotal、apply_scope="total" なら subtotal + shipping。
    結果は必ず 0 以上・対象額以下。

    shipping_free は 0 を返す（送料そのものは呼び出し側で 0 にする）。
    """
    base = max(0, int(subtotal_yen or 0))
    if safe_apply_scope(apply_scope) == "total":
        base += max(0, int(shipping_yen or 0))
    if base <= 0:
        return 0

    if ticket_type == "free":
        return base
    if ticket_type == "shipping_free":
        return 0

    v = _finite_or_none(value)
    if v is None:
        return 0

    if ticket_type == "percent":
        pct = max(0.0, min(float(PERCENT_MAX), v))
        return int(math.floor(base * pct / 100))

    if ticket_type == "fixed":
        fixed = max(0.0, min(float(FIXED_MAX_YEN), v))
        return max(0, min(base, int(math.floor(fixed + 0.5))))

    return 0
