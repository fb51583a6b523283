from __future__ import annotations

"""
side_effects.py

注文確定後・管理操作後の後処理（BackgroundTasks から呼ぶ）

- チケット利用記録 / 分析イベント / 監査ログ / 注文メール / 管理者への印刷依頼通知
- それぞれ独立したセッションで実行し、失敗してもログだけ残す（注文や設定変更は取り消さない）
"""

import logging
import uuid
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from qbu_api.models.audit import AuditLogORM, EventLogORM
from qbu_api.models.ticket import TicketRedemptionORM
from qbu_api.services.admin_email import PrintRequestNotice, admin_recipients, send_print_request_email
from qbu_api.services.order_email import EmailSendError, OrderEmail, send_order_email

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _insert(session_factory: SessionFactory, row: Any, what: str) -> None:
    db = session_factory()
    try:
        db.add(row)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("%s insert failed", what)
    finally:
        db.close()


def record_ticket_redemption(
    session_factory: SessionFactory,
    *,
    ticket_id: uuid.UUID,
    order_id: uuid.UUID,
    user_id: Optional[uuid.UUID],
    anon_id: Optional[str],
    discount_yen: int,
    snapshot: dict[str, Any],
) -> None:
    _insert(
        session_factory,
        TicketRedemptionORM(
            ticket_id=ticket_id,
            order_id=order_id,
            user_id=user_id,
            anon_id=anon_id,
            discount_yen=discount_yen,
            snapshot=snapshot,
        ),
        "ticket_redemption",
    )


def record_event(
    session_factory: SessionFactory,
    *,
    event_name: str,
    path: str,
    anon_id: Optional[str],
    session_id: Optional[str],
    user_id: Optional[uuid.UUID],
    payload: dict[str, Any],
    user_agent: Optional[str] = None,
    accept_language: Optional[str] = None,
) -> None:
    _insert(
        session_factory,
        EventLogORM(
            event_name=event_name,
            path=path,
            anon_id=anon_id or "unknown",
            session_id=session_id or "unknown",
            user_id=user_id,
            payload=payload,
            user_agent=user_agent,
            accept_language=accept_language,
        ),
        "event_log",
    )


def record_audit(
    session_factory: SessionFactory,
    *,
    actor_user_id: Optional[uuid.UUID],
    actor_role: Optional[str],
    action: str,
    target_table: str,
    target_id: Optional[str],
    before: Optional[dict[str, Any]],
    after: Optional[dict[str, Any]],
    note: Optional[str] = None,
) -> None:
    _insert(
        session_factory,
        AuditLogORM(
            actor_user_id=actor_user_id,
            actor_role=actor_role,
            action=action,
            target_table=target_table,
            target_id=target_id,
            before=before,
            after=after,
            note=note,
        ),
        "audit_log",
    )


def send_order_email_safe(message: OrderEmail) -> None:
    try:
        if send_order_email(message):
            logger.info("order email sent order_id=%s", message.order_id)
    except EmailSendError:
        logger.exception("order email failed order_id=%s", message.order_id)


def notify_admins_print_request(session_factory: SessionFactory, notice: PrintRequestNotice) -> None:
    db = session_factory()
    try:
        recipients = admin_recipients(db)
    except SQLAlchemyError:
        logger.exception("admin recipients query failed order_id=%s", notice.order_id)
        return
    finally:
        db.close()

    try:
        if send_print_request_email(recipients, notice):
            logger.info("print request email sent order_id=%s to=%d admins", notice.order_id, len(recipients))
    except EmailSendError:
        logger.exception("print request email failed order_id=%s", notice.order_id)
