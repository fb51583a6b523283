from __future__ import annotations

"""
admin_email.py

印刷依頼の管理者通知メール

- 宛先は admin_roles の is_active かつ notify_print_request の行（email があるもの）
- 件名は必ず「【印刷依頼】」から始める
- 詳細ページのリンクは FRONTEND_URL があるときだけ付ける
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Optional, Sequence
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.orm import Session

from qbu_api.core.config import settings
from qbu_api.models.admin_role import AdminRoleORM
from qbu_api.services.order_email import send_via_resend

logger = logging.getLogger(__name__)

MAX_RECIPIENTS = 50


@dataclass(frozen=True)
class PrintRequestNotice:
    order_id: str
    created_at: datetime
    model_name: str
    customer_name: str
    customer_email: str
    address: str
    phone: Optional[str]
    postal_code: Optional[str]
    item_subtotal_yen: int
    shipping_yen: int
    discount_yen: int
    total_yen: int
    ticket_apply_scope: Optional[str] = None
    shipping_zone: Optional[str] = None
    shipping_size_tier: Optional[str] = None


def admin_recipients(db: Session) -> list[str]:
    stmt = (
        select(AdminRoleORM.email)
        .where(AdminRoleORM.is_active.is_(True), AdminRoleORM.notify_print_request.is_(True))
        .limit(MAX_RECIPIENTS)
    )
    out: list[str] = []
    for email in db.execute(stmt).scalars():
        e = (email or "").strip()
        if "@" in e and e not in out:
            out.append(e)
    return out


def order_detail_url(order_id: str) -> str:
    origin = (settings.FRONTEND_URL or "").strip().rstrip("/")
    if not origin:
        return ""
    return f"{origin}/admin/printing/{quote(order_id, safe='')}"


def print_request_subject(order_id: str) -> str:
    return f"【印刷依頼】Q-BU 印刷依頼 #{order_id}"


_TD = "padding:6px 0; border-bottom:1px solid #e5e7eb;"
_H3 = "margin:14px 0 6px 0; font-size:14px;"


def _yen(n: int) -> str:
    return f"{int(n):,}"


def _tr(label: str, amount: str) -> str:
    return f'<tr><td style="{_TD}">{label}</td><td style="{_TD} text-align:right;"><b>{amount}</b></td></tr>'


def build_print_request_html(n: PrintRequestNotice) -> str:
    url = order_detail_url(n.order_id)
    link = ""
    if url:
        link = (
            '<div style="margin-top:12px; padding:10px 12px; border:1px solid #e5e7eb; border-radius:12px;">'
            '<div style="font-size:12px; font-weight:900;">依頼詳細ページ</div>'
            f'<div style="margin-top:6px; font-size:13px;"><a href="{escape(url)}">管理画面で開く</a></div>'
            "</div>"
        )

    ship_meta = ""
    if n.shipping_zone and n.shipping_size_tier:
        ship_meta = f" ({escape(n.shipping_zone)}/{escape(n.shipping_size_tier)})"

    rows = [
        _tr("商品小計", f"{_yen(n.item_subtotal_yen)} 円"),
        _tr(f"送料{ship_meta}", f"{_yen(n.shipping_yen)} 円"),
    ]
    if n.discount_yen > 0:
        scope = f' <span style="color:#6b7280; font-size:12px;">({escape(n.ticket_apply_scope)})</span>' if n.ticket_apply_scope else ""
        rows.append(_tr(f"値引き{scope}", f"-{_yen(n.discount_yen)} 円"))
    rows.append(
        '<tr><td style="padding:10px 0; font-size:16px; font-weight:900;">合計</td>'
        f'<td style="padding:10px 0; font-size:16px; font-weight:900; text-align:right;">{_yen(n.total_yen)} 円</td></tr>'
    )

    contact = [
        f"<div>氏名: <b>{escape(n.customer_name)}</b></div>",
        f"<div>メール: <b>{escape(n.customer_email)}</b></div>",
    ]
    if n.phone:
        contact.append(f"<div>電話: <b>{escape(n.phone)}</b></div>")
    postal = f"<div>〒 {escape(n.postal_code)}</div>" if n.postal_code else ""

    return f"""
  <div style="font-family: ui-sans-serif, system-ui; padding:16px; color:#111827;">
    <h2 style="margin:0 0 10px 0;">新しい印刷依頼を受け付けました</h2>
    <div style="color:#6b7280; font-size:12px;">Order ID: <b>{escape(n.order_id)}</b> / {n.created_at.isoformat()}</div>
    {link}
    <h3 style="{_H3}">モデル</h3>
    <div style="font-size:13px;">{escape(n.model_name)}</div>

    <h3 style="{_H3}">お客様</h3>
    <div style="font-size:13px; line-height:1.6;">{"".join(contact)}</div>

    <h3 style="{_H3}">配送先</h3>
    <div style="font-size:13px; line-height:1.6;">{postal}<div>{escape(n.address)}</div></div>

    <h3 style="{_H3}">概算見積</h3>
    <table style="width:100%; border-collapse:collapse; font-size:13px;">
      <tbody>{"".join(rows)}</tbody>
    </table>

    <div style="margin-top:10px; color:#6b7280; font-size:12px;">
      ※このメールは通知対象の管理者にのみ送信されます（admin_roles.notify_print_request）。
    </div>
  </div>
"""


def send_print_request_email(recipients: Sequence[str], n: PrintRequestNotice) -> bool:
    """宛先が無ければ送らない。送信失敗は EmailSendError"""
    if not recipients:
        logger.info("no admin recipients for print request order_id=%s", n.order_id)
        return False
    return send_via_resend(list(recipients), print_request_subject(n.order_id), build_print_request_html(n))
