from __future__ import annotations

"""
order_email.py

注文受付メール（請求書つき）

- HTML を組み立てて Resend の HTTP API で送る
- RESEND_API_KEY が無ければ送らない（警告ログのみ）
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from html import escape
from typing import Optional, Sequence, Union

import requests

from qbu_api.core.config import settings

logger = logging.getLogger(__name__)


class EmailSendError(RuntimeError):
    """Resend がエラーを返した / 通信失敗"""


@dataclass(frozen=True)
class OrderEmail:
    to: str
    customer_name: str
    order_id: str
    created_at: datetime
    model_name: str
    model_fingerprint: Optional[str]
    size_max_mm: float
    mm_per_unit: float
    block_count: int
    support_block_count: int
    volume_cm3: float
    subtotal_yen: int
    shipping_yen: int
    shipping_waived: bool
    discount_yen: int
    total_yen: int
    ticket_code_used: Optional[str] = None


# ============================================================
# Format helpers
# ============================================================
def _yen(n: int) -> str:
    return f"{int(n):,}"


def _mm(v: float, digits: int = 1) -> str:
    return f"{round(float(v), digits):g}"


def invoice_number(order_id: str) -> str:
    return f"QB-{order_id[:8]}"


# ============================================================
# HTML
# ============================================================
_BOX = "border:1px solid rgba(0,0,0,0.12); border-radius:12px; padding:12px;"
_MUTED = "color:#6b7280; font-size:12px;"


def _row(label: str, amount: str, *, bold: bool = False) -> str:
    w = " font-weight:900; border-top:1px solid rgba(0,0,0,0.12);" if bold else ""
    return (
        f'<tr><td style="padding:6px 0;{w}">{label}</td>'
        f'<td style="padding:6px 0; text-align:right;{w}">{amount}</td></tr>'
    )


def _payment_block() -> str:
    s = settings
    lines = [
        ("銀行名", s.INVOICE_BANK_NAME),
        ("支店名", s.INVOICE_BANK_BRANCH),
        ("種別", s.INVOICE_ACCOUNT_TYPE),
        ("口座番号", s.INVOICE_ACCOUNT_NUMBER),
        ("口座名義", s.INVOICE_ACCOUNT_NAME),
    ]
    filled = [(k, v) for k, v in lines if v]
    note = f'<div style="{_MUTED} margin-top:6px;">{escape(s.INVOICE_PAYMENT_NOTE)}</div>'
    if not filled:
        return f'<div style="{_BOX} margin-top:10px;"><div style="font-weight:700;">お支払い方法</div>{note}</div>'
    body = "".join(f"{k}: {escape(v)}<br/>" for k, v in filled)
    return (
        f'<div style="{_BOX} margin-top:10px;"><div style="font-weight:700;">お支払い情報</div>'
        f'<div style="font-size:13px; line-height:1.6;">{body}{note}</div></div>'
    )


def build_invoice_html(m: OrderEmail) -> str:
    s = settings
    issued_at = m.created_at.strftime("%Y-%m-%d %H:%M:%S")
    due_at = (m.created_at + timedelta(days=max(0, s.INVOICE_DUE_DAYS))).strftime("%Y-%m-%d")

    issuer = [f'<div style="font-weight:800;">{escape(s.INVOICE_ISSUER_NAME)}</div>']
    if s.INVOICE_ISSUER_ADDRESS:
        issuer.append(f'<div style="{_MUTED} white-space:pre-wrap;">{escape(s.INVOICE_ISSUER_ADDRESS)}</div>')
    if s.INVOICE_ISSUER_TEL:
        issuer.append(f'<div style="{_MUTED}">TEL: {escape(s.INVOICE_ISSUER_TEL)}</div>')
    if s.INVOICE_ISSUER_EMAIL:
        issuer.append(f'<div style="{_MUTED}">{escape(s.INVOICE_ISSUER_EMAIL)}</div>')

    rows = [_row(f"3Dプリント制作（推定体積 {_mm(m.volume_cm3)}cm³）", f"{_yen(m.subtotal_yen)} 円")]
    if m.shipping_waived:
        rows.append(_row("送料（チケット適用）", "0 円"))
    else:
        rows.append(_row("送料", f"{_yen(m.shipping_yen)} 円"))
    if m.discount_yen > 0:
        rows.append(_row("割引", f"- {_yen(m.discount_yen)} 円"))
    rows.append(_row("合計", f"{_yen(m.total_yen)} 円", bold=True))

    ticket = ""
    if m.ticket_code_used:
        ticket = f'<div style="{_MUTED} margin-top:6px;">適用チケット: {escape(m.ticket_code_used)}</div>'

    fingerprint = escape(m.model_fingerprint) if m.model_fingerprint else "-"

    return f"""
  <div style="font-family: ui-sans-serif, system-ui, sans-serif; color:#111827;">
    <h2 style="margin:0 0 6px 0;">印刷依頼を受け付けました</h2>
    <div style="color:#6b7280; font-size:13px;">この度は Q-BU の印刷依頼をご利用いただきありがとうございます。内容を確認のうえ、制作・発送のご案内をメールでご連絡します。</div>

    <div style="{_BOX} margin-top:14px;">
      <div style="font-weight:800;">注文情報</div>
      <div style="margin-top:6px; font-size:13px; line-height:1.7;">
        注文ID: {escape(m.order_id)}<br/>
        モデル: {escape(m.model_name)}<br/>
        ブロック: {m.block_count}（補完 {m.support_block_count}）<br/>
        サイズ: 最大辺 {_mm(m.size_max_mm)}mm / 1unit={_mm(m.mm_per_unit, 2)}mm<br/>
        指紋: {fingerprint}
      </div>
    </div>

    <h3 style="margin:18px 0 8px 0;">請求書</h3>
    <div style="{_BOX}">
      {"".join(issuer)}
      <div style="{_MUTED} margin-top:6px;">請求書番号: {escape(invoice_number(m.order_id))}</div>
      <div style="{_MUTED}">発行日: {issued_at}</div>
      <div style="{_MUTED}">お支払期限: {due_at}</div>

      <div style="margin-top:12px; font-size:13px;">
        <div style="font-weight:700;">請求先</div>
        <div>{escape(m.customer_name)} 様（{escape(m.to)}）</div>
      </div>

      <table style="width:100%; border-collapse:collapse; margin-top:12px; font-size:13px;">
        <tbody>{"".join(rows)}</tbody>
      </table>
      {ticket}
      {_payment_block()}
      <div style="{_MUTED} margin-top:10px;">※制作開始後のキャンセルは原則お受けできません。</div>
    </div>

    <div style="{_MUTED} margin-top:14px;">このメールに心当たりがない場合は破棄してください。</div>
  </div>
"""


def order_email_subject(order_id: str) -> str:
    return f"【Q-BU】印刷依頼を受け付けました（請求書） / 注文ID {order_id[:8]}"


# ============================================================
# Send
# ============================================================
def send_via_resend(to: Union[str, Sequence[str]], subject: str, html: str) -> bool:
    """
    Returns:
        True: 送信した / False: API キー未設定でスキップ

    Raises:
        EmailSendError
    """
    api_key = settings.RESEND_API_KEY
    if not api_key:
        logger.warning("RESEND_API_KEY is not set; skip sending email: %s", subject)
        return False

    payload = {
        "from": settings.EMAIL_FROM,
        "to": to if isinstance(to, str) else list(to),
        "subject": subject,
        "html": html,
    }
    if settings.EMAIL_BCC:
        payload["bcc"] = settings.EMAIL_BCC

    try:
        res = requests.post(
            settings.RESEND_API_URL,
            json=payload,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=settings.EMAIL_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise EmailSendError(f"resend_request_failed: {e}") from e

    if not res.ok:
        raise EmailSendError(f"resend_failed:{res.status_code}:{res.text[:200]}")
    return True


def send_order_email(m: OrderEmail) -> bool:
    return send_via_resend(m.to, order_email_subject(m.order_id), build_invoice_html(m))
