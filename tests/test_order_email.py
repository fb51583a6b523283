from datetime import datetime, timezone

import pytest
import requests

from qbu_api.core.config import settings
from qbu_api.services import order_email
from qbu_api.services.admin_email import (
    PrintRequestNotice,
    build_print_request_html,
    order_detail_url,
    print_request_subject,
    send_print_request_email,
)
from qbu_api.services.order_email import EmailSendError, OrderEmail, build_invoice_html, invoice_number


def _message(**kw) -> OrderEmail:
    base = dict(
        to="taro@example.com",
        customer_name="山田 太郎",
        order_id="0f8fad5b-d9cb-469f-a165-70867728950e",
        created_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        model_name="<Bar>",
        model_fingerprint="fp-test",
        size_max_mm=100.0,
        mm_per_unit=10.0,
        block_count=10,
        support_block_count=0,
        volume_cm3=10.0,
        subtotal_yen=1400,
        shipping_yen=700,
        shipping_waived=False,
        discount_yen=280,
        total_yen=1820,
        ticket_code_used="QBU-AAAA-BBBB-CCCC",
    )
    base.update(kw)
    return OrderEmail(**base)


class _Res:
    def __init__(self, ok=True, status_code=200, text=""):
        self.ok = ok
        self.status_code = status_code
        self.text = text


def test_invoice_html_lines():
    html = build_invoice_html(_message())
    assert "1,400 円" in html
    assert "700 円" in html
    assert "- 280 円" in html
    assert "1,820 円" in html
    assert invoice_number("0f8fad5b-d9cb") == "QB-0f8fad5b"
    assert "QB-0f8fad5b" in html
    # モデル名はエスケープする
    assert "&lt;Bar&gt;" in html


def test_invoice_html_waived_shipping():
    html = build_invoice_html(_message(shipping_yen=0, shipping_waived=True, discount_yen=0, total_yen=1400))
    assert "送料（チケット適用）" in html
    assert "割引" not in html


def test_skip_without_api_key(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "")

    def _boom(*a, **kw):
        raise AssertionError("must not call")

    monkeypatch.setattr(order_email.requests, "post", _boom)
    assert order_email.send_order_email(_message()) is False


def test_send_via_resend(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
    calls = []

    def _post(url, json=None, headers=None, timeout=None):
        calls.append((url, json, headers))
        return _Res()

    monkeypatch.setattr(order_email.requests, "post", _post)
    assert order_email.send_order_email(_message()) is True

    url, payload, headers = calls[0]
    assert url == settings.RESEND_API_URL
    assert payload["to"] == "taro@example.com"
    assert "注文ID 0f8fad5b" in payload["subject"]
    assert headers["Authorization"] == "Bearer re_test"


def test_send_errors(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")

    monkeypatch.setattr(order_email.requests, "post", lambda *a, **kw: _Res(ok=False, status_code=422, text="bad"))
    with pytest.raises(EmailSendError):
        order_email.send_order_email(_message())

    def _down(*a, **kw):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(order_email.requests, "post", _down)
    with pytest.raises(EmailSendError):
        order_email.send_order_email(_message())


# ============================================================
# Admin print request
# ============================================================
def _notice(**kw) -> PrintRequestNotice:
    base = dict(
        order_id="0f8fad5b-d9cb-469f-a165-70867728950e",
        created_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        model_name="Bar",
        customer_name="<山田>",
        customer_email="taro@example.com",
        address="神奈川県横浜市西区みなとみらい1-1-1",
        phone=None,
        postal_code="220-0012",
        item_subtotal_yen=1400,
        shipping_yen=700,
        discount_yen=420,
        total_yen=1680,
        ticket_apply_scope="total",
        shipping_zone="kanto",
        shipping_size_tier="60",
    )
    base.update(kw)
    return PrintRequestNotice(**base)


def test_print_request_html(monkeypatch):
    monkeypatch.setattr(settings, "FRONTEND_URL", "https://q-bu.com/")
    html = build_print_request_html(_notice())
    assert "送料 (kanto/60)" in html
    assert "(total)" in html
    assert "-420 円" in html
    assert "1,680 円" in html
    assert "〒 220-0012" in html
    assert "&lt;山田&gt;" in html
    assert "電話" not in html
    assert "https://q-bu.com/admin/printing/0f8fad5b-d9cb-469f-a165-70867728950e" in html
    assert print_request_subject("abc").startswith("【印刷依頼】")


def test_print_request_html_without_discount_or_origin(monkeypatch):
    monkeypatch.setattr(settings, "FRONTEND_URL", None)
    html = build_print_request_html(_notice(discount_yen=0, total_yen=2100, ticket_apply_scope=None))
    assert "値引き" not in html
    assert "管理画面で開く" not in html
    assert order_detail_url("x") == ""


def test_print_request_without_recipients_is_skipped(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")

    def _boom(*a, **kw):
        raise AssertionError("should not send")

    monkeypatch.setattr(order_email.requests, "post", _boom)
    assert send_print_request_email([], _notice()) is False
