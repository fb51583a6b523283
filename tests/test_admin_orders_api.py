import uuid

from sqlalchemy import select

from qbu_api.core.config import PLACEHOLDER_SECRET_KEY, settings
from qbu_api.dependencies.auth import AdminUser, get_current_admin
from qbu_api.main import app
from qbu_api.models.admin_role import AdminRoleORM
from qbu_api.models.audit import AuditLogORM
from qbu_api.models.print_order import PrintOrderORM, PrintOrderShippingSecureORM
from qbu_api.services import order_email
from tests.factories import BASE, customer, row_draft, seed_admin


def _submit(client, **customer_overrides) -> str:
    r = client.post(f"{BASE}/print/submit", json={"draft": row_draft(), "customer": customer(**customer_overrides)})
    assert r.status_code == 200, r.text
    return r.json()["order_id"]


def _audits(db, action: str) -> list[AuditLogORM]:
    return list(db.execute(select(AuditLogORM).where(AuditLogORM.action == action)).scalars())


# =========================================================
# GET /admin/orders/{id}/shipping
# =========================================================
def test_ops_reads_decrypted_shipping(client, db_session):
    order_id = _submit(client, phone="090-0000-0000")
    headers = seed_admin(db_session, "ops")

    r = client.get(f"{BASE}/admin/orders/{order_id}/shipping", headers=headers)
    assert r.status_code == 200, r.text
    s = r.json()["shipping"]
    assert s["name"] == "山田 太郎"
    assert s["email"] == "taro@example.com"
    assert s["phone"] == "090-0000-0000"
    assert s["postal_code"] == "220-0012"
    assert s["prefecture"] == "神奈川県"
    assert "みなとみらい" in s["address"]


def test_analyst_cannot_read_shipping(client, db_session):
    order_id = _submit(client)
    headers = seed_admin(db_session, "analyst")

    r = client.get(f"{BASE}/admin/orders/{order_id}/shipping", headers=headers)
    assert r.status_code == 403
    assert r.json()["error"] == "forbidden"


def test_shipping_requires_token(client):
    r = client.get(f"{BASE}/admin/orders/{uuid.uuid4()}/shipping")
    assert r.status_code == 401


def test_shipping_not_found(client, db_session):
    headers = seed_admin(db_session, "owner")
    r = client.get(f"{BASE}/admin/orders/{uuid.uuid4()}/shipping", headers=headers)
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


def test_shipping_broken_token_is_decrypt_failed(client, db_session):
    order_id = _submit(client)
    row = db_session.get(PrintOrderShippingSecureORM, uuid.UUID(order_id))
    row.shipping_enc = "v1.AAAA.BBBB.CCCC"
    db_session.commit()
    headers = seed_admin(db_session, "admin")

    r = client.get(f"{BASE}/admin/orders/{order_id}/shipping", headers=headers)
    assert r.status_code == 500
    assert r.json()["error"] == "decrypt_failed"


def test_shipping_without_key_is_not_configured(client, db_session, monkeypatch):
    order_id = _submit(client)
    headers = seed_admin(db_session, "owner")
    monkeypatch.setattr(settings, "QBU_SHIPPING_ENC_KEY", "")
    monkeypatch.setattr(settings, "SECRET_KEY", PLACEHOLDER_SECRET_KEY)

    # SECRET_KEY を差し替えるとトークンも無効になるので認証は固定する
    app.dependency_overrides[get_current_admin] = lambda: AdminUser(user_id=uuid.uuid4(), role="owner")
    r = client.get(f"{BASE}/admin/orders/{order_id}/shipping", headers=headers)
    assert r.status_code == 501
    assert r.json()["error"] == "shipping_encryption_not_configured"


# =========================================================
# POST /admin/orders/{id}/update
# =========================================================
def test_update_status_payment_and_note(client, db_session):
    order_id = _submit(client)
    headers = seed_admin(db_session, "admin")

    r = client.post(
        f"{BASE}/admin/orders/{order_id}/update",
        json={"status": "printing", "payment_status": "paid", "admin_note": "  色確認済み  "},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    out = r.json()["order"]
    assert out["status"] == "printing"
    assert out["payment_status"] == "paid"
    assert out["admin_note"] == "色確認済み"

    db_session.expire_all()
    order = db_session.get(PrintOrderORM, uuid.UUID(order_id))
    assert (order.status, order.payment_status, order.admin_note) == ("printing", "paid", "色確認済み")

    audits = _audits(db_session, "print_orders.update")
    assert len(audits) == 1
    assert audits[0].target_id == order_id
    assert audits[0].before["status"] == "submitted"
    assert audits[0].after["status"] == "printing"
    assert audits[0].actor_role == "admin"


def test_update_ignores_unknown_status(client, db_session):
    order_id = _submit(client)
    headers = seed_admin(db_session, "ops")

    r = client.post(f"{BASE}/admin/orders/{order_id}/update", json={"status": "lost"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "no_changes"

    r = client.post(
        f"{BASE}/admin/orders/{order_id}/update",
        json={"status": "lost", "payment_status": "refunded"},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["order"]["status"] == "submitted"
    assert r.json()["order"]["payment_status"] == "refunded"


def test_update_clears_note_with_empty_string(client, db_session):
    order_id = _submit(client)
    headers = seed_admin(db_session, "owner")
    client.post(f"{BASE}/admin/orders/{order_id}/update", json={"admin_note": "memo"}, headers=headers)

    r = client.post(f"{BASE}/admin/orders/{order_id}/update", json={"admin_note": ""}, headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["order"]["admin_note"] == ""


def test_update_forbidden_and_not_found(client, db_session):
    order_id = _submit(client)

    r = client.post(
        f"{BASE}/admin/orders/{order_id}/update",
        json={"status": "done"},
        headers=seed_admin(db_session, "analyst"),
    )
    assert r.status_code == 403

    r = client.post(
        f"{BASE}/admin/orders/{uuid.uuid4()}/update",
        json={"status": "done"},
        headers=seed_admin(db_session, "owner"),
    )
    assert r.status_code == 404
    assert _audits(db_session, "print_orders.update") == []


# =========================================================
# /admin/roles
# =========================================================
def test_list_roles(client, db_session):
    headers = seed_admin(db_session, "analyst", email="a@example.com")
    r = client.get(f"{BASE}/admin/roles", headers=headers)
    assert r.status_code == 200, r.text
    roles = r.json()["roles"]
    assert len(roles) == 1
    assert roles[0]["role"] == "analyst"
    assert roles[0]["email"] == "a@example.com"


def test_owner_grants_role(client, db_session):
    headers = seed_admin(db_session, "owner")
    target = uuid.uuid4()

    r = client.post(
        f"{BASE}/admin/roles",
        json={"user_id": str(target), "role": "superuser", "email": "ops@example.com", "notify_print_request": True},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    role = r.json()["role"]
    assert role["role"] == "admin"
    assert role["is_active"] is True
    assert role["notify_print_request"] is True

    db_session.expire_all()
    row = db_session.get(AdminRoleORM, target)
    assert row.email == "ops@example.com"

    audits = _audits(db_session, "admin_roles.upsert")
    assert len(audits) == 1
    assert audits[0].before is None
    assert audits[0].after["role"] == "admin"


def test_non_owner_cannot_grant(client, db_session):
    headers = seed_admin(db_session, "admin")
    r = client.post(f"{BASE}/admin/roles", json={"user_id": str(uuid.uuid4()), "role": "ops"}, headers=headers)
    assert r.status_code == 403
    assert r.json()["error"] == "forbidden"


def test_last_owner_cannot_be_demoted(client, db_session):
    owner_id = uuid.uuid4()
    headers = seed_admin(db_session, "owner", user_id=owner_id)

    r = client.post(f"{BASE}/admin/roles", json={"user_id": str(owner_id), "role": "admin"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "last_owner"

    other = uuid.uuid4()
    seed_admin(db_session, "owner", user_id=other)
    r = client.post(
        f"{BASE}/admin/roles",
        json={"user_id": str(other), "role": "owner", "is_active": False},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["role"]["is_active"] is False


def test_grant_role_bad_user_id(client, db_session):
    headers = seed_admin(db_session, "owner")
    r = client.post(f"{BASE}/admin/roles", json={"user_id": "not-a-uuid", "role": "ops"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "bad_request"


# =========================================================
# Print request notification
# =========================================================
class _Res:
    ok = True
    status_code = 200
    text = ""


def test_submit_notifies_subscribed_admins(client, db_session, monkeypatch):
    seed_admin(db_session, "ops", email="ops@example.com", notify=True)
    seed_admin(db_session, "admin", email="quiet@example.com", notify=False)
    seed_admin(db_session, "owner", email="gone@example.com", notify=True, is_active=False)

    sent = []
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
    monkeypatch.setattr(order_email.requests, "post", lambda url, json, headers, timeout: sent.append(json) or _Res())

    order_id = _submit(client)

    admin_mails = [p for p in sent if p["subject"].startswith("【印刷依頼】")]
    assert len(admin_mails) == 1
    assert admin_mails[0]["to"] == ["ops@example.com"]
    assert order_id in admin_mails[0]["subject"]
    assert "1,400 円" in admin_mails[0]["html"]
    assert "(kanto/60)" in admin_mails[0]["html"]

    customer_mails = [p for p in sent if p["to"] == "taro@example.com"]
    assert len(customer_mails) == 1


def test_submit_without_subscribers_sends_only_customer_mail(client, db_session, monkeypatch):
    sent = []
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
    monkeypatch.setattr(order_email.requests, "post", lambda url, json, headers, timeout: sent.append(json) or _Res())

    _submit(client)
    assert [p["to"] for p in sent] == ["taro@example.com"]
