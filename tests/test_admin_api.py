import uuid

from sqlalchemy import select

from qbu_api.core.security import create_access_token
from qbu_api.models.audit import AuditLogORM
from qbu_api.models.pricing_config import PricingConfigORM
from qbu_api.models.shipping import ShippingConfigORM
from qbu_api.models.ticket import TicketORM
from qbu_api.services.shipping import FALLBACK_SHIPPING_RATES
from qbu_api.services.tickets import hash_ticket_code, normalize_ticket_code
from tests.factories import BASE, customer, row_draft, seed_admin, seed_pricing, seed_ticket


# =========================================================
# Public config endpoints
# =========================================================
def test_active_pricing_fallback(client):
    r = client.get(f"{BASE}/pricing/active")
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["source"] == "fallback"
    assert data["pricing"]["base_fee_yen"] == 800
    assert data["pricing"]["config_id"] is None


def test_active_pricing_db(client, db_session):
    cfg = seed_pricing(db_session, base=900)
    r = client.get(f"{BASE}/pricing/active")
    assert r.status_code == 200, r.text
    assert r.json()["source"] == "db"
    assert r.json()["pricing"]["config_id"] == cfg.id
    assert r.json()["pricing"]["base_fee_yen"] == 900


def test_active_shipping_fallback(client):
    r = client.get(f"{BASE}/shipping/active")
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["source"] == "fallback"
    assert len(data["shipping"]["rates"]) == len(FALLBACK_SHIPPING_RATES)


# =========================================================
# Auth
# =========================================================
def test_admin_requires_token(client):
    r = client.post(f"{BASE}/admin/pricing/update", json={"base_fee_yen": 1})
    assert r.status_code == 401, r.text
    assert r.json()["error"] == "unauthorized"


def test_admin_bad_token(client):
    r = client.get(f"{BASE}/admin/tickets", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401, r.text


def test_not_admin(client):
    headers = {"Authorization": f"Bearer {create_access_token(str(uuid.uuid4()))}"}
    r = client.get(f"{BASE}/admin/tickets", headers=headers)
    assert r.status_code == 403, r.text
    assert r.json()["error"] == "not_admin"


def test_inactive_admin(client, db_session):
    headers = seed_admin(db_session, "owner", is_active=False)
    r = client.get(f"{BASE}/admin/tickets", headers=headers)
    assert r.status_code == 403, r.text
    assert r.json()["error"] == "not_admin"


def test_role_forbidden(client, db_session):
    headers = seed_admin(db_session, "ops")
    r = client.post(f"{BASE}/admin/pricing/update", json={"base_fee_yen": 1}, headers=headers)
    assert r.status_code == 403, r.text
    assert r.json()["error"] == "forbidden"

    r = client.post(f"{BASE}/admin/tickets", json={"type": "free"}, headers=headers)
    assert r.status_code == 403, r.text

    # 一覧はどのロールでも見られる
    r = client.get(f"{BASE}/admin/tickets", headers=headers)
    assert r.status_code == 200, r.text


# =========================================================
# Pricing / shipping update
# =========================================================
def test_pricing_update_activates_single_row(client, db_session):
    old = seed_pricing(db_session)
    headers = seed_admin(db_session, "owner")

    r = client.post(
        f"{BASE}/admin/pricing/update",
        json={"base_fee_yen": 1000, "per_cm3_yen": 50.4, "min_fee_yen": -5, "rounding_step_yen": 0, "note": "spring"},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    p = r.json()["pricing"]
    assert p["base_fee_yen"] == 1000
    assert p["per_cm3_yen"] == 50
    assert p["min_fee_yen"] == 0
    assert p["rounding_step_yen"] == 1
    assert p["note"] == "spring"
    assert p["config_id"] != old.id

    active = db_session.execute(
        select(PricingConfigORM.id).where(PricingConfigORM.is_active == True)  # noqa: E712
    ).scalars().all()
    assert active == [p["config_id"]]

    r = client.get(f"{BASE}/pricing/active")
    assert r.json()["pricing"]["config_id"] == p["config_id"]

    audit = db_session.execute(select(AuditLogORM)).scalar_one()
    assert audit.action == "pricing.update"
    assert audit.actor_role == "owner"
    assert audit.before["id"] == old.id
    assert audit.after["base_fee_yen"] == 1000


def test_pricing_update_missing_values_use_defaults(client, db_session):
    headers = seed_admin(db_session, "owner")
    r = client.post(f"{BASE}/admin/pricing/update", json={}, headers=headers)
    assert r.status_code == 200, r.text
    p = r.json()["pricing"]
    assert (p["base_fee_yen"], p["per_cm3_yen"], p["min_fee_yen"], p["rounding_step_yen"]) == (800, 60, 1200, 10)


def test_shipping_update_writes_full_matrix(client, db_session):
    headers = seed_admin(db_session, "owner")
    r = client.post(
        f"{BASE}/admin/shipping/update",
        json={
            "rates": [
                {"zone": "KANTO", "size_tier": 60, "price_yen": 650},
                {"zone": "mars", "size_tier": "60", "price_yen": 1},
            ],
            "note": "v2",
        },
        headers=headers,
    )
    assert r.status_code == 200, r.text
    cfg_id = r.json()["shipping_config_id"]

    cfg = db_session.get(ShippingConfigORM, cfg_id)
    assert cfg.is_active is True
    assert len(cfg.rates) == 36

    r = client.get(f"{BASE}/shipping/active")
    data = r.json()
    assert data["source"] == "db"
    assert data["shipping"]["config_id"] == cfg_id
    rates = {(x["zone"], x["size_tier"]): x["price_yen"] for x in data["shipping"]["rates"]}
    assert rates[("kanto", "60")] == 650
    assert rates[("okinawa", "120")] == 0

    # 見積もりにも反映される
    r = client.post(f"{BASE}/print/quote", json={"draft": row_draft(), "customer": customer()})
    assert r.json()["quote"]["shipping_yen"] == 650


# =========================================================
# Tickets
# =========================================================
def test_create_ticket_returns_code_once(client, db_session):
    headers = seed_admin(db_session, "admin")
    r = client.post(
        f"{BASE}/admin/tickets",
        json={"type": "percent", "value": 250, "apply_scope": "total", "max_uses_per_user": 1, "constraints": "{\"a\": 1}"},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    data = r.json()
    code = data["code"]
    assert code.startswith("QBU-")
    t = data["ticket"]
    assert t["value"] == 100
    assert t["apply_scope"] == "total"
    assert t["constraints"] == {"a": 1}
    assert "code" not in t

    row = db_session.get(TicketORM, uuid.UUID(t["id"]))
    assert row.code_hash == hash_ticket_code(code)
    assert row.code_prefix == normalize_ticket_code(code)[:8]

    # 作ったコードがそのまま使える
    r = client.post(f"{BASE}/print/quote", json={"draft": row_draft(), "customer": customer(ticketCode=code)})
    assert r.status_code == 200, r.text
    assert r.json()["quote"]["total_yen"] == 0


def test_create_ticket_bad_type(client, db_session):
    headers = seed_admin(db_session, "owner")
    r = client.post(f"{BASE}/admin/tickets", json={"type": "bogus"}, headers=headers)
    assert r.status_code == 400, r.text
    assert r.json()["error"] == "bad_request"


def test_list_tickets_with_usage(client, db_session):
    headers = seed_admin(db_session, "analyst")
    t = seed_ticket(db_session, "QBU-LIST", type="fixed", value=100)
    seed_ticket(db_session, "QBU-UNUSED", type="free")

    body = {"draft": row_draft(), "customer": customer(ticketCode="QBU-LIST")}
    assert client.post(f"{BASE}/print/submit", json=body).status_code == 200

    r = client.get(f"{BASE}/admin/tickets", headers=headers)
    assert r.status_code == 200, r.text
    used = {x["id"]: x["used_total"] for x in r.json()["tickets"]}
    assert len(used) == 2
    assert used[str(t.id)] == 1
    assert sorted(used.values()) == [0, 1]


def test_toggle_ticket(client, db_session):
    headers = seed_admin(db_session, "owner")
    t = seed_ticket(db_session, "QBU-TOGGLE", type="fixed", value=100)

    r = client.post(f"{BASE}/admin/tickets/{t.id}/toggle", headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["ticket"]["is_active"] is False

    # 無効化したチケットは使えない
    r = client.post(f"{BASE}/print/quote", json={"draft": row_draft(), "customer": customer(ticketCode="QBU-TOGGLE")})
    assert r.status_code == 400, r.text
    assert r.json()["reason"] == "inactive"

    r = client.post(f"{BASE}/admin/tickets/{t.id}/toggle", json={"is_active": True}, headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["ticket"]["is_active"] is True

    actions = db_session.execute(select(AuditLogORM.action)).scalars().all()
    assert actions == ["tickets.toggle", "tickets.toggle"]


def test_toggle_missing_ticket(client, db_session):
    headers = seed_admin(db_session, "owner")
    r = client.post(f"{BASE}/admin/tickets/{uuid.uuid4()}/toggle", headers=headers)
    assert r.status_code == 404, r.text
    assert r.json()["error"] == "not_found"
