from __future__ import annotations

from app.db import session_scope
from app.entitlements import apply_entitlement
from app.models import Property


def test_unverified_user_is_gated(client, make_user, login):
    make_user("uma")
    login("uma")
    resp = client.post("/api/properties", json={"title": "Corner shop"})
    assert resp.status_code == 403
    assert resp.json()["detail"]["reason"] == "verification_required"


def test_no_session_is_401(client):
    assert client.post("/api/properties", json={"title": "Corner shop"}).status_code == 401


def test_admin_bypasses_verification(client, make_user, login):
    make_user("boss", role="admin")
    login("boss")
    resp = client.post("/api/properties", json={"title": "HQ office"})
    assert resp.status_code == 201
    assert resp.json()["approvalStatus"] == "approved"


def test_property_visibility_and_moderation(client, make_user, login):
    make_user("victor", role="seller", email_verified=True)
    make_user("wendy", role="admin")

    login("victor")
    created = client.post("/api/properties", json={"title": "Two BHK", "rentOrSale": "rent", "city": "Pune"})
    assert created.status_code == 201
    pid = created.json()["id"]
    assert created.json()["approvalStatus"] == "pending"
    assert client.get(f"/api/properties/{pid}").status_code == 200
    assert [p["id"] for p in client.get("/api/user/properties").json()["items"]] == [pid]
    assert client.post(f"/api/properties/{pid}/approve").status_code == 403

    client.cookies.clear()
    assert client.get(f"/api/properties/{pid}").status_code == 404

    login("wendy")
    admin_inbox = client.get("/api/notifications").json()["items"]
    assert any(n["title"] == "New property pending approval" for n in admin_inbox)
    approved = client.post(f"/api/properties/{pid}/approve")
    assert approved.status_code == 200
    assert approved.json()["approvalStatus"] == "approved"

    client.cookies.clear()
    assert client.get(f"/api/properties/{pid}").status_code == 200


def test_reject_records_reason(client, make_user, login):
    make_user("xena", role="seller", email_verified=True)
    make_user("yuri", role="admin")
    login("xena")
    pid = client.post("/api/properties", json={"title": "Old warehouse"}).json()["id"]

    login("yuri")
    resp = client.post(f"/api/properties/{pid}/reject", json={"reason": "Missing address"})
    assert resp.status_code == 200
    assert resp.json()["approvalStatus"] == "rejected"
    assert resp.json()["rejectionReason"] == "Missing address"

    login("xena")
    titles = [n["title"] for n in client.get("/api/notifications").json()["items"]]
    assert "Property rejected" in titles


def test_admin_table_stats(client, make_user, login):
    make_user("zed", role="admin")
    make_user("amy")
    login("amy")
    assert client.get("/api/admin/database/tables").status_code == 403

    login("zed")
    resp = client.get("/api/admin/database/tables")
    assert resp.status_code == 200
    counts = {t["name"]: t["rowCount"] for t in resp.json()["tables"]}
    assert counts["users"] == 2
    assert set(counts) >= {"users", "otp_codes", "properties", "checkout_sessions", "notifications"}


def _promote(pid: int, level: str) -> None:
    with session_scope() as db:
        apply_entitlement(db, db.get(Property, pid), level)


def test_pending_queue_is_admin_only(client, make_user, login):
    make_user("zoe", role="seller", email_verified=True)
    make_user("abel", role="admin")
    login("zoe")
    first = client.post("/api/properties", json={"title": "Garden villa"}).json()["id"]
    second = client.post("/api/properties", json={"title": "Studio flat"}).json()["id"]
    assert client.get("/api/properties/pending").status_code == 403

    login("abel")
    queue = client.get("/api/properties/pending")
    assert queue.status_code == 200
    assert [p["id"] for p in queue.json()["items"]] == [first, second]

    assert client.post(f"/api/properties/{first}/approve").status_code == 200
    assert [p["id"] for p in client.get("/api/properties/pending").json()["items"]] == [second]


def test_public_listing_shows_approved_and_promoted_first(client, make_user, login):
    make_user("bina", role="seller", email_verified=True)
    make_user("carl", role="admin")
    login("bina")
    plain = client.post("/api/properties", json={"title": "Plain flat", "city": "Pune"}).json()["id"]
    featured = client.post("/api/properties", json={"title": "Featured flat", "city": "Pune"}).json()["id"]
    premium = client.post("/api/properties", json={"title": "Premium flat", "city": "Mumbai"}).json()["id"]
    hidden = client.post("/api/properties", json={"title": "Pending flat", "city": "Pune"}).json()["id"]

    login("carl")
    for pid in (plain, featured, premium):
        assert client.post(f"/api/properties/{pid}/approve").status_code == 200
    assert len(client.get("/api/properties").json()["items"]) == 4
    _promote(featured, "paid")
    _promote(premium, "premium")

    client.cookies.clear()
    listed = [p["id"] for p in client.get("/api/properties").json()["items"]]
    assert listed == [premium, featured, plain]
    assert hidden not in listed

    assert [p["id"] for p in client.get("/api/properties/featured").json()["items"]] == [premium, featured]
    assert [p["id"] for p in client.get("/api/properties/premium").json()["items"]] == [premium]
    assert [p["id"] for p in client.get("/api/properties", params={"featured": "false"}).json()["items"]] == [plain]
    assert [p["id"] for p in client.get("/api/properties", params={"city": "pune"}).json()["items"]] == [featured, plain]
