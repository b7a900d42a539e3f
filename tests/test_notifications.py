from __future__ import annotations

from app.db import session_scope
from app.notifications import notify


def _seed(user_id: int, title: str = "Hello") -> int:
    with session_scope() as db:
        return notify(db, user_id=user_id, title=title, message="Welcome aboard").id


def test_list_and_mark_read(client, make_user, login):
    uid = make_user("nina")
    nid = _seed(uid)
    _seed(uid, "Second")
    login("nina")

    data = client.get("/api/notifications").json()
    assert data["unread"] == 2
    assert [n["title"] for n in data["items"]] == ["Second", "Hello"]

    resp = client.post(f"/api/notifications/{nid}/read")
    assert resp.status_code == 200
    assert resp.json()["isRead"] is True
    assert client.get("/api/notifications").json()["unread"] == 1

    assert client.post("/api/notifications/read-all").status_code == 200
    assert client.get("/api/notifications").json()["unread"] == 0


def test_cannot_read_someone_elses_notification(client, make_user, login):
    owner = make_user("olga")
    nid = _seed(owner)
    make_user("peter")
    login("peter")
    assert client.post(f"/api/notifications/{nid}/read").status_code == 404


def test_admin_create_and_broadcast(client, make_user, login):
    target = make_user("quinn", role="seller")
    make_user("rita", role="seller")
    make_user("root", role="admin")
    login("root")

    created = client.post(
        "/api/notifications",
        json={"userId": target, "title": "Promo", "message": "20% off premium", "type": "promotion"},
    )
    assert created.status_code == 201
    assert created.json()["type"] == "promotion"

    bad_type = client.post("/api/notifications", json={"userId": target, "title": "x", "message": "y", "type": "spam"})
    assert bad_type.status_code == 400

    sent = client.post("/api/notifications/role", json={"role": "seller", "title": "Update", "message": "New feature"})
    assert sent.status_code == 200
    assert sent.json()["recipients"] == 2


def test_non_admin_cannot_create(client, make_user, login):
    uid = make_user("sara")
    login("sara")
    resp = client.post("/api/notifications", json={"userId": uid, "title": "x", "message": "y"})
    assert resp.status_code == 403
