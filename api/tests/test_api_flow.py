import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from lonetown import config
from lonetown.errors import StoreUnavailable
from lonetown.main import create_app
from lonetown.traits import neutral_bundle


def _h(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


def _profile(gender: str, seeking: list[str], interests=None) -> dict:
    return {
        "traits": neutral_bundle(interests=interests).to_dict(),
        "gender_identity": gender,
        "interested_in": seeking,
    }


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


@pytest.fixture
def pair(client):
    assert client.put("/users/alice/profile", json=_profile("woman", ["man"]), headers=_h("alice")).status_code == 200
    assert client.put("/users/bob/profile", json=_profile("man", ["woman"]), headers=_h("bob")).status_code == 200
    res = client.post("/matches/daily", headers=_h("alice"))
    assert res.status_code == 200
    return res.json()["match"]


def test_health_endpoints(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/_scaffold/match/health").json()["module"] == "match"


def test_identity_header_is_required(client):
    assert client.post("/matches/daily").status_code == 401
    assert client.post("/matches/daily", headers=_h("x" * 65)).status_code == 400


def test_unknown_user_maps_to_404(client):
    res = client.post("/matches/daily", headers=_h("ghost"))
    assert res.status_code == 404
    assert res.json()["detail"]["code"] == "not_found"


def test_profile_validation(client):
    body = _profile("woman", ["man"])
    body["traits"]["personality"]["openness"] = 11
    res = client.put("/users/alice/profile", json=body, headers=_h("alice"))
    assert res.status_code == 422
    assert res.json()["detail"]["field"] == "personality.openness"

    other = client.put("/users/bob/profile", json=_profile("man", ["woman"]), headers=_h("alice"))
    assert other.status_code == 403


def test_daily_match_then_pin_message_unpin_flow(client, pair):
    assert pair["partner_id"] == "bob"
    assert pair["status"] == "active"
    assert pair["compatibility_score"] == 74

    again = client.post("/matches/daily", headers=_h("bob")).json()
    assert again["result"] == "existing"
    assert again["match"]["id"] == pair["id"]
    assert again["match"]["partner_id"] == "alice"

    current = client.get("/matches/current", headers=_h("bob")).json()
    assert current["match"]["id"] == pair["id"]

    first = client.post(f"/matches/{pair['id']}/pin", headers=_h("alice")).json()
    assert first["mutual"] is False
    second = client.post(f"/matches/{pair['id']}/pin", headers=_h("bob")).json()
    assert second["mutual"] is True
    assert second["match"]["status"] == "pinned"
    assert client.get("/users/bob/state", headers=_h("bob")).json()["state"] == "pinned"

    sent = client.post(
        f"/matches/{pair['id']}/messages",
        json={"content": "hello!", "client_message_id": "c-1"},
        headers=_h("alice"),
    )
    assert sent.status_code == 201
    assert sent.json()["recipient_id"] == "bob"
    assert sent.json()["engagement"]["message_count"] == 1
    dup = client.post(
        f"/matches/{pair['id']}/messages",
        json={"content": "hello!", "client_message_id": "c-1"},
        headers=_h("alice"),
    )
    assert dup.json()["id"] == sent.json()["id"]
    video = client.get(f"/matches/{pair['id']}/video-status", headers=_h("bob")).json()
    assert video == {
        "message_count": 1,
        "video_call_unlocked": False,
        "windowed_count": 1,
        "required": 100,
        "remaining": 99,
    }

    unpinned = client.post(
        f"/matches/{pair['id']}/unpin",
        json={"feedback": {"content": "not ready", "categories": ["timing"]}},
        headers=_h("alice"),
    )
    assert unpinned.status_code == 200
    assert unpinned.json()["match"]["end_reason"] == "unpin"

    state = client.get("/users/alice/state", headers=_h("alice")).json()
    assert state["state"] == "frozen"
    assert state["current_match_id"] is None

    cooldown = client.post("/matches/daily", headers=_h("alice")).json()
    assert cooldown["result"] == "frozen"
    assert cooldown["hours_remaining"] == 24

    blocked = client.post("/matches/daily", headers=_h("bob"))
    assert blocked.status_code == 409
    assert blocked.json()["detail"]["reason"] == "grace_period"

    fb = client.get(f"/matches/{pair['id']}/feedback", headers=_h("bob")).json()
    assert fb == {"from_user": "alice", "content": "not ready", "categories": ["timing"]}
    assert client.get(f"/matches/{pair['id']}/feedback", headers=_h("alice")).status_code == 404
    again_fb = client.post(
        f"/matches/{pair['id']}/feedback",
        json={"content": "me too"},
        headers=_h("bob"),
    )
    assert again_fb.status_code == 409
    assert again_fb.json()["detail"]["reason"] == "feedback_already_submitted"

    history = client.get("/matches/history", headers=_h("bob")).json()["history"]
    assert [m["id"] for m in history] == [pair["id"]]


def test_invalid_transitions_map_to_409(client, pair):
    client.post(f"/matches/{pair['id']}/unpin", headers=_h("bob"))
    res = client.post(f"/matches/{pair['id']}/pin", headers=_h("alice"))
    assert res.status_code == 409
    assert res.json()["detail"]["code"] == "invalid_transition"
    assert res.json()["detail"]["status"] == "ended"

    msg = client.post(f"/matches/{pair['id']}/messages", json={"content": "hi"}, headers=_h("alice"))
    assert msg.status_code == 409


def test_outsider_gets_403(client, pair):
    client.put("/users/mallory/profile", json=_profile("man", ["woman"]), headers=_h("mallory"))
    res = client.post(f"/matches/{pair['id']}/pin", headers=_h("mallory"))
    assert res.status_code == 403
    assert res.json()["detail"]["code"] == "not_eligible"


def test_admin_end_requires_token(client, pair, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_TOKEN", "s3cret")
    body = {"reason": "timeout"}

    assert client.post(f"/admin/matches/{pair['id']}/end", json=body).status_code == 401
    assert client.post(
        f"/admin/matches/{pair['id']}/end",
        json={"reason": "unpin"},
        headers={"X-Admin-Token": "s3cret"},
    ).status_code == 422

    res = client.post(f"/admin/matches/{pair['id']}/end", json=body, headers={"X-Admin-Token": "s3cret"})
    assert res.status_code == 200
    assert res.json()["end_reason"] == "timeout"
    assert client.get("/users/alice/state", headers=_h("alice")).json()["state"] == "available"
    assert client.get("/matches/current", headers=_h("alice")).json()["match"] is None


def test_conversation_marks_read_and_unread_count(client, pair):
    client.post(f"/matches/{pair['id']}/messages", json={"content": "hi"}, headers=_h("alice"))
    assert client.get("/messages/unread", headers=_h("bob")).json() == {"count": 1}

    convo = client.get(f"/matches/{pair['id']}/messages", headers=_h("bob"))
    assert convo.status_code == 200
    body = convo.json()
    assert body["match_id"] == pair["id"]
    assert [(m["sender_id"], m["content"], m["read"]) for m in body["messages"]] == [("alice", "hi", True)]
    assert client.get("/messages/unread", headers=_h("bob")).json() == {"count": 0}

    client.post(f"/matches/{pair['id']}/messages", json={"content": "hey"}, headers=_h("bob"))
    assert client.put("/messages/read/bob", headers=_h("alice")).json() == {"count": 1}
    assert client.get("/messages/unread", headers=_h("alice")).json() == {"count": 0}

    assert client.get(f"/matches/{pair['id']}/messages", headers=_h("mallory")).status_code == 403


def test_store_outage_on_history_maps_to_503(client, services, monkeypatch):
    def _down(user_id):
        raise StoreUnavailable("store down")

    monkeypatch.setattr(services.lifecycle, "match_history", _down)
    res = client.get("/matches/history", headers=_h("alice"))
    assert res.status_code == 503
    assert res.json()["detail"]["code"] == "store_unavailable"
