from __future__ import annotations

import random

import fakeredis
import pytest
import redis
from fastapi.testclient import TestClient

from turnq.config import Settings
from turnq.errors import ApiError
from turnq.session_setup import initialize_session


ClientAndRedis = tuple[TestClient, fakeredis.FakeRedis]


def _body(expected: str = "e1", **extra: object) -> dict[str, object]:
    return {"session_id": "s1", "expected_current_entry_id": expected, "action": "done", **extra}


def test_advance_returns_new_state_and_next_entry(client_and_redis: ClientAndRedis) -> None:
    client, r = client_and_redis
    initialize_session(r=r, session_id="s1", entry_ids=["e1", "e2"])

    resp = client.post("/sessions/advance", json=_body(top_label="housing", top_tags=["rent", "zoning"]))

    assert resp.status_code == 200
    assert resp.json() == {
        "ok": True,
        "session_state": {"session_id": "s1", "current_entry_id": "e2"},
        "next_entry": {"id": "e2", "order_index": 1},
    }

    stats = client.get("/sessions/s1/stats").json()
    assert stats == {"session_id": "s1", "topics": {"housing": 1}, "keywords": {"rent": 1, "zoning": 1}}


def test_advance_last_entry_returns_null_next(client_and_redis: ClientAndRedis) -> None:
    client, r = client_and_redis
    initialize_session(r=r, session_id="s1", entry_ids=["e1"])

    resp = client.post("/sessions/advance", json={**_body(), "action": "skipped"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["session_state"]["current_entry_id"] is None
    assert data["next_entry"] is None


def test_advance_rejects_invalid_json(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis

    resp = client.post("/sessions/advance", content=b"{not json", headers={"content-type": "application/json"})

    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "code": 400, "message": "Request body is not valid JSON"}


@pytest.mark.parametrize("missing", ["session_id", "expected_current_entry_id", "action"])
def test_advance_rejects_missing_fields(client_and_redis: ClientAndRedis, missing: str) -> None:
    client, _ = client_and_redis
    body = _body()
    body.pop(missing)

    resp = client.post("/sessions/advance", json=body)

    assert resp.status_code == 400
    assert resp.json()["ok"] is False
    assert "Missing required fields" in resp.json()["message"]


def test_advance_rejects_unknown_action(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis

    resp = client.post("/sessions/advance", json={**_body(), "action": "paused"})

    assert resp.status_code == 400
    assert resp.json()["message"] == "action must be 'done' or 'skipped'"


def test_advance_ignores_malformed_optional_fields(client_and_redis: ClientAndRedis) -> None:
    client, r = client_and_redis
    initialize_session(r=r, session_id="s1", entry_ids=["e1", "e2"])

    resp = client.post("/sessions/advance", json=_body(top_label=7, top_tags="not-a-list"))

    assert resp.status_code == 200
    assert client.get("/sessions/s1/stats").json()["topics"] == {}


def test_non_post_methods_are_rejected(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis

    for method in ("GET", "PUT", "DELETE", "OPTIONS"):
        resp = client.request(method, "/sessions/advance")
        assert resp.status_code == 405
        assert resp.json()["code"] == 405
        assert resp.json()["ok"] is False


def test_host_pin_required_when_configured(client_and_redis: ClientAndRedis) -> None:
    from turnq.api.deps import get_settings
    from turnq.main import app

    client, r = client_and_redis
    initialize_session(r=r, session_id="s1", entry_ids=["e1", "e2"])
    app.dependency_overrides[get_settings] = lambda: Settings(host_pin="2468")

    missing = client.post("/sessions/advance", json=_body())
    wrong = client.post("/sessions/advance", json=_body(), headers={"x-host-pin": "1111"})
    assert missing.status_code == 403
    assert wrong.status_code == 403
    assert wrong.json() == {"ok": False, "code": 403, "message": "Host PIN does not match"}

    right = client.post("/sessions/advance", json=_body(), headers={"x-host-pin": "2468"})
    assert right.status_code == 200


def test_pin_header_optional_when_not_configured(client_and_redis: ClientAndRedis) -> None:
    client, r = client_and_redis
    initialize_session(r=r, session_id="s1", entry_ids=["e1", "e2"])

    resp = client.post("/sessions/advance", json=_body(), headers={"x-host-pin": "anything"})
    assert resp.status_code == 200


def test_uninitialized_session_returns_409(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis

    resp = client.post("/sessions/advance", json=_body())

    assert resp.status_code == 409
    assert resp.json()["code"] == 409
    assert "not initialized" in resp.json()["message"]


def test_stale_expected_id_returns_409_and_second_resend_too(client_and_redis: ClientAndRedis) -> None:
    client, r = client_and_redis
    initialize_session(r=r, session_id="s1", entry_ids=["e1", "e2", "e3"])

    first = client.post("/sessions/advance", json=_body())
    again = client.post("/sessions/advance", json=_body())

    assert first.status_code == 200
    assert again.status_code == 409
    assert client.get("/sessions/s1").json()["state"]["current_entry_id"] == "e2"


def test_dependency_failure_returns_500_but_turn_moved(
    client_and_redis: ClientAndRedis, monkeypatch: pytest.MonkeyPatch
) -> None:
    client, r = client_and_redis
    initialize_session(r=r, session_id="s1", entry_ids=["e1", "e2"])

    def _boom(self, session_id: str, label: str) -> int:  # type: ignore[no-untyped-def]
        raise redis.ConnectionError("counter down")

    monkeypatch.setattr("turnq.turns.stats.StatisticsCounters.increment_topic", _boom)

    resp = client.post("/sessions/advance", json=_body(top_label="housing"))

    assert resp.status_code == 500
    assert resp.json() == {"ok": False, "code": 500, "message": "Counter error(topic): counter down"}
    assert client.get("/sessions/s1").json()["state"]["current_entry_id"] == "e2"


def test_unexpected_fault_returns_500(client_and_redis: ClientAndRedis, monkeypatch: pytest.MonkeyPatch) -> None:
    client, r = client_and_redis
    initialize_session(r=r, session_id="s1", entry_ids=["e1", "e2"])

    def _explode(self, command):  # type: ignore[no-untyped-def]
        raise RuntimeError("kaboom")

    monkeypatch.setattr("turnq.turns.advancer.TurnAdvancer.advance", _explode)

    resp = client.post("/sessions/advance", json=_body())

    assert resp.status_code == 500
    assert resp.json() == {"ok": False, "code": 500, "message": "500: kaboom"}


def test_get_session_lists_entries_in_turn_order(client_and_redis: ClientAndRedis) -> None:
    client, r = client_and_redis
    initialize_session(r=r, session_id="s1", entry_ids=["e1", "e2"])
    client.post("/sessions/advance", json=_body())

    resp = client.get("/sessions/s1")

    assert resp.status_code == 200
    data = resp.json()
    assert data["state"]["current_entry_id"] == "e2"
    assert [(e["id"], e["status"]) for e in data["entries"]] == [("e1", "done"), ("e2", "speaking")]
    assert data["entries"][0]["ended_at"] is not None


def test_get_unknown_session_404(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    assert client.get("/sessions/nope").status_code == 404


def test_actions_endpoint_returns_audit_trail(client_and_redis: ClientAndRedis) -> None:
    client, r = client_and_redis
    initialize_session(r=r, session_id="s1", entry_ids=["e1", "e2"])
    client.post("/sessions/advance", json=_body())
    client.post("/sessions/advance", json={**_body("e2"), "action": "skipped"})

    resp = client.get("/sessions/s1/actions?count=10")

    assert resp.status_code == 200
    actions = resp.json()["actions"]
    assert [(a["action"], a["prev_entry_id"], a["actor"]) for a in actions] == [
        ("skipped", "e2", "guest"),
        ("done", "e1", "guest"),
    ]

    assert client.get("/sessions/s1/actions?count=0").status_code == 422


def test_healthcheck_and_info(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis

    assert client.get("/healthcheck").json() == {"status": "ok"}
    assert client.get("/info").json()["name"] == "turn-queue"


def test_init_route_opens_session(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis

    resp = client.post("/sessions/s1/init", json={"entry_ids": ["e1", "e2"]})

    assert resp.status_code == 201
    data = resp.json()
    assert data["state"]["current_entry_id"] == "e1"
    assert [(e["id"], e["order_index"], e["status"]) for e in data["entries"]] == [
        ("e1", 0, "speaking"),
        ("e2", 1, "pending"),
    ]

    advanced = client.post("/sessions/advance", json=_body())
    assert advanced.json()["session_state"]["current_entry_id"] == "e2"


def test_init_route_refuses_existing_session(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    client.post("/sessions/s1/init", json={"entry_ids": ["e1"]})

    resp = client.post("/sessions/s1/init", json={"entry_ids": ["e2"]})

    assert resp.status_code == 409
    assert resp.json() == {"ok": False, "code": 409, "message": "Session s1 is already initialized"}
    assert client.get("/sessions/s1").json()["state"]["current_entry_id"] == "e1"


def test_init_route_rejects_duplicate_ids(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis

    resp = client.post("/sessions/s1/init", json={"entry_ids": ["e1", "e1"]})

    assert resp.status_code == 422
    assert client.get("/sessions/s1").status_code == 404


def test_init_route_seed_fixes_the_order(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    ids = [f"e{i}" for i in range(6)]
    expected = list(ids)
    random.Random(7).shuffle(expected)

    resp = client.post("/sessions/s1/init", json={"entry_ids": ids, "seed": 7})

    assert [e["id"] for e in resp.json()["entries"]] == expected
    assert resp.json()["state"]["current_entry_id"] == expected[0]


def test_init_route_requires_host_pin(client_and_redis: ClientAndRedis) -> None:
    from turnq.api.deps import get_settings
    from turnq.main import app

    client, _ = client_and_redis
    app.dependency_overrides[get_settings] = lambda: Settings(host_pin="2468")

    denied = client.post("/sessions/s1/init", json={"entry_ids": ["e1"]})
    allowed = client.post("/sessions/s1/init", json={"entry_ids": ["e1"]}, headers={"x-host-pin": "2468"})

    assert denied.status_code == 403
    assert allowed.status_code == 201


def test_redis_client_creation_failure_is_a_dependency_error() -> None:
    from turnq.api.deps import get_redis

    gen = get_redis(Settings(redis_url="bogus://nowhere"))
    with pytest.raises(ApiError) as e:
        next(gen)

    assert e.value.error.status_code == 500
    assert e.value.error.message.startswith("DB error(connect):")


def test_fault_inside_a_dependency_renders_error_body(client_and_redis: ClientAndRedis) -> None:
    from turnq.api.deps import get_advancer
    from turnq.main import app

    def _broken_advancer() -> None:
        raise RuntimeError("no client")

    app.dependency_overrides[get_advancer] = _broken_advancer
    with TestClient(app, raise_server_exceptions=False) as client:
        resp = client.post("/sessions/advance", json=_body())

    assert resp.status_code == 500
    assert resp.json() == {"ok": False, "code": 500, "message": "500: no client"}
