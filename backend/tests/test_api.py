from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from sidlak.domain import ResultRecord
from sidlak.main import create_app
from sidlak.store import InMemoryStore


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(InMemoryStore.create()))


def _department(client: TestClient, name: str, **extra) -> str:
    resp = client.post("/api/departments", json={"name": name, **extra})
    assert resp.status_code == 201
    return resp.json()["id"]


def _event(client: TestClient, name: str, **extra) -> str:
    resp = client.post("/api/events", json={"name": name, **extra})
    assert resp.status_code == 201
    return resp.json()["id"]


def _medal(client: TestClient, event_id: str, department_id: str, medal_type: str):
    return client.post(
        "/api/results",
        json={"event_id": event_id, "department_id": department_id, "medal_type": medal_type},
    )


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_standings_rank_and_podium(client):
    """順位・表示用ポイント・表彰台を返す。"""

    a = _department(client, "Alpha")
    b = _department(client, "Beta", abbreviation="BET")
    c = _department(client, "Gamma")
    e1 = _event(client, "Chess")
    e2 = _event(client, "Basketball")
    assert _medal(client, e1, a, "gold").status_code == 201
    assert _medal(client, e1, b, "silver").status_code == 201
    assert _medal(client, e2, b, "gold").status_code == 201

    body = client.get("/api/standings").json()
    rows = body["standings"]
    assert [r["department_id"] for r in rows] == [b, a, c]
    assert [r["rank"] for r in rows] == [1, 2, 3]
    assert rows[0]["display_points"] == "1.20"
    assert rows[0]["total_medals"] == 2
    assert rows[0]["abbreviation"] == "BET"
    assert rows[2]["total_points"] == 0.0
    assert rows[2]["display_points"] == "0.00"
    assert body["podium"] == rows[:3]


def test_standings_with_no_departments(client):
    assert client.get("/api/standings").json() == {"standings": [], "podium": []}


def test_duplicate_medal_is_conflict(client):
    """同じイベントの同じメダルを2学科に与えると409。"""

    a = _department(client, "Alpha")
    b = _department(client, "Beta")
    e1 = _event(client, "Chess")
    assert _medal(client, e1, a, "gold").status_code == 201

    resp = _medal(client, e1, b, "gold")
    assert resp.status_code == 409
    assert len(client.get("/api/results").json()) == 1


def test_result_with_unknown_references_is_bad_request(client):
    a = _department(client, "Alpha")
    e1 = _event(client, "Chess")
    assert _medal(client, "evt_missing", a, "gold").status_code == 400
    assert _medal(client, e1, "dept_missing", "gold").status_code == 400
    assert _medal(client, e1, a, "platinum").status_code == 422


def test_update_and_delete_result(client):
    a = _department(client, "Alpha")
    b = _department(client, "Beta")
    e1 = _event(client, "Chess")
    result_id = _medal(client, e1, a, "gold").json()["id"]
    _medal(client, e1, b, "silver")

    conflict = client.put(
        f"/api/results/{result_id}",
        json={"event_id": e1, "department_id": a, "medal_type": "silver"},
    )
    assert conflict.status_code == 409

    moved = client.put(
        f"/api/results/{result_id}",
        json={"event_id": e1, "department_id": a, "medal_type": "bronze"},
    )
    assert moved.status_code == 200
    assert moved.json()["medal_type"] == "bronze"

    assert client.delete(f"/api/results/{result_id}").status_code == 204
    assert client.delete(f"/api/results/{result_id}").status_code == 404
    missing = client.put(
        "/api/results/res_missing",
        json={"event_id": e1, "department_id": a, "medal_type": "gold"},
    )
    assert missing.status_code == 404


def test_reset_results(client):
    a = _department(client, "Alpha")
    e1 = _event(client, "Chess")
    _medal(client, e1, a, "gold")
    _medal(client, e1, a, "silver")

    assert client.delete("/api/results").json() == {"deleted": 2}
    rows = client.get("/api/standings").json()["standings"]
    assert rows[0]["total_points"] == 0.0


def test_event_results_grouped_and_filtered(client):
    """イベントごとの受賞学科。カテゴリ・メダル・学科で絞り込める。"""

    a = _department(client, "Alpha", abbreviation="ALP")
    b = _department(client, "Beta")
    chess = _event(client, "Chess", category="Board Games", icon="♟")
    ball = _event(client, "Basketball", category="Ball Games")
    _event(client, "Swimming", category="Aquatics")
    _medal(client, chess, a, "gold")
    _medal(client, chess, b, "silver")
    _medal(client, ball, b, "gold")

    events = client.get("/api/events/results").json()["events"]
    assert [e["event_name"] for e in events] == ["Basketball", "Chess"]
    chess_row = events[1]
    assert chess_row["category"] == "Board Games"
    assert chess_row["icon"] == "♟"
    assert set(chess_row["medals"]) == {"gold", "silver"}
    assert chess_row["medals"]["gold"]["department_id"] == a
    assert chess_row["medals"]["gold"]["abbreviation"] == "ALP"
    assert chess_row["medals"]["silver"]["abbreviation"] == ""

    board = client.get("/api/events/results", params={"category": "Board Games"}).json()
    assert [e["event_id"] for e in board["events"]] == [chess]

    golds = client.get("/api/events/results", params={"medal_type": "gold"}).json()["events"]
    assert all(set(e["medals"]) == {"gold"} for e in golds)

    betas = client.get("/api/events/results", params={"department_id": b}).json()["events"]
    assert [set(e["medals"]) for e in betas] == [{"gold"}, {"silver"}]

    bad = client.get("/api/events/results", params={"medal_type": "platinum"})
    assert bad.status_code == 422


def test_department_crud(client):
    dept_id = _department(client, "  Alpha  ", abbreviation="ALP")
    assert client.get(f"/api/departments/{dept_id}").json()["name"] == "Alpha"

    resp = client.patch(f"/api/departments/{dept_id}", json={"abbreviation": ""})
    assert resp.status_code == 200
    assert resp.json()["abbreviation"] is None
    assert resp.json()["name"] == "Alpha"

    assert client.patch("/api/departments/dept_missing", json={"name": "x"}).status_code == 404
    assert client.post("/api/departments", json={"name": "   "}).status_code == 422

    assert client.delete(f"/api/departments/{dept_id}").status_code == 204
    assert client.get(f"/api/departments/{dept_id}").status_code == 404
    assert client.get("/api/departments").json() == []


def test_deleting_event_removes_its_medals_from_standings(client):
    a = _department(client, "Alpha")
    e1 = _event(client, "Chess")
    _medal(client, e1, a, "gold")

    assert client.delete(f"/api/events/{e1}").status_code == 204
    assert client.get(f"/api/events/{e1}").status_code == 404
    assert client.get("/api/standings").json()["standings"][0]["total_points"] == 0.0
    assert client.delete(f"/api/events/{e1}").status_code == 404


def test_update_event(client):
    """イベント名とカテゴリを PATCH で変更できる。"""

    event_id = _event(client, "Chess", icon="♟")

    resp = client.patch(
        f"/api/events/{event_id}", json={"name": " Chess Blitz ", "category": "Board"}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert (body["name"], body["category"], body["icon"]) == ("Chess Blitz", "Board", "♟")
    assert client.get(f"/api/events/{event_id}").json() == body

    assert client.patch(f"/api/events/{event_id}", json={"name": "  "}).status_code == 422
    assert client.patch("/api/events/evt_missing", json={"name": "x"}).status_code == 404


def test_event_results_keeps_results_of_missing_events():
    """イベントが見つからない結果は "Unknown Event" として返す。"""

    store = InMemoryStore.create()
    dept = store.create_department("Alpha")
    chess = store.create_event("Chess")
    store.record_result(chess.id, dept.id, "gold")
    orphan = ResultRecord(
        id="res_orphan",
        event_id="evt_gone",
        department_id=dept.id,
        medal_type="silver",
        created_at=datetime.now(timezone.utc),
    )
    store.results[orphan.id] = orphan

    client = TestClient(create_app(store))
    events = client.get("/api/events/results").json()["events"]

    assert [(e["event_id"], e["event_name"]) for e in events] == [
        (chess.id, "Chess"),
        ("evt_gone", "Unknown Event"),
    ]
    assert events[1]["category"] is None
    assert events[1]["medals"]["silver"]["department_id"] == dept.id


def test_unknown_log_level_falls_back_to_info(monkeypatch, caplog):
    """LOG_LEVEL の綴り間違いでも起動は止めない。"""

    monkeypatch.setenv("LOG_LEVEL", "verbose")
    with caplog.at_level(logging.WARNING, logger="sidlak.main"):
        app = create_app(InMemoryStore.create())

    assert TestClient(app).get("/health").json() == {"ok": True}
    assert "unknown LOG_LEVEL 'VERBOSE'" in caplog.text
