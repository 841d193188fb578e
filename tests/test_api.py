"""
API tests with FastAPI's TestClient.
The scheduler is never started; the database dependency points at the test engine.
"""

from datetime import datetime
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from edge_engine.main import app
from edge_engine.models import (
    BetRecord,
    EdgeRecord,
    Event,
    MonitoringAlertRow,
    QBStartedRow,
    QBStatusRow,
    get_db,
)

USER = {"X-API-Key": "user-key"}
ADMIN = {"X-API-Key": "admin-key"}


@pytest.fixture
def client(session_factory, monkeypatch):
    monkeypatch.setenv("API_KEY_USER", "user-key")
    monkeypatch.setenv("API_KEY_ADMIN", "admin-key")

    def _db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _seed(db):
    db.add(Event(id="401", season=2024, week=6, home_team="Georgia", away_team="Auburn",
                 kickoff=datetime(2024, 10, 5, 19, 30)))
    for market, pct, qualifies in (("spread", 0.02, True), ("total", 0.6, False)):
        db.add(EdgeRecord(event_id="401", sportsbook_id="dk", market_type=market, season=2024, week=6,
                          market_line=-7.0, model_line=-11.0, edge_points=4.0, recommended_side="home",
                          percentile=pct, qualifies=qualifies, explain={"qualifies": qualifies}))
    db.add(BetRecord(event_id="401", sportsbook_id="dk", market_type="spread", game_key="Auburn@Georgia",
                     season=2024, week=6, side="home", team="Georgia", spread_at_bet=-7.0,
                     raw_edge=4.0, effective_edge=3.6, uncertainty=0.1, percentile=0.02,
                     confidence="medium", warnings=[], config_identity="v3_ppadiff_regime2"))
    db.commit()


def test_health_reports_stopped_scheduler(client):
    body = client.get("/health").json()
    assert body["database"] == "connected"
    assert body["scheduler"] == "stopped"


class TestAuth:

    def test_missing_key(self, client):
        assert client.get("/api/edges", params={"season": 2024, "week": 6}).status_code == 401

    def test_invalid_key(self, client):
        resp = client.get("/api/edges", params={"season": 2024, "week": 6}, headers={"X-API-Key": "nope"})
        assert resp.status_code == 401

    def test_user_cannot_reach_admin(self, client):
        assert client.post("/admin/alerts/1/acknowledge", headers=USER).status_code == 403


def test_edges_filtered_and_ordered(client, db):
    _seed(db)
    resp = client.get("/api/edges", params={"season": 2024, "week": 6}, headers=USER)
    assert resp.status_code == 200
    assert [e["market_type"] for e in resp.json()] == ["spread", "total"]

    resp = client.get("/api/edges", params={"season": 2024, "week": 6, "qualifies_only": True}, headers=USER)
    assert len(resp.json()) == 1

    resp = client.get("/api/edges", params={"season": 2024, "week": 6, "market_type": "moneyline"}, headers=USER)
    assert resp.status_code == 422


def test_bet_slips(client, db):
    _seed(db)
    slips = client.get("/api/slate/2024/6/slips", headers=USER).json()
    assert len(slips) == 1
    assert slips[0]["game_key"] == "Auburn@Georgia"
    assert slips[0]["model"] == "v3_ppadiff_regime2"


def test_monitoring_report_text(client):
    resp = client.get("/api/monitoring/report", params={"season": 2024, "format": "text"}, headers=USER)
    assert resp.status_code == 200
    assert "Sample gate not met" in resp.text


def test_grade_and_acknowledge(client, db):
    _seed(db)
    bet_id = db.query(BetRecord).one().id

    body = {"home_score": 31, "away_score": 17, "closing_line": -8.0}
    resp = client.post(f"/admin/grade-bets/{bet_id}", json=body, headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["result"] == "win"
    assert resp.json()["clv_points"] == pytest.approx(1.0)

    assert client.post(f"/admin/grade-bets/{bet_id}", json=body, headers=ADMIN).status_code == 409
    assert client.post("/admin/grade-bets/999", json=body, headers=ADMIN).status_code == 404

    db.add(MonitoringAlertRow(type="warning", category="clv", message="low capture", metric="clv_capture_rate"))
    db.commit()
    alert_id = db.query(MonitoringAlertRow).one().id
    assert client.post(f"/admin/alerts/{alert_id}/acknowledge", headers=ADMIN).status_code == 200
    alerts = client.get("/api/monitoring/alerts", headers=USER).json()
    assert alerts["critical"] == 0
    assert alerts["alerts"][0]["acknowledged"] is True


def test_trigger_pipeline(client):
    summary = {"status": "success", "run_key": "2024-W6-v3_ppadiff_regime2", "coverage": 1.0,
               "edges_written": 2, "steps": [], "errors": [], "extra": "ignored"}
    with patch("edge_engine.main.run_pipeline", return_value=summary) as mock_run:
        resp = client.post("/admin/run-pipeline", params={"season": 2024, "week": 6}, headers=ADMIN)
    mock_run.assert_called_once_with(season=2024, week=6)
    assert resp.json()["edges_written"] == 2


def test_qb_status_must_precede_kickoff(client, db):
    _seed(db)
    body = {"team": "Georgia", "season": 2024, "week": 6, "status": "confirmed", "asOf": "2024-10-04T12:00:00"}
    assert client.post("/admin/qb-status", json=body, headers=ADMIN).status_code == 200

    late = dict(body, asOf="2024-10-05T20:00:00")
    assert client.post("/admin/qb-status", json=late, headers=ADMIN).status_code == 422
    assert db.query(QBStatusRow).count() == 1


def test_qb_status_accepts_timezone_aware_stamps(client, db):
    _seed(db)
    body = {"team": "Georgia", "season": 2024, "week": 6, "status": "questionable", "asOf": "2024-10-04T12:00:00Z"}
    assert client.post("/admin/qb-status", json=body, headers=ADMIN).status_code == 200
    assert db.query(QBStatusRow).one().as_of == datetime(2024, 10, 4, 12, 0)

    # 15:00 in New York is 19:00 UTC, before the 19:30 kickoff
    offset = dict(body, asOf="2024-10-05T15:00:00-04:00")
    assert client.post("/admin/qb-status", json=offset, headers=ADMIN).status_code == 200

    late = dict(body, asOf="2024-10-05T16:00:00-04:00")
    assert client.post("/admin/qb-status", json=late, headers=ADMIN).status_code == 422
    assert db.query(QBStatusRow).count() == 2


def test_qb_started_is_separate_record(client, db):
    _seed(db)
    resp = client.post("/admin/qb-started/401", params={"team": "Georgia", "player_name": "C. Beck"}, headers=ADMIN)
    assert resp.status_code == 200
    assert db.query(QBStartedRow).count() == 1
    assert db.query(QBStatusRow).count() == 0
    assert client.post("/admin/qb-started/999", params={"team": "Georgia"}, headers=ADMIN).status_code == 404
