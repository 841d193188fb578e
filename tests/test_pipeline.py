"""
Tests for the weekly slate pipeline: calendar, step plumbing, run lock,
coverage gate and an end-to-end run against stub feeds.

Run with: pytest tests/test_pipeline.py -v
"""

import threading
import time
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from edge_engine.core.config import ModelConfig
from edge_engine.models import (
    Base,
    DataFetch,
    EdgeRecord,
    Event,
    OddsTickRow,
    PipelineRun,
    Projection,
    TeamRating,
)
from edge_engine.schemas import GameRecord, TeamLocation, TeamPriors, TeamRatingSnapshot, TeamTempo
from edge_engine.services.pipeline import (
    CoverageGateError,
    PipelineContext,
    PipelineRunner,
    SlateLockedError,
    acquire_run_lock,
    check_coverage,
    current_season,
    make_run_key,
    plays_per_game,
    run_step,
    situational_input,
    team_situation,
    utc_offset_hours,
    week_from_date,
)

CONFIG = ModelConfig.production_v3()
NOW = datetime(2024, 10, 3, 12, 0)
KICKOFF = datetime(2024, 10, 5, 19, 30)
VERSION = CONFIG.version.value
RUN_KEY = make_run_key(2024, 6, VERSION)


@pytest.fixture
def file_sessions(tmp_path):
    """File-backed database so each pipeline step gets its own connection."""
    eng = create_engine(f"sqlite:///{tmp_path / 'pipeline.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=eng)
    yield sessionmaker(autocommit=False, autoflush=False, bind=eng)
    eng.dispose()


def _games():
    return [
        GameRecord(id="g1", season=2024, week=6, homeTeamId="Georgia", awayTeamId="Auburn", kickoff=KICKOFF),
        GameRecord(id="g2", season=2024, week=6, homeTeamId="Texas", awayTeamId="Oklahoma", kickoff=KICKOFF),
    ]


def _cfbd():
    cfbd = MagicMock()
    cfbd.fetch_games.return_value = _games()
    cfbd.fetch_elo_ratings.return_value = [
        TeamRatingSnapshot(teamId=team, season=2024, rating=rating, gamesPlayed=5)
        for team, rating in (("Georgia", 1850), ("Auburn", 1600), ("Texas", 1800), ("Oklahoma", 1650))
    ]
    cfbd.fetch_returning_production.return_value = []
    cfbd.fetch_team_locations.return_value = []
    cfbd.fetch_offense_plays.return_value = []
    return cfbd


def _odds_client():
    client = MagicMock()
    client.get_cfb_odds.return_value = [{
        "home_team": "Georgia",
        "away_team": "Auburn",
        "bookmakers": [{
            "key": "draftkings",
            "markets": [
                {"key": "spreads", "outcomes": [
                    {"name": "Georgia", "price": -110, "point": -7.0},
                    {"name": "Auburn", "price": -110, "point": 7.0},
                ]},
                {"key": "totals", "outcomes": [
                    {"name": "Over", "price": -110, "point": 50.5},
                    {"name": "Under", "price": -110, "point": 50.5},
                ]},
            ],
        }],
    }]
    return client


def _ctx(**kw):
    injuries = MagicMock()
    injuries.fetch_injuries.return_value = []
    defaults = dict(season=2024, week=6, config=CONFIG, cfbd=_cfbd(), odds_client=_odds_client(),
                    injury_service=injuries, now=NOW)
    defaults.update(kw)
    return PipelineContext(**defaults)


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("d, season", [
    (date(2024, 9, 14), 2024),
    (date(2025, 1, 9), 2024),
    (date(2024, 8, 1), 2024),
    (date(2024, 7, 31), 2023),
])
def test_current_season(d, season):
    assert current_season(d) == season


@pytest.mark.parametrize("d, week", [
    (date(2024, 8, 24), 0),
    (date(2024, 8, 31), 1),
    (date(2024, 10, 3), 5),
    (date(2024, 8, 1), 0),
    (date(2025, 1, 9), 15),
])
def test_week_from_date(d, week):
    assert week_from_date(d) == week


def test_week_from_datetime():
    assert week_from_date(datetime(2024, 8, 31, 23, 0)) == 1


def test_run_key():
    assert make_run_key(2024, 6, "v3_ppadiff_regime2") == "2024-W6-v3_ppadiff_regime2"


# ---------------------------------------------------------------------------
# Step plumbing
# ---------------------------------------------------------------------------

def test_run_step_success():
    result = run_step("noop", lambda: {"rows": 3}, timeout=5)
    assert result.success
    assert result.detail == {"rows": 3}


def test_run_step_failure_is_returned():
    def boom():
        raise RuntimeError("feed down")

    result = run_step("boom", boom, timeout=5)
    assert result.success is False
    assert result.error == "feed down"


def test_run_step_timeout():
    release = threading.Event()
    start = time.monotonic()
    result = run_step("slow", lambda: release.wait(5), timeout=0.05)
    release.set()
    assert result.success is False
    assert result.error == "timed out after 0.05s"
    assert time.monotonic() - start < 2


# ---------------------------------------------------------------------------
# Run lock
# ---------------------------------------------------------------------------

class TestRunLock:

    def test_live_lock_blocks(self, db):
        ctx = _ctx()
        acquire_run_lock(db, ctx, RUN_KEY)
        with pytest.raises(SlateLockedError):
            acquire_run_lock(db, _ctx(now=NOW + timedelta(minutes=10)), RUN_KEY)

    def test_other_slate_not_blocked(self, db):
        acquire_run_lock(db, _ctx(), RUN_KEY)
        acquire_run_lock(db, _ctx(), make_run_key(2024, 7, VERSION))
        assert db.query(PipelineRun).count() == 2

    def test_stale_lock_taken_over(self, db):
        first = acquire_run_lock(db, _ctx(), RUN_KEY)
        second = acquire_run_lock(db, _ctx(now=NOW + timedelta(hours=2)), RUN_KEY)
        db.refresh(first)
        assert first.status == "failed"
        assert first.error == "stale lock taken over"
        assert second.status == "running"

    def test_runner_reports_locked(self, file_sessions):
        db = file_sessions()
        db.add(PipelineRun(run_key=RUN_KEY, season=2024, week=6, model_version=VERSION,
                           status="running", started_at=NOW - timedelta(minutes=5)))
        db.commit()
        db.close()
        summary = PipelineRunner(_ctx(), session_factory=file_sessions).run()
        assert summary["status"] == "locked"
        assert "already in progress" in summary["errors"][0]


# ---------------------------------------------------------------------------
# Coverage gate
# ---------------------------------------------------------------------------

def _add_events(db, ids=("g1", "g2", "g3")):
    for event_id in ids:
        db.add(Event(id=event_id, season=2024, week=6, home_team=f"H{event_id}",
                     away_team=f"A{event_id}", kickoff=KICKOFF))
    db.commit()


def test_coverage_passes_on_empty_slate(db):
    assert check_coverage(db, _ctx()) == 1.0


def test_coverage_counts_active_version_only(db):
    _add_events(db)
    db.add(Projection(event_id="g1", model_version=VERSION))
    db.add(Projection(event_id="g2", model_version=VERSION))
    db.add(Projection(event_id="g3", model_version="t60-ensemble-v1"))
    db.commit()
    with pytest.raises(CoverageGateError) as exc:
        check_coverage(db, _ctx())
    assert exc.value.projected == 2
    assert exc.value.total == 3
    assert check_coverage(db, _ctx(), threshold=0.6) == pytest.approx(2 / 3)


def test_completed_events_not_counted(db):
    _add_events(db, ("g1",))
    db.add(Event(id="g9", season=2024, week=6, home_team="X", away_team="Y", kickoff=KICKOFF, completed=True))
    db.add(Projection(event_id="g1", model_version=VERSION))
    db.commit()
    assert check_coverage(db, _ctx()) == 1.0


# ---------------------------------------------------------------------------
# Game context from stored schedule
# ---------------------------------------------------------------------------

def _final(db, event_id, season, week, home, away, kickoff, home_score, away_score, neutral=False):
    db.add(Event(id=event_id, season=season, week=week, home_team=home, away_team=away, kickoff=kickoff,
                 home_score=home_score, away_score=away_score, completed=True, neutral_site=neutral))


class TestGameContext:

    def test_rest_margin_and_revenge_from_stored_games(self, db):
        _final(db, "p1", 2024, 5, "Georgia", "Kentucky", KICKOFF - timedelta(days=5), 45, 10)
        _final(db, "p2", 2024, 4, "Auburn", "Vanderbilt", KICKOFF - timedelta(days=14), 17, 20)
        _final(db, "p3", 2023, 6, "Auburn", "Georgia", KICKOFF - timedelta(days=365), 20, 27)
        event = Event(id="g1", season=2024, week=6, home_team="Georgia", away_team="Auburn",
                      kickoff=KICKOFF, neutral_site=True)
        db.add(event)
        db.commit()

        sit = situational_input(db, event, {})
        assert sit.neutral_site is True
        assert sit.home.rest_days == 5
        assert sit.home.last_game_margin == 35
        assert sit.home.lost_to_opponent_last_season is False
        assert sit.away.rest_days == 14
        assert sit.away.last_game_margin == -3
        assert sit.away.lost_to_opponent_last_season is True

    def test_season_opener_has_no_rest_figure(self, db):
        event = Event(id="g1", season=2024, week=1, home_team="Georgia", away_team="Clemson", kickoff=KICKOFF)
        db.add(event)
        db.commit()
        home = team_situation(db, event, "Georgia", "Clemson", None)
        assert home.rest_days is None
        assert home.last_game_margin is None
        assert home.latitude is None

    def test_location_and_time_zone(self, db):
        event = Event(id="g1", season=2024, week=6, home_team="Georgia", away_team="Oregon", kickoff=KICKOFF)
        db.add(event)
        db.commit()
        loc = TeamLocation(team="Oregon", latitude=44.06, longitude=-123.07, time_zone="America/Los_Angeles")
        away = team_situation(db, event, "Oregon", "Georgia", loc)
        assert away.latitude == 44.06
        assert away.timezone_offset == -7

    @pytest.mark.parametrize("tz, offset", [
        ("America/New_York", -4),
        ("America/Denver", -6),
        ("Pacific/Honolulu", -10),
        ("Not/AZone", None),
        (None, None),
    ])
    def test_utc_offset_hours(self, tz, offset):
        assert utc_offset_hours(tz, KICKOFF) == offset

    def test_plays_per_game_uses_stored_games_played(self, db):
        _final(db, "p1", 2024, 4, "Georgia", "Kentucky", KICKOFF - timedelta(days=12), 30, 10)
        _final(db, "p2", 2024, 5, "Georgia", "Alabama", KICKOFF - timedelta(days=5), 30, 33)
        db.commit()
        cfbd = _cfbd()
        cfbd.fetch_offense_plays.return_value = [
            TeamTempo(team="Georgia", offense_plays=150),
            TeamTempo(team="Auburn", offense_plays=300),
        ]
        assert plays_per_game(db, _ctx(cfbd=cfbd)) == {"georgia": 75.0}
        cfbd.fetch_offense_plays.assert_called_once_with(2024, end_week=5)
        assert plays_per_game(db, _ctx(cfbd=cfbd, week=1)) == {}


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

@patch("edge_engine.services.pipeline.fetch_weather", return_value=[])
def test_end_to_end_run(_weather, file_sessions):
    summary = PipelineRunner(_ctx(), session_factory=file_sessions).run()

    assert summary["status"] == "success", summary["errors"]
    assert summary["run_key"] == RUN_KEY
    assert summary["coverage"] == 1.0
    assert summary["edges_written"] == 2
    assert [s["name"] for s in summary["steps"]] == ["sync_events", "poll_odds", "run_model", "materialize_edges"]

    db = file_sessions()
    try:
        assert db.query(Event).count() == 2
        assert db.query(TeamRating).count() == 4
        assert db.query(OddsTickRow).count() == 4
        assert db.query(Projection).count() == 2
        edges = {e.market_type: e for e in db.query(EdgeRecord).all()}
        assert set(edges) == {"spread", "total"}
        assert edges["spread"].market_line == -7.0
        assert edges["spread"].explain["component_breakdown"]["config"] == CONFIG.identity
        assert edges["spread"].qualifies is False
        run = db.query(PipelineRun).one()
        assert run.status == "success"
        assert run.edges_written == 2
        gate = db.query(DataFetch).filter(DataFetch.data_source == "coverage_gate").one()
        assert gate.success is True
    finally:
        db.close()


@patch("edge_engine.services.pipeline.fetch_weather", return_value=[])
def test_run_composes_situational_roster_and_pace(_weather, file_sessions):
    cfbd = _cfbd()
    cfbd.fetch_games.return_value = _games() + [
        GameRecord(id="g0", season=2024, week=5, homeTeamId="Georgia", awayTeamId="Kentucky",
                   kickoff=KICKOFF - timedelta(days=5), homeScore=45, awayScore=10),
    ]
    cfbd.fetch_returning_production.return_value = [
        TeamPriors(team="Georgia", percent_returning_ppa=0.85, percent_returning_passing_ppa=0.95),
        TeamPriors(team="Auburn", percent_returning_ppa=0.30, percent_returning_passing_ppa=0.10),
    ]
    cfbd.fetch_offense_plays.return_value = [TeamTempo(team="Georgia", offense_plays=80)]
    summary = PipelineRunner(_ctx(cfbd=cfbd), session_factory=file_sessions).run()
    assert summary["status"] == "success", summary["errors"]
    cfbd.fetch_games.assert_called_once_with(2024)

    db = file_sessions()
    try:
        edges = {e.market_type: e for e in db.query(EdgeRecord).filter(EdgeRecord.event_id == "g1")}
        spread_parts = edges["spread"].explain["component_breakdown"]["projection"]
        # short week and letdown for Georgia: -2.0 net at 0.8 weight
        assert spread_parts["spread.situational"] == pytest.approx(-1.6)
        assert spread_parts["spread.player_factor"] > 0
        total_parts = edges["total"].explain["component_breakdown"]["projection"]
        assert total_parts["total.pace"] == pytest.approx(-2.0)
    finally:
        db.close()


@patch("edge_engine.services.pipeline.fetch_weather", return_value=[])
def test_failed_feed_gives_partial_run(_weather, file_sessions):
    client = MagicMock()
    client.get_cfb_odds.side_effect = RuntimeError("odds api down")
    summary = PipelineRunner(_ctx(odds_client=client), session_factory=file_sessions).run()
    assert summary["status"] == "partial"
    assert summary["errors"] == ["poll_odds: odds api down"]
    assert summary["edges_written"] == 0


def test_coverage_gate_failure_skips_materialization(file_sessions):
    with patch("edge_engine.services.pipeline.run_model", side_effect=RuntimeError("model crashed")), \
            patch("edge_engine.services.pipeline.materialize_edges") as mock_materialize:
        summary = PipelineRunner(_ctx(), session_factory=file_sessions).run()

    mock_materialize.assert_not_called()
    assert summary["status"] == "failed"
    assert summary["coverage"] == 0.0
    assert any("below 95% threshold" in e for e in summary["errors"])

    db = file_sessions()
    try:
        gate = db.query(DataFetch).filter(DataFetch.data_source == "coverage_gate").one()
        assert gate.success is False
        assert db.query(PipelineRun).one().status == "failed"
    finally:
        db.close()


def test_unexpected_error_releases_lock(file_sessions):
    error = OperationalError("SELECT count(*) FROM events", {}, Exception("disk I/O error"))
    with patch("edge_engine.services.pipeline.fetch_weather", return_value=[]), \
            patch("edge_engine.services.pipeline.check_coverage", side_effect=error), \
            patch("edge_engine.services.pipeline.materialize_edges") as mock_materialize:
        summary = PipelineRunner(_ctx(), session_factory=file_sessions).run()

    mock_materialize.assert_not_called()
    assert summary["status"] == "failed"
    assert summary["errors"][-1].startswith("aborted: ")
    assert "disk I/O error" in summary["errors"][-1]

    db = file_sessions()
    try:
        run = db.query(PipelineRun).one()
        assert run.status == "failed"
        assert run.finished_at is not None
        assert "disk I/O error" in run.error
    finally:
        db.close()

    # the slate is free again straight away
    with patch("edge_engine.services.pipeline.fetch_weather", return_value=[]):
        assert PipelineRunner(_ctx(), session_factory=file_sessions).run()["status"] == "success"


def test_rerun_after_finish_is_allowed(file_sessions):
    with patch("edge_engine.services.pipeline.fetch_weather", return_value=[]):
        PipelineRunner(_ctx(), session_factory=file_sessions).run()
        summary = PipelineRunner(_ctx(), session_factory=file_sessions).run()
    assert summary["status"] == "success"
    db = file_sessions()
    try:
        assert db.query(PipelineRun).count() == 2
        assert db.query(EdgeRecord).count() == 2
        assert db.query(Projection).count() == 2
    finally:
        db.close()
