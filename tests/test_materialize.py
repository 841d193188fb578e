"""Tests for per-game evaluation, slate decisions and the explain payload."""

from datetime import datetime

import pytest

from edge_engine.core.config import ModelConfig
from edge_engine.core.types import GameContext, MarketLine, ModelProjection, QBStatus
from edge_engine.schemas import WeatherRecord
from edge_engine.services.materialize import (
    GameInputs,
    build_explain,
    collect_factors,
    decide_slate,
    evaluate_game,
    reference_book,
)
from edge_engine.services.uncertainty import ReturningQuartiles
from edge_engine.services.weather import analyze_weather_impact

CONFIG = ModelConfig.production_v3()
KICKOFF = datetime(2024, 10, 5, 19, 30)
QUARTILES = ReturningQuartiles(q25=0.5, q50=0.5)


def _game(event_id="401", home="Georgia", away="Auburn", week=6):
    return GameContext(event_id=event_id, home_team=home, away_team=away, season=2024, week=week, kickoff=KICKOFF)


def _markets(event_id="401", book="dk", spread=(-7.0, -6.0), total=(50.5, 50.5), ticks=4):
    return [
        MarketLine(event_id, book, "spread", opening=spread[0], current=spread[1], tick_count=ticks),
        MarketLine(event_id, book, "total", opening=total[0], current=total[1], tick_count=ticks),
    ]


def _inputs(game=None, projection="default", markets=None, weather=None):
    game = game or _game()
    if projection == "default":
        projection = ModelProjection(event_id=game.event_id, model_spread_home=-3.0, model_total_points=55.0)
    return GameInputs(
        game=game,
        projection=projection,
        markets=markets if markets is not None else _markets(game.event_id),
        home_qb=QBStatus.unknown(game.home_team, 2024, game.week),
        away_qb=QBStatus.unknown(game.away_team, 2024, game.week),
        weather=weather,
    )


def test_reference_book_most_ticks_then_id():
    markets = _markets(book="fd", ticks=3) + _markets(book="dk", ticks=3) + _markets(book="mgm", ticks=1)
    assert reference_book(markets) == "dk"
    assert reference_book(_markets(book="mgm", ticks=9) + markets) == "mgm"
    assert reference_book([]) is None


class TestEvaluateGame:

    def test_edges_priced_against_latest_tick(self):
        ev = evaluate_game(_inputs(), CONFIG, QUARTILES)
        spread = next(e for e in ev.edges if e.market_type == "spread")
        assert spread.market_line == -6.0
        assert spread.model_line == -3.0
        assert spread.raw_edge == pytest.approx(-3.0)
        assert spread.side == "away"
        assert ev.reference_book == "dk"
        assert ev.has_weather_data is False

    def test_weather_composes_into_both_markets(self):
        weather = WeatherRecord(homeTeam="Georgia", awayTeam="Auburn", windSpeed=22, temperature=60)
        ev = evaluate_game(_inputs(weather=weather), CONFIG, QUARTILES)
        assert ev.projection.model_total_points == pytest.approx(51.0)
        # home favoured by 3, weather helps the underdog
        assert ev.projection.model_spread_home == pytest.approx(-2.5)
        assert ev.projection.components["total.weather"] == pytest.approx(4.0)
        total = next(e for e in ev.edges if e.market_type == "total")
        assert total.raw_edge == pytest.approx(-0.5)
        assert total.side == "over"
        assert "WEATHER: HIGH WIND: 22 mph" in ev.warnings

    def test_total_movement_reported_but_not_composed(self):
        markets = _markets(spread=(-3.0, -6.5), total=(55.0, 51.0), ticks=6)
        ev = evaluate_game(_inputs(markets=markets), CONFIG, QUARTILES)
        assert "spread.line_movement" in ev.projection.components
        assert "total.line_movement" not in ev.projection.components
        assert ev.projection.model_total_points == pytest.approx(55.0)
        assert ev.line_movement["dk"].total_signal.signal == "sharp_under"

        weather = analyze_weather_impact(None)
        _, total_factors = collect_factors(_inputs(markets=markets), weather, ev.line_movement["dk"])
        assert all(f is None or f.kind != "line_movement" for f in total_factors)

    def test_missing_projection_yields_zero_edges(self):
        ev = evaluate_game(_inputs(projection=None), CONFIG, QUARTILES)
        assert ev.projection is None
        assert all(e.raw_edge == 0 and e.side is None for e in ev.edges)
        assert all(not e.has_market_data for e in ev.edges)

    def test_no_markets_no_edges(self):
        ev = evaluate_game(_inputs(markets=[]), CONFIG, QUARTILES)
        assert ev.edges == []
        assert ev.reference_book is None


class TestSlate:

    def _evaluations(self):
        a = evaluate_game(_inputs(), CONFIG, QUARTILES)
        b = evaluate_game(
            _inputs(game=_game("402", "Texas", "Oklahoma"), markets=_markets("402", spread=(-3.5, -3.5))),
            CONFIG, QUARTILES,
        )
        return [a, b]

    def test_each_market_ranked_separately(self):
        slate = decide_slate(self._evaluations(), CONFIG, 2024, 6)
        assert slate.total_games == 4
        for market in ("spread", "total"):
            pct = sorted(e.candidate.percentile for e in slate.entries if e.candidate.edge.market_type == market)
            assert pct == [0.5, 1.0]

    def test_missing_projection_rejected_as_missing_data(self):
        ev = evaluate_game(_inputs(projection=None), CONFIG, QUARTILES)
        slate = decide_slate([ev], CONFIG, 2024, 6)
        reasons = {e.candidate.edge.market_type: e.decision.reason for e in slate.entries}
        assert reasons["spread"] == "NEVER BET: Missing spread data"
        assert reasons["total"] == "NEVER BET: Missing total data"

    def test_explain_payload(self):
        evaluations = self._evaluations()
        slate = decide_slate(evaluations, CONFIG, 2024, 6)
        entry = next(e for e in slate.entries if e.candidate.edge.event_id == "401"
                     and e.candidate.edge.market_type == "spread")
        explain = build_explain(entry.candidate.edge, entry.decision, evaluations[0], CONFIG)
        assert set(explain) == {
            "win_probability", "expected_value", "confidence_tier", "qualifies",
            "warnings", "reason", "component_breakdown",
        }
        assert explain["qualifies"] is entry.decision.should_bet
        breakdown = explain["component_breakdown"]
        assert breakdown["config"] == CONFIG.identity
        assert breakdown["raw_edge"] == pytest.approx(-3.0)
        assert breakdown["line_movement"]["spread"]["tick_count"] == 4
