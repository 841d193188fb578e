"""
Tests for situational spot adjustments.
Run with: pytest tests/test_situational.py -v
"""

import pytest

from edge_engine.schemas import SituationalInput, TeamSituation
from edge_engine.services.situational import (
    altitude_adjustment,
    calculate_situational_adjustment,
    haversine_miles,
    rest_adjustment,
    rivalry_name,
    situational_factor,
    travel_adjustment,
)


def _ctx(home, away, neutral=False, **kw):
    return SituationalInput(
        home=TeamSituation(team=home, **kw.get("home_kw", {})),
        away=TeamSituation(team=away, **kw.get("away_kw", {})),
        neutral_site=neutral,
    )


@pytest.mark.parametrize("days, adj", [(None, 0.0), (4, -1.0), (5, -1.0), (7, 0.0), (12, 1.5), (14, 1.5)])
def test_rest_adjustment(days, adj):
    assert rest_adjustment(days) == adj


def test_haversine_zero_and_known_distance():
    assert haversine_miles(40.0, -83.0, 40.0, -83.0) == pytest.approx(0.0)
    # one degree of latitude is about 69 miles
    assert haversine_miles(40.0, -83.0, 41.0, -83.0) == pytest.approx(69.1, abs=0.5)


def test_travel_needs_both_locations():
    home = TeamSituation(team="Oregon", latitude=44.05, longitude=-123.07)
    away = TeamSituation(team="Ohio State")
    assert travel_adjustment(home, away) == (0.0, 0.0)


def test_travel_timezone_penalty():
    home = TeamSituation(team="A", latitude=40.0, longitude=-83.0, timezone_offset=-8)
    away = TeamSituation(team="B", latitude=40.0, longitude=-83.0, timezone_offset=-5)
    miles, adj = travel_adjustment(home, away)
    assert miles == pytest.approx(0.0)
    assert adj == pytest.approx(-0.6)


def test_long_trip_penalised():
    home = TeamSituation(team="Oregon", latitude=44.05, longitude=-123.07)
    away = TeamSituation(team="Rutgers", latitude=40.51, longitude=-74.46)
    miles, adj = travel_adjustment(home, away)
    assert miles > 2000
    assert adj < -0.5 - 0.6


def test_altitude_home_edge_unless_visitor_also_high():
    home = TeamSituation(team="Air Force")
    assert altitude_adjustment(home, TeamSituation(team="Navy")) == (7258, 2.5)
    assert altitude_adjustment(home, TeamSituation(team="Wyoming"))[1] == 0.0
    assert altitude_adjustment(TeamSituation(team="Boston College"), TeamSituation(team="Navy"))[1] == 0.0


def test_rivalry_lookup_is_order_independent():
    assert rivalry_name("Michigan", "Ohio State") == "The Game"
    assert rivalry_name("ohio state ", "MICHIGAN") == "The Game"
    assert rivalry_name("Ohio State", "Rutgers") is None


class TestSituationalImpact:

    def test_no_context_has_no_factor(self):
        impact = calculate_situational_adjustment(_ctx("Iowa", "Purdue"))
        assert impact.net_adjustment == 0
        assert impact.confidence == "low"
        assert situational_factor(impact) is None

    def test_bye_vs_short_week(self):
        impact = calculate_situational_adjustment(
            _ctx("Iowa", "Purdue", home_kw={"rest_days": 13}, away_kw={"rest_days": 5})
        )
        assert impact.net_adjustment == pytest.approx(2.5)
        assert impact.confidence == "medium"
        assert "Iowa off a bye" in impact.notes
        factor = situational_factor(impact)
        assert factor.kind == "situational"
        assert factor.magnitude == pytest.approx(2.5)

    def test_letdown_and_revenge(self):
        impact = calculate_situational_adjustment(_ctx(
            "Iowa", "Purdue",
            home_kw={"last_game_margin": 21},
            away_kw={"lost_to_opponent_last_season": True},
        ))
        assert impact.home_adjustment == pytest.approx(-1.0)
        assert impact.away_adjustment == pytest.approx(0.5)
        assert impact.net_adjustment == pytest.approx(-1.5)

    def test_letdown_threshold(self):
        impact = calculate_situational_adjustment(_ctx("Iowa", "Purdue", home_kw={"last_game_margin": 16}))
        assert impact.home_adjustment == 0.0

    def test_rivalry_damps_adjustments(self):
        impact = calculate_situational_adjustment(
            _ctx("Ohio State", "Michigan", home_kw={"rest_days": 5})
        )
        assert impact.rivalry == "The Game"
        assert impact.home_adjustment == pytest.approx(-0.5)

    def test_neutral_site_skips_travel_and_altitude(self):
        impact = calculate_situational_adjustment(_ctx("Colorado", "Rutgers", neutral=True))
        assert "altitude" not in impact.factors
        assert "travel" not in impact.factors
        home_game = calculate_situational_adjustment(_ctx("Colorado", "Rutgers"))
        assert home_game.factors["altitude"] == 1.5
