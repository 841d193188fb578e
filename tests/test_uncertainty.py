"""Tests for uncertainty scoring and edge arithmetic."""

from datetime import datetime

import numpy as np
import pytest

from edge_engine.core.config import ModelConfig, UncertaintyParams
from edge_engine.core.types import GameContext, MarketLine, ModelProjection, QBStatus, UncertaintyBreakdown
from edge_engine.schemas import TeamPriors
from edge_engine.services.uncertainty import (
    ReturningQuartiles,
    cap_edge,
    compute_edge,
    effective_edge,
    game_uncertainty,
    returning_quartiles,
    side_for,
    team_uncertainty,
    week_uncertainty,
)

PARAMS = UncertaintyParams()
QUARTILES = ReturningQuartiles(q25=0.45, q50=0.60)
KICKOFF = datetime(2024, 10, 5, 19, 30)


def _qb(team, status="confirmed", week=6):
    return QBStatus(team=team, season=2024, week=week, status=status, as_of=datetime(2024, 10, 4))


def _game(week=6):
    return GameContext("401", "Georgia", "Auburn", 2024, week, KICKOFF)


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("week, expected", [(0, 0.45), (1, 0.45), (2, 0.25), (4, 0.25), (5, 0.10), (15, 0.10)])
def test_week_uncertainty(week, expected):
    assert week_uncertainty(week, PARAMS) == pytest.approx(expected)


def test_missing_priors_defaults():
    assert team_uncertainty(None, QUARTILES, PARAMS) == (0.10, 0.10, 0.10)


@pytest.mark.parametrize("returning, roster", [(0.30, 0.15), (0.50, 0.08), (0.70, 0.0)])
def test_roster_quartiles(returning, roster):
    priors = TeamPriors(team="A", percent_returning_ppa=returning)
    assert team_uncertainty(priors, QUARTILES, PARAMS)[0] == pytest.approx(roster)


def test_transfer_and_coach():
    priors = TeamPriors(team="A", percent_returning_ppa=0.9, qb_transfers_out=1, coaching_change=True)
    assert team_uncertainty(priors, QUARTILES, PARAMS) == pytest.approx((0.0, 0.20, 0.10))


def test_returning_quartiles_defaults_without_data():
    assert returning_quartiles([]) == ReturningQuartiles(0.5, 0.5)


def test_returning_quartiles_from_priors():
    priors = [TeamPriors(team=str(i), percent_returning_ppa=v) for i, v in enumerate(np.linspace(0, 1, 5))]
    q = returning_quartiles(priors)
    assert q.q25 == pytest.approx(0.25)
    assert q.q50 == pytest.approx(0.5)


# ---------------------------------------------------------------------------
# Game uncertainty
# ---------------------------------------------------------------------------

def test_confirmed_qb_floors_at_zero():
    strong = TeamPriors(team="Georgia", percent_returning_ppa=0.8)
    unc = game_uncertainty(6, strong, strong, _qb("Georgia"), _qb("Auburn"), QUARTILES, PARAMS)
    assert unc.qb == pytest.approx(0.0)
    assert unc.total == pytest.approx(0.10)


def test_qb_out_raises_uncertainty():
    strong = TeamPriors(team="Georgia", percent_returning_ppa=0.8)
    unc = game_uncertainty(6, strong, strong, _qb("Georgia", "out"), _qb("Auburn"), QUARTILES, PARAMS)
    assert unc.qb == pytest.approx(0.10)   # (0.20 + 0) / 2


def test_total_is_capped():
    weak = TeamPriors(team="A", percent_returning_ppa=0.1, qb_transfers_out=2, coaching_change=True)
    unc = game_uncertainty(0, weak, weak, _qb("A", "out", 0), _qb("B", "out", 0), QUARTILES, PARAMS)
    assert unc.total == pytest.approx(PARAMS.cap)


def test_uncertainty_bounds_over_grid():
    statuses = ["confirmed", "questionable", "out", "unknown"]
    for week in range(0, 16):
        for hs in statuses:
            for as_ in statuses:
                unc = game_uncertainty(week, None, None, _qb("A", hs, week), _qb("B", as_, week), QUARTILES, PARAMS)
                assert 0.0 <= unc.total <= PARAMS.cap


# ---------------------------------------------------------------------------
# Edge arithmetic
# ---------------------------------------------------------------------------

def test_effective_edge_keeps_sign():
    for raw in np.linspace(-15, 15, 31):
        for unc in np.linspace(0, 0.75, 7):
            eff = effective_edge(raw, unc)
            assert np.sign(eff) == np.sign(raw)
            assert abs(eff) <= abs(raw)


def test_effective_edge_rejects_full_uncertainty():
    with pytest.raises(ValueError):
        effective_edge(3.0, 1.0)


def test_cap_edge():
    assert cap_edge(7.5, 5.0) == pytest.approx(5.0)
    assert cap_edge(-7.5, 5.0) == pytest.approx(-5.0)
    assert cap_edge(2.0, 5.0) == pytest.approx(2.0)
    assert cap_edge(0.0, 5.0) == 0.0


@pytest.mark.parametrize("raw, market, side", [
    (3.0, "spread", "home"),
    (-3.0, "spread", "away"),
    (3.0, "total", "under"),
    (-3.0, "total", "over"),
    (0.0, "spread", None),
])
def test_side_for(raw, market, side):
    assert side_for(raw, market) == side


def test_compute_edge_spread():
    market = MarketLine("401", "dk", "spread", opening=-3.0, current=-3.5, tick_count=2)
    projection = ModelProjection("401", model_spread_home=-7.0, model_total_points=52.0)
    unc = UncertaintyBreakdown(week=0.10, total=0.20)
    edge = compute_edge(_game(), market, projection, unc, ModelConfig.production_v3())
    assert edge.market_line == -3.5
    assert edge.raw_edge == pytest.approx(3.5)
    assert edge.side == "home"
    assert edge.effective_edge == pytest.approx(2.8)
    assert edge.team == "Georgia"


def test_compute_edge_market_moved_to_model_number():
    market = MarketLine("401", "dk", "spread", opening=-3.0, current=-7.0, tick_count=5)
    projection = ModelProjection("401", model_spread_home=-7.0, model_total_points=52.0)
    edge = compute_edge(_game(), market, projection, UncertaintyBreakdown(total=0.20), ModelConfig.production_v3())
    assert edge.market_line == -7.0
    assert edge.raw_edge == 0.0
    assert edge.side is None


def test_compute_edge_falls_back_to_opener():
    market = MarketLine("401", "dk", "total", opening=49.5, tick_count=1)
    projection = ModelProjection("401", model_total_points=52.0)
    edge = compute_edge(_game(), market, projection, UncertaintyBreakdown(total=0.20), ModelConfig.production_v3())
    assert edge.market_line == 49.5
    assert edge.side == "over"


def test_compute_edge_missing_model_has_no_side():
    market = MarketLine("401", "dk", "total", current=48.5, tick_count=1)
    edge = compute_edge(_game(), market, ModelProjection("401"), UncertaintyBreakdown(), ModelConfig.production_v3())
    assert edge.raw_edge == 0.0
    assert edge.side is None
    assert not edge.has_market_data
