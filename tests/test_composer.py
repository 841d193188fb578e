"""Tests for blending base lines with weighted adjustment factors."""

import pytest

from edge_engine.core.config import ModelConfig
from edge_engine.core.types import AdjustmentFactor, ModelProjection
from edge_engine.services.composer import compose_line, compose_projection, factor_weight

CONFIG = ModelConfig.production_v3()


def _f(kind, magnitude):
    return AdjustmentFactor(kind=kind, magnitude=magnitude)


@pytest.mark.parametrize("market, kind, weight", [
    ("spread", "situational", 0.8),
    ("spread", "weather", 0.5),
    ("spread", "injury", 0.7),
    ("spread", "line_movement", 0.3),
    ("spread", "player_factor", 1.0),
    ("spread", "pace", None),
    ("total", "pace", 1.0),
    ("total", "weather", 1.0),
    ("total", "injury", 0.25),
    ("total", "situational", None),
])
def test_factor_weight(market, kind, weight):
    assert factor_weight(CONFIG, market, kind) == weight


def test_spread_composition_lowers_line():
    composed = compose_line(-7.0, [_f("situational", 2.0), _f("injury", 5.0), None, _f("pace", 3.0)], CONFIG, "spread")
    assert composed.model_line == pytest.approx(-12.1)
    assert composed.contributions == {"situational": 1.6, "injury": 3.5}
    assert composed.ignored == ["pace"]
    assert composed.total_adjustment == pytest.approx(-5.1)


def test_total_composition_uses_damped_injury():
    composed = compose_line(55.0, [_f("weather", 4.0), _f("injury", 5.0), _f("line_movement", 1.0)], CONFIG, "total")
    assert composed.model_line == pytest.approx(49.75)
    assert composed.ignored == ["line_movement"]


def test_repeated_kinds_accumulate():
    composed = compose_line(50.0, [_f("weather", 1.0), _f("weather", 2.0)], CONFIG, "total")
    assert composed.contributions == {"weather": 3.0}
    assert composed.breakdown()["model_line"] == pytest.approx(47.0)


def test_no_factors_keeps_base_line():
    composed = compose_line(-3.5, [], CONFIG, "spread")
    assert composed.model_line == -3.5
    assert composed.contributions == {}


def test_unknown_factor_kind_rejected():
    with pytest.raises(ValueError):
        AdjustmentFactor(kind="vibes", magnitude=1.0)


def test_compose_projection_records_components():
    base = ModelProjection(event_id="401", model_spread_home=-7.0, model_total_points=None, components={"base": 1.0})
    composed = compose_projection(base, CONFIG, spread_factors=[_f("player_factor", 2.0)], total_factors=[_f("pace", 3.0)])
    assert composed.model_spread_home == pytest.approx(-9.0)
    assert composed.model_total_points is None
    assert composed.components == {"base": 1.0, "spread.player_factor": 2.0}
    assert base.model_spread_home == -7.0
