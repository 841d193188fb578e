"""Tests for line movement folding and sharp-money detection."""

from datetime import datetime, timedelta

import pytest

from edge_engine.core.types import MarketLine
from edge_engine.schemas import OddsTick
from edge_engine.services.line_movement import (
    analyze_line_movement,
    bet_aligns_with_sharps,
    build_market_line,
    detect_sharp_signal,
    line_movement_factor,
)

T0 = datetime(2024, 10, 1, 12, 0)
KICKOFF = datetime(2024, 10, 5, 19, 30)


def _tick(points, hours=0, side="home", market="spread", book="dk", event="401"):
    data = {
        "eventId": event,
        "sportsbookId": book,
        "marketType": market,
        "side": side,
        "priceAmerican": -110,
        "capturedAt": T0 + timedelta(hours=hours),
    }
    if market == "spread":
        data["spreadPointsHome"] = points
    else:
        data["totalPoints"] = points
    return OddsTick(**data)


# ---------------------------------------------------------------------------
# build_market_line
# ---------------------------------------------------------------------------

def test_build_market_line_orders_by_capture_time():
    ticks = [_tick(-6.0, hours=5), _tick(-3.0, hours=0), _tick(-4.5, hours=2), _tick(3.0, hours=1, side="away")]
    line = build_market_line(ticks, "401", "dk", "spread")
    assert line.opening == -3.0
    assert line.current == -6.0
    assert line.movement == pytest.approx(-3.0)
    assert line.tick_count == 4
    assert line.opening_at == T0


def test_build_market_line_filters_book_and_market():
    ticks = [_tick(-3.0, book="fd"), _tick(51.5, market="total", side="over")]
    assert build_market_line(ticks, "401", "dk", "spread") is None
    total = build_market_line(ticks, "401", "dk", "total")
    assert total.current == 51.5


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("move, market, signal, confidence", [
    (-2.0, "spread", "sharp_home", "medium"),
    (3.5, "spread", "sharp_away", "high"),
    (-4.0, "total", "sharp_under", "high"),
    (2.5, "total", "sharp_over", "medium"),
    (1.0, "spread", "neutral", "low"),
    (0.0, "total", "neutral", "low"),
])
def test_detect_sharp_signal(move, market, signal, confidence):
    s = detect_sharp_signal(move, market)
    assert s.signal == signal
    assert s.confidence == confidence


def test_steam_move_requires_late_opener():
    late = detect_sharp_signal(-2.5, "spread", KICKOFF - timedelta(hours=3), KICKOFF)
    early = detect_sharp_signal(-2.5, "spread", KICKOFF - timedelta(hours=30), KICKOFF)
    assert late.is_steam_move is True
    assert early.is_steam_move is False


def test_minor_move_description():
    assert "Minor movement" in detect_sharp_signal(1.0, "spread").description
    assert "stable" in detect_sharp_signal(0.25, "spread").description


# ---------------------------------------------------------------------------
# Impact and factor
# ---------------------------------------------------------------------------

def test_analyze_follows_sharps_by_thirty_percent():
    spread = MarketLine("401", "dk", "spread", opening=-3.0, current=-6.0, opening_at=T0, tick_count=6)
    total = MarketLine("401", "dk", "total", opening=55.0, current=52.0, opening_at=T0, tick_count=6)
    impact = analyze_line_movement(spread, total, KICKOFF)
    assert impact.spread_adjustment == pytest.approx(0.9)
    assert impact.total_adjustment == pytest.approx(-0.9)
    assert any(w.startswith("SHARP MONEY") for w in impact.warnings)
    assert not any(w.startswith("LIMITED DATA") for w in impact.warnings)


def test_analyze_with_no_lines_warns_limited_data():
    impact = analyze_line_movement(None, None)
    assert impact.spread_signal.signal == "neutral"
    assert "LIMITED DATA: Only 0 spread ticks captured" in impact.warnings
    assert impact.to_dict()["spread"]["tick_count"] == 0


def test_line_movement_factor_signs():
    spread = MarketLine("401", "dk", "spread", opening=-3.0, current=-6.0, tick_count=6)
    total = MarketLine("401", "dk", "total", opening=50.0, current=53.0, tick_count=6)
    impact = analyze_line_movement(spread, total)
    spread_factor = line_movement_factor(impact, "spread")
    total_factor = line_movement_factor(impact, "total")
    assert spread_factor.magnitude == pytest.approx(0.9)     # helps home
    assert total_factor.magnitude == pytest.approx(-0.9)     # raises the total
    assert spread_factor.kind == "line_movement"


def test_no_factor_when_neutral():
    impact = analyze_line_movement(None, None)
    assert line_movement_factor(impact, "spread") is None
    assert line_movement_factor(impact, "total") is None


@pytest.mark.parametrize("side, aligned, note", [
    ("home", True, "BET ALIGNS WITH SHARPS on Home"),
    ("away", False, "CAUTION: Betting AGAINST sharp money"),
    ("over", False, ""),
])
def test_bet_aligns_with_sharps(side, aligned, note):
    spread = MarketLine("401", "dk", "spread", opening=-3.0, current=-6.0, tick_count=6)
    impact = analyze_line_movement(spread, None)
    assert bet_aligns_with_sharps(side, impact) == (aligned, note)
