"""Tests for the weather impact provider."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from edge_engine.schemas import WeatherRecord
from edge_engine.services.weather import (
    analyze_weather_impact,
    fetch_weather,
    index_by_matchup,
    weather_explains_large_edge,
    weather_factor,
    weather_warnings,
)


def _wx(**kw):
    return WeatherRecord(homeTeam="Wisconsin", awayTeam="Iowa", **kw)


class TestWeatherImpact:

    def test_missing_forecast_has_no_data(self):
        impact = analyze_weather_impact(None)
        assert impact.has_data is False
        assert impact.has_impact is False

    def test_indoor_has_data_but_no_impact(self):
        impact = analyze_weather_impact(_wx(windSpeed=30, isIndoor=True))
        assert impact.has_data is True
        assert impact.is_indoor is True
        assert impact.total_adjustment == 0.0

    @pytest.mark.parametrize("wind, total, spread, severity", [
        (10, 0.0, 0.0, "none"),
        (15, -2.0, 0.0, "minor"),
        (22, -4.0, 1.0, "moderate"),
        (28, -7.0, 2.0, "severe"),
    ])
    def test_wind_tiers(self, wind, total, spread, severity):
        impact = analyze_weather_impact(_wx(windSpeed=wind, temperature=60))
        assert impact.total_adjustment == pytest.approx(total)
        assert impact.spread_adjustment == pytest.approx(spread)
        assert impact.severity == severity

    def test_conditions_stack(self):
        impact = analyze_weather_impact(_wx(
            windSpeed=21, temperature=30, precipitation=0.3, weatherCondition="Thunderstorms",
        ))
        # wind -4, freezing -3, rain -4, thunderstorm -3
        assert impact.total_adjustment == pytest.approx(-14.0)
        assert impact.spread_adjustment == pytest.approx(2.0)
        assert impact.severity == "moderate"
        assert len(impact.factors) == 4

    def test_heat(self):
        impact = analyze_weather_impact(_wx(temperature=97))
        assert impact.total_adjustment == pytest.approx(-1.0)
        assert impact.factors == ["EXTREME HEAT: 97F"]

    def test_snow_is_severe(self):
        impact = analyze_weather_impact(_wx(snowfall=4.5, temperature=50))
        assert impact.severity == "severe"
        assert impact.total_adjustment == pytest.approx(-10.0)


# ---------------------------------------------------------------------------
# Warnings and factors
# ---------------------------------------------------------------------------

def test_warnings_for_severe_weather():
    impact = analyze_weather_impact(_wx(windSpeed=30))
    warnings = weather_warnings(impact)
    assert warnings[0].startswith("WEATHER ALERT: Severe conditions expected (SEVERE WIND")
    assert "Weather suggests total adjustment of -7 pts" in warnings


def test_total_factor_lowers_line():
    impact = analyze_weather_impact(_wx(windSpeed=22))
    factor = weather_factor(impact, "total")
    assert factor.magnitude == pytest.approx(4.0)
    assert factor.kind == "weather"


def test_spread_factor_helps_underdog():
    impact = analyze_weather_impact(_wx(windSpeed=22))
    assert weather_factor(impact, "spread", base_spread_home=-10.0).magnitude == pytest.approx(-1.0)
    assert weather_factor(impact, "spread", base_spread_home=6.0).magnitude == pytest.approx(1.0)
    assert weather_factor(impact, "spread", base_spread_home=0.0) is None
    assert weather_factor(impact, "spread", base_spread_home=None) is None


def test_no_factor_without_impact():
    assert weather_factor(analyze_weather_impact(None), "total") is None


def test_weather_explains_large_edge():
    impact = analyze_weather_impact(_wx(windSpeed=22))
    assert weather_explains_large_edge(impact, 6.0, "total") is True
    assert weather_explains_large_edge(impact, -6.0, "total") is False
    assert weather_explains_large_edge(impact, 6.0, "spread") is False


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

@patch("edge_engine.services.weather.requests.get")
def test_fetch_weather_parses_rows(mock_get):
    resp = MagicMock()
    resp.json.return_value = [
        {"id": 1, "homeTeam": "Wisconsin", "awayTeam": "Iowa", "temperature": 35.0, "windSpeed": 18.0,
         "precipitation": 0.0, "gameIndoors": False},
        {"id": 2, "homeTeam": "Syracuse", "awayTeam": "Pitt", "gameIndoors": True},
        {"id": 3, "homeTeam": "Bad", "awayTeam": "Row", "windSpeed": -4},
    ]
    mock_get.return_value = resp
    records = fetch_weather(2024, 10, api_key="k")
    assert len(records) == 2
    assert mock_get.call_args.kwargs["headers"] == {"Authorization": "Bearer k"}
    index = index_by_matchup(records)
    assert index[("syracuse", "pitt")].is_indoor is True


@patch("edge_engine.services.weather.requests.get")
def test_fetch_weather_failure_returns_empty(mock_get):
    mock_get.side_effect = requests.ConnectionError("down")
    assert fetch_weather(2024, 10) == []
