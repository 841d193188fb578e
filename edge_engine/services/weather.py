"""
Weather impact provider.

Maps a game-day forecast to a scoring (total) adjustment and a small spread
adjustment towards the underdog.  Research-derived thresholds:

    Wind      15 / 20 / 25 mph   ->  -2 / -4 / -7 total, +0 / +1 / +2 spread
    Cold      40 / 32 / 20 F     ->  -1 / -3 / -5 total
    Heat      >= 95 F            ->  -1 total
    Rain      0.1 / 0.25 / 0.5"  ->  -2 / -4 / -6 total, +0 / +1 / +1.5 spread
    Snow      0.5 / 2 / 4"       ->  -4 / -7 / -10 total, +1 / +2 / +3 spread
    Thunderstorm                 ->  -3 total

Indoor games and missing forecasts have no impact.  Missing weather is a
legitimate state that the decision gate may reject totals on; it is never
an exception.

Forecasts are fetched from the CollegeFootballData ``/games/weather``
endpoint.  A failed fetch returns an empty list and is logged.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import requests
from pydantic import ValidationError

from edge_engine.core.types import AdjustmentFactor
from edge_engine.schemas import WeatherRecord

logger = logging.getLogger(__name__)

CFBD_BASE_URL = os.getenv("CFBD_BASE_URL", "https://api.collegefootballdata.com")

SEVERITY_RANK: Dict[str, int] = {"none": 0, "minor": 1, "moderate": 2, "severe": 3}

# (threshold, total_adj, spread_adj, severity, label)
_WIND_TIERS: Tuple = (
    (25.0, -7.0, 2.0, "severe", "SEVERE WIND"),
    (20.0, -4.0, 1.0, "moderate", "HIGH WIND"),
    (15.0, -2.0, 0.0, "minor", "WIND"),
)
_COLD_TIERS: Tuple = (
    (20.0, -5.0, "severe", "EXTREME COLD"),
    (32.0, -3.0, "moderate", "FREEZING"),
    (40.0, -1.0, "minor", "COLD"),
)
_HEAT_THRESHOLD = 95.0
_RAIN_TIERS: Tuple = (
    (0.5, -6.0, 1.5, "severe", "HEAVY RAIN"),
    (0.25, -4.0, 1.0, "moderate", "RAIN"),
    (0.1, -2.0, 0.0, "minor", "LIGHT RAIN"),
)
_SNOW_TIERS: Tuple = (
    (4.0, -10.0, 3.0, "severe", "HEAVY SNOW"),
    (2.0, -7.0, 2.0, "severe", "SNOW"),
    (0.5, -4.0, 1.0, "moderate", "LIGHT SNOW"),
)
_THUNDERSTORM_TOTAL = -3.0


@dataclass
class WeatherImpact:
    has_data: bool
    severity: str = "none"
    total_adjustment: float = 0.0
    spread_adjustment: float = 0.0   # points towards the underdog
    factors: List[str] = field(default_factory=list)
    is_indoor: bool = False

    @property
    def has_impact(self) -> bool:
        return bool(self.factors)

    def to_dict(self) -> Dict:
        return {
            "has_data": self.has_data,
            "severity": self.severity,
            "total_adjustment": self.total_adjustment,
            "spread_adjustment": self.spread_adjustment,
            "factors": list(self.factors),
            "is_indoor": self.is_indoor,
        }


def _worse(current: str, new: str) -> str:
    return new if SEVERITY_RANK[new] > SEVERITY_RANK[current] else current


def analyze_weather_impact(weather: Optional[WeatherRecord]) -> WeatherImpact:
    """Score one forecast.  ``None`` means no forecast was available."""
    if weather is None:
        return WeatherImpact(has_data=False)
    if weather.is_indoor:
        return WeatherImpact(has_data=True, is_indoor=True)

    impact = WeatherImpact(has_data=True)
    total = 0.0
    spread = 0.0

    if weather.wind_speed is not None:
        for threshold, t_adj, s_adj, sev, label in _WIND_TIERS:
            if weather.wind_speed >= threshold:
                impact.factors.append(f"{label}: {weather.wind_speed:g} mph")
                total += t_adj
                spread += s_adj
                impact.severity = _worse(impact.severity, sev)
                break

    if weather.temperature is not None:
        matched = False
        for threshold, t_adj, sev, label in _COLD_TIERS:
            if weather.temperature <= threshold:
                impact.factors.append(f"{label}: {weather.temperature:g}F")
                total += t_adj
                impact.severity = _worse(impact.severity, sev)
                matched = True
                break
        if not matched and weather.temperature >= _HEAT_THRESHOLD:
            impact.factors.append(f"EXTREME HEAT: {weather.temperature:g}F")
            total += -1.0
            impact.severity = _worse(impact.severity, "minor")

    if weather.precipitation:
        for threshold, t_adj, s_adj, sev, label in _RAIN_TIERS:
            if weather.precipitation >= threshold:
                impact.factors.append(f'{label}: {weather.precipitation:g}"')
                total += t_adj
                spread += s_adj
                impact.severity = _worse(impact.severity, sev)
                break

    if weather.snowfall:
        for threshold, t_adj, s_adj, sev, label in _SNOW_TIERS:
            if weather.snowfall >= threshold:
                impact.factors.append(f'{label}: {weather.snowfall:g}"')
                total += t_adj
                spread += s_adj
                impact.severity = _worse(impact.severity, sev)
                break

    condition = (weather.weather_condition or "").lower()
    if "thunderstorm" in condition:
        impact.factors.append("THUNDERSTORM CONDITIONS")
        total += _THUNDERSTORM_TOTAL
        impact.severity = _worse(impact.severity, "moderate")

    impact.total_adjustment = round(total, 1)
    impact.spread_adjustment = round(spread, 1)
    return impact


def weather_warnings(impact: WeatherImpact) -> List[str]:
    if not impact.has_impact:
        return []
    warnings = []
    if impact.severity == "severe":
        warnings.append(f"WEATHER ALERT: Severe conditions expected ({impact.factors[0]})")
    elif impact.severity == "moderate":
        warnings.append(f"WEATHER: {', '.join(impact.factors)}")
    if abs(impact.total_adjustment) >= 5:
        warnings.append(f"Weather suggests total adjustment of {impact.total_adjustment:g} pts")
    return warnings


def weather_explains_large_edge(impact: WeatherImpact, edge_points: float, market_type: str) -> bool:
    """True when the forecast alone could account for a large disagreement."""
    if not impact.has_impact:
        return False
    if market_type == "total":
        return edge_points > 0 and impact.total_adjustment < -3
    return abs(impact.spread_adjustment) >= 2


def weather_factor(
    impact: WeatherImpact,
    market_type: str,
    base_spread_home: Optional[float] = None,
) -> Optional[AdjustmentFactor]:
    """Express *impact* as a line-lowering factor, or ``None`` when absent.

    The spread adjustment helps the underdog, so its sign depends on which
    side the base line favours.  A pick'em gets no spread adjustment.
    """
    if not impact.has_impact:
        return None
    confidence = "high" if impact.severity == "severe" else "medium"
    if market_type == "total":
        if impact.total_adjustment == 0:
            return None
        return AdjustmentFactor(
            kind="weather",
            magnitude=-impact.total_adjustment,
            confidence=confidence,
            detail=", ".join(impact.factors),
        )
    if impact.spread_adjustment == 0 or not base_spread_home:
        return None
    home_is_underdog = base_spread_home > 0
    magnitude = impact.spread_adjustment if home_is_underdog else -impact.spread_adjustment
    return AdjustmentFactor(
        kind="weather",
        magnitude=magnitude,
        confidence=confidence,
        detail=", ".join(impact.factors),
    )


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

def fetch_weather(season: int, week: int, api_key: Optional[str] = None) -> List[WeatherRecord]:
    """Fetch forecasts for one week.  Returns ``[]`` on any feed failure."""
    api_key = api_key or os.getenv("CFBD_API_KEY")
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    try:
        resp = requests.get(
            f"{CFBD_BASE_URL}/games/weather",
            params={"year": season, "week": week},
            headers=headers,
            timeout=15,
        )
        resp.raise_for_status()
        rows = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Weather fetch failed for %s week %s: %s", season, week, exc)
        return []

    records: List[WeatherRecord] = []
    for row in rows:
        try:
            records.append(WeatherRecord(
                homeTeam=row.get("homeTeam"),
                awayTeam=row.get("awayTeam"),
                temperature=row.get("temperature"),
                windSpeed=row.get("windSpeed"),
                precipitation=row.get("precipitation"),
                snowfall=row.get("snowfall"),
                weatherCondition=row.get("weatherCondition"),
                isIndoor=bool(row.get("gameIndoors")),
            ))
        except ValidationError as exc:
            logger.warning("Skipping malformed weather row %s: %s", row.get("id"), exc)

    logger.info("Weather: %d forecasts for %s week %s", len(records), season, week)
    return records


def index_by_matchup(records: List[WeatherRecord]) -> Dict[Tuple[str, str], WeatherRecord]:
    return {(r.home_team.lower(), r.away_team.lower()): r for r in records}
