"""
Situational spot adjustments: rest, travel, altitude, rivalry, revenge
and letdown.

Each team collects a point adjustment from its own schedule context and the
net ``home - away`` is the spread factor (positive helps home).  Inputs are
:class:`~edge_engine.schemas.SituationalInput` records; any missing field
simply contributes nothing.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from edge_engine.core.types import AdjustmentFactor
from edge_engine.schemas import SituationalInput, TeamSituation

EARTH_RADIUS_MILES = 3959.0

# Rest
BYE_WEEK_MIN_DAYS = 12
SHORT_WEEK_MAX_DAYS = 5
BYE_WEEK_ADJ = 1.5
SHORT_WEEK_ADJ = -1.0

# Travel (applied to the visitor)
PER_THOUSAND_MILES_ADJ = -0.3
CROSS_COUNTRY_MILES = 2000.0
CROSS_COUNTRY_ADJ = -0.5
PER_TIMEZONE_HOUR_ADJ = -0.2

# Altitude (applied to the home team)
ALTITUDE_TIERS: Tuple[Tuple[float, float], ...] = ((7000.0, 2.5), (5000.0, 1.5))
HIGH_ALTITUDE_VENUES: Dict[str, float] = {
    "colorado": 5430,
    "air force": 7258,
    "byu": 4649,
    "utah": 4657,
    "utah state": 4775,
    "new mexico": 5312,
    "wyoming": 7220,
    "colorado state": 5003,
}

# Spots
REVENGE_ADJ = 0.5
LETDOWN_ADJ = -1.0
BIG_WIN_MARGIN = 17
RIVALRY_DAMPING = 0.5

RIVALRIES: Tuple[Tuple[str, str, str], ...] = (
    ("ohio state", "michigan", "The Game"),
    ("alabama", "auburn", "Iron Bowl"),
    ("georgia", "florida", "Worlds Largest Outdoor Cocktail Party"),
    ("texas", "oklahoma", "Red River Rivalry"),
    ("usc", "notre dame", "Jeweled Shillelagh"),
    ("army", "navy", "Army-Navy Game"),
    ("florida", "florida state", "Sunshine Showdown"),
    ("clemson", "south carolina", "Palmetto Bowl"),
    ("michigan", "michigan state", "Paul Bunyan Trophy"),
    ("wisconsin", "minnesota", "Paul Bunyan's Axe"),
    ("oregon", "oregon state", "Civil War"),
    ("washington", "washington state", "Apple Cup"),
    ("indiana", "purdue", "Old Oaken Bucket"),
    ("iowa", "iowa state", "Cy-Hawk"),
    ("kansas", "kansas state", "Sunflower Showdown"),
    ("texas", "texas a&m", "Lone Star Showdown"),
    ("penn state", "ohio state", "Big Ten East Rivalry"),
    ("oklahoma", "oklahoma state", "Bedlam"),
    ("tennessee", "alabama", "Third Saturday in October"),
    ("lsu", "alabama", "Game of the Century"),
)


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def rivalry_name(home_team: str, away_team: str) -> Optional[str]:
    pair = {home_team.strip().lower(), away_team.strip().lower()}
    for team1, team2, name in RIVALRIES:
        if pair == {team1, team2}:
            return name
    return None


def rest_adjustment(rest_days: Optional[int]) -> float:
    if rest_days is None:
        return 0.0
    if rest_days >= BYE_WEEK_MIN_DAYS:
        return BYE_WEEK_ADJ
    if rest_days <= SHORT_WEEK_MAX_DAYS:
        return SHORT_WEEK_ADJ
    return 0.0


def travel_adjustment(home: TeamSituation, away: TeamSituation) -> Tuple[float, float]:
    """Return ``(miles, adjustment)`` for the visitor; ``(0, 0)`` without locations."""
    if None in (home.latitude, home.longitude, away.latitude, away.longitude):
        return 0.0, 0.0
    miles = haversine_miles(away.latitude, away.longitude, home.latitude, home.longitude)
    adj = miles / 1000.0 * PER_THOUSAND_MILES_ADJ
    if miles > CROSS_COUNTRY_MILES:
        adj += CROSS_COUNTRY_ADJ
    if home.timezone_offset is not None and away.timezone_offset is not None:
        adj += abs(home.timezone_offset - away.timezone_offset) * PER_TIMEZONE_HOUR_ADJ
    return miles, adj


def _elevation(team: TeamSituation) -> float:
    if team.elevation_ft is not None:
        return team.elevation_ft
    return HIGH_ALTITUDE_VENUES.get(team.team.strip().lower(), 0.0)


def altitude_adjustment(home: TeamSituation, away: TeamSituation) -> Tuple[float, float]:
    """Return ``(feet, adjustment)`` for the home side."""
    feet = _elevation(home)
    threshold = ALTITUDE_TIERS[-1][0]
    if _elevation(away) >= threshold:
        return feet, 0.0
    for min_feet, adj in ALTITUDE_TIERS:
        if feet >= min_feet:
            return feet, adj
    return feet, 0.0


@dataclass
class SituationalImpact:
    home_adjustment: float = 0.0
    away_adjustment: float = 0.0
    rivalry: Optional[str] = None
    confidence: str = "low"
    factors: Dict[str, float] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)

    @property
    def net_adjustment(self) -> float:
        """Positive helps the home side."""
        return round(self.home_adjustment - self.away_adjustment, 1)


def calculate_situational_adjustment(ctx: SituationalInput) -> SituationalImpact:
    home, away = ctx.home, ctx.away
    impact = SituationalImpact()
    home_adj = 0.0
    away_adj = 0.0

    home_rest = rest_adjustment(home.rest_days)
    away_rest = rest_adjustment(away.rest_days)
    home_adj += home_rest
    away_adj += away_rest
    impact.factors["home_rest"] = home_rest
    impact.factors["away_rest"] = away_rest
    if home_rest > 0:
        impact.notes.append(f"{home.team} off a bye")
    if away_rest > 0:
        impact.notes.append(f"{away.team} off a bye")

    if not ctx.neutral_site:
        miles, travel = travel_adjustment(home, away)
        away_adj += travel
        impact.factors["travel_miles"] = round(miles)
        impact.factors["travel"] = round(travel, 1)

        feet, altitude = altitude_adjustment(home, away)
        home_adj += altitude
        impact.factors["altitude_ft"] = feet
        impact.factors["altitude"] = altitude
        if altitude:
            impact.notes.append(f"Altitude {feet:.0f} ft")

    if home.lost_to_opponent_last_season:
        home_adj += REVENGE_ADJ
        impact.notes.append(f"{home.team} revenge spot")
    if away.lost_to_opponent_last_season:
        away_adj += REVENGE_ADJ
        impact.notes.append(f"{away.team} revenge spot")

    if home.last_game_margin is not None and home.last_game_margin >= BIG_WIN_MARGIN:
        home_adj += LETDOWN_ADJ
        impact.notes.append(f"{home.team} letdown spot")
    if away.last_game_margin is not None and away.last_game_margin >= BIG_WIN_MARGIN:
        away_adj += LETDOWN_ADJ
        impact.notes.append(f"{away.team} letdown spot")

    impact.rivalry = rivalry_name(home.team, away.team)
    if impact.rivalry:
        home_adj *= RIVALRY_DAMPING
        away_adj *= RIVALRY_DAMPING
        impact.notes.append(f"Rivalry: {impact.rivalry}")

    has_location = None not in (home.latitude, home.longitude, away.latitude, away.longitude)
    has_rest = home.rest_days is not None and away.rest_days is not None
    if has_location and has_rest:
        impact.confidence = "high"
    elif has_location or has_rest:
        impact.confidence = "medium"

    impact.home_adjustment = round(home_adj, 1)
    impact.away_adjustment = round(away_adj, 1)
    return impact


def situational_factor(impact: SituationalImpact) -> Optional[AdjustmentFactor]:
    """Spread-only factor; ``None`` when the spot nets to zero."""
    if impact.net_adjustment == 0:
        return None
    return AdjustmentFactor(
        kind="situational",
        magnitude=impact.net_adjustment,
        confidence=impact.confidence,
        detail="; ".join(impact.notes),
    )
