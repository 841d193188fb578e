"""
Roster-continuity (returning production) adjustment.

Teams returning more production than the league average are underrated
early in the season; teams with a brand-new quarterback are overrated.
The effect fades as games are played:

    weeks 0-4   x1.00
    weeks 5-8   x0.65
    weeks 9+    x0.30
"""

from dataclasses import dataclass, field
from typing import List, Optional

from edge_engine.core.types import AdjustmentFactor
from edge_engine.schemas import RosterContinuity

RETURNING_MULTIPLIER = 5.0
LEAGUE_AVG_RETURNING = 0.55
MIN_RETURNING_DIFF = 0.10
NOTABLE_RETURNING_DIFF = 0.15
QB_NEW_THRESHOLD = 0.2
QB_NEW_PENALTY = 2.0
QB_EXPERIENCED_THRESHOLD = 0.9
QB_EXPERIENCE_BONUS = 0.75
LATE_SEASON_DECAY = 0.3


def season_decay(week: int) -> float:
    if week > 8:
        return LATE_SEASON_DECAY
    if week > 4:
        return 0.5 + LATE_SEASON_DECAY * 0.5
    return 1.0


@dataclass
class PlayerFactorImpact:
    spread_adjustment: float = 0.0   # + helps home
    confidence: str = "low"
    factors: List[str] = field(default_factory=list)


def _team_adjustment(team: RosterContinuity, decay: float, label: str, notes: List[str]) -> float:
    """Adjustment from *team*'s own point of view (positive = stronger than rated)."""
    adj = 0.0
    if team.returning_production is not None:
        diff = team.returning_production - LEAGUE_AVG_RETURNING
        if abs(diff) > MIN_RETURNING_DIFF:
            adj += diff * RETURNING_MULTIPLIER * decay
            pct = round(team.returning_production * 100)
            if diff > NOTABLE_RETURNING_DIFF:
                notes.append(f"{label} HIGH RETURNING: {pct}% production returns")
            elif diff < -NOTABLE_RETURNING_DIFF:
                notes.append(f"{label} LOW RETURNING: Only {pct}% production returns")

    if team.passing_returning is not None:
        pct = round(team.passing_returning * 100)
        if team.passing_returning < QB_NEW_THRESHOLD:
            adj -= QB_NEW_PENALTY * decay
            notes.append(f"{label} NEW QB: Only {pct}% passing returns")
        elif team.passing_returning > QB_EXPERIENCED_THRESHOLD:
            adj += QB_EXPERIENCE_BONUS * decay
            notes.append(f"{label} EXPERIENCED QB: {pct}% passing returns")
    return adj


def calculate_player_factor(
    home: Optional[RosterContinuity],
    away: Optional[RosterContinuity],
    week: int,
) -> PlayerFactorImpact:
    decay = season_decay(week)
    impact = PlayerFactorImpact()
    adjustment = 0.0
    if home is not None:
        adjustment += _team_adjustment(home, decay, "HOME", impact.factors)
    if away is not None:
        adjustment -= _team_adjustment(away, decay, "AWAY", impact.factors)

    if home is not None and away is not None:
        impact.confidence = "high"
    elif home is not None or away is not None:
        impact.confidence = "medium"
    impact.spread_adjustment = round(adjustment, 1)
    return impact


def player_factor(impact: PlayerFactorImpact) -> Optional[AdjustmentFactor]:
    if impact.spread_adjustment == 0:
        return None
    return AdjustmentFactor(
        kind="player_factor",
        magnitude=impact.spread_adjustment,
        confidence=impact.confidence,
        detail="; ".join(impact.factors),
    )
