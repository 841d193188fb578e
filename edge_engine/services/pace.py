"""Tempo adjustment for totals.

FBS teams average about 70 plays a game at roughly 0.4 points per play.
Each side contributes half its deviation from that average.
"""

from dataclasses import dataclass
from typing import Optional

from edge_engine.core.types import AdjustmentFactor

FBS_AVG_PLAYS = 70.0
POINTS_PER_PLAY = 0.4


@dataclass
class PaceImpact:
    home_adjustment: float = 0.0
    away_adjustment: float = 0.0
    confidence: str = "low"

    @property
    def combined(self) -> float:
        """Points added to the expected total (positive = faster game)."""
        return round(self.home_adjustment + self.away_adjustment, 1)


def calculate_pace(home_plays: Optional[float], away_plays: Optional[float]) -> PaceImpact:
    if home_plays is None and away_plays is None:
        return PaceImpact()
    home_dev = (home_plays if home_plays is not None else FBS_AVG_PLAYS) - FBS_AVG_PLAYS
    away_dev = (away_plays if away_plays is not None else FBS_AVG_PLAYS) - FBS_AVG_PLAYS
    return PaceImpact(
        home_adjustment=round(home_dev * POINTS_PER_PLAY / 2, 1),
        away_adjustment=round(away_dev * POINTS_PER_PLAY / 2, 1),
        confidence="high" if home_plays is not None and away_plays is not None else "medium",
    )


def pace_factor(impact: PaceImpact) -> Optional[AdjustmentFactor]:
    if impact.combined == 0:
        return None
    return AdjustmentFactor(
        kind="pace",
        magnitude=-impact.combined,
        confidence=impact.confidence,
        detail=f"Pace {impact.combined:+.1f} pts",
    )
