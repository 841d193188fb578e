"""
Closing Line Value (CLV).

CLV measures how much better the number we bet was than where the market
settled.  One sign convention is used everywhere (positive = favourable to
the side bet):

    home   clv = bet_line - close_line   (home -6.5 closing -7.5 -> +1.0)
    away   clv = close_line - bet_line   (home +6.5 closing +7.5 -> +1.0)
    over   clv = close_line - bet_line   (over 55.5 closing 56.5 -> +1.0)
    under  clv = bet_line - close_line   (under 55.5 closing 54.5 -> +1.0)

Spread lines are always quoted from the home side.

Besides points, :func:`calculate_clv` reports ``cover_prob``: the chance the
bet covers if the closing number is the true centre, using a normal margin
model (college football margin SD around 13.5 points), and
``clv_prob = cover_prob - 0.50``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from scipy.stats import norm

from edge_engine.core.odds_math import clv_points_to_cents

logger = logging.getLogger(__name__)

#: Standard deviation of a CFB final margin around the closing spread.
MARGIN_SD = 13.5


@dataclass
class CLVResult:
    """CLV metrics for a single bet."""

    market_type: str
    side: str
    bet_line: float
    close_line: float
    clv_points: float
    clv_cents: float
    cover_prob: float
    clv_prob: float

    def is_positive(self) -> bool:
        return self.clv_points > 0

    def grade(self) -> str:
        """Display grade based on the probability edge vs close."""
        if self.clv_prob >= 0.03:
            return "STRONG+"
        if self.clv_prob >= 0.01:
            return "POSITIVE"
        if self.clv_prob >= -0.01:
            return "NEUTRAL"
        if self.clv_prob >= -0.03:
            return "NEGATIVE"
        return "STRONG-"


def clv_points(side: str, bet_line: float, close_line: float) -> float:
    """Signed CLV in points; positive means the market moved our way."""
    if side in ("home", "under"):
        return bet_line - close_line
    if side in ("away", "over"):
        return close_line - bet_line
    raise ValueError(f"Unknown bet side {side!r}")


def calculate_clv(
    market_type: str,
    side: str,
    bet_line: float,
    close_line: float,
    sd: float = MARGIN_SD,
) -> CLVResult:
    if sd <= 0:
        raise ValueError(f"sd={sd} must be positive")
    points = round(clv_points(side, bet_line, close_line), 2)
    cover = float(norm.cdf(points / sd))
    return CLVResult(
        market_type=market_type,
        side=side,
        bet_line=bet_line,
        close_line=close_line,
        clv_points=points,
        clv_cents=round(clv_points_to_cents(points)),
        cover_prob=round(cover, 4),
        clv_prob=round(cover - 0.5, 4),
    )


def closing_edge_persisted(
    market_type: str,
    model_line: Optional[float],
    close_line: Optional[float],
    effective_edge: float,
) -> Optional[bool]:
    """Whether the edge direction survived to the close.

    The edge is recomputed against the closing number
    (``close_line - model_line``) and compared by sign with the bet-time
    effective edge.  ``None`` when either line is missing.
    """
    if model_line is None or close_line is None or effective_edge == 0:
        return None
    closing_edge = close_line - model_line
    return (closing_edge > 0) == (effective_edge > 0) and closing_edge != 0
