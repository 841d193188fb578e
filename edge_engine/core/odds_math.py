"""Odds and grading arithmetic.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services or models.

The pieces exposed are:

1. **Odds conversion**: American to decimal, profit per unit and implied
   probability.
2. **Expected value**: EV per 100 staked and ROI at standard -110 juice.
3. **Grading**: cover / push / loss for spread and total bets, and the
   points-to-cents conversion used for closing line value.

All functions accept ``int`` or ``float`` American odds.  Fractional odds
must be converted by the caller.
"""

from __future__ import annotations

from typing import Final

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: American-odds magnitude floor.  Feeds never return |odds| < 100; values
#: below this indicate a data error.
_MIN_ODDS_MAGNITUDE: Final[int] = 100

#: Standard juice on spreads and totals.
STANDARD_PRICE: Final[int] = -110

#: Profit per unit staked at -110 (100 / 110).
STANDARD_PAYOUT: Final[float] = 0.909

#: A graded result within this many points of the line is a push.
PUSH_TOLERANCE: Final[float] = 0.01

#: Rough market value of one half-point of CLV, in cents of price.
_CENTS_PER_POINT: Final[float] = 20.0


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def _check_odds(american: int | float) -> None:
    if abs(american) < _MIN_ODDS_MAGNITUDE:
        raise ValueError(
            f"Invalid American odds {american!r}: magnitude must be >= 100. "
            "Check upstream odds parsing for data errors."
        )


def american_to_decimal(american: int | float) -> float:
    """Convert American odds to decimal odds (stake included).

    Examples::

        american_to_decimal(-110) -> 1.9091
        american_to_decimal(+150) -> 2.5000

    Raises:
        ValueError: If ``|american| < 100``.
    """
    _check_odds(american)
    if american > 0:
        return american / 100.0 + 1.0
    return 100.0 / abs(american) + 1.0


def profit_per_unit(american: int | float) -> float:
    """Profit on a one-unit winning stake (``-110`` -> 0.9091)."""
    return american_to_decimal(american) - 1.0


def implied_prob(american: int | float) -> float:
    """Vig-inclusive implied probability of the quoted price."""
    return 1.0 / american_to_decimal(american)


# ---------------------------------------------------------------------------
# Expected value
# ---------------------------------------------------------------------------


def expected_value(win_probability: float, american: int | float = STANDARD_PRICE) -> float:
    """EV per 100 staked, rounded to cents.

    ``EV = p * payout * 100 - (1 - p) * 100``.  A 52.38% bet at -110 is
    break-even.
    """
    if not 0.0 <= win_probability <= 1.0:
        raise ValueError(f"win_probability={win_probability} outside [0, 1]")
    payout = profit_per_unit(american)
    ev = win_probability * payout * 100.0 - (1.0 - win_probability) * 100.0
    return round(ev, 2)


def roi_at_standard_price(win_rate: float) -> float:
    """ROI per unit risked at -110 for a given decided-bet win rate."""
    return win_rate * STANDARD_PAYOUT - (1.0 - win_rate)


def break_even_probability(american: int | float = STANDARD_PRICE) -> float:
    payout = profit_per_unit(american)
    return 1.0 / (1.0 + payout)


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------


def cover_margin(
    side: str,
    line: float,
    home_score: int | float,
    away_score: int | float,
) -> float:
    """Points by which *side* beat *line*; negative means it lost.

    ``line`` is the home spread for ``home``/``away`` bets and the total
    for ``over``/``under`` bets.
    """
    if side == "home":
        return (home_score - away_score) + line
    if side == "away":
        return -((home_score - away_score) + line)
    if side == "over":
        return (home_score + away_score) - line
    if side == "under":
        return line - (home_score + away_score)
    raise ValueError(f"Unknown bet side {side!r}")


def grade_bet(
    side: str,
    line: float,
    home_score: int | float,
    away_score: int | float,
) -> str:
    """Return ``'win'``, ``'loss'`` or ``'push'``."""
    margin = cover_margin(side, line, home_score, away_score)
    if abs(margin) < PUSH_TOLERANCE:
        return "push"
    return "win" if margin > 0 else "loss"


def clv_points_to_cents(clv_points: float) -> float:
    return clv_points * _CENTS_PER_POINT
