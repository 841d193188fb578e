"""
Uncertainty scoring and edge computation.

Uncertainty is additive over independent sources and clamped to
``[0, UNCERTAINTY_CAP]``:

    uncertainty = week + mean_over_teams(roster + qb + coach)

* **week**:   0.45 for weeks 0-1, 0.25 for weeks 2-4, 0.10 afterwards.
* **roster**: 0.15 below the league's 25th percentile of returning PPA,
  0.08 below the median, otherwise 0.
* **qb**:     0.20 for an off-season QB transfer, then the pre-kickoff
  status increment (out +0.20, unknown +0.15, questionable +0.10,
  confirmed -0.10, floored at 0).
* **coach**:  0.10 for a new head coach.

A team with no off-season priors gets 0.10 for each of roster, qb and
coach.

QB status never blocks a bet on its own here; it only raises uncertainty,
which the decision gate may then reject on.

Edge arithmetic::

    raw_edge       = market_line - model_line
    capped_edge    = sign(raw) * min(|raw|, max_reasonable_edge[market])
    effective_edge = raw_edge * (1 - uncertainty)

Because the cap is below 1, the effective edge always keeps the raw
edge's sign.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

from edge_engine.core.config import ModelConfig, UncertaintyParams
from edge_engine.core.types import (
    EdgeResult,
    GameContext,
    MarketLine,
    ModelProjection,
    QBStatus,
    UncertaintyBreakdown,
)
from edge_engine.schemas import TeamPriors

MISSING_PRIORS_COMPONENT = 0.10
DEFAULT_RETURNING_PPA = 0.5


@dataclass(frozen=True)
class ReturningQuartiles:
    q25: float
    q50: float


def returning_quartiles(priors: Iterable[TeamPriors]) -> ReturningQuartiles:
    """League quartiles of returning PPA share; 0.5/0.5 with no data."""
    values = [p.percent_returning_ppa for p in priors if p.percent_returning_ppa is not None]
    if not values:
        return ReturningQuartiles(q25=DEFAULT_RETURNING_PPA, q50=DEFAULT_RETURNING_PPA)
    q25, q50 = np.percentile(np.asarray(values, dtype=float), [25, 50])
    return ReturningQuartiles(q25=float(q25), q50=float(q50))


def week_uncertainty(week: int, params: UncertaintyParams) -> float:
    if week <= 1:
        return params.week_0_1
    if week <= 4:
        return params.week_2_4
    return params.week_5_plus


def team_uncertainty(
    priors: Optional[TeamPriors],
    quartiles: ReturningQuartiles,
    params: UncertaintyParams,
) -> Tuple[float, float, float]:
    """``(roster, qb, coach)`` for one team before QB status is applied."""
    if priors is None:
        return MISSING_PRIORS_COMPONENT, MISSING_PRIORS_COMPONENT, MISSING_PRIORS_COMPONENT

    returning = priors.percent_returning_ppa
    if returning is None:
        returning = DEFAULT_RETURNING_PPA
    if returning < quartiles.q25:
        roster = params.roster_bottom_quartile
    elif returning < quartiles.q50:
        roster = params.roster_second_quartile
    else:
        roster = 0.0

    qb = params.qb_transfer if priors.qb_transfers_out > 0 else 0.0
    coach = params.new_coach if priors.coaching_change else 0.0
    return roster, qb, coach


def apply_qb_status(base_qb: float, status: QBStatus, params: UncertaintyParams) -> float:
    return max(0.0, base_qb + params.qb_increment(status.status))


def game_uncertainty(
    week: int,
    home_priors: Optional[TeamPriors],
    away_priors: Optional[TeamPriors],
    home_qb: QBStatus,
    away_qb: QBStatus,
    quartiles: ReturningQuartiles,
    params: UncertaintyParams,
) -> UncertaintyBreakdown:
    """Score one game.  Team components are averaged across both sides."""
    week_unc = week_uncertainty(week, params)
    h_roster, h_qb, h_coach = team_uncertainty(home_priors, quartiles, params)
    a_roster, a_qb, a_coach = team_uncertainty(away_priors, quartiles, params)
    h_qb = apply_qb_status(h_qb, home_qb, params)
    a_qb = apply_qb_status(a_qb, away_qb, params)

    roster = (h_roster + a_roster) / 2
    qb = (h_qb + a_qb) / 2
    coach = (h_coach + a_coach) / 2
    total = min(params.cap, max(0.0, week_unc + roster + qb + coach))
    return UncertaintyBreakdown(
        week=round(week_unc, 4),
        roster=round(roster, 4),
        qb=round(qb, 4),
        coach=round(coach, 4),
        total=round(total, 4),
    )


# ---------------------------------------------------------------------------
# Edge arithmetic
# ---------------------------------------------------------------------------

def effective_edge(raw_edge: float, uncertainty: float) -> float:
    if not 0.0 <= uncertainty < 1.0:
        raise ValueError(f"uncertainty={uncertainty} outside [0, 1)")
    return raw_edge * (1.0 - uncertainty)


def cap_edge(raw_edge: float, max_edge: float) -> float:
    return float(np.sign(raw_edge)) * min(abs(raw_edge), max_edge)


def is_high_uncertainty(raw_edge: float, uncertainty: float, params: UncertaintyParams) -> bool:
    return abs(raw_edge) >= params.high_edge_threshold and uncertainty >= params.high_uncertainty_threshold


def side_for(raw_edge: float, market_type: str) -> Optional[str]:
    if raw_edge == 0:
        return None
    if market_type == "spread":
        return "home" if raw_edge > 0 else "away"
    return "under" if raw_edge > 0 else "over"


def compute_edge(
    game: GameContext,
    market: MarketLine,
    projection: ModelProjection,
    uncertainty: UncertaintyBreakdown,
    config: ModelConfig,
) -> EdgeResult:
    """Build the :class:`EdgeResult` for one event, book and market.

    Missing market or model numbers yield a zero edge with no side; the
    decision gate rejects it as missing data.
    """
    market_line = market.bet_line
    model_line = projection.line_for(market.market_type)

    if market_line is None or model_line is None:
        raw = 0.0
    else:
        raw = round(market_line - model_line, 2)

    unc = uncertainty.total
    return EdgeResult(
        event_id=game.event_id,
        sportsbook_id=market.sportsbook_id,
        market_type=market.market_type,
        home_team=game.home_team,
        away_team=game.away_team,
        season=game.season,
        week=game.week,
        market_line=market_line,
        model_line=model_line,
        raw_edge=raw,
        capped_edge=cap_edge(raw, config.edge_rules.max_edge_for(market.market_type)),
        uncertainty=unc,
        effective_edge=round(effective_edge(raw, unc), 4),
        side=side_for(raw, market.market_type),
        is_high_uncertainty=is_high_uncertainty(raw, unc, config.uncertainty),
        uncertainty_breakdown=uncertainty,
    )
