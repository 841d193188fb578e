"""
Betting decision gate.

Hard-coded rules with no discretion.  :func:`decide_bet` runs an ordered,
short-circuiting sequence of checks and is a pure function of its inputs:
the same candidate always produces the same :class:`BetDecision`.

    1. Missing market or model line               NEVER BET
    2. |effective edge| below the market floor    NEVER BET
    3. Total without weather data                 NEVER BET
    4. Weeks 1-4, high uncertainty, unknown QB    NEVER BET
    5. Percentile outside the regime's top-N%     NO BET
    6. Uncertainty above the regime's cap         NO BET
    7. Regime requires QB status and it's unknown NO BET
    8. Otherwise BET, with non-blocking warnings

A QB ruled out is not an automatic reject: it raised uncertainty upstream,
and the bet stands if the edge still clears every threshold.

QB inputs here are pre-kickoff :class:`QBStatus` values only.  Post-game
starter records never reach this module.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from edge_engine.core.config import REGIME_WEEKS_1_4, ModelConfig
from edge_engine.core.types import BetDecision, BetSlip, EdgeResult, QBStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BetCandidate:
    edge: EdgeResult
    home_qb: QBStatus
    away_qb: QBStatus
    percentile: float
    has_weather_data: bool = False


def _reject(reason: str, warnings: Sequence[str] = ()) -> BetDecision:
    return BetDecision(should_bet=False, reason=reason, confidence="high", warnings=tuple(warnings))


def decide_bet(candidate: BetCandidate, config: ModelConfig) -> BetDecision:
    edge = candidate.edge
    home_qb, away_qb = candidate.home_qb.status, candidate.away_qb.status
    regime = config.regime_for_week(edge.week)
    rules = config.edge_rules
    market = edge.market_type

    # 1. Missing critical data
    if not edge.has_market_data:
        return _reject(f"NEVER BET: Missing {market} data", ["Critical data missing"])

    # 2. Market-specific floor
    floor = rules.floor_for(market)
    abs_eff = abs(edge.effective_edge)
    if abs_eff < floor:
        return _reject(f"NEVER BET: Effective edge {abs_eff:.1f} below {floor:g} pt floor ({market})")

    # 3. Totals need weather context
    if market == "total" and rules.total_requires_weather and not candidate.has_weather_data:
        return _reject("NEVER BET: Total bet requires weather data")

    # 4. High uncertainty with an unknown QB, early season
    home_unknown = home_qb == "unknown"
    away_unknown = away_qb == "unknown"
    if regime is REGIME_WEEKS_1_4 and edge.is_high_uncertainty and (home_unknown or away_unknown):
        notes = []
        if home_unknown:
            notes.append(f"Home QB ({edge.home_team}) status unknown")
        if away_unknown:
            notes.append(f"Away QB ({edge.away_team}) status unknown")
        return _reject("NEVER BET: High uncertainty + unknown QB in Weeks 1-4", notes)

    # 5. Percentile
    if candidate.percentile > regime.edge_percentile:
        return _reject(
            f"NO BET: Percentile {candidate.percentile * 100:.0f}% exceeds "
            f"Top {regime.edge_percentile * 100:.0f}% threshold ({regime.label})"
        )

    # 6. Uncertainty cap
    unc = edge.uncertainty
    if unc > regime.max_uncertainty:
        return _reject(
            f"NO BET: Uncertainty {unc:.2f} exceeds {regime.max_uncertainty:g} limit ({regime.label})"
        )

    # 7. QB status requirement
    if regime.require_qb_status and (home_unknown or away_unknown):
        notes = []
        if home_unknown:
            notes.append(f"{edge.home_team} QB unknown")
        if away_unknown:
            notes.append(f"{edge.away_team} QB unknown")
        return _reject(f"NO BET: QB status required in {regime.label} but unknown", notes)

    # 8. Approved
    warnings: List[str] = []
    if home_qb == "questionable":
        warnings.append(f"{edge.home_team} QB questionable")
    if away_qb == "questionable":
        warnings.append(f"{edge.away_team} QB questionable")
    if edge.week <= rules.very_early_last_week:
        warnings.append("Very early season (Week 1-2)")
    if unc > rules.warn_uncertainty_above:
        warnings.append(f"Elevated uncertainty: {unc:.2f}")

    confidence = "high"
    if warnings:
        confidence = "medium"
    if len(warnings) > 2 or unc > rules.low_confidence_uncertainty:
        confidence = "low"

    return BetDecision(
        should_bet=True,
        reason=(
            f"BET: Top {candidate.percentile * 100:.0f}% effective edge ({regime.label}), "
            f"eff={edge.effective_edge:.1f}, unc={unc:.2f}"
        ),
        confidence=confidence,
        warnings=tuple(warnings),
    )


# ---------------------------------------------------------------------------
# Slate processing
# ---------------------------------------------------------------------------

@dataclass
class SlateEntry:
    candidate: BetCandidate
    decision: BetDecision


@dataclass
class BettingSlate:
    season: int
    week: int
    entries: List[SlateEntry] = field(default_factory=list)

    @property
    def total_games(self) -> int:
        return len(self.entries)

    @property
    def bettable(self) -> List[SlateEntry]:
        return [e for e in self.entries if e.decision.should_bet]

    @property
    def passed(self) -> List[SlateEntry]:
        return [e for e in self.entries if not e.decision.should_bet]


def rank_key(edge: EdgeResult) -> Tuple:
    """Largest |effective edge| first; ties by event, book and market id."""
    return (-abs(edge.effective_edge), edge.event_id, edge.sportsbook_id, edge.market_type)


def rank_slate(edges: Sequence[EdgeResult]) -> List[EdgeResult]:
    """Return *edges* in rank order with ``percentile = rank / n`` set.

    Only edges with both lines are ranked; the rest sit at percentile 1.0
    after them and are rejected as missing data.
    """
    ranked = sorted((e for e in edges if e.has_market_data), key=rank_key)
    missing = sorted((e for e in edges if not e.has_market_data), key=rank_key)
    n = len(ranked)
    return (
        [edge.with_percentile((i + 1) / n) for i, edge in enumerate(ranked)]
        + [edge.with_percentile(1.0) for edge in missing]
    )


def process_betting_slate(
    edges: Sequence[EdgeResult],
    qb_statuses: Mapping[str, QBStatus],
    season: int,
    week: int,
    config: ModelConfig,
    weather_events: Optional[Mapping[str, bool]] = None,
) -> BettingSlate:
    """Rank a slate and decide every edge.

    Args:
        edges: every edge of the slate; ranking needs the full set.
        qb_statuses: pre-kickoff statuses keyed by lower-cased team name.
            A team with no entry is ``unknown``.
        weather_events: ``event_id -> has weather data``.  Absent means no.
    """
    weather_events = weather_events or {}
    slate = BettingSlate(season=season, week=week)

    for edge in rank_slate(edges):
        home_qb = qb_statuses.get(edge.home_team.lower()) or QBStatus.unknown(edge.home_team, season, week)
        away_qb = qb_statuses.get(edge.away_team.lower()) or QBStatus.unknown(edge.away_team, season, week)
        candidate = BetCandidate(
            edge=edge,
            home_qb=home_qb,
            away_qb=away_qb,
            percentile=edge.percentile,
            has_weather_data=bool(weather_events.get(edge.event_id, False)),
        )
        slate.entries.append(SlateEntry(candidate=candidate, decision=decide_bet(candidate, config)))

    logger.info(
        "Slate %s week %s: %d edges, %d bettable",
        season, week, slate.total_games, len(slate.bettable),
    )
    return slate


def generate_bet_slips(slate: BettingSlate, config: ModelConfig) -> List[BetSlip]:
    slips = []
    for entry in slate.bettable:
        edge = entry.candidate.edge
        slips.append(BetSlip(
            game_key=edge.game_key,
            event_id=edge.event_id,
            market_type=edge.market_type,
            side=edge.side,
            team=edge.team,
            spread_at_bet=edge.market_line,
            effective_edge=edge.effective_edge,
            raw_edge=edge.raw_edge,
            uncertainty=edge.uncertainty,
            percentile=entry.candidate.percentile,
            confidence=entry.decision.confidence,
            warnings=entry.decision.warnings,
            model=config.identity,
        ))
    return slips


# ---------------------------------------------------------------------------
# Formatted output
# ---------------------------------------------------------------------------

def format_bet_slip(slip: BetSlip) -> str:
    if slip.market_type == "spread":
        line = slip.spread_at_bet if slip.side == "home" else -slip.spread_at_bet
        head = f"BET: {slip.team} {line:+g}"
    else:
        head = f"BET: {slip.side.upper()} {slip.spread_at_bet:g} ({slip.game_key})"

    lines = [
        head,
        f"  Edge: {slip.effective_edge:+.1f} pts (Top {slip.percentile * 100:.0f}%)",
        f"  Uncertainty: {slip.uncertainty:.2f}",
        f"  Confidence: {slip.confidence.upper()}",
    ]
    if slip.warnings:
        lines.append(f"  Warnings: {', '.join(slip.warnings)}")
    return "\n".join(lines)


def format_slate_report(slate: BettingSlate, config: ModelConfig, top_passed: int = 5) -> str:
    parts = [
        "",
        f"=== BETTING SLATE: Week {slate.week}, {slate.season} ===",
        f"Total games: {slate.total_games}",
        f"Bettable: {len(slate.bettable)}",
        f"Passed: {len(slate.passed)}",
        "",
    ]
    slips = generate_bet_slips(slate, config)
    if slips:
        parts.append("--- BETS ---")
        for slip in slips:
            parts.append(format_bet_slip(slip))
            parts.append("")
    else:
        parts.append("No bets this week.")

    parts.append("")
    parts.append("--- TOP PASSED GAMES ---")
    for entry in slate.passed[:top_passed]:
        edge = entry.candidate.edge
        parts.append(f"{edge.away_team} @ {edge.home_team} {edge.market_type} (eff: {edge.effective_edge:.1f})")
        parts.append(f"  {entry.decision.reason}")
    return "\n".join(parts) + "\n"


def decisions_by_key(slate: BettingSlate) -> Dict[Tuple[str, str, str], BetDecision]:
    """Decisions keyed by ``(event_id, sportsbook_id, market_type)``."""
    return {
        (e.candidate.edge.event_id, e.candidate.edge.sportsbook_id, e.candidate.edge.market_type): e.decision
        for e in slate.entries
    }
