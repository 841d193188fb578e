"""
Slate evaluation: provider signals -> composed lines -> edges -> decisions.

Pure functions only; the pipeline loads rows and persists the results.

Per game, :func:`evaluate_game`

    1. scores uncertainty
    2. turns every available provider signal into an AdjustmentFactor
    3. composes the base projection
    4. computes an EdgeResult for every (book, market) line

Then :func:`decide_slate` ranks each market type across the whole slate
(percentile needs every edge first) and runs the decision gate, and
:func:`build_explain` assembles the persisted explain payload.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from edge_engine.core.config import ModelConfig
from edge_engine.core.types import (
    MARKET_TYPES,
    AdjustmentFactor,
    BetDecision,
    EdgeResult,
    GameContext,
    MarketLine,
    ModelProjection,
    QBStatus,
    UncertaintyBreakdown,
)
from edge_engine.schemas import (
    EdgeExplain,
    RosterContinuity,
    SituationalInput,
    TeamPriors,
    WeatherRecord,
)
from edge_engine.services.calibration import calibrate_edge, calibration_edge, edge_size_warnings
from edge_engine.services.composer import compose_projection
from edge_engine.services.decision import BettingSlate, process_betting_slate
from edge_engine.services.injuries import InjuryImpact, injury_factor
from edge_engine.services.line_movement import (
    LineMovementImpact,
    analyze_line_movement,
    bet_aligns_with_sharps,
    line_movement_factor,
)
from edge_engine.services.pace import calculate_pace, pace_factor
from edge_engine.services.player_factors import calculate_player_factor, player_factor
from edge_engine.services.situational import calculate_situational_adjustment, situational_factor
from edge_engine.services.uncertainty import ReturningQuartiles, compute_edge, game_uncertainty
from edge_engine.services.weather import (
    WeatherImpact,
    analyze_weather_impact,
    weather_explains_large_edge,
    weather_factor,
    weather_warnings,
)


@dataclass
class GameInputs:
    """Everything known about one game before composition.  Any signal may be absent."""

    game: GameContext
    projection: Optional[ModelProjection]
    markets: List[MarketLine]
    home_qb: QBStatus
    away_qb: QBStatus
    home_priors: Optional[TeamPriors] = None
    away_priors: Optional[TeamPriors] = None
    weather: Optional[WeatherRecord] = None
    injuries: Optional[InjuryImpact] = None
    situational: Optional[SituationalInput] = None
    home_roster: Optional[RosterContinuity] = None
    away_roster: Optional[RosterContinuity] = None
    home_plays: Optional[float] = None
    away_plays: Optional[float] = None


@dataclass
class GameEvaluation:
    inputs: GameInputs
    projection: Optional[ModelProjection]
    uncertainty: UncertaintyBreakdown
    weather: WeatherImpact
    line_movement: Dict[str, LineMovementImpact] = field(default_factory=dict)
    reference_book: Optional[str] = None
    edges: List[EdgeResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_weather_data(self) -> bool:
        return self.weather.has_data


# ---------------------------------------------------------------------------
# Per-game evaluation
# ---------------------------------------------------------------------------

def _lines_by_book(markets: Sequence[MarketLine]) -> Dict[str, Dict[str, MarketLine]]:
    books: Dict[str, Dict[str, MarketLine]] = {}
    for m in markets:
        books.setdefault(m.sportsbook_id, {})[m.market_type] = m
    return books


def reference_book(markets: Sequence[MarketLine]) -> Optional[str]:
    """Book with the most ticks across both markets; ties by book id."""
    totals: Dict[str, int] = {}
    for m in markets:
        totals[m.sportsbook_id] = totals.get(m.sportsbook_id, 0) + m.tick_count
    if not totals:
        return None
    return min(totals, key=lambda book: (-totals[book], book))


def collect_factors(
    inputs: GameInputs,
    weather: WeatherImpact,
    movement: Optional[LineMovementImpact],
) -> Tuple[List[Optional[AdjustmentFactor]], List[Optional[AdjustmentFactor]]]:
    """``(spread_factors, total_factors)``; absent signals contribute ``None``."""
    base_spread = inputs.projection.model_spread_home if inputs.projection else None
    spread: List[Optional[AdjustmentFactor]] = [weather_factor(weather, "spread", base_spread)]
    total: List[Optional[AdjustmentFactor]] = [weather_factor(weather, "total")]

    if inputs.situational is not None:
        spread.append(situational_factor(calculate_situational_adjustment(inputs.situational)))
    if inputs.injuries is not None:
        spread.append(injury_factor(inputs.injuries, "spread"))
        total.append(injury_factor(inputs.injuries, "total"))
    if movement is not None:
        # Totals movement stays in the explain payload; it has no total weight.
        spread.append(line_movement_factor(movement, "spread"))
    if inputs.home_roster is not None or inputs.away_roster is not None:
        spread.append(player_factor(
            calculate_player_factor(inputs.home_roster, inputs.away_roster, inputs.game.week)
        ))
    total.append(pace_factor(calculate_pace(inputs.home_plays, inputs.away_plays)))
    return spread, total


def evaluate_game(
    inputs: GameInputs,
    config: ModelConfig,
    quartiles: ReturningQuartiles,
) -> GameEvaluation:
    game = inputs.game
    home_qb = inputs.home_qb.for_game(game)
    away_qb = inputs.away_qb.for_game(game)

    uncertainty = game_uncertainty(
        game.week, inputs.home_priors, inputs.away_priors, home_qb, away_qb,
        quartiles, config.uncertainty,
    )
    weather = analyze_weather_impact(inputs.weather)

    movement = {
        book: analyze_line_movement(lines.get("spread"), lines.get("total"), game.kickoff)
        for book, lines in _lines_by_book(inputs.markets).items()
    }
    ref = reference_book(inputs.markets)
    ref_movement = movement.get(ref) if ref else None

    if inputs.projection is None:
        composed = None
        priced = ModelProjection(event_id=game.event_id)
    else:
        spread_factors, total_factors = collect_factors(inputs, weather, ref_movement)
        composed = compose_projection(inputs.projection, config, spread_factors, total_factors)
        priced = composed

    evaluation = GameEvaluation(
        inputs=inputs,
        projection=composed,
        uncertainty=uncertainty,
        weather=weather,
        line_movement=movement,
        reference_book=ref,
        edges=[compute_edge(game, m, priced, uncertainty, config) for m in inputs.markets],
    )
    evaluation.warnings.extend(weather_warnings(weather))
    if inputs.injuries is not None:
        evaluation.warnings.extend(inputs.injuries.warnings())
    if ref_movement is not None:
        evaluation.warnings.extend(ref_movement.warnings)
    return evaluation


# ---------------------------------------------------------------------------
# Slate decisions
# ---------------------------------------------------------------------------

def qb_status_map(evaluations: Sequence[GameEvaluation]) -> Dict[str, QBStatus]:
    statuses: Dict[str, QBStatus] = {}
    for ev in evaluations:
        game = ev.inputs.game
        statuses[game.home_team.lower()] = ev.inputs.home_qb.for_game(game)
        statuses[game.away_team.lower()] = ev.inputs.away_qb.for_game(game)
    return statuses


def decide_slate(
    evaluations: Sequence[GameEvaluation],
    config: ModelConfig,
    season: int,
    week: int,
) -> BettingSlate:
    """Rank and decide each market type separately, then merge into one slate."""
    qb = qb_status_map(evaluations)
    weather_events = {ev.inputs.game.event_id: ev.has_weather_data for ev in evaluations}
    slate = BettingSlate(season=season, week=week)
    for market_type in MARKET_TYPES:
        edges = [e for ev in evaluations for e in ev.edges if e.market_type == market_type]
        if not edges:
            continue
        part = process_betting_slate(edges, qb, season, week, config, weather_events)
        slate.entries.extend(part.entries)
    return slate


def build_explain(
    edge: EdgeResult,
    decision: BetDecision,
    evaluation: GameEvaluation,
    config: ModelConfig,
) -> Dict:
    calibration = calibrate_edge(edge, config)
    warnings = list(decision.warnings)
    warnings.extend(edge_size_warnings(edge.raw_edge))
    if calibration.note:
        warnings.append(calibration.note)
    warnings.extend(w for w in evaluation.warnings if w not in warnings)

    movement = evaluation.line_movement.get(edge.sportsbook_id)
    if movement is not None and edge.side:
        _, note = bet_aligns_with_sharps(edge.side, movement)
        if note:
            warnings.append(note)
    if weather_explains_large_edge(evaluation.weather, edge.raw_edge, edge.market_type):
        warnings.append("Weather may explain this edge")

    projection = evaluation.projection
    breakdown = {
        "raw_edge": edge.raw_edge,
        "capped_edge": edge.capped_edge,
        "effective_edge": edge.effective_edge,
        "calibration_edge": round(calibration_edge(edge), 4),
        "calibration_bucket": calibration.bucket.label if calibration.bucket else None,
        "uncertainty": edge.uncertainty_breakdown.to_dict(),
        "projection": dict(projection.components) if projection else {},
        "projection_confidence": projection.confidence if projection else None,
        "weather": evaluation.weather.to_dict(),
        "line_movement": movement.to_dict() if movement else None,
        "config": config.identity,
    }
    return EdgeExplain(
        win_probability=calibration.win_probability,
        expected_value=calibration.expected_value,
        confidence_tier=calibration.tier,
        qualifies=decision.should_bet,
        warnings=warnings,
        reason=decision.reason,
        component_breakdown=breakdown,
    ).model_dump()
