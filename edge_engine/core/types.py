"""Value types shared by every layer of the edge engine.

Sign conventions
----------------
* Spreads are quoted from the home side: ``-7.0`` means the home team is a
  seven-point favourite.
* ``raw_edge = market_line - model_line``.  For spreads a positive edge
  recommends the home side, a negative edge the away side.  For totals a
  positive edge (market above model) recommends the under.
* ``AdjustmentFactor.magnitude`` is expressed in *line-lowering* points:
  the composer subtracts it from the base line.  A positive spread factor
  favours the home team; a positive total factor suppresses scoring.

Every type here is immutable.  Recomputing an edge produces a new value,
never an in-place update.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Final, Literal, Optional, Tuple

MarketType = Literal["spread", "total"]
Side = Literal["home", "away", "over", "under"]
Confidence = Literal["high", "medium", "low"]
QBStatusValue = Literal["confirmed", "questionable", "out", "unknown"]

MARKET_TYPES: Final[Tuple[str, ...]] = ("spread", "total")
CONFIDENCE_LEVELS: Final[Tuple[str, ...]] = ("high", "medium", "low")
QB_STATUSES: Final[Tuple[str, ...]] = ("confirmed", "questionable", "out", "unknown")

#: Tags of the adjustment-factor variant.
FACTOR_KINDS: Final[Tuple[str, ...]] = (
    "weather",
    "injury",
    "line_movement",
    "situational",
    "player_factor",
    "pace",
)

MIN_WEEK: Final[int] = 0
MAX_WEEK: Final[int] = 15

#: Last week of the early-season regime.
EARLY_SEASON_LAST_WEEK: Final[int] = 4


def _check_market(market_type: str) -> None:
    if market_type not in MARKET_TYPES:
        raise ValueError(f"Unknown market type {market_type!r}; expected one of {MARKET_TYPES}")


# ---------------------------------------------------------------------------
# Game and market
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GameContext:
    """Identity and schedule of one game.  Immutable once created."""

    event_id: str
    home_team: str
    away_team: str
    season: int
    week: int
    kickoff: datetime

    def __post_init__(self) -> None:
        if not MIN_WEEK <= self.week <= MAX_WEEK:
            raise ValueError(
                f"week={self.week} outside {MIN_WEEK}-{MAX_WEEK} for event {self.event_id}"
            )

    @property
    def is_early_season(self) -> bool:
        return self.week <= EARLY_SEASON_LAST_WEEK

    @property
    def game_key(self) -> str:
        return f"{self.away_team}@{self.home_team}"


@dataclass(frozen=True)
class MarketLine:
    """Opening / current / closing numbers for one event, book and market."""

    event_id: str
    sportsbook_id: str
    market_type: MarketType
    opening: Optional[float] = None
    current: Optional[float] = None
    closing: Optional[float] = None
    price_american: int = -110
    opening_at: Optional[datetime] = None
    current_at: Optional[datetime] = None
    tick_count: int = 0

    def __post_init__(self) -> None:
        _check_market(self.market_type)

    @property
    def bet_line(self) -> Optional[float]:
        """Line the model is compared against: the latest tick, the opener only as a fallback."""
        return self.current if self.current is not None else self.opening

    @property
    def movement(self) -> Optional[float]:
        if self.opening is None or self.current is None:
            return None
        return self.current - self.opening


@dataclass(frozen=True)
class ModelProjection:
    """Model numbers for one game, before or after composition."""

    event_id: str
    model_spread_home: Optional[float] = None
    model_total_points: Optional[float] = None
    confidence: Confidence = "low"
    components: Dict[str, float] = field(default_factory=dict)
    data_quality: Dict[str, bool] = field(default_factory=dict)

    def line_for(self, market_type: str) -> Optional[float]:
        _check_market(market_type)
        if market_type == "spread":
            return self.model_spread_home
        return self.model_total_points


# ---------------------------------------------------------------------------
# Adjustment factors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AdjustmentFactor:
    """One signed, optional signal feeding the composer."""

    kind: str
    magnitude: float
    confidence: Confidence = "medium"
    detail: str = ""

    def __post_init__(self) -> None:
        if self.kind not in FACTOR_KINDS:
            raise ValueError(f"Unknown adjustment factor kind {self.kind!r}")
        if self.confidence not in CONFIDENCE_LEVELS:
            raise ValueError(f"Unknown confidence {self.confidence!r}")


# ---------------------------------------------------------------------------
# QB status (pre-kickoff only)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QBStatus:
    """Pre-kickoff quarterback availability for one team and week.

    Post-game starter records are a separate type (``QBStartedRow`` in
    :mod:`edge_engine.models`) and are never converted into this one.
    """

    team: str
    season: int
    week: int
    status: QBStatusValue = "unknown"
    as_of: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.status not in QB_STATUSES:
            raise ValueError(f"Unknown QB status {self.status!r} for {self.team}")

    @classmethod
    def unknown(cls, team: str, season: int, week: int) -> QBStatus:
        return cls(team=team, season=season, week=week, status="unknown")

    def is_pre_kickoff(self, kickoff: datetime) -> bool:
        return self.as_of is not None and self.as_of < kickoff

    def for_game(self, game: GameContext) -> QBStatus:
        """Return self if usable for *game*, else an ``unknown`` status.

        A status captured at or after kickoff is post-game knowledge and is
        discarded rather than trusted.
        """
        if self.status == "unknown" or self.is_pre_kickoff(game.kickoff):
            return self
        return QBStatus.unknown(self.team, self.season, self.week)


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UncertaintyBreakdown:
    week: float = 0.0
    roster: float = 0.0
    qb: float = 0.0
    coach: float = 0.0
    total: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "week": self.week,
            "roster": self.roster,
            "qb": self.qb,
            "coach": self.coach,
            "total": self.total,
        }


@dataclass(frozen=True)
class EdgeResult:
    """Market-vs-model disagreement for one event, book and market."""

    event_id: str
    sportsbook_id: str
    market_type: MarketType
    home_team: str
    away_team: str
    season: int
    week: int
    market_line: Optional[float]
    model_line: Optional[float]
    raw_edge: float
    capped_edge: float
    uncertainty: float
    effective_edge: float
    side: Optional[Side]
    is_high_uncertainty: bool = False
    uncertainty_breakdown: UncertaintyBreakdown = field(default_factory=UncertaintyBreakdown)
    percentile: Optional[float] = None

    @property
    def has_market_data(self) -> bool:
        return self.market_line is not None and self.model_line is not None

    @property
    def game_key(self) -> str:
        return f"{self.away_team}@{self.home_team}"

    @property
    def team(self) -> Optional[str]:
        """Team (or total side) the edge recommends."""
        if self.side == "home":
            return self.home_team
        if self.side == "away":
            return self.away_team
        return self.side

    def with_percentile(self, percentile: float) -> EdgeResult:
        if not 0.0 < percentile <= 1.0:
            raise ValueError(f"percentile={percentile} outside (0, 1]")
        return replace(self, percentile=percentile)


# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CalibrationBucket:
    """Half-open ``[min_edge, max_edge)`` range over ``|effective_edge|``."""

    min_edge: float
    max_edge: float
    win_probability: float
    expected_value: float
    tier: str
    note: str = ""

    def __post_init__(self) -> None:
        if self.max_edge <= self.min_edge:
            raise ValueError(
                f"Empty calibration bucket [{self.min_edge}, {self.max_edge})"
            )

    def contains(self, abs_edge: float) -> bool:
        return self.min_edge <= abs_edge < self.max_edge

    @property
    def label(self) -> str:
        return f"[{self.min_edge:g}, {self.max_edge:g})"


@dataclass(frozen=True)
class CalibrationResult:
    win_probability: float
    expected_value: float
    tier: str
    bucket: Optional[CalibrationBucket] = None
    note: str = ""

    @property
    def is_default(self) -> bool:
        return self.bucket is None


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BetDecision:
    should_bet: bool
    reason: str
    confidence: Confidence
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "should_bet": self.should_bet,
            "reason": self.reason,
            "confidence": self.confidence,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class BetSlip:
    game_key: str
    event_id: str
    market_type: MarketType
    side: Side
    team: str
    spread_at_bet: float
    effective_edge: float
    raw_edge: float
    uncertainty: float
    percentile: float
    confidence: Confidence
    warnings: Tuple[str, ...] = ()
    model: str = ""

    def to_dict(self) -> Dict:
        return {
            "game_key": self.game_key,
            "event_id": self.event_id,
            "market_type": self.market_type,
            "side": self.side,
            "team": self.team,
            "spread_at_bet": self.spread_at_bet,
            "effective_edge": round(self.effective_edge, 2),
            "raw_edge": round(self.raw_edge, 2),
            "uncertainty": round(self.uncertainty, 3),
            "percentile": round(self.percentile, 4),
            "confidence": self.confidence,
            "warnings": list(self.warnings),
            "model": self.model,
        }
