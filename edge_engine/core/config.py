"""Model configuration: versions, regimes and frozen coefficient tables.

This module is the **registry** for every coefficient the engine uses.
Nowhere else should home-field advantage, uncertainty increments,
calibration buckets or composer weights be hard-coded.

Architecture
------------
:class:`ModelVersion` tags the decision engines that may write edges.  A
retired engine is removed from the enum outright, so it cannot be selected
by configuration or by accident.

:class:`ModelConfig` is a frozen dataclass carrying every coefficient for
one version.  Its identity is *content-addressed*: ``config_hash`` is the
SHA-256 of the canonical JSON of its coefficient sections, so two configs
with the same numbers share a hash and any single-field override yields a
new one.  Persisted edges cite :attr:`ModelConfig.identity`.

Typical usage::

    from edge_engine.core.config import ModelConfig, ModelVersion

    cfg = ModelConfig.for_version(ModelVersion.V3_PPADIFF_REGIME2)
    cfg.identity        # 'v3_ppadiff_regime2@2025-12-19#1f0c...'

    # Experiment with one coefficient; the hash changes with it:
    from dataclasses import replace
    trial = replace(cfg, elo=replace(cfg.elo, home_field_advantage=2.5))
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, Final, Tuple

from edge_engine.core.types import CalibrationBucket, CalibrationResult


class ModelVersion(str, Enum):
    """Decision engines allowed to materialize edges."""

    V3_PPADIFF_REGIME2 = "v3_ppadiff_regime2"
    T60_ENSEMBLE_V1 = "t60-ensemble-v1"
    MARKET_CALIBRATED_V2 = "market-calibrated-v2"

    @classmethod
    def parse(cls, value: str) -> ModelVersion:
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(v.value for v in cls)
            raise ValueError(f"Unknown model version {value!r}; valid: {valid}") from None


DEFAULT_MODEL_VERSION: Final[ModelVersion] = ModelVersion.V3_PPADIFF_REGIME2

#: Fraction of ``|raw_edge|`` remaining at maximum uncertainty must stay > 0.
UNCERTAINTY_CAP: Final[float] = 0.75


# ---------------------------------------------------------------------------
# Regimes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Regime:
    """Week-keyed betting rules.  Selection is a pure lookup."""

    name: str
    label: str
    first_week: int
    last_week: int
    edge_percentile: float
    max_uncertainty: float
    require_qb_status: bool


REGIME_WEEKS_1_4: Final[Regime] = Regime(
    name="WEEKS_1_4",
    label="Weeks 1-4",
    first_week=0,
    last_week=4,
    edge_percentile=0.05,
    max_uncertainty=0.50,
    require_qb_status=True,
)

REGIME_WEEKS_5_PLUS: Final[Regime] = Regime(
    name="WEEKS_5_PLUS",
    label="Weeks 5+",
    first_week=5,
    last_week=15,
    edge_percentile=0.05,
    max_uncertainty=0.60,
    require_qb_status=False,
)


# ---------------------------------------------------------------------------
# Coefficient sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EloParams:
    mean_rating: float = 1500.0
    home_field_advantage: float = 3.0    # points
    elo_to_spread: float = 25.0          # Elo points per spread point
    k_factor: float = 20.0
    margin_cap: int = 21
    max_update: float = 40.0
    season_carryover: float = 0.67       # share of last season's rating kept
    base_total: float = 50.0


@dataclass(frozen=True)
class UncertaintyParams:
    week_0_1: float = 0.45
    week_2_4: float = 0.25
    week_5_plus: float = 0.10
    roster_bottom_quartile: float = 0.15
    roster_second_quartile: float = 0.08
    qb_transfer: float = 0.20
    new_coach: float = 0.10
    qb_out: float = 0.20
    qb_unknown: float = 0.15
    qb_questionable: float = 0.10
    qb_confirmed: float = -0.10
    cap: float = UNCERTAINTY_CAP
    high_uncertainty_threshold: float = 0.40
    high_edge_threshold: float = 10.0

    def qb_increment(self, status: str) -> float:
        return {
            "out": self.qb_out,
            "unknown": self.qb_unknown,
            "questionable": self.qb_questionable,
            "confirmed": self.qb_confirmed,
        }[status]


@dataclass(frozen=True)
class SpreadWeights:
    """Composer weights for spreads.  Field names match factor kinds."""

    situational: float = 0.8
    weather: float = 0.5
    injury: float = 0.7
    line_movement: float = 0.3
    player_factor: float = 1.0


@dataclass(frozen=True)
class TotalWeights:
    """Composer weights for totals.

    Injuries enter totals only through a damped cross-term: the combined
    impact of both teams is scaled by ``injury_cross_term`` before weighting.
    """

    pace: float = 1.0
    weather: float = 1.0
    injury: float = 0.5
    injury_cross_term: float = 0.5


@dataclass(frozen=True)
class EdgeRules:
    spread_floor: float = 3.0
    total_floor: float = 2.5
    total_requires_weather: bool = True
    max_reasonable_spread_edge: float = 5.0
    max_reasonable_total_edge: float = 8.0
    warn_uncertainty_above: float = 0.40
    low_confidence_uncertainty: float = 0.45
    very_early_last_week: int = 2

    def floor_for(self, market_type: str) -> float:
        return self.spread_floor if market_type == "spread" else self.total_floor

    def max_edge_for(self, market_type: str) -> float:
        if market_type == "spread":
            return self.max_reasonable_spread_edge
        return self.max_reasonable_total_edge


@dataclass(frozen=True)
class MarketCoefficients:
    """Per-signal scaling learned (or hand-set) against market lines."""

    conference_strength: float = 0.4
    injury_qb: float = 3.0
    injury_non_qb: float = 0.5
    sharp_line_movement: float = 0.5
    pace: float = 0.3
    wind: float = 0.3
    precipitation: float = 1.5
    max_reasonable_edge: float = 5.0
    min_actionable_edge: float = 2.0


@dataclass(frozen=True)
class CalibrationTable:
    buckets: Tuple[CalibrationBucket, ...]
    below: CalibrationResult
    above: CalibrationResult


def _production_buckets() -> CalibrationTable:
    return CalibrationTable(
        buckets=(
            CalibrationBucket(2.5, 3.0, 0.595, 13.64, "very-high"),
            CalibrationBucket(3.0, 4.0, 0.558, 6.61, "high"),
            CalibrationBucket(4.0, 5.0, 0.548, 4.55, "medium"),
        ),
        below=CalibrationResult(0.49, -7.0, "low", note="edge below calibrated range"),
        above=CalibrationResult(0.46, -11.0, "skip", note="likely model error"),
    )


# ---------------------------------------------------------------------------
# ModelConfig
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelConfig:
    """Immutable, content-addressed coefficient bundle for one version.

    Attributes:
        version: Engine tag.
        promoted: ISO date the version was promoted to production.
        description: Free text for logs and reports (not hashed).
        elo: Rating-engine constants.
        uncertainty: Additive uncertainty increments and cap.
        spread_weights / total_weights: Composer weight tables.
        edge_rules: Floors and per-market edge caps.
        market: Market-calibrated per-signal coefficients.
        calibration: Edge buckets and out-of-range defaults.
        ensemble_weights: Rating-source blend, ``(source, weight)`` pairs.
    """

    version: ModelVersion
    promoted: str
    description: str = ""
    elo: EloParams = field(default_factory=EloParams)
    uncertainty: UncertaintyParams = field(default_factory=UncertaintyParams)
    spread_weights: SpreadWeights = field(default_factory=SpreadWeights)
    total_weights: TotalWeights = field(default_factory=TotalWeights)
    edge_rules: EdgeRules = field(default_factory=EdgeRules)
    market: MarketCoefficients = field(default_factory=MarketCoefficients)
    calibration: CalibrationTable = field(default_factory=_production_buckets)
    ensemble_weights: Tuple[Tuple[str, float], ...] = (("elo", 1.0),)

    def __post_init__(self) -> None:
        if not 0.0 <= self.uncertainty.cap < 1.0:
            raise ValueError(
                f"uncertainty cap {self.uncertainty.cap} must lie in [0, 1) "
                "so discounting never flips an edge's sign"
            )
        buckets = sorted(self.calibration.buckets, key=lambda b: b.min_edge)
        for lower, upper in zip(buckets, buckets[1:]):
            if upper.min_edge < lower.max_edge:
                raise ValueError(
                    f"Calibration buckets overlap: {lower.label} and {upper.label}"
                )

    def __hash__(self) -> int:
        return hash(self.config_hash)

    # ------------------------------------------------------------------ #
    #  Identity                                                            #
    # ------------------------------------------------------------------ #

    def coefficients(self) -> Dict:
        """Every hashed section as plain JSON-serialisable data."""
        return {
            "elo": asdict(self.elo),
            "uncertainty": asdict(self.uncertainty),
            "spread_weights": asdict(self.spread_weights),
            "total_weights": asdict(self.total_weights),
            "edge_rules": asdict(self.edge_rules),
            "market": asdict(self.market),
            "calibration": asdict(self.calibration),
            "ensemble_weights": [list(p) for p in self.ensemble_weights],
        }

    @property
    def config_hash(self) -> str:
        canonical = json.dumps(self.coefficients(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @property
    def identity(self) -> str:
        return f"{self.version.value}@{self.promoted}#{self.config_hash[:12]}"

    def __repr__(self) -> str:
        return f"ModelConfig({self.identity})"

    # ------------------------------------------------------------------ #
    #  Regimes                                                             #
    # ------------------------------------------------------------------ #

    @staticmethod
    def regime_for_week(week: int) -> Regime:
        return REGIME_WEEKS_1_4 if week <= REGIME_WEEKS_1_4.last_week else REGIME_WEEKS_5_PLUS

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def production_v3(cls) -> ModelConfig:
        """Elo + PPA-differential model with the two-regime betting rules."""
        return cls(
            version=ModelVersion.V3_PPADIFF_REGIME2,
            promoted="2025-12-19",
            description="Elo/PPA differential, weeks 1-4 vs 5+ regimes",
        )

    @classmethod
    def t60_ensemble_v1(cls) -> ModelConfig:
        """Elo/SP+/PPA blend priced against lines sixty minutes before kickoff."""
        return cls(
            version=ModelVersion.T60_ENSEMBLE_V1,
            promoted="2025-12-22",
            description="T-60 ensemble, FBS only",
            elo=EloParams(home_field_advantage=2.0),
            edge_rules=EdgeRules(spread_floor=2.5, max_reasonable_spread_edge=5.0),
            ensemble_weights=(("elo", 0.50), ("sp", 0.30), ("ppa", 0.20)),
        )

    @classmethod
    def market_calibrated_v2(cls) -> ModelConfig:
        """Market line plus calibrated signal adjustments."""
        return cls(
            version=ModelVersion.MARKET_CALIBRATED_V2,
            promoted="2025-12-10",
            description="Market-anchored with calibrated signal coefficients",
            edge_rules=EdgeRules(max_reasonable_spread_edge=5.0, max_reasonable_total_edge=5.0),
        )

    @classmethod
    def for_version(cls, version: ModelVersion | str) -> ModelConfig:
        if not isinstance(version, ModelVersion):
            version = ModelVersion.parse(version)
        builders = {
            ModelVersion.V3_PPADIFF_REGIME2: cls.production_v3,
            ModelVersion.T60_ENSEMBLE_V1: cls.t60_ensemble_v1,
            ModelVersion.MARKET_CALIBRATED_V2: cls.market_calibrated_v2,
        }
        return builders[version]()
