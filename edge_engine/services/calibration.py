"""
Edge-size calibration.

Maps ``|effective edge|`` to a historical win probability, EV per 100 and a
confidence tier through the disjoint ``[min, max)`` buckets of the active
:class:`~edge_engine.core.config.CalibrationTable`.

Lookups never raise.  An edge below every bucket returns the table's
``below`` default; an edge above every bucket returns ``above``, tagged
"likely model error".

The module also carries the offline utilities that build and maintain the
tables:

    build_calibration_curve   empirical win rate / ROI per bucket (pandas)
    train_coefficients        least-squares nudge of market coefficients
    save_coefficients         persist a candidate to ``model_parameters``
    load_coefficients         latest persisted coefficients, else defaults

Trained coefficients are never promoted automatically; promotion means a
new :class:`ModelConfig` constructor with a new hash.
"""

import logging
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sqlalchemy.orm import Session

from edge_engine.core.config import CalibrationTable, MarketCoefficients, ModelConfig
from edge_engine.core.odds_math import expected_value, roi_at_standard_price
from edge_engine.core.types import CalibrationResult, EdgeResult
from edge_engine.models import ModelParameter

logger = logging.getLogger(__name__)

DEFAULT_EDGE_BUCKETS: Tuple[float, ...] = (0, 0.5, 1, 1.5, 2, 2.5, 3, 4, 5, 7, 10)

MIN_TRAINING_SAMPLES = 50
_NUDGE_RATE = 0.25
_NUDGE_BOUNDS = (0.5, 1.5)   # multiples of the default coefficient
_COEFF_PARAMETER_NAME = "market_coefficients"

# Signal coefficients a trainer may move; the remaining fields are limits.
TRAINABLE_COEFFICIENTS: Tuple[str, ...] = (
    "conference_strength",
    "injury_qb",
    "injury_non_qb",
    "sharp_line_movement",
    "pace",
    "wind",
    "precipitation",
)


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

def lookup_calibration(abs_edge: float, table: CalibrationTable) -> CalibrationResult:
    abs_edge = abs(abs_edge)
    buckets = sorted(table.buckets, key=lambda b: b.min_edge)
    for bucket in buckets:
        if bucket.contains(abs_edge):
            return CalibrationResult(
                win_probability=bucket.win_probability,
                expected_value=bucket.expected_value,
                tier=bucket.tier,
                bucket=bucket,
                note=bucket.note,
            )
    if not buckets or abs_edge < buckets[0].min_edge:
        return table.below
    if abs_edge >= buckets[-1].max_edge:
        return table.above
    # Gap between non-contiguous buckets.
    return table.below


def calibration_edge(edge: EdgeResult) -> float:
    """Capped effective magnitude used for bucket lookup."""
    return abs(edge.capped_edge) * (1.0 - edge.uncertainty)


def calibrate_edge(edge: EdgeResult, config: ModelConfig) -> CalibrationResult:
    """Calibrate one edge; a raw disagreement past the market's cap is ``above``."""
    if abs(edge.raw_edge) > config.edge_rules.max_edge_for(edge.market_type):
        return config.calibration.above
    return lookup_calibration(calibration_edge(edge), config.calibration)


def confidence_tier(abs_edge: float, win_probability: float) -> str:
    abs_edge = abs(abs_edge)
    if abs_edge >= 3 and win_probability >= 0.58:
        return "very-high"
    if abs_edge >= 2 and win_probability >= 0.55:
        return "high"
    if abs_edge >= 1 and win_probability >= 0.53:
        return "medium"
    if abs_edge >= 0.5 and win_probability >= 0.51:
        return "low"
    return "skip"


def edge_size_warnings(abs_edge: float) -> List[str]:
    """Notes on the size of the raw model/market disagreement."""
    abs_edge = abs(abs_edge)
    if abs_edge >= 10:
        return ["LARGE_EDGE: Model disagrees with market by 10+ pts - likely model error"]
    if abs_edge >= 5:
        return ["CAUTION: Edge 5+ pts historically unprofitable - model may be missing factors"]
    if abs_edge < 2.5:
        return ["SMALL_EDGE: Edge under 2.5 pts may not overcome the vig"]
    return []


# ---------------------------------------------------------------------------
# Curve building
# ---------------------------------------------------------------------------

@dataclass
class CalibrationPoint:
    edge_min: float
    edge_max: float
    sample_size: int
    wins: int
    losses: int
    pushes: int
    win_rate: float
    roi: float
    expected_value: float


@dataclass
class CalibrationCurve:
    points: List[CalibrationPoint]
    overall_win_rate: float
    overall_roi: float
    total_games: int


def build_calibration_curve(
    results: Iterable[Tuple[float, str]],
    edge_buckets: Sequence[float] = DEFAULT_EDGE_BUCKETS,
) -> CalibrationCurve:
    """Empirical win rate and ROI per edge bucket.

    Args:
        results: ``(edge, result)`` pairs where result is win/loss/push.
        edge_buckets: ascending bucket lower bounds; the last bucket is open.
    """
    df = pd.DataFrame(list(results), columns=["edge", "result"])
    bounds = list(edge_buckets) + [np.inf]
    df["bucket"] = pd.cut(df["edge"].abs(), bins=bounds, right=False, labels=False)

    points: List[CalibrationPoint] = []
    for i, edge_min in enumerate(edge_buckets):
        rows = df[df["bucket"] == i]
        wins = int((rows["result"] == "win").sum())
        losses = int((rows["result"] == "loss").sum())
        pushes = int((rows["result"] == "push").sum())
        decided = wins + losses
        win_rate = wins / decided if decided else 0.0
        points.append(CalibrationPoint(
            edge_min=float(edge_min),
            edge_max=float(bounds[i + 1]),
            sample_size=len(rows),
            wins=wins,
            losses=losses,
            pushes=pushes,
            win_rate=win_rate,
            roi=roi_at_standard_price(win_rate) if decided else 0.0,
            expected_value=expected_value(win_rate) if decided else 0.0,
        ))

    decided = df[df["result"] != "push"]
    overall = float((decided["result"] == "win").mean()) if len(decided) else 0.0
    return CalibrationCurve(
        points=points,
        overall_win_rate=overall,
        overall_roi=roi_at_standard_price(overall) if len(decided) else 0.0,
        total_games=len(df),
    )


def format_calibration_report(curve: CalibrationCurve) -> str:
    lines = [
        "## Calibration Report",
        "",
        f"Total games analyzed: {curve.total_games}",
        f"Overall win rate: {curve.overall_win_rate * 100:.1f}%",
        f"Overall ROI: {curve.overall_roi * 100:.2f}%",
        "",
        "| Edge Range | Games | W-L-P | Win Rate | ROI | EV/bet |",
        "|------------|-------|-------|----------|-----|--------|",
    ]
    for p in curve.points:
        if p.sample_size == 0:
            continue
        label = f"{p.edge_min:g}+" if np.isinf(p.edge_max) else f"{p.edge_min:g}-{p.edge_max:g}"
        lines.append(
            f"| {label} pts | {p.sample_size} | {p.wins}-{p.losses}-{p.pushes} | "
            f"{p.win_rate * 100:.1f}% | {p.roi * 100:.1f}% | ${p.expected_value:.2f} |"
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Coefficient training hook
# ---------------------------------------------------------------------------

def train_coefficients(
    history: Sequence[Dict],
    defaults: Optional[MarketCoefficients] = None,
) -> Tuple[MarketCoefficients, Dict]:
    """Fit market coefficients against realised closing-line moves.

    Each history row maps signal names (see ``TRAINABLE_COEFFICIENTS``) to
    raw signal values, plus ``target``: the closing-line move in points the
    signals should have predicted.  Missing signals count as 0.

    Below ``MIN_TRAINING_SAMPLES`` rows the defaults come back unchanged.
    Otherwise each coefficient moves a quarter of the way toward its
    least-squares estimate, bounded to 0.5x-1.5x of the default.
    """
    defaults = defaults or MarketCoefficients()
    metrics: Dict = {"sample_size": len(history), "trained": False}
    if len(history) < MIN_TRAINING_SAMPLES:
        logger.warning(
            "Insufficient data for coefficient training (%d < %d), using defaults",
            len(history), MIN_TRAINING_SAMPLES,
        )
        return defaults, metrics

    X = np.array([[float(row.get(name, 0.0) or 0.0) for name in TRAINABLE_COEFFICIENTS] for row in history])
    y = np.array([float(row["target"]) for row in history])
    beta, _, rank, _ = np.linalg.lstsq(X, y, rcond=None)

    updates = {}
    for name, estimate in zip(TRAINABLE_COEFFICIENTS, beta):
        current = getattr(defaults, name)
        nudged = current + _NUDGE_RATE * (float(estimate) - current)
        lo, hi = sorted((current * _NUDGE_BOUNDS[0], current * _NUDGE_BOUNDS[1]))
        updates[name] = round(min(hi, max(lo, nudged)), 4)

    residual = y - X @ np.array([updates[n] for n in TRAINABLE_COEFFICIENTS])
    metrics.update({
        "trained": True,
        "rank": int(rank),
        "rmse": float(np.sqrt(np.mean(residual ** 2))),
    })
    logger.info("Trained market coefficients on %d rows (rmse=%.3f)", len(history), metrics["rmse"])
    return replace(defaults, **updates), metrics


def save_coefficients(
    db: Session,
    coefficients: MarketCoefficients,
    reason: str = "manual_training",
    changed_by: str = "auto",
):
    """Append a coefficient candidate to the parameter audit table."""
    row = ModelParameter(
        parameter_name=_COEFF_PARAMETER_NAME,
        parameter_value_json=asdict(coefficients),
        reason=reason,
        changed_by=changed_by,
        effective_date=datetime.utcnow(),
    )
    db.add(row)
    db.commit()
    return row


def load_coefficients(db: Session) -> MarketCoefficients:
    """Most recent saved coefficients, or the defaults when none are stored."""
    row = (
        db.query(ModelParameter)
        .filter(ModelParameter.parameter_name == _COEFF_PARAMETER_NAME)
        .order_by(ModelParameter.effective_date.desc())
        .first()
    )
    if row is None or not row.parameter_value_json:
        return MarketCoefficients()
    known = {f.name for f in fields(MarketCoefficients)}
    return MarketCoefficients(**{k: v for k, v in row.parameter_value_json.items() if k in known})
