"""
Projection composer.

Blends a base model line with weighted adjustment factors:

    model_line = base_line - sum(factor.magnitude * weight[factor.kind])

Weights come from the frozen tables on :class:`ModelConfig` and differ by
market.  Any subset of factors may be absent; a factor whose kind has no
weight for the market is ignored and listed in ``ignored``.

Per-factor caps (points, after weighting) that keep one signal from
flipping a reasonable base edge on its own:

    situational   ~2.0     weather       ~3.5 (totals), ~1.5 (spreads)
    injury        ~7.0     line movement ~1.5
    player factor ~4.0     pace          ~3.0

These are documented guides only.  The aggregate cap is applied to the raw
edge by :mod:`edge_engine.services.uncertainty`.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional

from edge_engine.core.config import ModelConfig
from edge_engine.core.types import AdjustmentFactor, ModelProjection


@dataclass
class ComposedLine:
    market_type: str
    base_line: float
    model_line: float
    contributions: Dict[str, float] = field(default_factory=dict)
    ignored: List[str] = field(default_factory=list)

    @property
    def total_adjustment(self) -> float:
        return round(self.model_line - self.base_line, 2)

    def breakdown(self) -> Dict:
        return {
            "base_line": self.base_line,
            "model_line": self.model_line,
            "contributions": dict(self.contributions),
            "ignored": list(self.ignored),
        }


def factor_weight(config: ModelConfig, market_type: str, kind: str) -> Optional[float]:
    """Effective weight for *kind* in *market_type*, or ``None`` if unused."""
    if market_type == "spread":
        return getattr(config.spread_weights, kind, None)
    tw = config.total_weights
    if kind == "injury":
        return tw.injury * tw.injury_cross_term
    if kind in ("pace", "weather"):
        return getattr(tw, kind)
    return None


def compose_line(
    base_line: float,
    factors: Iterable[Optional[AdjustmentFactor]],
    config: ModelConfig,
    market_type: str,
) -> ComposedLine:
    composed = ComposedLine(market_type=market_type, base_line=base_line, model_line=base_line)
    adjustment = 0.0
    for factor in factors:
        if factor is None:
            continue
        weight = factor_weight(config, market_type, factor.kind)
        if weight is None:
            composed.ignored.append(factor.kind)
            continue
        contribution = factor.magnitude * weight
        composed.contributions[factor.kind] = round(
            composed.contributions.get(factor.kind, 0.0) + contribution, 2
        )
        adjustment += contribution
    composed.model_line = round(base_line - adjustment, 2)
    return composed


def compose_projection(
    projection: ModelProjection,
    config: ModelConfig,
    spread_factors: Iterable[Optional[AdjustmentFactor]] = (),
    total_factors: Iterable[Optional[AdjustmentFactor]] = (),
) -> ModelProjection:
    """Return a new projection with both lines composed.

    Markets with no base line stay ``None``.  The per-factor contributions
    are recorded in ``components`` under ``spread.<kind>`` / ``total.<kind>``.
    """
    components = dict(projection.components)
    spread = projection.model_spread_home
    total = projection.model_total_points

    if spread is not None:
        composed = compose_line(spread, spread_factors, config, "spread")
        spread = composed.model_line
        components.update({f"spread.{k}": v for k, v in composed.contributions.items()})
    if total is not None:
        composed = compose_line(total, total_factors, config, "total")
        total = composed.model_line
        components.update({f"total.{k}": v for k, v in composed.contributions.items()})

    return replace(
        projection,
        model_spread_home=spread,
        model_total_points=total,
        components=components,
    )
