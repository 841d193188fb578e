"""
Base projection model.

Produces the *uncomposed* model lines for a game:

- Spread from team ratings (Elo by default), blended with any extra rating
  sources named in ``ModelConfig.ensemble_weights``.  Weights are
  re-normalized over the sources actually available for the game.
- Total from scoring averages:
  ``(homePF + awayPA) / 2 + (awayPF + homePA) / 2``, defaulting to the
  config's base total when neither team has scoring history.

Adjustment factors are applied afterwards by the composer.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional

import pandas as pd

from edge_engine.core.config import ModelConfig
from edge_engine.core.types import GameContext, ModelProjection
from edge_engine.schemas import GameRecord
from edge_engine.services.rating_engine import RatingEngine, RatingState

logger = logging.getLogger(__name__)

DEFAULT_POINTS_FOR = 28.0
DEFAULT_POINTS_AGAINST = 25.0


@dataclass(frozen=True)
class ScoringStats:
    team: str
    games: int
    points_for: float
    points_against: float


def scoring_stats_from_games(games: Iterable[GameRecord]) -> Dict[str, ScoringStats]:
    """Per-team points for / against per game over completed games."""
    rows = []
    for g in games:
        if not g.is_final:
            continue
        rows.append({"team": g.home_team_id, "pf": g.home_score, "pa": g.away_score})
        rows.append({"team": g.away_team_id, "pf": g.away_score, "pa": g.home_score})
    if not rows:
        return {}

    agg = pd.DataFrame(rows).groupby("team").agg(games=("pf", "size"), pf=("pf", "mean"), pa=("pa", "mean"))
    return {
        team: ScoringStats(team=team, games=int(r.games), points_for=float(r.pf), points_against=float(r.pa))
        for team, r in agg.iterrows()
    }


def round_half(value: float) -> float:
    return round(value * 2) / 2


def projection_confidence(data_quality: Mapping[str, bool]) -> str:
    available = sum(1 for ok in data_quality.values() if ok)
    if available >= 4:
        return "high"
    if available >= 2:
        return "medium"
    return "low"


class ProjectionModel:
    """Ratings + scoring averages to base spread and total."""

    def __init__(self, config: Optional[ModelConfig] = None, engine: Optional[RatingEngine] = None):
        self.config = config or ModelConfig.production_v3()
        self.engine = engine or RatingEngine(self.config.elo)

    def blended_spread(self, sources: Mapping[str, Optional[float]]) -> Optional[float]:
        """Weighted spread over available sources; ``None`` when none are available."""
        weights = {
            name: w for name, w in self.config.ensemble_weights
            if sources.get(name) is not None and w > 0
        }
        total_w = sum(weights.values())
        if total_w <= 0:
            return None
        return sum(sources[name] * w for name, w in weights.items()) / total_w

    def project_total(
        self,
        home: Optional[ScoringStats],
        away: Optional[ScoringStats],
    ) -> float:
        if home is None and away is None:
            return self.config.elo.base_total
        home_pf = home.points_for if home else DEFAULT_POINTS_FOR
        home_pa = home.points_against if home else DEFAULT_POINTS_AGAINST
        away_pf = away.points_for if away else DEFAULT_POINTS_FOR
        away_pa = away.points_against if away else DEFAULT_POINTS_AGAINST
        return (home_pf + away_pa) / 2 + (away_pf + home_pa) / 2

    def project(
        self,
        game: GameContext,
        state: RatingState,
        stats: Optional[Mapping[str, ScoringStats]] = None,
        neutral_site: bool = False,
        extra_spreads: Optional[Mapping[str, Optional[float]]] = None,
    ) -> ModelProjection:
        stats = stats or {}
        home_known = game.home_team in state.ratings
        away_known = game.away_team in state.ratings

        sources: Dict[str, Optional[float]] = dict(extra_spreads or {})
        sources["elo"] = self.engine.spread_for(state, game.home_team, game.away_team, neutral_site)
        spread = self.blended_spread(sources)

        home_stats = stats.get(game.home_team)
        away_stats = stats.get(game.away_team)
        total = self.project_total(home_stats, away_stats)

        data_quality = {
            "home_rating": home_known,
            "away_rating": away_known,
            "home_scoring": home_stats is not None,
            "away_scoring": away_stats is not None,
        }
        components = {"elo_spread": round(sources["elo"], 2), "base_total": round(total, 2)}
        for name, value in (extra_spreads or {}).items():
            if value is not None:
                components[f"{name}_spread"] = round(value, 2)

        if not (home_known and away_known):
            logger.debug("Projection for %s uses default rating for a missing team", game.game_key)

        return ModelProjection(
            event_id=game.event_id,
            model_spread_home=round_half(spread) if spread is not None else None,
            model_total_points=round(total, 1),
            confidence=projection_confidence(data_quality),
            components=components,
            data_quality=data_quality,
        )
