"""
Elo-style team rating engine.

The engine owns no ratings.  A :class:`RatingState` is an immutable value
and every transition returns a new one:

    state' = engine.update(state, game)
    state' = engine.season_reset(state, season)

so a backtest is a left fold over completed games and two experiments can
share an engine without sharing state.

Update rule (per game, home perspective):

    expected    = 1 / (1 + 10 ** ((away - (home + HFA*25)) / 400))
    margin_mult = ln(min(|margin|, 21) + 1) * 2.2 / (winner_diff * 0.001 + 2.2)
    margin_upd  = K * margin_mult * (actual - expected)
    update      = 0.75 * ppa_upd + 0.25 * margin_upd   (when PPA is known)
                = margin_upd                           (otherwise)

clamped to +/-MAX_UPDATE.  Season reset regresses every team toward the
mean: ``0.67 * prev + 0.33 * 1500``.
"""

import math
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional

from edge_engine.core.config import EloParams


@dataclass(frozen=True)
class TeamRating:
    rating: float
    games_played: int = 0
    season_games: int = 0


@dataclass(frozen=True)
class GameResult:
    """Completed game fed to :meth:`RatingEngine.update`."""

    season: int
    home_team: str
    away_team: str
    home_score: int
    away_score: int
    neutral_site: bool = False
    home_adj_ppa: Optional[float] = None
    away_adj_ppa: Optional[float] = None

    @property
    def margin(self) -> int:
        return self.home_score - self.away_score


@dataclass(frozen=True)
class RatingState:
    season: int
    ratings: Mapping[str, TeamRating] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not isinstance(self.ratings, MappingProxyType):
            object.__setattr__(self, "ratings", MappingProxyType(dict(self.ratings)))

    def with_ratings(self, changes: Dict[str, TeamRating]) -> "RatingState":
        merged = dict(self.ratings)
        merged.update(changes)
        return RatingState(season=self.season, ratings=MappingProxyType(merged))

    def top(self, n: int = 25):
        ranked = sorted(self.ratings.items(), key=lambda kv: (-kv[1].rating, kv[0]))
        return [(team, tr.rating) for team, tr in ranked[:n]]


class RatingEngine:
    """Pure rating transitions parameterised by :class:`EloParams`."""

    PPA_WEIGHT = 0.75
    MARGIN_WEIGHT = 0.25
    PPA_SCALE = 250.0
    PPA_DIFF_CAP = 0.5

    def __init__(self, params: Optional[EloParams] = None):
        self.params = params or EloParams()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def initial_state(self, season: int) -> RatingState:
        return RatingState(season=season)

    def from_snapshots(self, season: int, snapshots: Iterable) -> RatingState:
        """Build a state from ``TeamRatingSnapshot``-like rows."""
        ratings = {
            s.team_id: TeamRating(rating=float(s.rating), games_played=int(s.games_played or 0),
                                  season_games=int(s.games_played or 0))
            for s in snapshots
            if s.season == season
        }
        return RatingState(season=season, ratings=ratings)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def rating_of(self, state: RatingState, team: str) -> TeamRating:
        return state.ratings.get(team) or TeamRating(rating=self.params.mean_rating)

    def expected_home(
        self,
        home_rating: float,
        away_rating: float,
        neutral_site: bool = False,
    ) -> float:
        hfa_elo = 0.0 if neutral_site else self.params.home_field_advantage * self.params.elo_to_spread
        return 1.0 / (1.0 + 10 ** ((away_rating - (home_rating + hfa_elo)) / 400.0))

    def spread(
        self,
        home_rating: float,
        away_rating: float,
        neutral_site: bool = False,
    ) -> float:
        """Model home spread (negative = home favoured)."""
        hfa = 0.0 if neutral_site else self.params.home_field_advantage
        return -((home_rating - away_rating) / self.params.elo_to_spread + hfa)

    def spread_for(self, state: RatingState, home: str, away: str, neutral_site: bool = False) -> float:
        return self.spread(
            self.rating_of(state, home).rating,
            self.rating_of(state, away).rating,
            neutral_site,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def rating_change(self, home_rating: float, away_rating: float, game: GameResult) -> float:
        """Signed home-rating change for *game*; the away team gets the negation."""
        p = self.params
        expected = self.expected_home(home_rating, away_rating, game.neutral_site)
        margin = game.margin
        actual = 1.0 if margin > 0 else 0.0 if margin < 0 else 0.5

        capped = min(abs(margin), p.margin_cap)
        if margin == 0:
            margin_mult = 1.0
        else:
            winner_diff = (home_rating - away_rating) if margin > 0 else (away_rating - home_rating)
            margin_mult = math.log(capped + 1) * 2.2 / (winner_diff * 0.001 + 2.2)
        margin_update = p.k_factor * margin_mult * (actual - expected)

        if game.home_adj_ppa is not None and game.away_adj_ppa is not None:
            ppa_diff = game.home_adj_ppa - game.away_adj_ppa
            ppa_diff = max(-self.PPA_DIFF_CAP, min(self.PPA_DIFF_CAP, ppa_diff))
            update = self.PPA_WEIGHT * ppa_diff * self.PPA_SCALE + self.MARGIN_WEIGHT * margin_update
        else:
            update = margin_update

        return max(-p.max_update, min(p.max_update, update))

    def update(self, state: RatingState, game: GameResult) -> RatingState:
        """Return the state after *game*.  *state* is left untouched."""
        if game.season != state.season:
            raise ValueError(
                f"Game from season {game.season} applied to {state.season} ratings; "
                "call season_reset first"
            )
        home = self.rating_of(state, game.home_team)
        away = self.rating_of(state, game.away_team)
        change = self.rating_change(home.rating, away.rating, game)

        return state.with_ratings({
            game.home_team: TeamRating(
                rating=home.rating + change,
                games_played=home.games_played + 1,
                season_games=home.season_games + 1,
            ),
            game.away_team: TeamRating(
                rating=away.rating - change,
                games_played=away.games_played + 1,
                season_games=away.season_games + 1,
            ),
        })

    def season_reset(self, state: RatingState, new_season: int) -> RatingState:
        """Regress every rating toward the mean for *new_season*."""
        keep = self.params.season_carryover
        mean = self.params.mean_rating
        regressed = {
            team: replace(
                tr,
                rating=keep * tr.rating + (1.0 - keep) * mean,
                season_games=0,
            )
            for team, tr in state.ratings.items()
        }
        return RatingState(season=new_season, ratings=regressed)

    def replay(self, games: Iterable[GameResult], state: Optional[RatingState] = None) -> RatingState:
        """Fold *games* (in chronological order) into a state.

        Crossing into a later season applies :meth:`season_reset` first.
        """
        for game in games:
            if state is None:
                state = self.initial_state(game.season)
            elif game.season > state.season:
                state = self.season_reset(state, game.season)
            state = self.update(state, game)
        if state is None:
            raise ValueError("replay() needs at least one game or an initial state")
        return state
