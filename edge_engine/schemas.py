"""
Pydantic schemas for the edge engine.

Two groups live here:

* **Provider inputs**: validated records consumed from external feeds
  (games, odds ticks, ratings, weather, injuries, QB status, situational and
  roster-continuity context).  Every field a feed may omit is ``Optional``;
  providers treat ``None`` as "signal absent", never as an error.
* **API payloads**: request/response bodies for the FastAPI surface.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Consumed records
# ---------------------------------------------------------------------------

class GameRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    season: int = Field(..., ge=1900)
    week: int = Field(..., ge=0, le=15)
    home_team_id: str = Field(..., alias="homeTeamId")
    away_team_id: str = Field(..., alias="awayTeamId")
    kickoff: datetime
    home_score: Optional[int] = Field(None, alias="homeScore", ge=0)
    away_score: Optional[int] = Field(None, alias="awayScore", ge=0)
    neutral_site: bool = False

    @property
    def is_final(self) -> bool:
        return self.home_score is not None and self.away_score is not None


class OddsTick(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(..., alias="eventId")
    sportsbook_id: str = Field(..., alias="sportsbookId")
    market_type: Literal["spread", "total"] = Field(..., alias="marketType")
    side: Literal["home", "away", "over", "under"]
    spread_points_home: Optional[float] = Field(None, alias="spreadPointsHome")
    total_points: Optional[float] = Field(None, alias="totalPoints")
    price_american: Optional[int] = Field(None, alias="priceAmerican")
    captured_at: datetime = Field(..., alias="capturedAt")

    @field_validator("price_american")
    @classmethod
    def validate_american_odds(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and -100 < v < 100:
            raise ValueError(f"price_american={v} is not valid American odds")
        return v

    @model_validator(mode="after")
    def check_points_for_market(self) -> "OddsTick":
        if self.market_type == "spread" and self.total_points is not None and self.spread_points_home is None:
            raise ValueError("spread tick carries totalPoints but no spreadPointsHome")
        if self.market_type == "total" and self.spread_points_home is not None and self.total_points is None:
            raise ValueError("total tick carries spreadPointsHome but no totalPoints")
        return self

    @property
    def points(self) -> Optional[float]:
        return self.spread_points_home if self.market_type == "spread" else self.total_points


class TeamRatingSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    team_id: str = Field(..., alias="teamId")
    season: int
    rating: float
    games_played: int = Field(0, alias="gamesPlayed", ge=0)


class WeatherRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    home_team: str = Field(..., alias="homeTeam")
    away_team: str = Field(..., alias="awayTeam")
    temperature: Optional[float] = None            # deg F
    wind_speed: Optional[float] = Field(None, alias="windSpeed", ge=0)   # mph
    precipitation: Optional[float] = Field(None, ge=0)                   # inches
    snowfall: Optional[float] = Field(None, ge=0)                        # inches
    weather_condition: Optional[str] = Field(None, alias="weatherCondition")
    is_indoor: bool = Field(False, alias="isIndoor")


InjuryStatus = Literal["out", "doubtful", "questionable", "probable", "unknown"]


class InjuryRecord(BaseModel):
    team: str
    player: str
    position: Optional[str] = None
    status: InjuryStatus = "unknown"
    is_starter: Optional[bool] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalise_status(cls, v):
        if v is None:
            return "unknown"
        text = str(v).strip().lower()
        for known in ("out", "doubtful", "questionable", "probable"):
            if known in text:
                return known
        return "unknown"

    @field_validator("position", mode="before")
    @classmethod
    def normalise_position(cls, v):
        return str(v).strip().upper() if v else None


class QBStatusRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    team: str
    season: int
    week: int = Field(..., ge=0, le=15)
    status: Literal["confirmed", "questionable", "out", "unknown"] = "unknown"
    as_of: datetime = Field(..., alias="asOf")
    player_name: Optional[str] = None

    @field_validator("as_of")
    @classmethod
    def naive_utc(cls, v: datetime) -> datetime:
        # Kickoffs are stored as naive UTC.
        if v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class TeamSituation(BaseModel):
    """Per-team schedule and location context for the situational provider."""

    team: str
    rest_days: Optional[int] = Field(None, ge=0)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    elevation_ft: Optional[float] = None
    timezone_offset: Optional[int] = Field(None, ge=-12, le=14)
    last_game_margin: Optional[int] = None
    lost_to_opponent_last_season: bool = False


class SituationalInput(BaseModel):
    home: TeamSituation
    away: TeamSituation
    neutral_site: bool = False


class RosterContinuity(BaseModel):
    """Returning-production shares (0-1) for the player-factor provider."""

    team: str
    returning_production: Optional[float] = Field(None, ge=0, le=1)
    passing_returning: Optional[float] = Field(None, ge=0, le=1)


class TeamPriors(BaseModel):
    """Off-season context feeding the uncertainty engine and the player factor."""

    team: str
    percent_returning_ppa: Optional[float] = Field(None, ge=0, le=1)
    percent_returning_passing_ppa: Optional[float] = Field(None, ge=0, le=1)
    qb_transfers_out: int = Field(0, ge=0)
    coaching_change: bool = False

    def roster_continuity(self) -> Optional[RosterContinuity]:
        if self.percent_returning_ppa is None and self.percent_returning_passing_ppa is None:
            return None
        return RosterContinuity(
            team=self.team,
            returning_production=self.percent_returning_ppa,
            passing_returning=self.percent_returning_passing_ppa,
        )


class TeamLocation(BaseModel):
    """Home venue coordinates and IANA time zone from the CFBD teams feed."""

    team: str
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    time_zone: Optional[str] = None


class TeamTempo(BaseModel):
    team: str
    offense_plays: int = Field(..., ge=0)


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------

class EdgeExplain(BaseModel):
    win_probability: float
    expected_value: float
    confidence_tier: str
    qualifies: bool
    warnings: List[str] = Field(default_factory=list)
    reason: str
    component_breakdown: Dict = Field(default_factory=dict)


class EdgeRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    event_id: str
    sportsbook_id: str
    market_type: str
    market_line: Optional[float] = None
    model_line: Optional[float] = None
    edge_points: float
    recommended_side: Optional[str] = None
    percentile: Optional[float] = None
    config_identity: Optional[str] = None
    explain: Dict = Field(default_factory=dict)


class BetSlipResponse(BaseModel):
    game_key: str
    event_id: str
    market_type: str
    side: str
    team: str
    spread_at_bet: float
    effective_edge: float
    raw_edge: float
    uncertainty: float
    percentile: float
    confidence: str
    warnings: List[str] = Field(default_factory=list)
    model: str


class GradeRequest(BaseModel):
    """Body for POST /admin/grade-bets/{bet_id}."""

    home_score: int = Field(..., ge=0)
    away_score: int = Field(..., ge=0)
    closing_line: Optional[float] = None


class PipelineRunResponse(BaseModel):
    status: Literal["success", "partial", "failed", "locked"]
    run_key: str
    coverage: Optional[float] = None
    edges_written: int = 0
    steps: List[Dict] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
