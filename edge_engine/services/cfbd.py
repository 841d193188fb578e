"""
CollegeFootballData (CFBD) API client.

Schedules, Elo ratings, returning production, team locations and tempo.
Each fetch returns validated schema records and degrades to an empty list
when the API is unreachable, so one missing feed never aborts a pipeline
step.
"""

import logging
import os
from datetime import datetime
from typing import Dict, List, Optional

import requests
from pydantic import ValidationError

from edge_engine.schemas import GameRecord, TeamLocation, TeamPriors, TeamRatingSnapshot, TeamTempo

logger = logging.getLogger(__name__)

CFBD_BASE_URL = os.getenv("CFBD_BASE_URL", "https://api.collegefootballdata.com")


class CFBDClient:
    def __init__(self, api_key: Optional[str] = None, base_url: str = CFBD_BASE_URL):
        self.api_key = api_key or os.getenv("CFBD_API_KEY")
        self.base_url = base_url
        if not self.api_key:
            logger.warning("CFBD_API_KEY not set; requests may be rejected")

    def _get(self, path: str, params: Dict) -> List[Dict]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            resp = requests.get(f"{self.base_url}{path}", params=params, headers=headers, timeout=15)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("CFBD %s failed (%s): %s", path, params, exc)
            return []

    def fetch_games(self, season: int, week: Optional[int] = None) -> List[GameRecord]:
        params = {"year": season, "seasonType": "regular"}
        if week is not None:
            params["week"] = week

        games: List[GameRecord] = []
        for row in self._get("/games", params):
            try:
                games.append(GameRecord(
                    id=str(row["id"]),
                    season=row.get("season", season),
                    week=row.get("week"),
                    homeTeamId=row.get("homeTeam"),
                    awayTeamId=row.get("awayTeam"),
                    kickoff=_parse_start(row.get("startDate")),
                    homeScore=row.get("homePoints"),
                    awayScore=row.get("awayPoints"),
                    neutral_site=bool(row.get("neutralSite")),
                ))
            except (KeyError, ValueError, ValidationError) as exc:
                logger.warning("Skipping malformed CFBD game %s: %s", row.get("id"), exc)

        logger.info("CFBD: %d games for %s week %s", len(games), season, week)
        return games

    def fetch_elo_ratings(self, season: int, week: Optional[int] = None) -> List[TeamRatingSnapshot]:
        params = {"year": season}
        if week is not None:
            params["week"] = week

        ratings: List[TeamRatingSnapshot] = []
        for row in self._get("/ratings/elo", params):
            try:
                ratings.append(TeamRatingSnapshot(
                    teamId=row["team"],
                    season=row.get("year", season),
                    rating=row["elo"],
                ))
            except (KeyError, ValidationError) as exc:
                logger.warning("Skipping malformed Elo row %s: %s", row.get("team"), exc)
        return ratings

    def fetch_returning_production(self, season: int) -> List[TeamPriors]:
        """Returning PPA shares per team.  Transfers and coaching flags are left at defaults."""
        priors: List[TeamPriors] = []
        for row in self._get("/player/returning", {"year": season}):
            try:
                priors.append(TeamPriors(
                    team=row["team"],
                    percent_returning_ppa=row.get("percentPPA"),
                    percent_returning_passing_ppa=row.get("percentPassingPPA"),
                ))
            except (KeyError, ValidationError) as exc:
                logger.warning("Skipping malformed returning-production row %s: %s", row.get("team"), exc)
        return priors

    def fetch_team_locations(self, season: int) -> List[TeamLocation]:
        locations: List[TeamLocation] = []
        for row in self._get("/teams", {"year": season}):
            location = row.get("location") or {}
            try:
                locations.append(TeamLocation(
                    team=row["school"],
                    latitude=location.get("latitude"),
                    longitude=location.get("longitude"),
                    time_zone=location.get("timezone"),
                ))
            except (KeyError, ValidationError) as exc:
                logger.warning("Skipping malformed team row %s: %s", row.get("school"), exc)
        return locations

    def fetch_offense_plays(self, season: int, end_week: Optional[int] = None) -> List[TeamTempo]:
        """Season-to-date offensive snaps per team from the advanced season stats."""
        params = {"year": season}
        if end_week is not None:
            params["endWeek"] = end_week

        tempo: List[TeamTempo] = []
        for row in self._get("/stats/season/advanced", params):
            try:
                tempo.append(TeamTempo(team=row["team"], offense_plays=row["offense"]["plays"]))
            except (KeyError, TypeError, ValidationError) as exc:
                logger.warning("Skipping malformed advanced-stats row %s: %s", row.get("team"), exc)
        return tempo


def _parse_start(value: Optional[str]) -> datetime:
    if not value:
        raise ValueError("game has no startDate")
    return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
