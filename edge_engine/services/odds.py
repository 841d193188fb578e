"""
The Odds API integration for CFB spreads and totals.
https://the-odds-api.com/

Every bookmaker quote becomes one :class:`OddsTick` per side.  Spread ticks
always carry the *home* spread, so an away quote of ``+7`` is stored as
``spread_points_home = -7``.
"""

import logging
import os
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple

import requests
from pydantic import ValidationError

from edge_engine.schemas import OddsTick

logger = logging.getLogger(__name__)

API_KEY = os.getenv("THE_ODDS_API_KEY")
BASE_URL = "https://api.the-odds-api.com/v4"
SPORT_KEY = "americanfootball_ncaaf"


class OddsAPIClient:
    """Client for The Odds API"""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or API_KEY or os.getenv("THE_ODDS_API_KEY")
        if not self.api_key:
            raise ValueError("THE_ODDS_API_KEY not set in environment")

    def get_cfb_odds(
        self,
        markets: str = "spreads,totals",
        regions: str = os.getenv("ODDS_API_REGIONS", "us"),
        odds_format: str = "american",
    ) -> List[Dict]:
        """
        Fetch current CFB odds.

        Returns list of events with odds from multiple bookmakers, or an
        empty list when the API is unavailable.
        """
        url = f"{BASE_URL}/sports/{SPORT_KEY}/odds"

        params = {
            "apiKey": self.api_key,
            "regions": regions,
            "markets": markets,
            "oddsFormat": odds_format,
        }

        try:
            response = requests.get(url, params=params, timeout=10)
            response.raise_for_status()

            data = response.json()

            remaining = response.headers.get("x-requests-remaining")
            used = response.headers.get("x-requests-used")
            logger.info(
                "Odds API: %d events fetched. Quota: %s used, %s remaining",
                len(data), used, remaining,
            )

            return data

        except requests.exceptions.RequestException as e:
            logger.error("Odds API error: %s", e)
            return []


def _parse_timestamp(value: Optional[str], fallback: datetime) -> datetime:
    if not value:
        return fallback
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return fallback


def parse_odds_event(event: Dict, event_id: str, captured_at: Optional[datetime] = None) -> List[OddsTick]:
    """Flatten one Odds API event into spread and total ticks.

    Args:
        event: raw API event with ``home_team`` and ``bookmakers``.
        event_id: our event id the quotes belong to.
        captured_at: poll time; a bookmaker's ``last_update`` wins when present.
    """
    captured_at = captured_at or datetime.utcnow()
    home = event.get("home_team")
    ticks: List[OddsTick] = []

    for bookmaker in event.get("bookmakers", []):
        book = bookmaker.get("key")
        if not book:
            continue
        stamp = _parse_timestamp(bookmaker.get("last_update"), captured_at)

        for market in bookmaker.get("markets", []):
            key = market.get("key")
            for outcome in market.get("outcomes", []):
                point = outcome.get("point")
                if point is None:
                    continue
                fields = {
                    "event_id": event_id,
                    "sportsbook_id": book,
                    "price_american": outcome.get("price"),
                    "captured_at": stamp,
                }
                if key == "spreads":
                    is_home = outcome.get("name") == home
                    fields.update(
                        market_type="spread",
                        side="home" if is_home else "away",
                        spread_points_home=float(point) if is_home else -float(point),
                    )
                elif key == "totals":
                    side = str(outcome.get("name", "")).lower()
                    if side not in ("over", "under"):
                        continue
                    fields.update(market_type="total", side=side, total_points=float(point))
                else:
                    continue
                try:
                    ticks.append(OddsTick(**fields))
                except ValidationError as exc:
                    logger.warning("Skipping malformed %s quote from %s: %s", key, book, exc)

    return ticks


def match_events(
    odds_events: List[Dict],
    events_by_teams: Mapping[Tuple[str, str], str],
) -> List[Tuple[str, Dict]]:
    """Pair API events with our event ids by lower-cased ``(home, away)`` names."""
    matched = []
    for ev in odds_events:
        key = (str(ev.get("home_team", "")).lower(), str(ev.get("away_team", "")).lower())
        event_id = events_by_teams.get(key)
        if event_id is None:
            logger.debug("No tracked event for %s vs %s", ev.get("home_team"), ev.get("away_team"))
            continue
        matched.append((event_id, ev))
    return matched


def tick_from_row(row) -> OddsTick:
    """Stored ``OddsTickRow`` back to the validated tick type."""
    return OddsTick(
        event_id=row.event_id,
        sportsbook_id=row.sportsbook_id,
        market_type=row.market_type,
        side=row.side,
        spread_points_home=row.spread_points_home,
        total_points=row.total_points,
        price_american=row.price_american,
        captured_at=row.captured_at,
    )
