"""
Injury scraping and availability impact.

Turns a list of injury reports into a per-team point impact so the model
never prices a game blind to a key absence.

Sources (in priority order):
    1. Manual overrides via API
    2. ESPN college football injury pages (public, scraped)

Impact per player = position weight x status multiplier (x 0.3 for a
non-starter), summed per team and capped at 10 points.  The spread
adjustment is ``away_impact - home_impact``: a banged-up away team helps
the home side.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import requests
from bs4 import BeautifulSoup
from pydantic import ValidationError

from edge_engine.core.types import AdjustmentFactor
from edge_engine.schemas import InjuryRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Impact tables
# ---------------------------------------------------------------------------

# Points lost when a starter at this position is fully out.
POSITION_WEIGHTS: Dict[str, float] = {
    "QB": 5.0,
    "RB": 1.5,
    "WR": 1.0,
    "TE": 0.75,
    "OL": 0.5,
    "DL": 0.75,
    "LB": 0.6,
    "DB": 0.6,
    "K": 0.25,
    "P": 0.15,
}
DEFAULT_POSITION_WEIGHT = 0.3

# Probability-style discount for each listed status.
STATUS_MULTIPLIERS: Dict[str, float] = {
    "out": 1.0,
    "doubtful": 0.85,
    "questionable": 0.5,
    "probable": 0.15,
    "unknown": 0.5,
}

NON_STARTER_MULTIPLIER = 0.3
MAX_TEAM_IMPACT = 10.0
KEY_INJURY_THRESHOLD = 1.5

# Feed position codes folded into the weight table.
_POSITION_ALIASES = {
    "OT": "OL", "OG": "OL", "G": "OL", "T": "OL", "C": "OL", "IOL": "OL",
    "DE": "DL", "DT": "DL", "NT": "DL", "EDGE": "DL",
    "ILB": "LB", "OLB": "LB", "MLB": "LB",
    "CB": "DB", "S": "DB", "FS": "DB", "SS": "DB", "NB": "DB",
    "PK": "K",
}


def _position_key(position: Optional[str]) -> Optional[str]:
    if not position:
        return None
    return _POSITION_ALIASES.get(position, position)


def player_impact(injury: InjuryRecord) -> float:
    """Expected point swing from one listed player."""
    weight = POSITION_WEIGHTS.get(_position_key(injury.position), DEFAULT_POSITION_WEIGHT)
    impact = weight * STATUS_MULTIPLIERS[injury.status]
    if injury.is_starter is False:
        impact *= NON_STARTER_MULTIPLIER
    return impact


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

@dataclass
class TeamInjuryImpact:
    team: str
    impact: float = 0.0
    qb_out: bool = False
    key_injuries: List[str] = field(default_factory=list)


@dataclass
class InjuryImpact:
    home: TeamInjuryImpact
    away: TeamInjuryImpact

    @property
    def spread_adjustment(self) -> float:
        """Positive helps the home side."""
        return round(self.away.impact - self.home.impact, 2)

    @property
    def combined_impact(self) -> float:
        return self.home.impact + self.away.impact

    @property
    def has_impact(self) -> bool:
        return self.combined_impact > 0

    def warnings(self) -> List[str]:
        notes = []
        for side in (self.home, self.away):
            if side.qb_out:
                notes.append(f"{side.team} starting QB OUT")
            for desc in side.key_injuries:
                notes.append(f"{side.team}: {desc}")
        return notes


def _team_impact(team: str, injuries: Iterable[InjuryRecord]) -> TeamInjuryImpact:
    result = TeamInjuryImpact(team=team)
    total = 0.0
    for inj in injuries:
        impact = player_impact(inj)
        total += impact
        position = _position_key(inj.position)
        if position == "QB" and inj.status == "out" and inj.is_starter is not False:
            result.qb_out = True
        if impact >= KEY_INJURY_THRESHOLD:
            result.key_injuries.append(f"{inj.player} ({inj.position or '?'}, {inj.status})")
    result.impact = round(min(total, MAX_TEAM_IMPACT), 2)
    return result


def _same_team(a: str, b: str) -> bool:
    a, b = a.lower(), b.lower()
    return a == b or a in b or b in a


def analyze_injuries(
    home_team: str,
    away_team: str,
    injuries: Iterable[InjuryRecord],
) -> InjuryImpact:
    """Split *injuries* by team and score each side."""
    home_list: List[InjuryRecord] = []
    away_list: List[InjuryRecord] = []
    for inj in injuries:
        if _same_team(inj.team, home_team):
            home_list.append(inj)
        elif _same_team(inj.team, away_team):
            away_list.append(inj)
    return InjuryImpact(
        home=_team_impact(home_team, home_list),
        away=_team_impact(away_team, away_list),
    )


def injury_factor(impact: InjuryImpact, market_type: str) -> Optional[AdjustmentFactor]:
    """Line-lowering factor for the composer, or ``None`` with no injuries.

    Totals see the combined impact of both sides: missing players lower
    scoring.  The damped cross-term weight is applied by the composer.
    """
    if not impact.has_impact:
        return None
    qb_out = impact.home.qb_out or impact.away.qb_out
    confidence = "high" if qb_out else "medium"
    detail = "; ".join(impact.warnings())
    if market_type == "total":
        return AdjustmentFactor(
            kind="injury", magnitude=impact.combined_impact, confidence=confidence, detail=detail,
        )
    if impact.spread_adjustment == 0:
        return None
    return AdjustmentFactor(
        kind="injury", magnitude=impact.spread_adjustment, confidence=confidence, detail=detail,
    )


# ---------------------------------------------------------------------------
# Scraper
# ---------------------------------------------------------------------------

ESPN_INJURY_URL = "https://www.espn.com/college-football/injuries"


def scrape_espn_injuries() -> List[InjuryRecord]:
    """
    Scrape ESPN college football injury reports.

    Returns an empty list if the scrape fails; callers treat that as
    "no injury signal" rather than an error.
    """
    headers = {
        "User-Agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/120.0.0.0 Safari/537.36"
        ),
    }

    try:
        resp = requests.get(ESPN_INJURY_URL, headers=headers, timeout=15)
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("ESPN injury scrape failed: %s", exc)
        return []

    return parse_espn_injury_page(resp.text)


def parse_espn_injury_page(html: str) -> List[InjuryRecord]:
    """Parse the team tables of an ESPN injury page."""
    soup = BeautifulSoup(html, "lxml")
    injuries: List[InjuryRecord] = []

    for table in soup.select("div.ResponsiveTable"):
        team_header = table.select_one("div.Table__Title")
        if not team_header:
            continue
        team_name = team_header.get_text(strip=True)

        for row in table.select("tbody tr"):
            cols = row.select("td")
            if len(cols) < 3:
                continue
            # Name | Pos | Est. return | Status | Comment
            status_col = cols[3] if len(cols) > 3 else cols[2]
            try:
                injuries.append(InjuryRecord(
                    team=team_name,
                    player=cols[0].get_text(strip=True),
                    position=cols[1].get_text(strip=True),
                    status=status_col.get_text(strip=True),
                ))
            except ValidationError as exc:
                logger.debug("Skipping injury row for %s: %s", team_name, exc)

    logger.info("ESPN injury scrape: %d entries across teams", len(injuries))
    return injuries


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class InjuryService:
    """Caches scraped injuries and layers manual overrides on top."""

    def __init__(self, scraper=scrape_espn_injuries):
        self._scraper = scraper
        self._cache: List[InjuryRecord] = []
        self._cache_time: Optional[datetime] = None
        self._manual_overrides: List[InjuryRecord] = []

    def add_manual_override(self, record: InjuryRecord) -> None:
        """Add or replace a manual entry (highest priority)."""
        self._manual_overrides = [
            r for r in self._manual_overrides
            if not (r.team.lower() == record.team.lower() and r.player.lower() == record.player.lower())
        ]
        self._manual_overrides.append(record)

    def fetch_injuries(self, max_age_minutes: int = 30) -> List[InjuryRecord]:
        now = datetime.utcnow()
        if self._cache_time and now - self._cache_time < timedelta(minutes=max_age_minutes):
            return self._merge_with_overrides(self._cache)

        scraped = self._scraper()
        if scraped:
            self._cache = scraped
            self._cache_time = now
        else:
            logger.warning("Injury cache stale: scrape returned 0 entries")

        return self._merge_with_overrides(self._cache)

    def game_impact(self, home_team: str, away_team: str, max_age_minutes: int = 30) -> InjuryImpact:
        return analyze_injuries(home_team, away_team, self.fetch_injuries(max_age_minutes))

    def _merge_with_overrides(self, base: List[InjuryRecord]) -> List[InjuryRecord]:
        override_keys = {(r.team.lower(), r.player.lower()) for r in self._manual_overrides}
        merged = [r for r in base if (r.team.lower(), r.player.lower()) not in override_keys]
        merged.extend(self._manual_overrides)
        return merged


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_injury_service: Optional[InjuryService] = None


def get_injury_service() -> InjuryService:
    global _injury_service
    if _injury_service is None:
        _injury_service = InjuryService()
    return _injury_service
