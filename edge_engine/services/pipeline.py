"""
Weekly slate pipeline.

Workflow (one invocation per season/week slate, steps run in order):
    1. sync_events        season schedule, scores and Elo ratings   120 s
    2. poll_odds          The Odds API spreads/totals -> odds_ticks 120 s
    3. run_model          base projections for every event          360 s
    4. coverage gate      >= 95% of upcoming events projected
    5. materialize_edges  compose, price, rank, decide, upsert      240 s

Each step runs under its own timeout.  A failed or timed-out step is
recorded and the run moves on, except that a coverage-gate failure skips
materialization and fails the run.

Runs are keyed ``"<season>-W<week>-<model version>"``.  A ``PipelineRun``
row in status ``running`` locks the slate; a second run raises
:class:`SlateLockedError` until the lock finishes or goes stale (1 hour).
"""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from edge_engine.core.config import DEFAULT_MODEL_VERSION, ModelConfig
from edge_engine.core.types import MARKET_TYPES, GameContext, ModelProjection, QBStatus
from edge_engine.models import (
    DataFetch,
    EdgeRecord,
    Event,
    OddsTickRow,
    PipelineRun,
    Projection,
    QBStatusRow,
    SessionLocal,
    TeamRating,
)
from edge_engine.projection_model import ProjectionModel, scoring_stats_from_games
from edge_engine.schemas import (
    GameRecord,
    SituationalInput,
    TeamLocation,
    TeamRatingSnapshot,
    TeamSituation,
)
from edge_engine.services.bet_tracker import record_slate_bets
from edge_engine.services.cfbd import CFBDClient
from edge_engine.services.injuries import InjuryService, analyze_injuries, get_injury_service
from edge_engine.services.line_movement import build_market_line
from edge_engine.services.materialize import GameInputs, build_explain, decide_slate, evaluate_game
from edge_engine.services.odds import OddsAPIClient, match_events, parse_odds_event, tick_from_row
from edge_engine.services.uncertainty import returning_quartiles
from edge_engine.services.weather import fetch_weather, index_by_matchup

logger = logging.getLogger(__name__)

_BASE_TIMEOUT = float(os.getenv("PIPELINE_STEP_TIMEOUT_S", "120"))
STEP_TIMEOUTS: Dict[str, float] = {
    "sync_events": _BASE_TIMEOUT,
    "poll_odds": _BASE_TIMEOUT,
    "run_model": 3 * _BASE_TIMEOUT,
    "materialize_edges": 2 * _BASE_TIMEOUT,
}
COVERAGE_THRESHOLD = float(os.getenv("COVERAGE_THRESHOLD", "0.95"))
STALE_LOCK_AFTER = timedelta(hours=1)

SEASON_START_MONTH = 8
SEASON_START_DAY = 24
MAX_WEEK = 15


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class PipelineError(Exception):
    """Base class for run-level pipeline failures."""


class CoverageGateError(PipelineError):
    def __init__(self, coverage: float, threshold: float, projected: int, total: int):
        self.coverage = coverage
        self.threshold = threshold
        self.projected = projected
        self.total = total
        super().__init__(
            f"Projection coverage {coverage:.1%} ({projected}/{total}) below "
            f"{threshold:.0%} threshold; materialization skipped"
        )


class SlateLockedError(PipelineError):
    def __init__(self, run_key: str, started_at: datetime):
        self.run_key = run_key
        self.started_at = started_at
        super().__init__(f"Run {run_key} already in progress since {started_at.isoformat()}")


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

def current_season(d: date) -> int:
    """Aug-Dec belong to that year's season; Jan-Jul to the previous one."""
    return d.year if d.month >= SEASON_START_MONTH else d.year - 1


def week_from_date(d: date, season: Optional[int] = None) -> int:
    """Whole weeks since Aug 24 of the season, clamped to 0-15."""
    if isinstance(d, datetime):
        d = d.date()
    season = season if season is not None else current_season(d)
    start = date(season, SEASON_START_MONTH, SEASON_START_DAY)
    week = (d - start).days // 7
    return max(0, min(week, MAX_WEEK))


def make_run_key(season: int, week: int, version: str) -> str:
    return f"{season}-W{week}-{version}"


# ---------------------------------------------------------------------------
# Step plumbing
# ---------------------------------------------------------------------------

@dataclass
class StepResult:
    name: str
    success: bool
    duration_ms: int
    error: Optional[str] = None
    detail: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "detail": self.detail,
        }


def run_step(name: str, fn: Callable[[], Optional[Dict]], timeout: float) -> StepResult:
    """Run *fn* with a timeout.  Failures are returned, never raised.

    A timed-out step is abandoned, not interrupted: its worker thread may
    still finish in the background.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"pipeline-{name}")
    start = time.monotonic()
    future = executor.submit(fn)
    try:
        detail = future.result(timeout=timeout) or {}
        elapsed = int((time.monotonic() - start) * 1000)
        logger.info("Pipeline step %s ok in %d ms: %s", name, elapsed, detail)
        return StepResult(name=name, success=True, duration_ms=elapsed, detail=detail)
    except FuturesTimeout:
        elapsed = int((time.monotonic() - start) * 1000)
        logger.error("Pipeline step %s timed out after %.0f s", name, timeout)
        return StepResult(name=name, success=False, duration_ms=elapsed, error=f"timed out after {timeout:g}s")
    except Exception as exc:
        elapsed = int((time.monotonic() - start) * 1000)
        logger.error("Pipeline step %s failed: %s", name, exc, exc_info=True)
        return StepResult(name=name, success=False, duration_ms=elapsed, error=str(exc))
    finally:
        executor.shutdown(wait=False)


@dataclass
class PipelineContext:
    season: int
    week: int
    config: ModelConfig
    cfbd: CFBDClient
    odds_client: Optional[OddsAPIClient] = None
    injury_service: Optional[InjuryService] = None
    now: datetime = field(default_factory=datetime.utcnow)


def _log_fetch(db: Session, source: str, success: bool, records: int = 0,
               error: Optional[str] = None, started: Optional[float] = None) -> None:
    db.add(DataFetch(
        data_source=source,
        success=success,
        records_fetched=records,
        error_message=error[:500] if error else None,
        response_time_ms=int((time.monotonic() - started) * 1000) if started else None,
    ))


def _slate_events(db: Session, season: int, week: int, upcoming_only: bool = False) -> List[Event]:
    q = db.query(Event).filter(Event.season == season, Event.week == week)
    if upcoming_only:
        q = q.filter(Event.completed == False)  # noqa: E712
    return q.order_by(Event.kickoff.asc(), Event.id.asc()).all()


def game_context(event: Event) -> GameContext:
    return GameContext(
        event_id=event.id,
        home_team=event.home_team,
        away_team=event.away_team,
        season=event.season,
        week=event.week,
        kickoff=event.kickoff,
    )


def projection_from_row(row: Projection) -> ModelProjection:
    return ModelProjection(
        event_id=row.event_id,
        model_spread_home=row.model_spread_home,
        model_total_points=row.model_total_points,
        confidence=row.confidence or "low",
        components=dict(row.components or {}),
        data_quality=dict(row.data_quality or {}),
    )


# ---------------------------------------------------------------------------
# Run lock
# ---------------------------------------------------------------------------

def acquire_run_lock(db: Session, ctx: PipelineContext, run_key: str) -> PipelineRun:
    """Insert a ``running`` row for *run_key*, taking over a stale one.

    Raises:
        SlateLockedError: a non-stale run holds the slate.
    """
    running = (
        db.query(PipelineRun)
        .filter(PipelineRun.run_key == run_key, PipelineRun.status == "running")
        .first()
    )
    if running is not None:
        if ctx.now - running.started_at < STALE_LOCK_AFTER:
            raise SlateLockedError(run_key, running.started_at)
        logger.warning("Taking over stale lock %s from %s", run_key, running.started_at)
        running.status = "failed"
        running.error = "stale lock taken over"
        running.finished_at = ctx.now

    run = PipelineRun(
        run_key=run_key,
        season=ctx.season,
        week=ctx.week,
        model_version=ctx.config.version.value,
        status="running",
        started_at=ctx.now,
    )
    db.add(run)
    db.commit()
    return run


def release_run_lock(db: Session, run: PipelineRun, summary: Dict) -> None:
    run.status = summary["status"]
    run.coverage = summary.get("coverage")
    run.edges_written = summary.get("edges_written", 0)
    run.summary = summary
    run.error = "; ".join(summary["errors"])[:2000] if summary["errors"] else None
    run.finished_at = datetime.utcnow()
    db.commit()


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

def sync_events(db: Session, ctx: PipelineContext) -> Dict:
    started = time.monotonic()
    # Whole season, so rest and last-game context exist for every slate.
    games = ctx.cfbd.fetch_games(ctx.season)
    _log_fetch(db, "cfbd_games", bool(games), len(games), None if games else "no games returned", started)

    created = 0
    for g in games:
        event = db.query(Event).filter(Event.id == g.id).first()
        if event is None:
            event = Event(id=g.id)
            db.add(event)
            created += 1
        event.season = g.season
        event.week = g.week
        event.home_team = g.home_team_id
        event.away_team = g.away_team_id
        event.kickoff = g.kickoff
        event.neutral_site = g.neutral_site
        if g.is_final:
            event.home_score = g.home_score
            event.away_score = g.away_score
            event.completed = True

    started = time.monotonic()
    ratings = ctx.cfbd.fetch_elo_ratings(ctx.season, ctx.week)
    _log_fetch(db, "cfbd_elo", bool(ratings), len(ratings), None if ratings else "no ratings returned", started)
    for r in ratings:
        row = (
            db.query(TeamRating)
            .filter(TeamRating.team == r.team_id, TeamRating.season == r.season)
            .first()
        )
        if row is None:
            row = TeamRating(team=r.team_id, season=r.season)
            db.add(row)
        row.rating = r.rating
        row.games_played = r.games_played

    db.commit()
    return {"games": len(games), "events_created": created, "ratings": len(ratings)}


def poll_odds(db: Session, ctx: PipelineContext) -> Dict:
    client = ctx.odds_client or OddsAPIClient()
    events = _slate_events(db, ctx.season, ctx.week, upcoming_only=True)
    by_teams = {(e.home_team.lower(), e.away_team.lower()): e.id for e in events}

    started = time.monotonic()
    raw = client.get_cfb_odds()
    matched = match_events(raw, by_teams)

    written = 0
    for event_id, payload in matched:
        for tick in parse_odds_event(payload, event_id, ctx.now):
            db.add(OddsTickRow(
                event_id=tick.event_id,
                sportsbook_id=tick.sportsbook_id,
                market_type=tick.market_type,
                side=tick.side,
                spread_points_home=tick.spread_points_home,
                total_points=tick.total_points,
                price_american=tick.price_american,
                captured_at=tick.captured_at,
            ))
            written += 1

    _log_fetch(db, "odds_api", bool(raw), written, None if raw else "no odds returned", started)
    db.commit()
    return {"api_events": len(raw), "events_matched": len(matched), "ticks": written}


def _rating_snapshots(db: Session, season: int) -> List[TeamRatingSnapshot]:
    rows = db.query(TeamRating).filter(TeamRating.season == season).all()
    return [
        TeamRatingSnapshot(teamId=r.team, season=r.season, rating=r.rating, gamesPlayed=r.games_played or 0)
        for r in rows
    ]


def run_model(db: Session, ctx: PipelineContext) -> Dict:
    model = ProjectionModel(ctx.config)
    engine = model.engine

    snapshots = _rating_snapshots(db, ctx.season)
    if snapshots:
        state = engine.from_snapshots(ctx.season, snapshots)
    else:
        prior = engine.from_snapshots(ctx.season - 1, _rating_snapshots(db, ctx.season - 1))
        state = engine.season_reset(prior, ctx.season)
        logger.warning("No %s ratings stored; using regressed %s ratings", ctx.season, ctx.season - 1)

    completed = (
        db.query(Event)
        .filter(Event.season == ctx.season, Event.week < ctx.week, Event.completed == True)  # noqa: E712
        .all()
    )
    stats = scoring_stats_from_games(
        GameRecord(
            id=e.id, season=e.season, week=e.week, homeTeamId=e.home_team, awayTeamId=e.away_team,
            kickoff=e.kickoff, homeScore=e.home_score, awayScore=e.away_score,
        )
        for e in completed
    )

    version = ctx.config.version.value
    written = 0
    for event in _slate_events(db, ctx.season, ctx.week, upcoming_only=True):
        projection = model.project(game_context(event), state, stats, neutral_site=bool(event.neutral_site))
        row = (
            db.query(Projection)
            .filter(Projection.event_id == event.id, Projection.model_version == version)
            .first()
        )
        if row is None:
            row = Projection(event_id=event.id, model_version=version)
            db.add(row)
        row.config_identity = ctx.config.identity
        row.model_spread_home = projection.model_spread_home
        row.model_total_points = projection.model_total_points
        row.confidence = projection.confidence
        row.components = projection.components
        row.data_quality = projection.data_quality
        written += 1

    db.commit()
    return {"projections": written, "rated_teams": len(state.ratings), "teams_with_scoring": len(stats)}


def check_coverage(db: Session, ctx: PipelineContext, threshold: float = COVERAGE_THRESHOLD) -> float:
    """Share of upcoming slate events with a projection for the active version.

    An empty slate has nothing to cover and passes with 1.0.

    Raises:
        CoverageGateError: coverage below *threshold*.
    """
    events = _slate_events(db, ctx.season, ctx.week, upcoming_only=True)
    if not events:
        return 1.0
    ids = [e.id for e in events]
    projected = (
        db.query(Projection.event_id)
        .filter(
            Projection.event_id.in_(ids),
            Projection.model_version == ctx.config.version.value,
        )
        .distinct()
        .count()
    )
    coverage = projected / len(events)
    if coverage < threshold:
        raise CoverageGateError(coverage, threshold, projected, len(events))
    return coverage


def _latest_qb_statuses(db: Session, season: int, week: int) -> Dict[str, QBStatus]:
    rows = (
        db.query(QBStatusRow)
        .filter(QBStatusRow.season == season, QBStatusRow.week == week)
        .order_by(QBStatusRow.as_of.asc())
        .all()
    )
    # Later rows overwrite earlier ones.
    return {
        r.team.lower(): QBStatus(team=r.team, season=r.season, week=r.week, status=r.status, as_of=r.as_of)
        for r in rows
    }


# ---------------------------------------------------------------------------
# Game context from stored schedule
# ---------------------------------------------------------------------------

def _completed(db: Session):
    return db.query(Event).filter(Event.completed == True)  # noqa: E712


def previous_game(db: Session, team: str, season: int, before: datetime) -> Optional[Event]:
    return (
        _completed(db)
        .filter(
            Event.season == season,
            Event.kickoff < before,
            or_(Event.home_team == team, Event.away_team == team),
        )
        .order_by(Event.kickoff.desc())
        .first()
    )


def margin_for(event: Event, team: str) -> Optional[int]:
    """Final margin from *team*'s side; ``None`` without a score."""
    if event.home_score is None or event.away_score is None:
        return None
    margin = event.home_score - event.away_score
    return margin if event.home_team == team else -margin


def lost_last_season(db: Session, team: str, opponent: str, season: int) -> bool:
    meeting = (
        _completed(db)
        .filter(
            Event.season == season - 1,
            or_(
                and_(Event.home_team == team, Event.away_team == opponent),
                and_(Event.home_team == opponent, Event.away_team == team),
            ),
        )
        .order_by(Event.kickoff.desc())
        .first()
    )
    if meeting is None:
        return False
    margin = margin_for(meeting, team)
    return margin is not None and margin < 0


def utc_offset_hours(time_zone: Optional[str], at: datetime) -> Optional[int]:
    if not time_zone:
        return None
    try:
        offset = ZoneInfo(time_zone).utcoffset(at)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        logger.warning("Unknown time zone %r: %s", time_zone, exc)
        return None
    return int(offset.total_seconds() // 3600)


def team_situation(
    db: Session,
    event: Event,
    team: str,
    opponent: str,
    location: Optional[TeamLocation],
) -> TeamSituation:
    """Rest, margin and revenge come from stored games; a season opener has no rest figure."""
    prev = previous_game(db, team, event.season, event.kickoff)
    return TeamSituation(
        team=team,
        rest_days=(event.kickoff - prev.kickoff).days if prev is not None else None,
        latitude=location.latitude if location else None,
        longitude=location.longitude if location else None,
        timezone_offset=utc_offset_hours(location.time_zone, event.kickoff) if location else None,
        last_game_margin=margin_for(prev, team) if prev is not None else None,
        lost_to_opponent_last_season=lost_last_season(db, team, opponent, event.season),
    )


def situational_input(db: Session, event: Event, locations: Dict[str, TeamLocation]) -> SituationalInput:
    return SituationalInput(
        home=team_situation(db, event, event.home_team, event.away_team, locations.get(event.home_team.lower())),
        away=team_situation(db, event, event.away_team, event.home_team, locations.get(event.away_team.lower())),
        neutral_site=bool(event.neutral_site),
    )


def plays_per_game(db: Session, ctx: PipelineContext) -> Dict[str, float]:
    """Season-to-date offensive plays per game, keyed by lower-cased team.

    Snap totals come from CFBD through the previous week; games played are
    counted from the stored schedule over the same weeks.
    """
    if ctx.week <= 1:
        return {}
    games: Dict[str, int] = {}
    for e in _completed(db).filter(Event.season == ctx.season, Event.week < ctx.week):
        for team in (e.home_team.lower(), e.away_team.lower()):
            games[team] = games.get(team, 0) + 1

    pace: Dict[str, float] = {}
    for t in ctx.cfbd.fetch_offense_plays(ctx.season, end_week=ctx.week - 1):
        played = games.get(t.team.lower())
        if played:
            pace[t.team.lower()] = round(t.offense_plays / played, 1)
    return pace


def upsert_edge(db: Session, edge, decision, explain: Dict, config: ModelConfig) -> EdgeRecord:
    row = (
        db.query(EdgeRecord)
        .filter(
            EdgeRecord.event_id == edge.event_id,
            EdgeRecord.sportsbook_id == edge.sportsbook_id,
            EdgeRecord.market_type == edge.market_type,
        )
        .first()
    )
    if row is None:
        row = EdgeRecord(event_id=edge.event_id, sportsbook_id=edge.sportsbook_id, market_type=edge.market_type)
        db.add(row)
    row.season = edge.season
    row.week = edge.week
    row.market_line = edge.market_line
    row.model_line = edge.model_line
    row.edge_points = edge.raw_edge
    row.capped_edge = edge.capped_edge
    row.effective_edge = edge.effective_edge
    row.uncertainty = edge.uncertainty
    row.recommended_side = edge.side
    row.percentile = edge.percentile
    row.qualifies = decision.should_bet
    row.config_identity = config.identity
    row.explain = explain
    return row


def materialize_edges(db: Session, ctx: PipelineContext) -> Dict:
    events = _slate_events(db, ctx.season, ctx.week, upcoming_only=True)
    if not events:
        return {"edges_written": 0, "bettable": 0}
    ids = [e.id for e in events]
    version = ctx.config.version.value

    projections = {
        p.event_id: projection_from_row(p)
        for p in db.query(Projection).filter(Projection.event_id.in_(ids), Projection.model_version == version)
    }
    ticks = [tick_from_row(r) for r in db.query(OddsTickRow).filter(OddsTickRow.event_id.in_(ids)).all()]
    books_by_event: Dict[str, set] = {}
    for t in ticks:
        books_by_event.setdefault(t.event_id, set()).add(t.sportsbook_id)

    qb = _latest_qb_statuses(db, ctx.season, ctx.week)
    locations = {loc.team.lower(): loc for loc in ctx.cfbd.fetch_team_locations(ctx.season)}
    pace = plays_per_game(db, ctx)
    priors = {p.team.lower(): p for p in ctx.cfbd.fetch_returning_production(ctx.season)}
    quartiles = returning_quartiles(priors.values())
    weather = index_by_matchup(fetch_weather(ctx.season, ctx.week))
    injuries = (ctx.injury_service or get_injury_service()).fetch_injuries()

    evaluations = []
    for event in events:
        game = game_context(event)
        markets = []
        for book in sorted(books_by_event.get(event.id, ())):
            for market_type in MARKET_TYPES:
                line = build_market_line(ticks, event.id, book, market_type)
                if line is not None:
                    markets.append(line)
        home, away = event.home_team.lower(), event.away_team.lower()
        home_priors, away_priors = priors.get(home), priors.get(away)
        inputs = GameInputs(
            game=game,
            projection=projections.get(event.id),
            markets=markets,
            home_qb=qb.get(home) or QBStatus.unknown(event.home_team, ctx.season, ctx.week),
            away_qb=qb.get(away) or QBStatus.unknown(event.away_team, ctx.season, ctx.week),
            home_priors=home_priors,
            away_priors=away_priors,
            weather=weather.get((home, away)),
            injuries=analyze_injuries(event.home_team, event.away_team, injuries) if injuries else None,
            situational=situational_input(db, event, locations),
            home_roster=home_priors.roster_continuity() if home_priors else None,
            away_roster=away_priors.roster_continuity() if away_priors else None,
            home_plays=pace.get(home),
            away_plays=pace.get(away),
        )
        evaluations.append(evaluate_game(inputs, ctx.config, quartiles))

    slate = decide_slate(evaluations, ctx.config, ctx.season, ctx.week)
    by_event = {ev.inputs.game.event_id: ev for ev in evaluations}
    for entry in slate.entries:
        edge = entry.candidate.edge
        explain = build_explain(edge, entry.decision, by_event[edge.event_id], ctx.config)
        upsert_edge(db, edge, entry.decision, explain, ctx.config)
    db.commit()

    bets = record_slate_bets(db, slate, ctx.config)
    return {"edges_written": slate.total_games, "bettable": len(slate.bettable), "bets_recorded": bets}


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class PipelineRunner:
    """Runs the steps for one slate.  Each step gets its own session."""

    def __init__(
        self,
        ctx: PipelineContext,
        session_factory: Callable[[], Session] = SessionLocal,
        timeouts: Optional[Dict[str, float]] = None,
        coverage_threshold: float = COVERAGE_THRESHOLD,
    ):
        self.ctx = ctx
        self.session_factory = session_factory
        self.timeouts = {**STEP_TIMEOUTS, **(timeouts or {})}
        self.coverage_threshold = coverage_threshold

    def _in_session(self, step: Callable[[Session, PipelineContext], Dict]) -> Callable[[], Dict]:
        def call() -> Dict:
            db = self.session_factory()
            try:
                return step(db, self.ctx)
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()
        return call

    def _step(self, name: str, step: Callable[[Session, PipelineContext], Dict]) -> StepResult:
        return run_step(name, self._in_session(step), self.timeouts[name])

    def run(self) -> Dict:
        ctx = self.ctx
        run_key = make_run_key(ctx.season, ctx.week, ctx.config.version.value)
        summary: Dict = {
            "run_key": run_key,
            "status": "running",
            "config": ctx.config.identity,
            "coverage": None,
            "edges_written": 0,
            "steps": [],
            "errors": [],
        }

        db = self.session_factory()
        try:
            try:
                run = acquire_run_lock(db, ctx, run_key)
            except SlateLockedError as exc:
                logger.warning("Pipeline %s skipped: %s", run_key, exc)
                summary["status"] = "locked"
                summary["errors"].append(str(exc))
                return summary

            logger.info("Pipeline %s started (%s)", run_key, ctx.config.identity)
            try:
                self._execute(db, summary)
            except Exception as exc:
                logger.error("Pipeline %s aborted: %s", run_key, exc, exc_info=True)
                db.rollback()
                summary["status"] = "failed"
                summary["errors"].append(f"aborted: {exc}")

            release_run_lock(db, run, summary)
            logger.info(
                "Pipeline %s finished: %s, coverage=%s, edges=%d",
                run_key, summary["status"], summary["coverage"], summary["edges_written"],
            )
            return summary
        finally:
            db.close()

    def _execute(self, db: Session, summary: Dict) -> None:
        ctx = self.ctx
        results = [
            self._step("sync_events", sync_events),
            self._step("poll_odds", poll_odds),
            self._step("run_model", run_model),
        ]
        summary["steps"] = [r.to_dict() for r in results]

        gate_failed = False
        try:
            summary["coverage"] = round(check_coverage(db, ctx, self.coverage_threshold), 4)
            _log_fetch(db, "coverage_gate", True, 0)
            db.commit()
        except CoverageGateError as exc:
            gate_failed = True
            summary["coverage"] = round(exc.coverage, 4)
            summary["errors"].append(str(exc))
            _log_fetch(db, "coverage_gate", False, exc.projected, str(exc))
            db.commit()
            logger.error("Pipeline %s: %s", summary["run_key"], exc)

        if not gate_failed:
            materialize = self._step("materialize_edges", materialize_edges)
            results.append(materialize)
            summary["edges_written"] = materialize.detail.get("edges_written", 0)

        summary["steps"] = [r.to_dict() for r in results]
        summary["errors"].extend(f"{r.name}: {r.error}" for r in results if not r.success)
        if gate_failed or not any(r.success for r in results):
            summary["status"] = "failed"
        elif all(r.success for r in results):
            summary["status"] = "success"
        else:
            summary["status"] = "partial"


def run_pipeline(
    season: Optional[int] = None,
    week: Optional[int] = None,
    version: Optional[str] = None,
) -> Dict:
    """Scheduler and admin entry point for the current (or given) slate."""
    today = date.today()
    season = season if season is not None else current_season(today)
    week = week if week is not None else week_from_date(today, season)
    config = ModelConfig.for_version(version or os.getenv("MODEL_VERSION", DEFAULT_MODEL_VERSION.value))
    ctx = PipelineContext(season=season, week=week, config=config, cfbd=CFBDClient())
    return PipelineRunner(ctx).run()
