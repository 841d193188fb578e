"""
Bet lifecycle: record approved slips, capture closing lines, grade results.

Scheduled job:
  grade_completed_bets()  - interval job: grade every open bet whose event
                            has a final score
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from edge_engine.core.config import ModelConfig
from edge_engine.core.odds_math import grade_bet
from edge_engine.core.types import BetSlip, EdgeResult
from edge_engine.models import BetRecord, Event, OddsTickRow, SessionLocal
from edge_engine.schemas import OddsTick
from edge_engine.services.clv import calculate_clv
from edge_engine.services.decision import BettingSlate, generate_bet_slips
from edge_engine.services.line_movement import build_market_line
from edge_engine.services.odds import tick_from_row

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Recording (pure construction + DB insert)
# ---------------------------------------------------------------------------

def build_bet_record(slip: BetSlip, edge: EdgeResult, price_american: int = -110) -> BetRecord:
    """An ungraded ``BetRecord`` for an approved slip and the edge behind it."""
    return BetRecord(
        event_id=slip.event_id,
        sportsbook_id=edge.sportsbook_id,
        market_type=slip.market_type,
        game_key=slip.game_key,
        season=edge.season,
        week=edge.week,
        side=slip.side,
        team=slip.team,
        spread_at_bet=slip.spread_at_bet,
        price_american=price_american,
        model_line=edge.model_line,
        raw_edge=slip.raw_edge,
        effective_edge=slip.effective_edge,
        uncertainty=slip.uncertainty,
        percentile=slip.percentile,
        confidence=slip.confidence,
        warnings=list(slip.warnings),
        config_identity=slip.model,
    )


def record_slate_bets(db: Session, slate: BettingSlate, config: ModelConfig) -> int:
    """Insert a ``BetRecord`` per approved slip.  Existing bets are left as placed."""
    slips = generate_bet_slips(slate, config)
    created = 0

    for entry, slip in zip(slate.bettable, slips):
        edge = entry.candidate.edge
        existing = (
            db.query(BetRecord)
            .filter(
                BetRecord.event_id == edge.event_id,
                BetRecord.sportsbook_id == edge.sportsbook_id,
                BetRecord.market_type == edge.market_type,
            )
            .first()
        )
        if existing:
            continue
        db.add(build_bet_record(slip, edge))
        created += 1

    db.commit()
    logger.info("Recorded %d new bets for %s week %s", created, slate.season, slate.week)
    return created


# ---------------------------------------------------------------------------
# Closing lines
# ---------------------------------------------------------------------------

def closing_line_from_ticks(
    ticks: Iterable[OddsTick],
    event_id: str,
    sportsbook_id: str,
    market_type: str,
    kickoff: datetime,
) -> Optional[float]:
    """Last quoted line at or before kickoff, or ``None`` with no such tick."""
    pre_kickoff = [t for t in ticks if t.captured_at <= kickoff]
    line = build_market_line(pre_kickoff, event_id, sportsbook_id, market_type)
    return line.current if line else None


def closing_line_for_bet(db: Session, bet: BetRecord, kickoff: datetime) -> Optional[float]:
    rows = (
        db.query(OddsTickRow)
        .filter(
            OddsTickRow.event_id == bet.event_id,
            OddsTickRow.sportsbook_id == bet.sportsbook_id,
            OddsTickRow.market_type == bet.market_type,
        )
        .all()
    )
    return closing_line_from_ticks(
        [tick_from_row(r) for r in rows], bet.event_id, bet.sportsbook_id, bet.market_type, kickoff
    )


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------

def apply_grade(
    bet: BetRecord,
    home_score: int,
    away_score: int,
    closing_line: Optional[float] = None,
) -> BetRecord:
    """Grade *bet* in place.  A bet is graded exactly once.

    Raises:
        ValueError: the bet already carries a result.
    """
    if bet.result is not None:
        raise ValueError(f"Bet {bet.id} already graded ({bet.result})")

    bet.result = grade_bet(bet.side, bet.spread_at_bet, home_score, away_score)
    bet.home_score = home_score
    bet.away_score = away_score
    if closing_line is not None:
        clv = calculate_clv(bet.market_type, bet.side, bet.spread_at_bet, closing_line)
        bet.closing_line = closing_line
        bet.clv_points = clv.clv_points
        bet.clv_prob = clv.clv_prob
    bet.graded_at = datetime.utcnow()
    return bet


def grade_bet_by_id(
    db: Session,
    bet_id: int,
    home_score: int,
    away_score: int,
    closing_line: Optional[float] = None,
) -> BetRecord:
    """Grade one bet.  Without an explicit closing line, the stored ticks supply it.

    Raises:
        LookupError: no bet with that id.
        ValueError: the bet is already graded.
    """
    bet = db.query(BetRecord).filter(BetRecord.id == bet_id).first()
    if bet is None:
        raise LookupError(f"Bet {bet_id} not found")

    if closing_line is None:
        event = db.query(Event).filter(Event.id == bet.event_id).first()
        if event is not None:
            closing_line = closing_line_for_bet(db, bet, event.kickoff)

    apply_grade(bet, home_score, away_score, closing_line)
    db.commit()
    logger.info(
        "%s: bet %d (%s %s %s) clv=%s",
        bet.result.upper(), bet.id, bet.game_key, bet.market_type, bet.side, bet.clv_points,
    )
    return bet


# ---------------------------------------------------------------------------
# Scheduled job
# ---------------------------------------------------------------------------

def grade_completed_bets() -> Dict:
    """Grade every open bet whose event is final.  Called by the scheduler."""
    logger.info("Starting grade_completed_bets")
    db = SessionLocal()

    graded = 0
    pushes = 0
    errors: List[str] = []

    try:
        open_bets = (
            db.query(BetRecord, Event)
            .join(Event, BetRecord.event_id == Event.id)
            .filter(
                BetRecord.result.is_(None),
                Event.home_score.isnot(None),
                Event.away_score.isnot(None),
            )
            .all()
        )
        for bet, event in open_bets:
            try:
                closing = closing_line_for_bet(db, bet, event.kickoff)
                apply_grade(bet, event.home_score, event.away_score, closing)
                if bet.result == "push":
                    pushes += 1
                else:
                    graded += 1
            except ValueError as exc:
                errors.append(f"Bet {bet.id}: {exc}")
                logger.error("Error grading bet %d: %s", bet.id, exc)
        db.commit()

    except Exception as exc:
        logger.error("Fatal error in grade_completed_bets: %s", exc, exc_info=True)
        db.rollback()
        errors.append(f"Fatal: {exc}")
    finally:
        db.close()

    summary = {
        "bets_graded": graded,
        "pushes": pushes,
        "errors": errors,
        "timestamp": datetime.utcnow().isoformat(),
    }
    logger.info("grade_completed_bets done: %s", summary)
    return summary
