"""
FastAPI application for the CFB edge engine.
Serves materialized edges and bet slips, runs the weekly pipeline on a
schedule, and exposes monitoring reports and alerts.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import or_, text
from sqlalchemy.orm import Session

from edge_engine.auth import verify_admin_api_key, verify_api_key
from edge_engine.models import (
    BetRecord,
    EdgeRecord,
    Event,
    MonitoringAlertRow,
    QBStartedRow,
    QBStatusRow,
    get_db,
    init_db,
)
from edge_engine.schemas import (
    BetSlipResponse,
    EdgeRecordResponse,
    GradeRequest,
    PipelineRunResponse,
    QBStatusRecord,
)
from edge_engine.services.alerts import recent_alerts, run_alert_check
from edge_engine.services.bet_tracker import grade_bet_by_id, grade_completed_bets
from edge_engine.services.monitoring import format_daily_report, generate_monitoring_report
from edge_engine.services.pipeline import current_season, run_pipeline

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting CFB edge engine")
    init_db()

    pipeline_hour = int(os.getenv("PIPELINE_CRON_HOUR", "6"))
    timezone = os.getenv("PIPELINE_CRON_TIMEZONE", "America/New_York")

    scheduler.add_job(
        pipeline_job,
        CronTrigger(hour=pipeline_hour, minute=0, timezone=timezone),
        id="weekly_pipeline",
        name="Slate Pipeline",
        replace_existing=True,
    )

    # Grade finished games every 2 hours
    scheduler.add_job(
        _grade_bets_job,
        IntervalTrigger(hours=2),
        id="grade_bets",
        name="Grade Completed Bets",
        replace_existing=True,
    )

    scheduler.add_job(
        _alert_check_job,
        IntervalTrigger(hours=6),
        id="alert_check",
        name="Monitoring Alert Check",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started: pipeline@%02d:00 %s, grading every 2h, alerts every 6h", pipeline_hour, timezone)

    yield

    logger.info("Shutting down CFB edge engine")
    scheduler.shutdown()


app = FastAPI(
    title="CFB Edge Engine",
    description="Market-calibrated college football edge decisions",
    version="3.0",
    lifespan=lifespan,
)


# ============================================================================
# SCHEDULED JOBS
# ============================================================================

def pipeline_job():
    logger.info("Starting scheduled pipeline run")
    try:
        summary = run_pipeline()
        logger.info("Pipeline run %s: %s", summary["run_key"], summary["status"])
    except Exception as exc:
        logger.error("Pipeline job failed: %s", exc, exc_info=True)


def _grade_bets_job():
    try:
        results = grade_completed_bets()
        logger.info("Grading: %s", results)
    except Exception as exc:
        logger.error("Grading job failed: %s", exc, exc_info=True)


def _alert_check_job():
    try:
        run_alert_check()
    except Exception as exc:
        logger.error("Alert check job failed: %s", exc, exc_info=True)


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    health = {"status": "healthy", "database": "connected", "scheduler": "running"}

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {e}"

    if not scheduler.running:
        health["status"] = "degraded"
        health["scheduler"] = "stopped"

    return health


# ============================================================================
# AUTHENTICATED ENDPOINTS - EDGES & SLIPS
# ============================================================================

@app.get("/api/edges", response_model=List[EdgeRecordResponse])
async def get_edges(
    season: int,
    week: int = Query(..., ge=0, le=15),
    market_type: Optional[str] = Query(default=None, pattern="^(spread|total)$"),
    qualifies_only: bool = False,
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Materialized edges for a slate, best percentile first."""
    query = db.query(EdgeRecord).filter(EdgeRecord.season == season, EdgeRecord.week == week)
    if market_type:
        query = query.filter(EdgeRecord.market_type == market_type)
    if qualifies_only:
        query = query.filter(EdgeRecord.qualifies == True)  # noqa: E712
    return query.order_by(EdgeRecord.percentile.asc(), EdgeRecord.event_id.asc()).all()


@app.get("/api/slate/{season}/{week}/slips", response_model=List[BetSlipResponse])
async def get_bet_slips(
    season: int,
    week: int,
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Bet slips recorded for a slate."""
    bets = (
        db.query(BetRecord)
        .filter(BetRecord.season == season, BetRecord.week == week)
        .order_by(BetRecord.percentile.asc(), BetRecord.event_id.asc())
        .all()
    )
    return [
        BetSlipResponse(
            game_key=b.game_key,
            event_id=b.event_id,
            market_type=b.market_type,
            side=b.side,
            team=b.team,
            spread_at_bet=b.spread_at_bet,
            effective_edge=b.effective_edge,
            raw_edge=b.raw_edge,
            uncertainty=b.uncertainty,
            percentile=b.percentile,
            confidence=b.confidence,
            warnings=b.warnings or [],
            model=b.config_identity,
        )
        for b in bets
    ]


# ============================================================================
# AUTHENTICATED ENDPOINTS - MONITORING
# ============================================================================

@app.get("/api/monitoring/report")
async def get_monitoring_report(
    season: Optional[int] = None,
    format: str = Query(default="json", pattern="^(json|text)$"),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Season performance report; ``format=text`` returns the daily report."""
    season = season or current_season(datetime.utcnow().date())
    min_bets = int(os.getenv("MONITOR_MIN_BETS", "30"))
    report = generate_monitoring_report(db, season, min_bets=min_bets)
    if format == "text":
        return PlainTextResponse(format_daily_report(report))
    return report


@app.get("/api/monitoring/alerts")
async def get_monitoring_alerts(
    hours: int = Query(default=168, ge=1, le=24 * 90),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    rows = recent_alerts(db, hours=hours)
    return {
        "alerts": [
            {
                "id": a.id,
                "type": a.type,
                "category": a.category,
                "metric": a.metric,
                "message": a.message,
                "value": a.value,
                "threshold": a.threshold,
                "acknowledged": a.acknowledged,
                "created_at": a.created_at.isoformat(),
            }
            for a in rows
        ],
        "critical": sum(1 for a in rows if a.type == "critical" and not a.acknowledged),
    }


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.post("/admin/run-pipeline", response_model=PipelineRunResponse)
def trigger_pipeline(
    season: Optional[int] = None,
    week: Optional[int] = Query(default=None, ge=0, le=15),
    user: str = Depends(verify_admin_api_key),
):
    """Run the pipeline for a slate synchronously (admin only)."""
    logger.info("Manual pipeline run triggered by %s (season=%s week=%s)", user, season, week)
    summary = run_pipeline(season=season, week=week)
    return PipelineRunResponse(**{k: summary[k] for k in PipelineRunResponse.model_fields})


@app.post("/admin/grade-bets/{bet_id}")
async def grade_bet(
    bet_id: int,
    body: GradeRequest,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    """Grade one bet with a final score (admin only)."""
    try:
        bet = grade_bet_by_id(db, bet_id, body.home_score, body.away_score, body.closing_line)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {
        "bet_id": bet.id,
        "result": bet.result,
        "closing_line": bet.closing_line,
        "clv_points": bet.clv_points,
        "clv_prob": bet.clv_prob,
    }


@app.post("/admin/qb-status")
async def record_qb_status(
    body: QBStatusRecord,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    """Record pre-kickoff QB availability; reports stamped at or after kickoff are rejected."""
    event = (
        db.query(Event)
        .filter(
            Event.season == body.season,
            Event.week == body.week,
            or_(Event.home_team == body.team, Event.away_team == body.team),
        )
        .first()
    )
    if event is not None and body.as_of >= event.kickoff:
        raise HTTPException(status_code=422, detail="QB status must be stamped before kickoff")

    row = QBStatusRow(
        team=body.team,
        season=body.season,
        week=body.week,
        status=body.status,
        player_name=body.player_name,
        as_of=body.as_of,
    )
    db.add(row)
    db.commit()
    logger.info("QB status %s week %d: %s (%s)", body.team, body.week, body.status, user)
    return {"id": row.id, "team": row.team, "status": row.status}


@app.post("/admin/qb-started/{event_id}")
async def record_qb_started(
    event_id: str,
    team: str,
    player_name: Optional[str] = None,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    """Post-game starter record, stored apart from QB status and never read by the model."""
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    row = QBStartedRow(
        event_id=event.id, team=team, season=event.season, week=event.week, player_name=player_name,
    )
    db.add(row)
    db.commit()
    return {"id": row.id, "event_id": event.id, "team": team}


@app.post("/admin/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: int,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    alert = db.query(MonitoringAlertRow).filter(MonitoringAlertRow.id == alert_id).first()
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    alert.acknowledged = True
    alert.acknowledged_at = datetime.utcnow()
    db.commit()
    return {"message": "Alert acknowledged", "alert_id": alert_id}


@app.get("/admin/scheduler/status")
async def get_scheduler_status(user: str = Depends(verify_admin_api_key)):
    jobs = [
        {
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
        }
        for job in scheduler.get_jobs()
    ]
    return {"running": scheduler.running, "jobs": jobs}


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": type(exc).__name__}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
