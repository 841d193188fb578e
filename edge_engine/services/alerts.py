"""
Alert checking, persistence and dispatch.

Public API:
  check_season_alerts(db, season)  -> List[MonitoringAlert]
  check_data_alerts(db)            -> List[MonitoringAlert]
  persist_alerts(db, alerts)       -> int   (deduplicates within 24 h)
  send_alert(alert)                -> None  (webhook; skips if not configured)
  run_alert_check(season)          -> List[MonitoringAlert]  (scheduler entry point)
"""

import logging
import os
from datetime import date, datetime, timedelta
from typing import List, Optional

import requests
from sqlalchemy.orm import Session

from edge_engine.models import MonitoringAlertRow, PipelineRun, SessionLocal
from edge_engine.services.monitoring import (
    MIN_BETS,
    MonitoringAlert,
    check_alerts,
    fetch_graded_bets,
)
from edge_engine.services.pipeline import current_season

logger = logging.getLogger(__name__)

DEDUPE_WINDOW = timedelta(hours=24)
COVERAGE_THRESHOLD = float(os.getenv("COVERAGE_THRESHOLD", "0.95"))


# ---------------------------------------------------------------------------
# Alert logic
# ---------------------------------------------------------------------------

def check_season_alerts(db: Session, season: int) -> List[MonitoringAlert]:
    min_bets = int(os.getenv("MONITOR_MIN_BETS", str(MIN_BETS)))
    return check_alerts(fetch_graded_bets(db, season), min_bets=min_bets)


def check_data_alerts(db: Session) -> List[MonitoringAlert]:
    """Flag the most recent pipeline run if it failed its coverage gate."""
    run = db.query(PipelineRun).order_by(PipelineRun.started_at.desc()).first()
    if run is None or run.status != "failed" or run.coverage is None:
        return []
    if run.coverage >= COVERAGE_THRESHOLD:
        return []
    return [MonitoringAlert(
        type="warning",
        category="data",
        message=(
            f"Projection coverage {run.coverage * 100:.1f}% below "
            f"{COVERAGE_THRESHOLD * 100:.0f}% for run {run.run_key}"
        ),
        metric="projection_coverage",
        value=run.coverage,
        threshold=COVERAGE_THRESHOLD,
    )]


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def persist_alerts(db: Session, alerts: List[MonitoringAlert]) -> int:
    """
    Store alerts, deduplicating by metric within 24 hours.
    An unacknowledged alert for the same metric is refreshed in place.
    Returns the number of new rows.
    """
    cutoff = datetime.utcnow() - DEDUPE_WINDOW
    created = 0

    for alert in alerts:
        existing = (
            db.query(MonitoringAlertRow)
            .filter(
                MonitoringAlertRow.metric == alert.metric,
                MonitoringAlertRow.created_at >= cutoff,
                MonitoringAlertRow.acknowledged == False,  # noqa: E712
            )
            .first()
        )

        if existing:
            existing.message = alert.message
            existing.value = alert.value
        else:
            db.add(MonitoringAlertRow(
                type=alert.type,
                category=alert.category,
                message=alert.message,
                metric=alert.metric,
                value=alert.value,
                threshold=alert.threshold,
            ))
            created += 1

    db.commit()
    return created


def recent_alerts(db: Session, hours: int = 24 * 7) -> List[MonitoringAlertRow]:
    cutoff = datetime.utcnow() - timedelta(hours=hours)
    return (
        db.query(MonitoringAlertRow)
        .filter(MonitoringAlertRow.created_at >= cutoff)
        .order_by(MonitoringAlertRow.created_at.desc())
        .all()
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def send_alert(alert: MonitoringAlert, webhook_url: Optional[str] = None) -> None:
    """
    Post an alert to the configured webhook.
    Skips quietly when ALERT_WEBHOOK_URL is unset; delivery errors are logged.
    """
    url = webhook_url or os.getenv("ALERT_WEBHOOK_URL")
    if not url:
        logger.debug("Alert webhook not configured, skipping")
        return

    payload = {
        "text": f"CFB Edge {alert.type.upper()}: {alert.message}",
        **alert.to_dict(),
        "generated_at": datetime.utcnow().isoformat(),
    }
    try:
        resp = requests.post(url, json=payload, timeout=10)
        resp.raise_for_status()
        logger.info("Alert sent: %s", alert.metric)
    except requests.RequestException as exc:
        logger.error("Alert dispatch failed (%s): %s", alert.metric, exc)


# ---------------------------------------------------------------------------
# Scheduler entry point
# ---------------------------------------------------------------------------

def run_alert_check(season: Optional[int] = None) -> List[MonitoringAlert]:
    """
    Full alert pipeline: check, persist, send critical ones.
    Called by the interval job in main.
    """
    season = season or current_season(date.today())
    db = SessionLocal()
    try:
        alerts = check_season_alerts(db, season) + check_data_alerts(db)
        if alerts:
            persist_alerts(db, alerts)
            for a in alerts:
                if a.type == "critical":
                    send_alert(a)
            logger.info(
                "Alert check complete: %d alerts (%d critical)",
                len(alerts),
                sum(1 for a in alerts if a.type == "critical"),
            )
        return alerts
    finally:
        db.close()
