"""
Performance monitoring over graded bets.

Every metric function takes an iterable of graded ``BetRecord`` rows (or
anything exposing the same attributes) and returns plain dicts, so the same
code serves the API, the scheduler and offline analysis.

Metrics:

    performance by percentile bucket   top5 / top10 / top20 / all
    performance by week range          weeks 1-4 vs 5-16
    CLV                                canonical sign, see clv.py
    edge persistence                   did the edge direction survive the close

Alerts fire only once the sample gate is met: at least ``MIN_BETS`` graded
bets *and* ``MIN_WEEKS`` distinct weeks.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from sqlalchemy.orm import Session

from edge_engine.core.odds_math import roi_at_standard_price
from edge_engine.models import BetRecord
from edge_engine.services.clv import clv_points, closing_edge_persisted

logger = logging.getLogger(__name__)

MIN_BETS = 30
MIN_WEEKS = 4

TOP5_MIN_WIN_RATE = 0.52
SUSTAINED_WEEKS = 3
MIN_CLV_CAPTURE_RATE = 0.45
MIN_EDGE_PERSISTENCE = 0.40
MAX_SEASON_DIVERGENCE = 0.15
MIN_BETS_PER_HALF = 5

PERCENTILE_BUCKETS: Tuple[Tuple[str, float], ...] = (
    ("top5", 0.05),
    ("top10", 0.10),
    ("top20", 0.20),
    ("all", 1.0),
)
WEEK_RANGES: Tuple[Tuple[str, int, int], ...] = (
    ("weeks_1_4", 0, 4),
    ("weeks_5_16", 5, 16),
)

_COLUMNS = [
    "id", "season", "week", "market_type", "side", "percentile", "result",
    "spread_at_bet", "closing_line", "model_line", "effective_edge",
]


@dataclass
class MonitoringAlert:
    type: str          # critical | warning | info
    category: str      # performance | clv | data
    message: str
    metric: str
    value: float
    threshold: float

    def to_dict(self) -> Dict:
        return {
            "type": self.type,
            "category": self.category,
            "message": self.message,
            "metric": self.metric,
            "value": self.value,
            "threshold": self.threshold,
        }


# ---------------------------------------------------------------------------
# Frame helpers
# ---------------------------------------------------------------------------

def bets_frame(bets: Iterable) -> pd.DataFrame:
    """Graded bets as a DataFrame; ungraded rows are dropped."""
    rows = [{col: getattr(b, col, None) for col in _COLUMNS} for b in bets]
    df = pd.DataFrame(rows, columns=_COLUMNS)
    return df[df["result"].notna()].reset_index(drop=True)


def _summarise(df: pd.DataFrame) -> Dict:
    wins = int((df["result"] == "win").sum())
    losses = int((df["result"] == "loss").sum())
    pushes = int((df["result"] == "push").sum())
    decided = wins + losses
    win_rate = wins / decided if decided else 0.0
    return {
        "bets": len(df),
        "wins": wins,
        "losses": losses,
        "pushes": pushes,
        "win_rate": round(win_rate, 4),
        "roi": round(roi_at_standard_price(win_rate), 4) if decided else 0.0,
    }


def _in_bucket(df: pd.DataFrame, max_percentile: float) -> pd.DataFrame:
    if max_percentile >= 1.0:
        return df
    return df[df["percentile"].notna() & (df["percentile"] <= max_percentile)]


# ---------------------------------------------------------------------------
# Performance
# ---------------------------------------------------------------------------

def performance_by_bucket(bets: Iterable) -> Dict[str, Dict]:
    df = bets if isinstance(bets, pd.DataFrame) else bets_frame(bets)
    return {name: _summarise(_in_bucket(df, cutoff)) for name, cutoff in PERCENTILE_BUCKETS}


def performance_by_week_range(bets: Iterable, max_percentile: float = 0.05) -> Dict[str, Dict]:
    df = bets if isinstance(bets, pd.DataFrame) else bets_frame(bets)
    df = _in_bucket(df, max_percentile)
    return {
        name: _summarise(df[(df["week"] >= lo) & (df["week"] <= hi)])
        for name, lo, hi in WEEK_RANGES
    }


def weekly_win_rates(bets: Iterable, max_percentile: float = 0.05) -> List[Dict]:
    """Per-week summaries for one bucket, in week order."""
    df = bets if isinstance(bets, pd.DataFrame) else bets_frame(bets)
    df = _in_bucket(df, max_percentile)
    return [{"week": int(week), **_summarise(group)} for week, group in df.groupby("week", sort=True)]


# ---------------------------------------------------------------------------
# CLV and persistence
# ---------------------------------------------------------------------------

def clv_metrics(bets: Iterable) -> Dict:
    df = bets if isinstance(bets, pd.DataFrame) else bets_frame(bets)
    df = df[df["closing_line"].notna() & df["spread_at_bet"].notna()]
    if df.empty:
        return {"bets_with_close": 0, "avg_clv": 0.0, "capture_rate": 0.0, "avg_abs_movement": 0.0}

    values = pd.Series(
        [clv_points(r.side, r.spread_at_bet, r.closing_line) for r in df.itertuples()],
        dtype=float,
    )
    movement = (df["closing_line"] - df["spread_at_bet"]).abs()
    return {
        "bets_with_close": len(values),
        "avg_clv": round(float(values.mean()), 3),
        "capture_rate": round(float((values > 0).mean()), 4),
        "avg_abs_movement": round(float(movement.mean()), 3),
    }


def edge_persistence(bets: Iterable) -> Dict:
    df = bets if isinstance(bets, pd.DataFrame) else bets_frame(bets)
    df = df[df["model_line"].notna() & df["closing_line"].notna() & df["effective_edge"].notna()]
    flags = [
        closing_edge_persisted(r.market_type, r.model_line, r.closing_line, r.effective_edge)
        for r in df.itertuples()
    ]
    known = [f for f in flags if f is not None]
    persisted = sum(1 for f in known if f)
    return {
        "measured": len(known),
        "persisted": persisted,
        "rate": round(persisted / len(known), 4) if known else 0.0,
    }


# ---------------------------------------------------------------------------
# Gate and alerts
# ---------------------------------------------------------------------------

def sample_gate(df: pd.DataFrame, min_bets: int = MIN_BETS, min_weeks: int = MIN_WEEKS) -> Dict:
    weeks = int(df["week"].nunique()) if not df.empty else 0
    return {
        "bets": len(df),
        "weeks": weeks,
        "min_bets": min_bets,
        "min_weeks": min_weeks,
        "met": len(df) >= min_bets and weeks >= min_weeks,
    }


def _sustained_below(weekly: Sequence[Dict], threshold: float, run: int) -> bool:
    rates = [w["win_rate"] for w in weekly if w["wins"] + w["losses"] > 0]
    if len(rates) < run:
        return False
    return all(r < threshold for r in rates[-run:])


def check_alerts(bets: Iterable, min_bets: int = MIN_BETS) -> List[MonitoringAlert]:
    """Threshold alerts for a season of graded bets; empty below the sample gate."""
    df = bets if isinstance(bets, pd.DataFrame) else bets_frame(bets)
    if not sample_gate(df, min_bets=min_bets)["met"]:
        return []

    alerts: List[MonitoringAlert] = []
    top5 = performance_by_bucket(df)["top5"]
    if top5["wins"] + top5["losses"] > 0 and top5["win_rate"] < TOP5_MIN_WIN_RATE:
        alerts.append(MonitoringAlert(
            type="critical",
            category="performance",
            message=f"Top 5% win rate {top5['win_rate'] * 100:.1f}% below 52% threshold",
            metric="top5_win_rate",
            value=top5["win_rate"],
            threshold=TOP5_MIN_WIN_RATE,
        ))

    weekly = weekly_win_rates(df)
    if _sustained_below(weekly, TOP5_MIN_WIN_RATE, SUSTAINED_WEEKS):
        latest = [w for w in weekly if w["wins"] + w["losses"] > 0][-1]
        alerts.append(MonitoringAlert(
            type="critical",
            category="performance",
            message=f"Top 5% win rate below 52% for {SUSTAINED_WEEKS} consecutive weeks",
            metric="top5_win_rate_sustained",
            value=latest["win_rate"],
            threshold=TOP5_MIN_WIN_RATE,
        ))

    clv = clv_metrics(df)
    if clv["bets_with_close"] and clv["capture_rate"] < MIN_CLV_CAPTURE_RATE:
        alerts.append(MonitoringAlert(
            type="warning",
            category="clv",
            message=f"CLV capture rate {clv['capture_rate'] * 100:.1f}% below 45% threshold",
            metric="clv_capture_rate",
            value=clv["capture_rate"],
            threshold=MIN_CLV_CAPTURE_RATE,
        ))

    persistence = edge_persistence(df)
    if persistence["measured"] and persistence["rate"] < MIN_EDGE_PERSISTENCE:
        alerts.append(MonitoringAlert(
            type="warning",
            category="clv",
            message=f"Edge persistence {persistence['rate'] * 100:.1f}% below 40% threshold",
            metric="edge_persistence",
            value=persistence["rate"],
            threshold=MIN_EDGE_PERSISTENCE,
        ))

    ranges = performance_by_week_range(df)
    early, late = ranges["weeks_1_4"], ranges["weeks_5_16"]
    if early["bets"] >= MIN_BETS_PER_HALF and late["bets"] >= MIN_BETS_PER_HALF:
        divergence = abs(early["win_rate"] - late["win_rate"])
        if divergence > MAX_SEASON_DIVERGENCE:
            alerts.append(MonitoringAlert(
                type="warning",
                category="performance",
                message=(
                    f"Early season ({early['win_rate'] * 100:.1f}%) vs late season "
                    f"({late['win_rate'] * 100:.1f}%) divergence exceeds 15%"
                ),
                metric="season_divergence",
                value=round(divergence, 4),
                threshold=MAX_SEASON_DIVERGENCE,
            ))

    for alert in alerts:
        logger.warning("Monitoring alert [%s] %s", alert.type, alert.message)
    return alerts


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def build_report(bets: Iterable, season: Optional[int] = None, min_bets: int = MIN_BETS) -> Dict:
    df = bets if isinstance(bets, pd.DataFrame) else bets_frame(bets)
    return {
        "season": season,
        "overall": _summarise(df),
        "by_bucket": performance_by_bucket(df),
        "by_week_range": performance_by_week_range(df),
        "by_week": weekly_win_rates(df),
        "clv": clv_metrics(df),
        "edge_persistence": edge_persistence(df),
        "sample_gate": sample_gate(df, min_bets=min_bets),
        "alerts": [a.to_dict() for a in check_alerts(df, min_bets=min_bets)],
    }


def fetch_graded_bets(db: Session, season: Optional[int] = None) -> List:
    q = db.query(BetRecord).filter(BetRecord.result.isnot(None))
    if season is not None:
        q = q.filter(BetRecord.season == season)
    return q.order_by(BetRecord.week.asc()).all()


def generate_monitoring_report(db: Session, season: int, min_bets: int = MIN_BETS) -> Dict:
    report = build_report(fetch_graded_bets(db, season), season=season, min_bets=min_bets)
    logger.info(
        "Monitoring report %s: %d graded bets, %d alerts",
        season, report["overall"]["bets"], len(report["alerts"]),
    )
    return report


def format_daily_report(report: Dict) -> str:
    lines = [f"=== DAILY MONITORING REPORT: {report['season']} ===", ""]

    lines.append("PERFORMANCE:")
    for name, _ in PERCENTILE_BUCKETS:
        p = report["by_bucket"][name]
        lines.append(
            f"  {name}: {p['wins']}-{p['losses']}-{p['pushes']} "
            f"({p['win_rate'] * 100:.1f}%, ROI {p['roi'] * 100:+.1f}%)"
        )
    lines.append("")

    lines.append("BY WEEK (TOP 5%):")
    for w in report["by_week"]:
        lines.append(f"  Week {w['week']}: {w['wins']}-{w['losses']} ({w['win_rate'] * 100:.1f}%)")
    lines.append("")

    clv = report["clv"]
    lines.append("CLV METRICS:")
    lines.append(f"  Avg CLV: {clv['avg_clv']:+.2f} pts")
    lines.append(f"  Capture rate: {clv['capture_rate'] * 100:.1f}%")
    lines.append(f"  Avg line movement: {clv['avg_abs_movement']:.2f} pts")
    lines.append("")

    pers = report["edge_persistence"]
    lines.append("EDGE PERSISTENCE:")
    lines.append(f"  {pers['persisted']}/{pers['measured']} ({pers['rate'] * 100:.1f}%)")
    lines.append("")

    lines.append("ALERTS:")
    gate = report["sample_gate"]
    if not gate["met"]:
        lines.append(
            f"  Sample gate not met ({gate['bets']}/{gate['min_bets']} bets, "
            f"{gate['weeks']}/{gate['min_weeks']} weeks)"
        )
    elif not report["alerts"]:
        lines.append("  None")
    for alert in report["alerts"]:
        lines.append(f"  [{alert['type'].upper()}] {alert['message']}")
    return "\n".join(lines) + "\n"
