"""
Database models for the CFB edge engine.
SQLAlchemy ORM; SQLite by default, any SQLAlchemy URL via DATABASE_URL.
"""

import logging
import os
from datetime import datetime

from dotenv import load_dotenv
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./edge_engine.db")

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class Event(Base):
    """One CFB game, keyed by the provider's event id."""

    __tablename__ = "events"

    id = Column(String, primary_key=True, index=True)
    season = Column(Integer, nullable=False, index=True)
    week = Column(Integer, nullable=False, index=True)
    home_team = Column(String, nullable=False)
    away_team = Column(String, nullable=False)
    kickoff = Column(DateTime, nullable=False, index=True)
    neutral_site = Column(Boolean, default=False)

    # Filled after the game
    home_score = Column(Integer)
    away_score = Column(Integer)
    completed = Column(Boolean, default=False)

    odds_ticks = relationship("OddsTickRow", back_populates="event")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def game_key(self) -> str:
        return f"{self.away_team}@{self.home_team}"


class OddsTickRow(Base):
    """Append-only price snapshot for one event, book, market and side."""

    __tablename__ = "odds_ticks"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, ForeignKey("events.id"), nullable=False, index=True)
    sportsbook_id = Column(String, nullable=False, index=True)
    market_type = Column(String(10), nullable=False)  # spread | total
    side = Column(String(10), nullable=False)         # home | away | over | under
    spread_points_home = Column(Float)
    total_points = Column(Float)
    price_american = Column(Integer)
    captured_at = Column(DateTime, nullable=False, index=True)

    event = relationship("Event", back_populates="odds_ticks")


class TeamRating(Base):
    __tablename__ = "team_ratings"
    __table_args__ = (UniqueConstraint("team", "season", name="uq_team_rating"),)

    id = Column(Integer, primary_key=True, index=True)
    team = Column(String, nullable=False, index=True)
    season = Column(Integer, nullable=False)
    rating = Column(Float, nullable=False)
    games_played = Column(Integer, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Projection(Base):
    """Composed model lines for one event under one model version."""

    __tablename__ = "projections"
    __table_args__ = (UniqueConstraint("event_id", "model_version", name="uq_projection"),)

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, ForeignKey("events.id"), nullable=False, index=True)
    model_version = Column(String, nullable=False)
    config_identity = Column(String)
    model_spread_home = Column(Float)
    model_total_points = Column(Float)
    confidence = Column(String(10))
    components = Column(JSON)
    data_quality = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class EdgeRecord(Base):
    """Materialized edge, upserted by (event_id, sportsbook_id, market_type)."""

    __tablename__ = "edges"
    __table_args__ = (
        UniqueConstraint("event_id", "sportsbook_id", "market_type", name="uq_edge_natural_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, ForeignKey("events.id"), nullable=False, index=True)
    sportsbook_id = Column(String, nullable=False)
    market_type = Column(String(10), nullable=False)
    season = Column(Integer, index=True)
    week = Column(Integer, index=True)

    market_line = Column(Float)
    model_line = Column(Float)
    edge_points = Column(Float, nullable=False)   # raw_edge
    capped_edge = Column(Float)
    effective_edge = Column(Float)
    uncertainty = Column(Float)
    recommended_side = Column(String(10))
    percentile = Column(Float)
    qualifies = Column(Boolean, default=False, index=True)

    config_identity = Column(String)
    explain = Column(JSON)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BetRecord(Base):
    """A placed bet and, once graded, its result and closing-line value."""

    __tablename__ = "bet_records"
    __table_args__ = (
        UniqueConstraint("event_id", "sportsbook_id", "market_type", name="uq_bet_natural_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, ForeignKey("events.id"), nullable=False, index=True)
    sportsbook_id = Column(String, nullable=False)
    market_type = Column(String(10), nullable=False)
    game_key = Column(String)
    season = Column(Integer, nullable=False, index=True)
    week = Column(Integer, nullable=False, index=True)

    side = Column(String(10), nullable=False)
    team = Column(String)
    spread_at_bet = Column(Float, nullable=False)  # home spread or total
    price_american = Column(Integer, default=-110)
    model_line = Column(Float)
    raw_edge = Column(Float)
    effective_edge = Column(Float)
    uncertainty = Column(Float)
    percentile = Column(Float)
    confidence = Column(String(10))
    warnings = Column(JSON)
    config_identity = Column(String)

    # Filled at grading
    closing_line = Column(Float)
    clv_points = Column(Float)
    clv_prob = Column(Float)
    result = Column(String(10), index=True)  # win | loss | push
    home_score = Column(Integer)
    away_score = Column(Integer)
    graded_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)


class QBStatusRow(Base):
    """Pre-kickoff QB availability.  The only QB input the engine reads."""

    __tablename__ = "qb_status"

    id = Column(Integer, primary_key=True, index=True)
    team = Column(String, nullable=False, index=True)
    season = Column(Integer, nullable=False)
    week = Column(Integer, nullable=False)
    status = Column(String(15), nullable=False, default="unknown")
    player_name = Column(String)
    as_of = Column(DateTime, nullable=False)


class QBStartedRow(Base):
    """Post-game record of who actually started.  Never read by the engine."""

    __tablename__ = "qb_started"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, ForeignKey("events.id"), nullable=False, index=True)
    team = Column(String, nullable=False)
    season = Column(Integer, nullable=False)
    week = Column(Integer, nullable=False)
    player_name = Column(String)
    recorded_at = Column(DateTime, default=datetime.utcnow)


class PipelineRun(Base):
    """One pipeline invocation; a ``running`` row is the per-slate lock."""

    __tablename__ = "pipeline_runs"

    id = Column(Integer, primary_key=True, index=True)
    run_key = Column(String, nullable=False, index=True)  # "<season>-W<week>-<version>"
    season = Column(Integer, nullable=False)
    week = Column(Integer, nullable=False)
    model_version = Column(String, nullable=False)
    status = Column(String(10), nullable=False, default="running")  # running | success | partial | failed
    coverage = Column(Float)
    edges_written = Column(Integer, default=0)
    summary = Column(JSON)
    error = Column(Text)
    started_at = Column(DateTime, default=datetime.utcnow, index=True)
    finished_at = Column(DateTime)


class DataFetch(Base):
    """Track data fetches and pipeline gates for source health monitoring"""

    __tablename__ = "data_fetches"

    id = Column(Integer, primary_key=True, index=True)
    fetch_time = Column(DateTime, default=datetime.utcnow, index=True)
    data_source = Column(String, nullable=False, index=True)  # "cfbd_games", "odds_api", "coverage_gate", ...
    success = Column(Boolean, nullable=False)
    records_fetched = Column(Integer)
    error_message = Column(Text)
    response_time_ms = Column(Integer)

    created_at = Column(DateTime, default=datetime.utcnow)


class MonitoringAlertRow(Base):
    """Persisted monitoring alerts."""

    __tablename__ = "monitoring_alerts"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    type = Column(String(10), nullable=False)       # critical | warning | info
    category = Column(String(15), nullable=False)   # performance | clv | data
    message = Column(Text, nullable=False)
    metric = Column(String(50), nullable=False, index=True)
    value = Column(Float)
    threshold = Column(Float)
    acknowledged = Column(Boolean, default=False, index=True)
    acknowledged_at = Column(DateTime)


class ModelParameter(Base):
    """Tracking of model parameter changes over time"""

    __tablename__ = "model_parameters"

    id = Column(Integer, primary_key=True, index=True)
    effective_date = Column(DateTime, default=datetime.utcnow, index=True)
    parameter_name = Column(String, nullable=False)
    parameter_value = Column(Float)
    parameter_value_json = Column(JSON)  # coefficient bundles
    reason = Column(String)  # "manual_training", "season_review", ...
    changed_by = Column(String)  # "auto" or user identifier

    created_at = Column(DateTime, default=datetime.utcnow)


def init_db():
    """Initialize database tables"""
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created (%s)", engine.url.render_as_string(hide_password=True))


if __name__ == "__main__":
    init_db()
