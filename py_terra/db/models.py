"""Database models for runs, territories and aggregate stats."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Run(Base):
    """A validated run, stored together with its territory effects."""

    __tablename__ = "runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)  # Opaque id from the auth layer
    activity_type = Column(String(20), nullable=False)

    raw_points = Column(JSON, nullable=False)  # [{lat, lng, timestamp, accuracy?}]
    geometry = Column(JSON, nullable=False)  # Buffered corridor, GeoJSON [lon, lat]

    distance_km = Column(Float, nullable=False)
    duration_sec = Column(Integer)
    validation = Column(JSON, nullable=False)  # Verdict.to_dict()
    tiles_touched = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    claims = relationship("TerritoryClaim", back_populates="run", cascade="all, delete-orphan")


class Territory(Base):
    """Current owner of a tile. Rows are never deleted."""

    __tablename__ = "territories"
    __table_args__ = (CheckConstraint("strength >= 0", name="ck_territories_strength"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    tile_id = Column(String(12), nullable=False, unique=True)
    owner_id = Column(String(64), nullable=False, index=True)
    strength = Column(Integer, nullable=False, default=1)

    geometry = Column(JSON, nullable=False)  # Tile polygon, GeoJSON [lon, lat]
    last_claimed_at = Column(DateTime(timezone=True), default=utcnow)


class TerritoryHistory(Base):
    """Append-only ledger of ownership changes."""

    __tablename__ = "territory_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tile_id = Column(String(12), nullable=False, index=True)
    from_owner = Column(String(64), nullable=True)  # NULL for a first claim
    to_owner = Column(String(64), nullable=False)
    run_id = Column(Integer, ForeignKey("runs.id"), nullable=True)
    changed_at = Column(DateTime(timezone=True), default=utcnow)


class TerritoryClaim(Base):
    """One row per tile touched by a run, with what the run did to it."""

    __tablename__ = "territory_claims"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tile_id = Column(String(12), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    run_id = Column(Integer, ForeignKey("runs.id"), nullable=False, index=True)
    outcome = Column(String(20), nullable=False)  # claimed, reinforced, eroded, conquered
    strength_after = Column(Integer, nullable=False)
    claimed_at = Column(DateTime(timezone=True), default=utcnow)

    run = relationship("Run", back_populates="claims")


class UserStats(Base):
    """Rolled-up per-user totals. Rebuildable from runs, territories and history."""

    __tablename__ = "user_stats"

    user_id = Column(String(64), primary_key=True)
    total_distance_km = Column(Float, nullable=False, default=0.0)
    territories_owned = Column(Integer, nullable=False, default=0)
    area_km2 = Column(Float, nullable=False, default=0.0)

    total_runs = Column(Integer, nullable=False, default=0)
    longest_run_km = Column(Float, nullable=False, default=0.0)
    territories_conquered = Column(Integer, nullable=False, default=0)
    territories_lost = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class TeamMember(Base):
    """Team membership, maintained by the team service and only read here."""

    __tablename__ = "team_members"

    team_id = Column(String(64), primary_key=True)
    user_id = Column(String(64), primary_key=True)


Index("idx_team_members_user", TeamMember.user_id)


class TeamStats(Base):
    """Rolled-up per-team totals."""

    __tablename__ = "team_stats"

    team_id = Column(String(64), primary_key=True)
    total_distance_km = Column(Float, nullable=False, default=0.0)
    territories_owned = Column(Integer, nullable=False, default=0)
    area_km2 = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
