"""
Read queries for runs, territories and stats.

Plain dictionaries come back so the API layer can serialize without touching
detached ORM objects.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Run, TeamStats, Territory, TerritoryHistory, UserStats

logger = structlog.get_logger()


def _run_dict(run: Run, include_points: bool = False) -> Dict[str, Any]:
    result = {
        "id": run.id,
        "user_id": run.user_id,
        "activity_type": run.activity_type,
        "geometry": run.geometry,
        "distance_km": run.distance_km,
        "duration_sec": run.duration_sec,
        "validation": run.validation,
        "tiles_touched": run.tiles_touched,
        "created_at": run.created_at,
    }
    if include_points:
        result["raw_points"] = run.raw_points
    return result


def _territory_dict(territory: Territory) -> Dict[str, Any]:
    return {
        "tile_id": territory.tile_id,
        "owner_id": territory.owner_id,
        "strength": territory.strength,
        "geometry": territory.geometry,
        "last_claimed_at": territory.last_claimed_at,
    }


class TerritoryQueries:
    """Read-only queries over the territory store."""

    def __init__(self, session: Session):
        """Initialize with database session."""
        self.session = session

    def list_runs(self, limit: int = 50, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent runs first."""
        stmt = select(Run).order_by(Run.created_at.desc(), Run.id.desc()).limit(limit)
        if user_id is not None:
            stmt = stmt.where(Run.user_id == user_id)
        return [_run_dict(run) for run in self.session.scalars(stmt)]

    def get_run(self, run_id: int) -> Optional[Dict[str, Any]]:
        run = self.session.get(Run, run_id)
        return _run_dict(run, include_points=True) if run else None

    def list_territories(self, limit: int = 500, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recently claimed territories first, optionally for one owner."""
        stmt = select(Territory).order_by(Territory.last_claimed_at.desc(), Territory.id.desc()).limit(limit)
        if owner_id is not None:
            stmt = stmt.where(Territory.owner_id == owner_id)
        return [_territory_dict(t) for t in self.session.scalars(stmt)]

    def get_territory(self, tile_id: str) -> Optional[Dict[str, Any]]:
        territory = self.session.scalars(select(Territory).where(Territory.tile_id == tile_id)).first()
        return _territory_dict(territory) if territory else None

    def get_history(self, tile_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Ownership changes of a tile, newest first."""
        stmt = (
            select(TerritoryHistory)
            .where(TerritoryHistory.tile_id == tile_id)
            .order_by(TerritoryHistory.changed_at.desc(), TerritoryHistory.id.desc())
            .limit(limit)
        )
        return [
            {
                "tile_id": h.tile_id,
                "from_owner": h.from_owner,
                "to_owner": h.to_owner,
                "run_id": h.run_id,
                "changed_at": h.changed_at,
            }
            for h in self.session.scalars(stmt)
        ]

    def get_user_stats(self, user_id: str) -> Optional[UserStats]:
        return self.session.get(UserStats, user_id)

    def get_team_stats(self, team_id: str) -> Optional[Dict[str, Any]]:
        team = self.session.get(TeamStats, team_id)
        if team is None:
            return None
        return {
            "team_id": team.team_id,
            "total_distance_km": team.total_distance_km,
            "territories_owned": team.territories_owned,
            "area_km2": team.area_km2,
            "updated_at": team.updated_at,
        }
