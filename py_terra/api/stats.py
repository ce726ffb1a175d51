"""Aggregate stats endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..config import settings
from ..core.aggregates import AggregateUpdater, user_stats_to_dict
from ..core.tile_grid import tile_area_km2
from ..db.connection import Database
from ..db.queries import TerritoryQueries
from .dependencies import current_user_id, get_database
from .runs import UserStatsOut

router = APIRouter(tags=["Stats"])


class TeamStatsOut(BaseModel):
    team_id: str = Field(alias="teamId")
    total_distance_km: float = Field(alias="totalDistanceKm")
    territories_owned: int = Field(alias="territoriesOwned")
    area_km2: float = Field(alias="areaKm2")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    class Config:
        populate_by_name = True


def _user_stats(database: Database, user_id: str) -> UserStatsOut:
    with database.get_session() as session:
        stats = user_stats_to_dict(TerritoryQueries(session).get_user_stats(user_id))
    return UserStatsOut(**stats)


@router.get("/me", response_model=UserStatsOut)
def my_stats(user_id: str = Depends(current_user_id), database: Database = Depends(get_database)):
    """Stats of the calling user; zeros before their first run."""
    return _user_stats(database, user_id)


@router.get("/users/{user_id}/stats", response_model=UserStatsOut)
def user_stats(user_id: str, database: Database = Depends(get_database)):
    return _user_stats(database, user_id)


@router.post("/users/{user_id}/stats/rebuild", response_model=UserStatsOut)
def rebuild_user_stats(user_id: str, database: Database = Depends(get_database)):
    """Recompute a user's aggregates from runs, territories and history."""
    with database.get_session() as session:
        row = AggregateUpdater(session, tile_area_km2(settings.tile_precision)).rebuild(user_id)
        stats = user_stats_to_dict(row)
    return UserStatsOut(**stats)


@router.get("/teams/{team_id}/stats", response_model=TeamStatsOut)
def team_stats(team_id: str, database: Database = Depends(get_database)):
    with database.get_session() as session:
        stats = TerritoryQueries(session).get_team_stats(team_id)

    if stats is None:
        raise HTTPException(status_code=404, detail="Team not found")
    return TeamStatsOut(**stats)
