"""Territory read endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..config import settings
from ..core.tile_grid import tile_bounds, tile_geojson
from ..db.connection import Database
from ..db.queries import TerritoryQueries
from .dependencies import get_database

router = APIRouter(prefix="/territories", tags=["Territories"])


class TerritoryOut(BaseModel):
    tile_id: str = Field(alias="tileId")
    owner_id: Optional[str] = Field(None, alias="ownerId")
    strength: int = 0
    geometry: Dict[str, Any]
    last_claimed_at: Optional[datetime] = Field(None, alias="lastClaimedAt")

    class Config:
        populate_by_name = True


class HistoryEntryOut(BaseModel):
    tile_id: str = Field(alias="tileId")
    from_owner: Optional[str] = Field(None, alias="fromOwner")
    to_owner: str = Field(alias="toOwner")
    run_id: Optional[int] = Field(None, alias="runId")
    changed_at: Optional[datetime] = Field(None, alias="changedAt")

    class Config:
        populate_by_name = True


def _check_tile_id(tile_id: str) -> None:
    try:
        tile_bounds(tile_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid tile id")


@router.get("", response_model=List[TerritoryOut])
def list_territories(
    limit: int = Query(500, ge=1),
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    database: Database = Depends(get_database),
):
    """Most recently claimed territories, optionally for one owner."""
    limit = min(limit, settings.territory_list_limit)
    with database.get_session() as session:
        territories = TerritoryQueries(session).list_territories(limit=limit, owner_id=owner_id)
    return [TerritoryOut(**t) for t in territories]


@router.get("/{tile_id}", response_model=TerritoryOut)
def get_territory(tile_id: str, database: Database = Depends(get_database)):
    """
    Current state of a tile.

    Unclaimed tiles are returned with no owner and strength 0, so clients can
    render any tile id they computed themselves.
    """
    _check_tile_id(tile_id)
    with database.get_session() as session:
        territory = TerritoryQueries(session).get_territory(tile_id)

    if territory is None:
        return TerritoryOut(tile_id=tile_id, geometry=tile_geojson(tile_id))
    return TerritoryOut(**territory)


@router.get("/{tile_id}/history", response_model=List[HistoryEntryOut])
def get_territory_history(
    tile_id: str,
    limit: int = Query(50, ge=1, le=500),
    database: Database = Depends(get_database),
):
    """Ownership changes of a tile, newest first."""
    _check_tile_id(tile_id)
    with database.get_session() as session:
        history = TerritoryQueries(session).get_history(tile_id, limit=limit)
    return [HistoryEntryOut(**h) for h in history]
