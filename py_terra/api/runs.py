"""
Run submission and listing endpoints.

Submitting a run validates it, claims the tiles under its corridor and
returns the updated tiles so clients can render the outcome without a second
query.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..config import settings
from ..core.conquest import TileUpdate
from ..core.errors import InvalidRunInput, RunIngestError, RunRejected
from ..core.run_ingest import RunIngestService, RunSubmission, parse_points
from ..db.connection import Database
from ..db.queries import TerritoryQueries
from .dependencies import current_user_id, get_database, get_ingest_service

logger = structlog.get_logger()

router = APIRouter(prefix="/runs", tags=["Runs"])


class GPSPointIn(BaseModel):
    """One GPS sample as sent by the client."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    timestamp: int = Field(..., description="Epoch milliseconds")
    accuracy: Optional[float] = Field(None, ge=0, description="Reported accuracy in meters")


class RunSubmissionRequest(BaseModel):
    """Run submission payload."""

    points: List[GPSPointIn] = Field(..., description="Ordered samples of the run")
    activity_type: str = Field("run", alias="activityType", description="run, walk or cycle")
    distance_km: Optional[float] = Field(None, alias="distanceKm", ge=0, description="Client distance hint")
    duration_sec: Optional[int] = Field(None, alias="durationSec", ge=0)

    class Config:
        populate_by_name = True


class ValidationOut(BaseModel):
    valid: bool
    errors: List[str]
    warnings: List[str]
    stats: Dict[str, Any]


class TileUpdateOut(BaseModel):
    tile_id: str = Field(alias="tileId")
    owner_id: str = Field(alias="ownerId")
    strength: int
    flipped: bool
    previous_owner_id: Optional[str] = Field(None, alias="previousOwnerId")
    outcome: str

    class Config:
        populate_by_name = True

    @classmethod
    def from_update(cls, update: TileUpdate) -> "TileUpdateOut":
        return cls(
            tile_id=update.tile_id,
            owner_id=update.owner_id,
            strength=update.strength,
            flipped=update.flipped,
            previous_owner_id=update.previous_owner_id,
            outcome=update.outcome.value,
        )


class UserStatsOut(BaseModel):
    total_distance_km: float = Field(alias="totalDistanceKm")
    territories_owned: int = Field(alias="territoriesOwned")
    area_km2: float = Field(alias="areaKm2")
    total_runs: int = Field(0, alias="totalRuns")
    longest_run_km: float = Field(0.0, alias="longestRunKm")
    territories_conquered: int = Field(0, alias="territoriesConquered")
    territories_lost: int = Field(0, alias="territoriesLost")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    class Config:
        populate_by_name = True


class RunSubmissionResponse(BaseModel):
    ok: bool = True
    run_id: int = Field(alias="runId")
    activity_type: str = Field(alias="activityType")
    distance_km: float = Field(alias="distanceKm")
    duration_sec: int = Field(alias="durationSec")
    validation: ValidationOut
    updated_tiles: List[TileUpdateOut] = Field(alias="updatedTiles")
    flipped: List[TileUpdateOut]
    stats: UserStatsOut

    class Config:
        populate_by_name = True


class RunSummary(BaseModel):
    id: int
    user_id: str = Field(alias="userId")
    activity_type: str = Field(alias="activityType")
    geometry: Dict[str, Any]
    distance_km: float = Field(alias="distanceKm")
    duration_sec: Optional[int] = Field(None, alias="durationSec")
    validation: Dict[str, Any]
    tiles_touched: int = Field(alias="tilesTouched")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    raw_points: Optional[List[Dict[str, Any]]] = Field(None, alias="rawPoints")

    class Config:
        populate_by_name = True


@router.post("", response_model=RunSubmissionResponse)
def submit_run(
    request: RunSubmissionRequest,
    user_id: str = Depends(current_user_id),
    service: RunIngestService = Depends(get_ingest_service),
):
    """Validate a run and apply its territory effects."""
    try:
        submission = RunSubmission(
            points=parse_points([p.model_dump() for p in request.points]),
            activity_type=request.activity_type,
            distance_km=request.distance_km,
            duration_sec=request.duration_sec,
        )
        result = service.submit(user_id, submission)

    except InvalidRunInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RunRejected as e:
        verdict = e.verdict.to_dict()
        logger.info("Run rejected", user_id=user_id, errors=verdict["errors"])
        raise HTTPException(
            status_code=422,
            detail={
                "error": "Run rejected",
                "errors": verdict["errors"],
                "warnings": verdict["warnings"],
                "stats": verdict["stats"],
            },
        )
    except RunIngestError:
        raise HTTPException(status_code=500, detail="Run ingest failed")

    updated = [TileUpdateOut.from_update(u) for u in result.updates]
    return RunSubmissionResponse(
        run_id=result.run_id,
        activity_type=result.activity_type.value,
        distance_km=result.distance_km,
        duration_sec=result.duration_sec,
        validation=ValidationOut(**result.verdict.to_dict()),
        updated_tiles=updated,
        flipped=[u for u in updated if u.flipped],
        stats=UserStatsOut(**result.stats),
    )


@router.get("", response_model=List[RunSummary])
def list_runs(
    limit: int = Query(50, ge=1),
    user_id: Optional[str] = Query(None, alias="userId"),
    database: Database = Depends(get_database),
):
    """Most recent runs."""
    limit = min(limit, settings.run_list_limit)
    with database.get_session() as session:
        runs = TerritoryQueries(session).list_runs(limit=limit, user_id=user_id)
    return [RunSummary(**run) for run in runs]


@router.get("/{run_id}", response_model=RunSummary)
def get_run(run_id: int, database: Database = Depends(get_database)):
    """A single run including its raw samples."""
    with database.get_session() as session:
        run = TerritoryQueries(session).get_run(run_id)

    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return RunSummary(**run)
