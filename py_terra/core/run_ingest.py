"""
Run ingest pipeline.

raw samples -> anti-cheat verdict -> buffered path -> touched tiles ->
conquest -> aggregates -> persisted run, with everything after validation
inside a single transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ..db.connection import Database
from ..db.models import Run, utcnow
from ..db.repository import SqlTerritoryRepository, apply_lock_timeout
from .activity import ActivityType
from .aggregates import AggregateUpdater, user_stats_to_dict
from .anti_cheat import DEFAULT_THRESHOLDS, AntiCheatThresholds, Verdict, validate_run
from .conquest import ConquestEngine, TileUpdate
from .errors import ConquestConflictError, InvalidRunInput, RunIngestError, RunRejected
from .geodesy import GPSSample
from .path_geometry import DEFAULT_BUFFER_M, PathGeometry, build_path, geometry_to_geojson
from .tile_grid import GridConfig, tile_area_km2, tiles_touched_by

logger = structlog.get_logger()


@dataclass
class RunSubmission:
    """A client run submission, already parsed into samples."""

    points: List[GPSSample]
    activity_type: Any
    distance_km: Optional[float] = None  # Client hint
    duration_sec: Optional[int] = None


@dataclass
class RunResult:
    """Everything the caller needs to render the outcome of a run."""

    run_id: int
    user_id: str
    activity_type: ActivityType
    distance_km: float
    duration_sec: int
    verdict: Verdict
    updates: List[TileUpdate] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def flipped(self) -> List[TileUpdate]:
        """Ownership changes, for the notification layer."""
        return [u for u in self.updates if u.flipped]


def parse_points(raw_points: Sequence[Dict[str, Any]]) -> List[GPSSample]:
    """
    Convert wire samples ``{lat, lng, timestamp, accuracy?}`` into GPSSample.

    Raises:
        InvalidRunInput: On missing or out-of-range fields
    """
    if not isinstance(raw_points, (list, tuple)):
        raise InvalidRunInput("points must be a list")

    samples = []
    for index, raw in enumerate(raw_points):
        try:
            lat = float(raw["lat"])
            lon = float(raw["lng"] if "lng" in raw else raw["lon"])
            timestamp = int(raw["timestamp"])
            accuracy = raw.get("accuracy")
            accuracy = float(accuracy) if accuracy is not None else None
        except (KeyError, TypeError, ValueError):
            raise InvalidRunInput(f"Invalid GPS point at index {index}") from None

        if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
            raise InvalidRunInput(f"Invalid lat/lng at index {index}")
        samples.append(GPSSample(lat=lat, lon=lon, timestamp_ms=timestamp, accuracy_m=accuracy))
    return samples


def points_to_wire(points: Sequence[GPSSample]) -> List[Dict[str, Any]]:
    """Raw samples as stored on the run row."""
    wire = []
    for p in points:
        item = {"lat": p.lat, "lng": p.lon, "timestamp": p.timestamp_ms}
        if p.accuracy_m is not None:
            item["accuracy"] = p.accuracy_m
        wire.append(item)
    return wire


def scoring_distance_km(path: PathGeometry, hint_km: Optional[float]) -> float:
    """Computed length; the client hint only stands in for a degenerate path."""
    if not path.is_degenerate:
        return path.length_km
    if hint_km is not None and hint_km >= 0:
        return float(hint_km)
    return 0.0


def run_duration_sec(points: Sequence[GPSSample], hint_sec: Optional[int]) -> int:
    if hint_sec is not None and hint_sec >= 0:
        return int(hint_sec)
    return max(0, (points[-1].timestamp_ms - points[0].timestamp_ms) // 1000)


class RunIngestService:
    """Validates a run and applies its territory effects atomically."""

    def __init__(
        self,
        database: Database,
        grid: Optional[GridConfig] = None,
        buffer_m: float = DEFAULT_BUFFER_M,
        max_conflict_retries: int = 5,
        lock_timeout_ms: int = 0,
        thresholds: AntiCheatThresholds = DEFAULT_THRESHOLDS,
    ):
        self.database = database
        self.grid = grid or GridConfig()
        self.buffer_m = buffer_m
        self.max_conflict_retries = max_conflict_retries
        self.lock_timeout_ms = lock_timeout_ms
        self.thresholds = thresholds

    @classmethod
    def from_settings(cls, database: Database, settings) -> "RunIngestService":
        return cls(
            database,
            grid=GridConfig.from_settings(settings),
            buffer_m=settings.buffer_meters,
            max_conflict_retries=settings.max_conflict_retries,
            lock_timeout_ms=settings.db_lock_timeout_ms,
        )

    def submit(self, user_id: str, submission: RunSubmission) -> RunResult:
        """
        Ingest one run for ``user_id``.

        Raises:
            InvalidRunInput: Malformed submission, nothing computed
            RunRejected: Anti-cheat failure, nothing persisted
            RunIngestError: Storage failure, everything rolled back
        """
        if not user_id:
            raise InvalidRunInput("Missing user id")
        points = submission.points
        if not points or len(points) < 2:
            raise InvalidRunInput("At least two GPS points required")
        activity = ActivityType.parse(submission.activity_type)

        verdict = validate_run(points, activity, self.thresholds)
        if not verdict.valid:
            raise RunRejected(verdict)

        path = build_path(points, self.buffer_m)
        distance_km = scoring_distance_km(path, submission.distance_km)
        duration_sec = run_duration_sec(points, submission.duration_sec)
        tiles = tiles_touched_by(path.buffered, self.grid)
        claimed_at = utcnow()

        logger.info(
            "Ingesting run",
            user_id=user_id,
            activity=activity.value,
            samples=len(points),
            distance_km=round(distance_km, 3),
            tiles=len(tiles),
            warnings=len(verdict.warnings),
        )

        try:
            with self.database.get_session() as session:
                apply_lock_timeout(session, self.lock_timeout_ms)

                run = Run(
                    user_id=user_id,
                    activity_type=activity.value,
                    raw_points=points_to_wire(points),
                    geometry=geometry_to_geojson(path.buffered),
                    distance_km=distance_km,
                    duration_sec=duration_sec,
                    validation=verdict.to_dict(),
                    tiles_touched=len(tiles),
                    created_at=claimed_at,
                )
                session.add(run)
                session.flush()

                engine = ConquestEngine(SqlTerritoryRepository(session), self.max_conflict_retries)
                updates = engine.apply(user_id, tiles, claimed_at=claimed_at, run_id=run.id)

                updater = AggregateUpdater(session, tile_area_km2(self.grid.precision))
                stats = user_stats_to_dict(updater.apply(user_id, distance_km, updates))
                run_id = run.id

        except (SQLAlchemyError, ConquestConflictError) as e:
            logger.error("Run ingest failed", user_id=user_id, error=str(e))
            raise RunIngestError("Run ingest failed") from e

        logger.info("Run ingested", run_id=run_id, user_id=user_id, flipped=sum(1 for u in updates if u.flipped))
        return RunResult(
            run_id=run_id,
            user_id=user_id,
            activity_type=activity,
            distance_km=distance_km,
            duration_sec=duration_sec,
            verdict=verdict,
            updates=updates,
            stats=stats,
        )
