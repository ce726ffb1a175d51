"""
Conquest engine: the per-tile ownership state machine.

A tile is either unclaimed or owned with an integer strength. Each run that
touches a tile moves it one step:

- unclaimed          -> owned by the runner at strength 1 (history row)
- owned by runner    -> strength + 1 (reinforcement, no history)
- owned by someone   -> strength - 1; at <= 0 it flips to the runner at
                        strength 1 (history row), otherwise the defender keeps it

Reads and writes go through a ``TerritoryRepository``. The engine never
trusts a read: every write is a compare-and-swap against the state it read,
and a lost race re-reads the tile and replays the transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Protocol, Tuple

import structlog

from .errors import ConquestConflictError
from .tile_grid import tile_geojson

logger = structlog.get_logger()


class ClaimOutcome(str, Enum):
    """What one run did to one tile."""

    CLAIMED = "claimed"
    REINFORCED = "reinforced"
    ERODED = "eroded"
    CONQUERED = "conquered"

    @property
    def changes_owner(self) -> bool:
        return self in (ClaimOutcome.CLAIMED, ClaimOutcome.CONQUERED)


@dataclass(frozen=True)
class TerritoryState:
    """Snapshot of a territory row."""

    tile_id: str
    owner_id: str
    strength: int


@dataclass(frozen=True)
class TileUpdate:
    """Result of applying a run to one tile."""

    tile_id: str
    owner_id: str
    strength: int
    flipped: bool
    previous_owner_id: Optional[str]
    outcome: ClaimOutcome


class TerritoryRepository(Protocol):
    """Transactional access to territory rows."""

    def get(self, tile_id: str, for_update: bool = True) -> Optional[TerritoryState]:
        ...

    def insert(self, tile_id: str, owner_id: str, strength: int, geometry: dict, claimed_at: datetime) -> bool:
        """Create the row; False when another transaction created it first."""
        ...

    def compare_and_swap(
        self,
        tile_id: str,
        expected: TerritoryState,
        owner_id: str,
        strength: int,
        claimed_at: datetime,
    ) -> bool:
        """Write the new state only if the row still matches ``expected``."""
        ...

    def append_history(
        self,
        tile_id: str,
        from_owner: Optional[str],
        to_owner: str,
        run_id: Optional[int],
        changed_at: datetime,
    ) -> None:
        ...

    def record_claim(
        self,
        tile_id: str,
        user_id: str,
        run_id: int,
        outcome: ClaimOutcome,
        strength_after: int,
        claimed_at: datetime,
    ) -> None:
        ...


def next_state(current: Optional[TerritoryState], user_id: str) -> Tuple[str, int, ClaimOutcome]:
    """Transition for one incursion by ``user_id``: ``(owner, strength, outcome)``."""
    if current is None:
        return user_id, 1, ClaimOutcome.CLAIMED

    if current.owner_id == user_id:
        return user_id, current.strength + 1, ClaimOutcome.REINFORCED

    strength = current.strength - 1
    if strength <= 0:
        return user_id, 1, ClaimOutcome.CONQUERED
    return current.owner_id, strength, ClaimOutcome.ERODED


class ConquestEngine:
    """Applies a run's incursions to the territory store."""

    def __init__(self, repository: TerritoryRepository, max_conflict_retries: int = 5):
        self.repository = repository
        self.max_conflict_retries = max_conflict_retries

    def apply(
        self,
        user_id: str,
        tile_ids: Iterable[str],
        claimed_at: datetime,
        run_id: Optional[int] = None,
    ) -> List[TileUpdate]:
        """
        Apply one incursion by ``user_id`` to every tile.

        Tiles are processed in sorted order so concurrent runs lock shared
        tiles in the same sequence.

        Args:
            user_id: Acting user
            tile_ids: Tiles touched by the run
            claimed_at: Timestamp written to every row
            run_id: Run being ingested; claim rows are recorded when given

        Returns:
            One TileUpdate per tile, in processing order
        """
        updates = [
            self._conquer_tile(tile_id, user_id, claimed_at, run_id)
            for tile_id in sorted(set(tile_ids))
        ]

        logger.info(
            "Applied conquest",
            user_id=user_id,
            run_id=run_id,
            tiles=len(updates),
            flipped=sum(1 for u in updates if u.flipped),
        )
        return updates

    def _conquer_tile(
        self,
        tile_id: str,
        user_id: str,
        claimed_at: datetime,
        run_id: Optional[int],
    ) -> TileUpdate:
        attempts = self.max_conflict_retries + 1
        for attempt in range(attempts):
            current = self.repository.get(tile_id, for_update=True)
            owner_id, strength, outcome = next_state(current, user_id)

            if current is None:
                written = self.repository.insert(
                    tile_id, owner_id, strength, tile_geojson(tile_id), claimed_at
                )
            else:
                written = self.repository.compare_and_swap(
                    tile_id, current, owner_id, strength, claimed_at
                )

            if not written:
                logger.debug("Tile changed underneath, retrying", tile_id=tile_id, attempt=attempt + 1)
                continue

            previous_owner = current.owner_id if current is not None else None
            if outcome.changes_owner:
                self.repository.append_history(tile_id, previous_owner, user_id, run_id, claimed_at)
            if run_id is not None:
                self.repository.record_claim(tile_id, user_id, run_id, outcome, strength, claimed_at)

            return TileUpdate(
                tile_id=tile_id,
                owner_id=owner_id,
                strength=strength,
                flipped=outcome.changes_owner,
                previous_owner_id=previous_owner,
                outcome=outcome,
            )

        logger.warning("Tile conflict retries exhausted", tile_id=tile_id, attempts=attempts)
        raise ConquestConflictError(tile_id, attempts)
