"""
SQLAlchemy implementation of the territory repository.

Rows are read with ``SELECT ... FOR UPDATE`` where the dialect supports row
locks, and every write is guarded by the owner/strength it expects, so even
without locks (SQLite) a stale read can never overwrite a newer state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

import structlog
from sqlalchemy import insert, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.conquest import ClaimOutcome, TerritoryState
from .models import Territory, TerritoryClaim, TerritoryHistory

logger = structlog.get_logger()


def insert_ignore(
    session: Session,
    model,
    values: Dict[str, Any],
    index_elements: Iterable[str],
) -> bool:
    """
    Insert a row unless one with the same key exists.

    Returns:
        True if this call created the row
    """
    dialect = session.get_bind().dialect.name

    if dialect == "postgresql":
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing(index_elements=list(index_elements))
    elif dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing(index_elements=list(index_elements))
    else:
        try:
            with session.begin_nested():
                session.execute(insert(model).values(**values))
        except IntegrityError:
            return False
        return True

    return session.execute(stmt).rowcount == 1


def apply_lock_timeout(session: Session, timeout_ms: int) -> None:
    """Bound row-lock waits for the current transaction (PostgreSQL only)."""
    if session.get_bind().dialect.name == "postgresql" and timeout_ms > 0:
        session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout_ms)}ms'"))


class SqlTerritoryRepository:
    """Territory rows in the run's session; never commits on its own."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, tile_id: str, for_update: bool = True) -> Optional[TerritoryState]:
        stmt = select(Territory.tile_id, Territory.owner_id, Territory.strength).where(
            Territory.tile_id == tile_id
        )
        if for_update:
            stmt = stmt.with_for_update()

        row = self.session.execute(stmt).first()
        if row is None:
            return None
        return TerritoryState(tile_id=row.tile_id, owner_id=row.owner_id, strength=row.strength)

    def insert(
        self,
        tile_id: str,
        owner_id: str,
        strength: int,
        geometry: dict,
        claimed_at: datetime,
    ) -> bool:
        return insert_ignore(
            self.session,
            Territory,
            {
                "tile_id": tile_id,
                "owner_id": owner_id,
                "strength": strength,
                "geometry": geometry,
                "last_claimed_at": claimed_at,
            },
            index_elements=["tile_id"],
        )

    def compare_and_swap(
        self,
        tile_id: str,
        expected: TerritoryState,
        owner_id: str,
        strength: int,
        claimed_at: datetime,
    ) -> bool:
        stmt = (
            update(Territory)
            .where(
                Territory.tile_id == tile_id,
                Territory.owner_id == expected.owner_id,
                Territory.strength == expected.strength,
            )
            .values(owner_id=owner_id, strength=strength, last_claimed_at=claimed_at)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def append_history(
        self,
        tile_id: str,
        from_owner: Optional[str],
        to_owner: str,
        run_id: Optional[int],
        changed_at: datetime,
    ) -> None:
        self.session.execute(
            insert(TerritoryHistory).values(
                tile_id=tile_id,
                from_owner=from_owner,
                to_owner=to_owner,
                run_id=run_id,
                changed_at=changed_at,
            )
        )

    def record_claim(
        self,
        tile_id: str,
        user_id: str,
        run_id: int,
        outcome: ClaimOutcome,
        strength_after: int,
        claimed_at: datetime,
    ) -> None:
        self.session.execute(
            insert(TerritoryClaim).values(
                tile_id=tile_id,
                user_id=user_id,
                run_id=run_id,
                outcome=outcome.value,
                strength_after=strength_after,
                claimed_at=claimed_at,
            )
        )
