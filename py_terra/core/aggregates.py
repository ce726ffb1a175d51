"""
Per-user and per-team aggregate rollups.

Runs inside the ingest transaction: the counts it writes are taken from the
territory rows the conquest engine just changed, so stats and ownership
commit or roll back together.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..db.models import Run, TeamMember, TeamStats, Territory, TerritoryHistory, UserStats, utcnow
from ..db.repository import insert_ignore
from .conquest import ClaimOutcome, TileUpdate

logger = structlog.get_logger()


def user_stats_to_dict(stats: Optional[UserStats]) -> Dict[str, Any]:
    if stats is None:
        return {
            "total_distance_km": 0.0,
            "territories_owned": 0,
            "area_km2": 0.0,
            "total_runs": 0,
            "longest_run_km": 0.0,
            "territories_conquered": 0,
            "territories_lost": 0,
            "updated_at": None,
        }
    return {
        "user_id": stats.user_id,
        "total_distance_km": stats.total_distance_km,
        "territories_owned": stats.territories_owned,
        "area_km2": stats.area_km2,
        "total_runs": stats.total_runs,
        "longest_run_km": stats.longest_run_km,
        "territories_conquered": stats.territories_conquered,
        "territories_lost": stats.territories_lost,
        "updated_at": stats.updated_at,
    }


class AggregateUpdater:
    """Rolls run results into user and team totals."""

    def __init__(self, session: Session, tile_area_km2: float):
        self.session = session
        self.tile_area_km2 = tile_area_km2

    def apply(self, user_id: str, distance_km: float, updates: Iterable[TileUpdate]) -> UserStats:
        """
        Roll one committed-to-be run into the aggregates.

        The runner's distance, run count and conquests are incremented; every
        user who lost a tile gets ``territories_lost`` bumped. Owned counts and
        areas are recounted from the territory table for everyone involved.
        Rows are locked in sorted user id order.

        Returns:
            The runner's UserStats row (flushed, not committed)
        """
        losses = Counter(
            u.previous_owner_id
            for u in updates
            if u.outcome is ClaimOutcome.CONQUERED and u.previous_owner_id is not None
        )
        affected = sorted({user_id, *losses})
        rows = {uid: self._lock_user_row(uid) for uid in affected}

        stats = rows[user_id]
        stats.total_distance_km = (stats.total_distance_km or 0.0) + distance_km
        stats.total_runs = (stats.total_runs or 0) + 1
        stats.longest_run_km = max(stats.longest_run_km or 0.0, distance_km)
        stats.territories_conquered = (stats.territories_conquered or 0) + sum(losses.values())

        for loser, count in losses.items():
            rows[loser].territories_lost = (rows[loser].territories_lost or 0) + count

        for row in rows.values():
            self._refresh_owned(row)

        self._update_teams(user_id, distance_km, affected)
        self.session.flush()

        logger.debug(
            "Aggregates updated",
            user_id=user_id,
            territories_owned=stats.territories_owned,
            losers=len(losses),
        )
        return stats

    def rebuild(self, user_id: str) -> UserStats:
        """Recompute a user's row from runs, territories and history."""
        row = self._lock_user_row(user_id)

        totals = self.session.execute(
            select(
                func.coalesce(func.sum(Run.distance_km), 0.0),
                func.count(Run.id),
                func.coalesce(func.max(Run.distance_km), 0.0),
            ).where(Run.user_id == user_id)
        ).one()
        row.total_distance_km = float(totals[0])
        row.total_runs = int(totals[1])
        row.longest_run_km = float(totals[2])

        row.territories_conquered = self.session.scalar(
            select(func.count(TerritoryHistory.id)).where(
                TerritoryHistory.to_owner == user_id,
                TerritoryHistory.from_owner.is_not(None),
                TerritoryHistory.from_owner != user_id,
            )
        )
        row.territories_lost = self.session.scalar(
            select(func.count(TerritoryHistory.id)).where(
                TerritoryHistory.from_owner == user_id,
                TerritoryHistory.to_owner != user_id,
            )
        )
        self._refresh_owned(row)
        self.session.flush()

        logger.info("Rebuilt user stats", user_id=user_id, territories_owned=row.territories_owned)
        return row

    def _lock_user_row(self, user_id: str) -> UserStats:
        insert_ignore(
            self.session,
            UserStats,
            {
                "user_id": user_id,
                "total_distance_km": 0.0,
                "territories_owned": 0,
                "area_km2": 0.0,
                "total_runs": 0,
                "longest_run_km": 0.0,
                "territories_conquered": 0,
                "territories_lost": 0,
                "updated_at": utcnow(),
            },
            index_elements=["user_id"],
        )
        return self.session.get(UserStats, user_id, with_for_update=True, populate_existing=True)

    def _refresh_owned(self, row: UserStats) -> None:
        owned = self.session.scalar(
            select(func.count(Territory.id)).where(Territory.owner_id == row.user_id)
        )
        row.territories_owned = int(owned or 0)
        row.area_km2 = row.territories_owned * self.tile_area_km2
        row.updated_at = utcnow()

    def _update_teams(self, user_id: str, distance_km: float, affected: List[str]) -> None:
        memberships = self.session.execute(
            select(TeamMember.team_id, TeamMember.user_id).where(TeamMember.user_id.in_(affected))
        ).all()
        if not memberships:
            return

        runner_teams = {team_id for team_id, member in memberships if member == user_id}
        for team_id in sorted({team_id for team_id, _ in memberships}):
            insert_ignore(
                self.session,
                TeamStats,
                {
                    "team_id": team_id,
                    "total_distance_km": 0.0,
                    "territories_owned": 0,
                    "area_km2": 0.0,
                    "updated_at": utcnow(),
                },
                index_elements=["team_id"],
            )
            team = self.session.get(TeamStats, team_id, with_for_update=True, populate_existing=True)
            if team_id in runner_teams:
                team.total_distance_km = (team.total_distance_km or 0.0) + distance_km

            owned = self.session.scalar(
                select(func.count(Territory.id))
                .join(TeamMember, TeamMember.user_id == Territory.owner_id)
                .where(TeamMember.team_id == team_id)
            )
            team.territories_owned = int(owned or 0)
            team.area_km2 = team.territories_owned * self.tile_area_km2
            team.updated_at = utcnow()
