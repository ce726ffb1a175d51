"""Tests for the conquest state machine and its SQL repository."""

import pytest
from sqlalchemy import func, select, update

from py_terra.core.conquest import (
    ClaimOutcome, ConquestEngine, TerritoryState, next_state
)
from py_terra.core.errors import ConquestConflictError
from py_terra.db.connection import Database
from py_terra.db.models import Territory, TerritoryHistory, utcnow
from py_terra.db.repository import SqlTerritoryRepository

TILE = "gcpvj0d"
OTHER_TILE = "gcpvj0e"


@pytest.fixture
def database():
    """Fresh in-memory database."""
    database = Database()
    database.initialize("sqlite://")
    yield database
    database.dispose()


def run_once(database, user_id, tiles=(TILE,), engine_cls=ConquestEngine, **kwargs):
    with database.get_session() as session:
        engine = engine_cls(SqlTerritoryRepository(session), **kwargs)
        return engine.apply(user_id, tiles, claimed_at=utcnow())


def territory(database, tile_id=TILE):
    with database.get_session() as session:
        return SqlTerritoryRepository(session).get(tile_id, for_update=False)


def history_count(database, tile_id=TILE):
    with database.get_session() as session:
        return session.scalar(
            select(func.count(TerritoryHistory.id)).where(TerritoryHistory.tile_id == tile_id)
        )


class TestNextState:
    """Pure transition function."""

    def test_unclaimed(self):
        assert next_state(None, "alice") == ("alice", 1, ClaimOutcome.CLAIMED)

    def test_reinforce(self):
        current = TerritoryState(TILE, "alice", 3)
        assert next_state(current, "alice") == ("alice", 4, ClaimOutcome.REINFORCED)

    def test_erode(self):
        current = TerritoryState(TILE, "alice", 3)
        assert next_state(current, "bob") == ("alice", 2, ClaimOutcome.ERODED)

    def test_conquer(self):
        current = TerritoryState(TILE, "alice", 1)
        assert next_state(current, "bob") == ("bob", 1, ClaimOutcome.CONQUERED)

    def test_changes_owner(self):
        assert ClaimOutcome.CLAIMED.changes_owner
        assert ClaimOutcome.CONQUERED.changes_owner
        assert not ClaimOutcome.REINFORCED.changes_owner
        assert not ClaimOutcome.ERODED.changes_owner


class TestConquestEngine:
    """State machine applied through the SQL repository."""

    def test_first_claim(self, database):
        (update_,) = run_once(database, "alice")

        assert update_.owner_id == "alice"
        assert update_.strength == 1
        assert update_.flipped
        assert update_.previous_owner_id is None
        assert territory(database) == TerritoryState(TILE, "alice", 1)
        assert history_count(database) == 1

    def test_stored_geometry_is_tile_polygon(self, database):
        run_once(database, "alice")
        with database.get_session() as session:
            geometry = session.scalars(select(Territory.geometry).where(Territory.tile_id == TILE)).one()
        assert geometry["type"] == "Polygon"
        assert len(geometry["coordinates"][0]) == 5

    def test_reinforcement_is_idempotent_for_history(self, database):
        run_once(database, "alice")
        for _ in range(4):
            (update_,) = run_once(database, "alice")
            assert update_.outcome is ClaimOutcome.REINFORCED
            assert not update_.flipped

        assert territory(database).strength == 5
        assert history_count(database) == 1

    def test_flip_at_strength_one(self, database):
        run_once(database, "alice")
        (update_,) = run_once(database, "bob")

        assert update_.outcome is ClaimOutcome.CONQUERED
        assert update_.flipped
        assert update_.previous_owner_id == "alice"
        assert territory(database) == TerritoryState(TILE, "bob", 1)
        assert history_count(database) == 2

        with database.get_session() as session:
            latest = session.scalars(
                select(TerritoryHistory).order_by(TerritoryHistory.id.desc())
            ).first()
            assert (latest.from_owner, latest.to_owner) == ("alice", "bob")

    def test_erosion_keeps_owner(self, database):
        for _ in range(3):
            run_once(database, "alice")

        (update_,) = run_once(database, "bob")

        assert update_.outcome is ClaimOutcome.ERODED
        assert not update_.flipped
        assert territory(database) == TerritoryState(TILE, "alice", 2)
        assert history_count(database) == 1

    def test_takeover_needs_strength_many_runs(self, database):
        for _ in range(3):
            run_once(database, "alice")

        outcomes = [run_once(database, "bob")[0].outcome for _ in range(3)]
        assert outcomes == [ClaimOutcome.ERODED, ClaimOutcome.ERODED, ClaimOutcome.CONQUERED]
        assert territory(database).owner_id == "bob"

    def test_tiles_processed_in_sorted_order(self, database):
        updates = run_once(database, "alice", tiles=[OTHER_TILE, TILE, OTHER_TILE])
        assert [u.tile_id for u in updates] == [TILE, OTHER_TILE]


class TestRepository:
    """Compare-and-swap and insert-ignore semantics."""

    def test_insert_twice(self, database):
        with database.get_session() as session:
            repo = SqlTerritoryRepository(session)
            assert repo.insert(TILE, "alice", 1, {"type": "Polygon", "coordinates": []}, utcnow())
            assert not repo.insert(TILE, "bob", 1, {"type": "Polygon", "coordinates": []}, utcnow())
            assert repo.get(TILE) == TerritoryState(TILE, "alice", 1)

    def test_stale_compare_and_swap(self, database):
        run_once(database, "alice")
        stale = TerritoryState(TILE, "alice", 1)
        run_once(database, "alice")

        with database.get_session() as session:
            repo = SqlTerritoryRepository(session)
            assert not repo.compare_and_swap(TILE, stale, "bob", 1, utcnow())

        assert territory(database) == TerritoryState(TILE, "alice", 2)

    def test_fresh_compare_and_swap(self, database):
        run_once(database, "alice")
        with database.get_session() as session:
            repo = SqlTerritoryRepository(session)
            current = repo.get(TILE)
            assert repo.compare_and_swap(TILE, current, "alice", 2, utcnow())


class InterferingRepository(SqlTerritoryRepository):
    """Lets another writer reinforce the tile between our read and our write."""

    def __init__(self, session, interference=1):
        super().__init__(session)
        self.interference = interference
        self.swaps = 0

    def compare_and_swap(self, tile_id, expected, owner_id, strength, claimed_at):
        self.swaps += 1
        if self.interference > 0:
            self.interference -= 1
            self.session.execute(
                update(Territory)
                .where(Territory.tile_id == tile_id)
                .values(strength=Territory.strength + 1)
                .execution_options(synchronize_session=False)
            )
        return super().compare_and_swap(tile_id, expected, owner_id, strength, claimed_at)


class TestConflictRetry:
    """Lost races are replayed against the fresh state."""

    def test_retry_replays_transition(self, database):
        run_once(database, "alice")

        with database.get_session() as session:
            repo = InterferingRepository(session, interference=1)
            (update_,) = ConquestEngine(repo).apply("bob", [TILE], claimed_at=utcnow())

        # alice's concurrent reinforcement landed first, so bob only erodes
        assert repo.swaps == 2
        assert update_.outcome is ClaimOutcome.ERODED
        assert territory(database) == TerritoryState(TILE, "alice", 1)
        assert history_count(database) == 1

    def test_retries_exhausted(self, database):
        run_once(database, "alice")

        with pytest.raises(ConquestConflictError) as excinfo:
            with database.get_session() as session:
                repo = InterferingRepository(session, interference=100)
                ConquestEngine(repo, max_conflict_retries=2).apply("bob", [TILE], claimed_at=utcnow())

        assert excinfo.value.tile_id == TILE
        assert excinfo.value.attempts == 3
        # The failed transaction rolled back, including the interfering writes
        assert territory(database) == TerritoryState(TILE, "alice", 1)


class RivalCommitsAfterRead(SqlTerritoryRepository):
    """Ends our transaction right after the first read and lets a rival run commit."""

    def __init__(self, session, rival):
        super().__init__(session)
        self.rival = rival
        self.reads = 0

    def get(self, tile_id, for_update=True):
        state = super().get(tile_id, for_update)
        self.reads += 1
        if self.reads == 1:
            self.session.commit()
            self.rival()
        return state


class TestConcurrentConnections:
    """Two connections to one database file challenge the same tile."""

    @pytest.fixture
    def databases(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'territory.db'}"
        first, second = Database(), Database()
        first.initialize(url)
        second.initialize(url)
        yield first, second
        first.dispose()
        second.dispose()

    def test_both_challengers_see_strength_one(self, databases):
        first, second = databases
        run_once(first, "alice")

        with first.get_session() as session:
            repo = RivalCommitsAfterRead(session, rival=lambda: run_once(second, "carol"))
            (update_,) = ConquestEngine(repo).apply("bob", [TILE], claimed_at=utcnow())

        # carol's conquest committed first; bob's stale write failed and was replayed
        assert repo.reads == 2
        assert update_.outcome is ClaimOutcome.CONQUERED
        assert update_.previous_owner_id == "carol"
        assert territory(first) == TerritoryState(TILE, "bob", 1)

        with first.get_session() as session:
            changes = [
                (h.from_owner, h.to_owner)
                for h in session.scalars(select(TerritoryHistory).order_by(TerritoryHistory.id))
            ]
        assert changes == [(None, "alice"), ("alice", "carol"), ("carol", "bob")]

    def test_committed_reinforcement_turns_flip_into_erosion(self, databases):
        first, second = databases
        run_once(first, "alice")

        with first.get_session() as session:
            repo = RivalCommitsAfterRead(session, rival=lambda: run_once(second, "alice"))
            (update_,) = ConquestEngine(repo).apply("bob", [TILE], claimed_at=utcnow())

        assert repo.reads == 2
        assert update_.outcome is ClaimOutcome.ERODED
        assert not update_.flipped
        assert territory(second) == TerritoryState(TILE, "alice", 1)
        assert history_count(second) == 1
