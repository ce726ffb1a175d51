"""Exceptions raised by the run ingest pipeline."""


class TerritoryError(Exception):
    """Base class for territory pipeline errors."""


class InvalidRunInput(TerritoryError):
    """Malformed submission: too few points, unknown activity, bad coordinates."""


class RunRejected(TerritoryError):
    """Anti-cheat validation failed; nothing was persisted."""

    def __init__(self, verdict):
        self.verdict = verdict
        super().__init__("; ".join(verdict.errors) or "Run rejected")


class ConquestConflictError(TerritoryError):
    """A tile kept changing underneath us and the retry budget ran out."""

    def __init__(self, tile_id: str, attempts: int):
        self.tile_id = tile_id
        self.attempts = attempts
        super().__init__(f"Tile {tile_id} still contended after {attempts} attempts")


class RunIngestError(TerritoryError):
    """Storage or transaction failure; the run and its tile effects were rolled back."""
