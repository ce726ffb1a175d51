"""Activity types and the speed profile each one carries."""

from dataclasses import dataclass
from enum import Enum

from .errors import InvalidRunInput


@dataclass(frozen=True)
class SpeedProfile:
    """Plausible human speed band for an activity, in m/s."""

    min_mps: float
    max_mps: float
    label: str

    @property
    def max_kmh(self) -> float:
        return self.max_mps * 3.6


class ActivityType(str, Enum):
    """Declared activity of a run. Walking shares the running profile."""

    RUNNING = "running"
    CYCLING = "cycling"

    @property
    def profile(self) -> SpeedProfile:
        return _PROFILES[self]

    @classmethod
    def parse(cls, value) -> "ActivityType":
        """Resolve a client-supplied activity string; unknown values are input errors."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower() if value is not None else ""
        try:
            return _ALIASES[key]
        except KeyError:
            raise InvalidRunInput(
                f"Invalid activity type {value!r}. Must be one of: run, walk, cycle"
            ) from None


_PROFILES = {
    ActivityType.RUNNING: SpeedProfile(min_mps=0.56, max_mps=5.56, label="Running/Walking"),  # 2-20 km/h
    ActivityType.CYCLING: SpeedProfile(min_mps=2.78, max_mps=11.11, label="Cycling"),  # 10-40 km/h
}

_ALIASES = {
    "run": ActivityType.RUNNING,
    "running": ActivityType.RUNNING,
    "walk": ActivityType.RUNNING,
    "walking": ActivityType.RUNNING,
    "cycle": ActivityType.CYCLING,
    "cycling": ActivityType.CYCLING,
    "bike": ActivityType.CYCLING,
}
