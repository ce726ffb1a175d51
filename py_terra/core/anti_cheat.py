"""
Anti-cheat validation of submitted runs.

This module implements four independent analyses over consecutive GPS
samples:
- Speed: sustained vehicle speed is a hard failure
- Acceleration: bursts no human produces raise a warning
- GPS quality: teleport-like jumps fail the run, coarse accuracy warns
- Dwell: runs too short to hold territory raise a warning

The verdict is a pure function of the samples and the activity type, so
replaying a stored run always reproduces its stored verdict.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import structlog

from .activity import ActivityType, SpeedProfile
from .errors import InvalidRunInput
from .geodesy import GPSSample, angle_deviation_deg, haversine_array

logger = structlog.get_logger()


@dataclass(frozen=True)
class AntiCheatThresholds:
    """Detection thresholds shared by every activity type."""

    vehicle_speed_mps: float = 6.94  # 25 km/h
    vehicle_consecutive_segments: int = 5  # tolerated before counting
    acceleration_mps2: float = 5.0  # max human acceleration
    acceleration_max_dt_s: float = 10.0  # longer gaps are ignored
    acceleration_burst_dt_s: float = 3.0
    max_suspicious_accelerations: int = 3
    gps_jump_m: float = 100.0
    gps_jump_window_s: float = 5.0
    max_gps_jumps: int = 5
    straight_angle_deg: float = 5.0
    coarse_accuracy_m: float = 50.0
    stationary_m: float = 5.0
    min_territory_seconds: float = 180.0


DEFAULT_THRESHOLDS = AntiCheatThresholds()


@dataclass(frozen=True)
class VerdictStats:
    """Diagnostics gathered while validating a run."""

    max_speed_mps: float = 0.0
    avg_speed_mps: float = 0.0
    vehicle_segment_count: int = 0
    max_accel_mps2: float = 0.0
    suspicious_accel_count: int = 0
    gps_jump_count: int = 0
    straightness_ratio: float = 0.0
    avg_accuracy_m: float = 0.0
    valid_dwell_seconds: float = 0.0
    stationary_seconds: float = 0.0


@dataclass(frozen=True)
class Verdict:
    """Immutable outcome of anti-cheat validation."""

    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stats: Optional[VerdictStats] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "stats": asdict(self.stats) if self.stats is not None else {},
        }


@dataclass
class _Pairs:
    """Per-pair arrays derived once from the samples."""

    dt: np.ndarray
    distance: np.ndarray


def _pairs(points: Sequence[GPSSample]) -> _Pairs:
    lats = np.array([p.lat for p in points], dtype=np.float64)
    lons = np.array([p.lon for p in points], dtype=np.float64)
    times = np.array([p.timestamp_ms for p in points], dtype=np.int64)
    return _Pairs(dt=np.diff(times) / 1000.0, distance=haversine_array(lats, lons))


def analyze_speed(pairs: _Pairs, thresholds: AntiCheatThresholds = DEFAULT_THRESHOLDS) -> Dict[str, Any]:
    """Max/average speed and the number of segments driven at vehicle speed."""
    max_speed = 0.0
    total_speed = 0.0
    speed_count = 0
    vehicle_segments = 0
    consecutive_high = 0

    for dt, distance in zip(pairs.dt, pairs.distance):
        if dt <= 0:
            continue
        speed = float(distance / dt)

        max_speed = max(max_speed, speed)
        total_speed += speed
        speed_count += 1

        if speed > thresholds.vehicle_speed_mps:
            consecutive_high += 1
            if consecutive_high > thresholds.vehicle_consecutive_segments:
                vehicle_segments += 1
        else:
            consecutive_high = 0

    return {
        "max_speed": max_speed,
        "avg_speed": total_speed / speed_count if speed_count else 0.0,
        "vehicle_segments": vehicle_segments,
    }


def analyze_acceleration(pairs: _Pairs, thresholds: AntiCheatThresholds = DEFAULT_THRESHOLDS) -> Dict[str, Any]:
    """Peak acceleration and count of short, violent speed changes."""
    max_accel = 0.0
    suspicious = 0
    prev_speed = 0.0

    for dt, distance in zip(pairs.dt, pairs.distance):
        if dt <= 0 or dt > thresholds.acceleration_max_dt_s:
            continue
        speed = float(distance / dt)

        if prev_speed > 0:
            accel = abs(speed - prev_speed) / dt
            max_accel = max(max_accel, accel)
            if accel > thresholds.acceleration_mps2 and dt < thresholds.acceleration_burst_dt_s:
                suspicious += 1

        prev_speed = speed

    return {"max_accel": max_accel, "suspicious_count": suspicious}


def analyze_gps_quality(
    points: Sequence[GPSSample],
    pairs: _Pairs,
    thresholds: AntiCheatThresholds = DEFAULT_THRESHOLDS,
) -> Dict[str, Any]:
    """Teleport-like jumps, path straightness and mean reported accuracy."""
    in_window = (pairs.dt > 0) & (pairs.dt < thresholds.gps_jump_window_s)
    jumps = int(np.count_nonzero(in_window & (pairs.distance > thresholds.gps_jump_m)))

    straight = 0
    for i in range(2, len(points)):
        angle = angle_deviation_deg(points[i - 2], points[i - 1], points[i])
        if abs(angle) < thresholds.straight_angle_deg:
            straight += 1

    # Accuracy is read from the far end of each pair, so the first fix never counts
    accuracies = [p.accuracy_m for p in points[1:] if p.accuracy_m is not None]

    return {
        "jumps": jumps,
        "straightness": straight / max(1, len(points) - 2),
        "avg_accuracy": float(np.mean(accuracies)) if accuracies else 0.0,
    }


def analyze_dwell(pairs: _Pairs, thresholds: AntiCheatThresholds = DEFAULT_THRESHOLDS) -> Dict[str, Any]:
    """Total elapsed time and the part of it spent standing still."""
    moving_forward = pairs.dt > 0
    total_time = float(pairs.dt[moving_forward].sum())
    stationary = moving_forward & (pairs.distance < thresholds.stationary_m)
    stationary_time = float(pairs.dt[stationary].sum())

    return {
        "valid": total_time >= thresholds.min_territory_seconds,
        "valid_time": total_time,
        "stationary_time": stationary_time,
    }


def _input_failure(message: str) -> Verdict:
    return Verdict(valid=False, errors=[message], warnings=[], stats=None)


def validate_run(
    points: Sequence[GPSSample],
    activity_type,
    thresholds: AntiCheatThresholds = DEFAULT_THRESHOLDS,
) -> Verdict:
    """
    Validate a run against the anti-cheat rules.

    Pairs with a non-positive time delta are left out of every rate
    computation. Vehicle speed and excessive GPS jumps invalidate the run;
    everything else only adds warnings.

    Args:
        points: Ordered samples of one run
        activity_type: ActivityType or a client activity string
        thresholds: Detection thresholds

    Returns:
        Verdict; input errors yield ``valid=False`` with no stats
    """
    if points is None or len(points) < 2:
        return _input_failure("At least two GPS points required")

    try:
        activity = ActivityType.parse(activity_type)
    except InvalidRunInput as e:
        return _input_failure(str(e))

    profile: SpeedProfile = activity.profile
    pairs = _pairs(points)
    errors: List[str] = []
    warnings: List[str] = []

    # 1. Speed-based validation
    speed = analyze_speed(pairs, thresholds)
    if speed["vehicle_segments"] > 0:
        errors.append(
            f"Vehicle-like speed detected: {speed['max_speed'] * 3.6:.1f} km/h "
            f"(limit: {profile.max_kmh:.1f} km/h)"
        )

    # 2. Acceleration pattern detection
    accel = analyze_acceleration(pairs, thresholds)
    if accel["suspicious_count"] > thresholds.max_suspicious_accelerations:
        warnings.append("Unusual acceleration patterns detected")

    # 3. GPS quality check
    quality = analyze_gps_quality(points, pairs, thresholds)
    if quality["jumps"] > thresholds.max_gps_jumps:
        errors.append("Too many GPS jumps detected - possible fake GPS")
    if quality["avg_accuracy"] > thresholds.coarse_accuracy_m:
        warnings.append(f"Low GPS accuracy: {quality['avg_accuracy']:.0f}m")

    # 4. Territory capture dwell time
    dwell = analyze_dwell(pairs, thresholds)
    if not dwell["valid"]:
        warnings.append("Insufficient time in territory for capture")

    stats = VerdictStats(
        max_speed_mps=speed["max_speed"],
        avg_speed_mps=speed["avg_speed"],
        vehicle_segment_count=speed["vehicle_segments"],
        max_accel_mps2=accel["max_accel"],
        suspicious_accel_count=accel["suspicious_count"],
        gps_jump_count=quality["jumps"],
        straightness_ratio=quality["straightness"],
        avg_accuracy_m=quality["avg_accuracy"],
        valid_dwell_seconds=dwell["valid_time"],
        stationary_seconds=dwell["stationary_time"],
    )

    verdict = Verdict(valid=not errors, errors=errors, warnings=warnings, stats=stats)
    if not verdict.valid:
        logger.info("Run failed validation", activity=activity.value, errors=errors)
    return verdict
