"""GPS noise filter for consecutive location samples."""

from __future__ import annotations

import math
from typing import Final, Literal

NoiseReason = Literal["invalid_delta", "speed_spike", "distance_jump", "poor_accuracy_jump"]

MAX_REASONABLE_SPEED_KMH: Final[float] = 180.0
# 1.5x the max reasonable speed, in km per second
MAX_DISTANCE_FACTOR_KM_PER_SEC: Final[float] = (MAX_REASONABLE_SPEED_KMH / 3600.0) * 1.5
# GPS jitter tolerated at rest
DISTANCE_SLACK_KM: Final[float] = 0.02
POOR_ACCURACY_METERS: Final[float] = 80.0
POOR_ACCURACY_MAX_JUMP_KM: Final[float] = 0.03


def classify_sample(
    delta_km: float,
    delta_seconds: float,
    speed_kmh: float,
    accuracy_m: float | None,
) -> NoiseReason | None:
    """Decide whether a transition between two samples is trustworthy.

    Checks run in order and the first match wins.

    Args:
        delta_km: Distance from the previous sample.
        delta_seconds: Time since the previous sample.
        speed_kmh: Derived speed (see ``derive_speed_kmh``).
        accuracy_m: Reported horizontal accuracy, None if the sensor gave none.

    Returns:
        A rejection reason, or None if the sample is accepted.
    """

    if not math.isfinite(delta_km) or not math.isfinite(delta_seconds) or delta_seconds <= 0:
        return "invalid_delta"

    if speed_kmh > MAX_REASONABLE_SPEED_KMH:
        return "speed_spike"

    distance_cap_km = MAX_DISTANCE_FACTOR_KM_PER_SEC * delta_seconds + DISTANCE_SLACK_KM
    if delta_km > distance_cap_km:
        return "distance_jump"

    # a coarse fix is only tolerated for near-zero movement
    if accuracy_m is not None and accuracy_m > POOR_ACCURACY_METERS and delta_km > POOR_ACCURACY_MAX_JUMP_KM:
        return "poor_accuracy_jump"

    return None


def derive_speed_kmh(reported_speed_mps: float | None, delta_km: float, delta_seconds: float) -> float:
    """Prefer the sensor speed when positive, else distance over time."""

    reported_kmh = (reported_speed_mps or 0.0) * 3.6
    if reported_kmh > 0:
        return reported_kmh
    return (delta_km / delta_seconds) * 3600.0 if delta_seconds > 0 else 0.0
