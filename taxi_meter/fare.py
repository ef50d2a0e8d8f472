"""Fare presets and the fare accrual engine.

The engine is a pure function over immutable values: ``apply_segment`` takes a
``FareRuntime`` and returns the next one. Step charges are batched with floor
division, so one call can cross any number of steps (for example after the
device slept through a long stop).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Final, Literal, Sequence

BillingMode = Literal["distance", "time", "unknown"]

# Absorbs float error when a remainder lands exactly on a step boundary
_STEP_EPSILON: Final[float] = 1e-9


@dataclass(frozen=True, slots=True)
class FarePreset:
    """A jurisdiction-specific pricing schedule.

    Attributes:
        id: Stable identifier used in history records and snapshots.
        label: Display name.
        base_fare_yen: Flag-fall fare, includes ``base_distance_km``.
        base_distance_km: Free distance covered by the base fare.
        distance_step_km: Distance quantum charged after the base distance.
        distance_step_fare_yen: Fare added per distance quantum.
        low_speed_threshold_kmh: At or below this speed time is charged instead of distance.
        low_speed_step_seconds: Time quantum charged in low-speed mode.
        low_speed_step_fare_yen: Fare added per time quantum.
    """

    id: str
    label: str
    base_fare_yen: int
    base_distance_km: float
    distance_step_km: float
    distance_step_fare_yen: int
    low_speed_threshold_kmh: float
    low_speed_step_seconds: float
    low_speed_step_fare_yen: int


@dataclass(frozen=True, slots=True)
class FareRuntime:
    """Accrual state of one drive.

    ``distance_remainder_km`` and ``low_speed_remainder_seconds`` always stay
    below one step; ``fare_yen`` never decreases.
    """

    base_distance_remaining_km: float
    distance_remainder_km: float
    low_speed_remainder_seconds: float
    fare_yen: int

    def to_dict(self) -> dict[str, float]:
        return {
            "baseDistanceRemainingKm": self.base_distance_remaining_km,
            "distanceRemainderKm": self.distance_remainder_km,
            "lowSpeedRemainderSeconds": self.low_speed_remainder_seconds,
            "fareYen": self.fare_yen,
        }

    @classmethod
    def from_dict(cls, data: dict) -> FareRuntime:
        return cls(
            base_distance_remaining_km=float(data["baseDistanceRemainingKm"]),
            distance_remainder_km=float(data["distanceRemainderKm"]),
            low_speed_remainder_seconds=float(data["lowSpeedRemainderSeconds"]),
            fare_yen=int(data["fareYen"]),
        )


FARE_PRESETS: Final[tuple[FarePreset, ...]] = (
    FarePreset(
        id="tokyo",
        label="東京",
        base_fare_yen=500,
        base_distance_km=1.0,
        distance_step_km=0.255,
        distance_step_fare_yen=100,
        low_speed_threshold_kmh=10,
        low_speed_step_seconds=90,
        low_speed_step_fare_yen=100,
    ),
    FarePreset(
        id="osaka",
        label="大阪",
        base_fare_yen=600,
        base_distance_km=1.3,
        distance_step_km=0.26,
        distance_step_fare_yen=100,
        low_speed_threshold_kmh=10,
        low_speed_step_seconds=95,
        low_speed_step_fare_yen=100,
    ),
)

DEFAULT_FARE_PRESET: Final[FarePreset] = FARE_PRESETS[0]


def get_preset_by_id(preset_id: str, presets: Sequence[FarePreset] = FARE_PRESETS) -> FarePreset:
    """Look up a preset; unknown ids fall back to the first preset."""

    for preset in presets:
        if preset.id == preset_id:
            return preset
    return presets[0]


def create_runtime(preset: FarePreset) -> FareRuntime:
    """Fresh runtime at flag-fall."""

    return FareRuntime(
        base_distance_remaining_km=preset.base_distance_km,
        distance_remainder_km=0.0,
        low_speed_remainder_seconds=0.0,
        fare_yen=preset.base_fare_yen,
    )


def billing_mode(preset: FarePreset, speed_kmh: float) -> BillingMode:
    """Which mode a segment at ``speed_kmh`` is charged in."""

    return "time" if speed_kmh <= preset.low_speed_threshold_kmh else "distance"


def apply_segment(
    preset: FarePreset,
    runtime: FareRuntime,
    delta_distance_km: float,
    delta_seconds: float,
    speed_kmh: float,
) -> FareRuntime:
    """Charge one segment and return the updated runtime.

    A segment is charged either as low-speed time or as distance, never both.
    Invalid input (non-finite deltas, non-positive duration) leaves the runtime
    unchanged.

    Args:
        preset: Pricing schedule.
        runtime: Current accrual state.
        delta_distance_km: Distance travelled in this segment.
        delta_seconds: Duration of this segment.
        speed_kmh: Speed used for mode selection.

    Returns:
        New FareRuntime.
    """

    if not math.isfinite(delta_distance_km) or not math.isfinite(delta_seconds) or delta_seconds <= 0:
        return runtime

    if billing_mode(preset, speed_kmh) == "time":
        remainder = runtime.low_speed_remainder_seconds + delta_seconds
        steps = math.floor(remainder / preset.low_speed_step_seconds + _STEP_EPSILON)
        if steps > 0:
            remainder = max(0.0, remainder - steps * preset.low_speed_step_seconds)
        return replace(
            runtime,
            low_speed_remainder_seconds=remainder,
            fare_yen=runtime.fare_yen + steps * preset.low_speed_step_fare_yen,
        )

    base_remaining = runtime.base_distance_remaining_km
    chargeable = max(0.0, delta_distance_km)
    if base_remaining > 0:
        consumed = min(base_remaining, chargeable)
        base_remaining = max(0.0, base_remaining - consumed)
        chargeable -= consumed

    remainder = runtime.distance_remainder_km
    fare = runtime.fare_yen
    if chargeable > 0:
        remainder += chargeable
        steps = math.floor(remainder / preset.distance_step_km + _STEP_EPSILON)
        if steps > 0:
            remainder = max(0.0, remainder - steps * preset.distance_step_km)
            fare += steps * preset.distance_step_fare_yen

    return replace(
        runtime,
        base_distance_remaining_km=base_remaining,
        distance_remainder_km=remainder,
        fare_yen=fare,
    )


def charged_steps(before: FareRuntime, after: FareRuntime, step_fare_yen: int) -> int:
    """Number of step charges applied between two runtimes of the same mode."""

    if step_fare_yen <= 0:
        return 0
    return max(0, round((after.fare_yen - before.fare_yen) / step_fare_yen))


def format_yen(amount: int) -> str:
    """Format a fare like ``JPY 1,200``."""

    return f"JPY {amount:,}"
