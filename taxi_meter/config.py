"""Meter configuration and fare preset files."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from taxi_meter.fare import FarePreset
from taxi_meter.models import DEFAULT_TZ, MAX_HISTORY_ITEMS


@dataclass(frozen=True, slots=True)
class MeterConfig:
    """Runtime settings of the meter and its storage."""

    # positioning feed: ~1 Hz, 1 m movement threshold
    location_update_interval_ms: int = 1000
    location_distance_interval_m: float = 1.0
    snapshot_interval_ms: int = 5000
    history_path: str = "drive-history-v1.json"
    snapshot_path: str = "drive-snapshot-v1.json"
    tz_name: str = DEFAULT_TZ
    max_history_items: int = MAX_HISTORY_ITEMS


_PRESET_FIELDS = {
    "id": "id",
    "label": "label",
    "baseFareYen": "base_fare_yen",
    "baseDistanceKm": "base_distance_km",
    "distanceStepKm": "distance_step_km",
    "distanceStepFareYen": "distance_step_fare_yen",
    "lowSpeedThresholdKmh": "low_speed_threshold_kmh",
    "lowSpeedStepSeconds": "low_speed_step_seconds",
    "lowSpeedStepFareYen": "low_speed_step_fare_yen",
}
_INT_FIELDS = {"base_fare_yen", "distance_step_fare_yen", "low_speed_step_fare_yen"}


def preset_from_dict(data: dict[str, Any]) -> FarePreset:
    """Build and validate one preset from its camelCase JSON form.

    Raises:
        ValueError: If a field is missing or violates the preset invariants.
    """

    if not isinstance(data, dict):
        raise ValueError(f"票价预设必须是对象：{data!r}")
    kwargs: dict[str, Any] = {}
    for key, attr in _PRESET_FIELDS.items():
        if key not in data:
            if key == "label":
                continue
            raise ValueError(f"票价预设缺少字段：{key}")
        value = data[key]
        if attr in ("id", "label"):
            kwargs[attr] = str(value)
        elif attr in _INT_FIELDS:
            kwargs[attr] = int(value)
        else:
            kwargs[attr] = float(value)
    kwargs.setdefault("label", kwargs["id"])

    preset = FarePreset(**kwargs)
    validate_preset(preset)
    return preset


def validate_preset(preset: FarePreset) -> None:
    """Raise ValueError unless all amounts/steps are > 0 and the threshold >= 0."""

    positive = {
        "baseFareYen": preset.base_fare_yen,
        "baseDistanceKm": preset.base_distance_km,
        "distanceStepKm": preset.distance_step_km,
        "distanceStepFareYen": preset.distance_step_fare_yen,
        "lowSpeedStepSeconds": preset.low_speed_step_seconds,
        "lowSpeedStepFareYen": preset.low_speed_step_fare_yen,
    }
    for name, value in positive.items():
        if not value > 0:
            raise ValueError(f"票价预设 {preset.id!r} 的 {name} 必须大于 0（实际：{value}）")
    if not preset.low_speed_threshold_kmh >= 0:
        raise ValueError(
            f"票价预设 {preset.id!r} 的 lowSpeedThresholdKmh 不能为负（实际：{preset.low_speed_threshold_kmh}）"
        )


def load_presets(path: str | Path) -> tuple[FarePreset, ...]:
    """Load a JSON list of presets. The first entry becomes the default.

    Raises:
        ValueError: If the file is not a non-empty list of valid presets.
    """

    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"无法读取票价预设文件：{p}") from exc
    if not isinstance(raw, list) or not raw:
        raise ValueError(f"票价预设文件必须是非空列表：{p}")

    presets = tuple(preset_from_dict(item) for item in raw)
    ids = [preset.id for preset in presets]
    if len(set(ids)) != len(ids):
        raise ValueError(f"票价预设 id 重复：{ids}")
    return presets
