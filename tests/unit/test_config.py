"""
Unit tests for meter configuration and preset files.
"""

import json

import pytest

from taxi_meter.config import MeterConfig, load_presets, preset_from_dict, validate_preset
from taxi_meter.fare import FARE_PRESETS, FarePreset

NAGOYA = {
    "id": "nagoya",
    "label": "名古屋",
    "baseFareYen": 500,
    "baseDistanceKm": 1.1,
    "distanceStepKm": 0.263,
    "distanceStepFareYen": 100,
    "lowSpeedThresholdKmh": 10,
    "lowSpeedStepSeconds": 95,
    "lowSpeedStepFareYen": 100,
}


class TestMeterConfig:
    """Tests for default settings."""

    def test_defaults(self):
        cfg = MeterConfig()
        assert cfg.location_update_interval_ms == 1000
        assert cfg.location_distance_interval_m == 1.0
        assert cfg.snapshot_interval_ms == 5000
        assert cfg.max_history_items == 100
        assert cfg.tz_name == "Asia/Tokyo"


class TestPresetFromDict:
    """Tests for parsing a single preset."""

    def test_parses_camel_case(self):
        preset = preset_from_dict(NAGOYA)
        assert preset.id == "nagoya"
        assert preset.label == "名古屋"
        assert preset.base_fare_yen == 500
        assert isinstance(preset.base_fare_yen, int)
        assert preset.distance_step_km == pytest.approx(0.263)
        assert preset.low_speed_step_seconds == 95.0

    def test_label_defaults_to_id(self):
        data = dict(NAGOYA)
        del data["label"]
        assert preset_from_dict(data).label == "nagoya"

    def test_missing_field(self):
        data = dict(NAGOYA)
        del data["distanceStepKm"]
        with pytest.raises(ValueError, match="distanceStepKm"):
            preset_from_dict(data)

    @pytest.mark.parametrize(
        "field, value",
        [
            ("baseFareYen", 0),
            ("distanceStepKm", 0),
            ("lowSpeedStepSeconds", -5),
            ("lowSpeedThresholdKmh", -1),
        ],
    )
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValueError, match=field):
            preset_from_dict({**NAGOYA, field: value})

    def test_zero_threshold_is_allowed(self):
        assert preset_from_dict({**NAGOYA, "lowSpeedThresholdKmh": 0}).low_speed_threshold_kmh == 0

    def test_not_a_dict(self):
        with pytest.raises(ValueError):
            preset_from_dict(["nagoya"])

    def test_builtin_presets_are_valid(self):
        for preset in FARE_PRESETS:
            validate_preset(preset)


class TestLoadPresets:
    """Tests for preset files."""

    def test_loads_list(self, tmp_path):
        path = tmp_path / "presets.json"
        path.write_text(json.dumps([NAGOYA, {**NAGOYA, "id": "kyoto"}]), encoding="utf-8")
        presets = load_presets(path)
        assert [p.id for p in presets] == ["nagoya", "kyoto"]
        assert all(isinstance(p, FarePreset) for p in presets)

    @pytest.mark.parametrize("content", ["[]", "{}", "not json"])
    def test_rejects_bad_files(self, tmp_path, content):
        path = tmp_path / "presets.json"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ValueError):
            load_presets(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError):
            load_presets(tmp_path / "nope.json")

    def test_duplicate_ids(self, tmp_path):
        path = tmp_path / "presets.json"
        path.write_text(json.dumps([NAGOYA, NAGOYA]), encoding="utf-8")
        with pytest.raises(ValueError, match="重复"):
            load_presets(path)
