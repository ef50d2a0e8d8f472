"""
Unit tests for track CSV reading and writing.
"""

import pytest

from taxi_meter.csv_io import TRACK_FIELDNAMES, load_location_samples, write_location_samples
from taxi_meter.models import LocationSample

HEADER = ",".join(TRACK_FIELDNAMES)


def _write(path, *rows, header=HEADER):
    path.write_text("\n".join([header, *rows]) + "\n", encoding="utf-8")
    return path


class TestLoadLocationSamples:
    """Tests for loading a whole track."""

    def test_parses_and_sorts(self, tmp_path):
        path = _write(
            tmp_path / "t.csv",
            "1700000002000,35.6813,139.7672,4.5,6.0",
            "1700000001000,35.6812,139.7671,-1,-1",
        )
        samples, summary = load_location_samples(path)

        assert [s.timestamp_ms for s in samples] == [1_700_000_001_000, 1_700_000_002_000]
        assert samples[0].speed_mps is None
        assert samples[0].accuracy_m is None
        assert samples[1].speed_mps == pytest.approx(4.5)
        assert samples[1].accuracy_m == pytest.approx(6.0)
        assert summary.rows_total == 2
        assert summary.rows_skipped == 0
        assert list(summary.fieldnames) == list(TRACK_FIELDNAMES)

    def test_optional_columns_may_be_blank_or_absent(self, tmp_path):
        path = _write(
            tmp_path / "t.csv",
            "1700000001000,35.6812,139.7671",
            header="geoTime,latitude,longitude",
        )
        samples, _ = load_location_samples(path)
        assert samples == [LocationSample(35.6812, 139.7671, 1_700_000_001_000)]

    def test_bad_rows_are_skipped(self, tmp_path, caplog):
        path = _write(
            tmp_path / "t.csv",
            "1700000001000,35.6812,139.7671,1,5",
            "oops,35.6812,139.7671,1,5",
            "1700000003000,,139.7671,1,5",
        )
        samples, summary = load_location_samples(path)
        assert len(samples) == 1
        assert summary.rows_skipped == 2
        assert "2" in caplog.text


class TestMissingColumns:
    """A file without a required column yields no samples."""

    def test_missing_longitude(self, tmp_path):
        path = _write(tmp_path / "t.csv", "1700000001000,35.6812", header="geoTime,latitude")
        samples, summary = load_location_samples(path)
        assert samples == []
        assert summary.rows_total == 1
        assert summary.rows_skipped == 1
        assert summary.fieldnames == ("geoTime", "latitude")


class TestWriteLocationSamples:
    """Tests for writing a track."""

    def test_unknown_values_written_as_sentinel(self, tmp_path):
        out = tmp_path / "sub" / "t.csv"
        write_location_samples(
            [
                LocationSample(35.6812362, 139.7671248, 1_700_000_001_000),
                LocationSample(35.6813, 139.7672, 1_700_000_002_000, speed_mps=3.25, accuracy_m=4.0),
            ],
            out,
        )
        lines = out.read_text(encoding="utf-8").splitlines()
        assert lines[0] == HEADER
        assert lines[1].endswith(",-1,-1")

        samples, _ = load_location_samples(out)
        assert samples[0].speed_mps is None
        assert samples[1].speed_mps == pytest.approx(3.25)
        assert samples[1].latitude == pytest.approx(35.6813)
