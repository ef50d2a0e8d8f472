"""
Shared pytest fixtures for taxi_meter tests.
"""

import pytest

from taxi_meter.fare import FARE_PRESETS
from taxi_meter.location import ReplayLocationProvider
from taxi_meter.meter import TaxiMeter
from taxi_meter.models import LocationSample
from taxi_meter.store import FilePersistence

# Tokyo Station
ORIGIN_LAT = 35.6812362
ORIGIN_LON = 139.7671248
# ~1 m of latitude in degrees
DEG_PER_M_LAT = 1.0 / 111_195.0


class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, start_ms=1_700_000_000_000):
        self.now = start_ms

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)
        return self.now


class FailingPersistence:
    """Persistence gateway whose every operation raises."""

    def __init__(self):
        self.calls = []

    def _fail(self, name):
        self.calls.append(name)
        raise OSError(f"{name}: disk unavailable")

    def load_history(self):
        self._fail("load_history")

    def append_history(self, item):
        self._fail("append_history")

    def load_snapshot(self):
        self._fail("load_snapshot")

    def save_snapshot(self, snapshot):
        self._fail("save_snapshot")

    def clear_snapshot(self):
        self._fail("clear_snapshot")


def sample_north_of(meters, timestamp_ms, speed_mps=None, accuracy_m=5.0):
    """A fix ``meters`` due north of the origin."""
    return LocationSample(
        latitude=ORIGIN_LAT + meters * DEG_PER_M_LAT,
        longitude=ORIGIN_LON,
        timestamp_ms=timestamp_ms,
        speed_mps=speed_mps,
        accuracy_m=accuracy_m,
    )


@pytest.fixture
def tokyo():
    return FARE_PRESETS[0]


@pytest.fixture
def osaka():
    return FARE_PRESETS[1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return ReplayLocationProvider()


@pytest.fixture
def persistence(tmp_path):
    return FilePersistence.from_paths(tmp_path / "history.json", tmp_path / "snapshot.json")


@pytest.fixture
def meter(provider, persistence, clock):
    return TaxiMeter(provider, persistence, clock=clock)


@pytest.fixture
def make_sample():
    return sample_north_of


@pytest.fixture
def failing_persistence():
    return FailingPersistence()
