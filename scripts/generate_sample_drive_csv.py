from __future__ import annotations

import argparse
import math
import random
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Final

from zoneinfo import ZoneInfo

from taxi_meter.csv_io import write_location_samples
from taxi_meter.models import LocationSample

TZ: Final[str] = "Asia/Tokyo"
KM_PER_DEG_LAT: Final[float] = 111.32


@dataclass(frozen=True, slots=True)
class Phase:
    name: str
    seconds: int
    min_kmh: float
    max_kmh: float


# A short city ride: wait at the rank, crawl out, cruise, stop at lights, jam, cruise
PHASES: Final[list[Phase]] = [
    Phase("rank", 60, 0.0, 0.0),
    Phase("crawl", 90, 3.0, 9.0),
    Phase("cruise", 240, 25.0, 45.0),
    Phase("signal", 45, 0.0, 0.0),
    Phase("cruise", 180, 30.0, 55.0),
    Phase("jam", 200, 2.0, 8.0),
    Phase("cruise", 150, 20.0, 40.0),
    Phase("arrive", 30, 0.0, 4.0),
]


def _move(lat: float, lon: float, distance_km: float, bearing_deg: float) -> tuple[float, float]:
    b = math.radians(bearing_deg)
    d_lat = distance_km * math.cos(b) / KM_PER_DEG_LAT
    d_lon = distance_km * math.sin(b) / (KM_PER_DEG_LAT * math.cos(math.radians(lat)))
    return lat + d_lat, lon + d_lon


def generate_samples(
    *,
    seed: int,
    start_local: datetime,
    start_lat: float,
    start_lon: float,
    spike_rate: float,
) -> list[LocationSample]:
    """Generate a 1 Hz drive with realistic-ish jitter and occasional GPS spikes."""

    rng = random.Random(seed)
    t_ms = int(start_local.replace(tzinfo=ZoneInfo(TZ)).timestamp() * 1000)
    lat, lon = start_lat, start_lon
    bearing = rng.uniform(0, 360)

    out: list[LocationSample] = []
    for phase in PHASES:
        for _ in range(phase.seconds):
            t_ms += 1000
            speed_kmh = rng.uniform(phase.min_kmh, phase.max_kmh)
            bearing = (bearing + rng.uniform(-4, 4)) % 360
            lat, lon = _move(lat, lon, speed_kmh / 3600.0, bearing)

            # Reported position: true position + sub-meter jitter
            jitter_km = rng.uniform(0.0, 0.0008)
            rep_lat, rep_lon = _move(lat, lon, jitter_km, rng.uniform(0, 360))
            accuracy = rng.choice([4.0, 5.0, 8.0, 12.0, 20.0])
            speed_mps: float | None = speed_kmh / 3.6 if speed_kmh > 0 else 0.0

            # Occasionally "teleport" to simulate multipath / cold-start fixes
            if rng.random() < spike_rate:
                rep_lat, rep_lon = _move(lat, lon, rng.uniform(0.3, 1.5), rng.uniform(0, 360))
                accuracy = rng.uniform(60.0, 250.0)
                speed_mps = None

            out.append(
                LocationSample(
                    latitude=rep_lat,
                    longitude=rep_lon,
                    timestamp_ms=t_ms,
                    speed_mps=speed_mps,
                    accuracy_m=accuracy,
                )
            )
    return out


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a fake taxi drive track CSV for demo/testing.")
    p.add_argument("--out", type=str, default="sample_data/drive.csv", help="Output CSV path")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument(
        "--start",
        type=str,
        default="2025-01-01 08:00:00",
        help="Start local time in Asia/Tokyo, e.g. '2025-01-01 08:00:00'",
    )
    p.add_argument("--lat", type=float, default=35.6812362, help="Start latitude (default: Tokyo Station)")
    p.add_argument("--lon", type=float, default=139.7671248, help="Start longitude")
    p.add_argument("--spike-rate", type=float, default=0.02, help="Probability of a GPS spike per sample")
    args = p.parse_args()

    samples = generate_samples(
        seed=args.seed,
        start_local=datetime.fromisoformat(args.start),
        start_lat=args.lat,
        start_lon=args.lon,
        spike_rate=args.spike_rate,
    )
    out_path = Path(args.out)
    write_location_samples(samples, out_path)

    print(f"Generated: {out_path} (rows={len(samples)}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
