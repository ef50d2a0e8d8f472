"""Recorded track files: one location fix per CSV row.

Columns are ``geoTime`` (epoch ms), ``latitude``, ``longitude`` and the
optional ``speed`` (m/s) and ``horizontalAccuracy`` (m). Devices write -1 when
they have no speed or accuracy; blank cells mean the same.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from operator import attrgetter
from pathlib import Path
from typing import Iterable, Sequence

from taxi_meter.models import LocationSample

logger = logging.getLogger(__name__)

TRACK_FIELDNAMES = ("geoTime", "latitude", "longitude", "speed", "horizontalAccuracy")


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Row counts of one loaded track file."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


def _optional(value: str | None) -> float | None:
    text = (value or "").strip()
    if not text:
        return None
    parsed = float(text)
    return parsed if parsed >= 0 else None


def _parse_row(row: dict[str, str]) -> LocationSample:
    return LocationSample(
        latitude=float(row["latitude"]),
        longitude=float(row["longitude"]),
        timestamp_ms=int(row["geoTime"]),
        speed_mps=_optional(row.get("speed")),
        accuracy_m=_optional(row.get("horizontalAccuracy")),
    )


def _try_parse(row: dict[str, str]) -> LocationSample | None:
    try:
        return _parse_row(row)
    except (KeyError, ValueError, TypeError, AttributeError):
        # 缺列、损坏或空行
        return None


def load_location_samples(csv_path: str | Path) -> tuple[list[LocationSample], CsvSummary]:
    """Load a whole track sorted by timestamp.

    Rows that cannot be parsed (including rows of a file missing a required
    column) are skipped and counted.

    Returns:
        (samples, summary)
    """

    with Path(csv_path).open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        rows = [_try_parse(row) for row in reader]
        fieldnames = tuple(reader.fieldnames or ())

    samples = sorted((s for s in rows if s is not None), key=attrgetter("timestamp_ms"))
    summary = CsvSummary(
        rows_total=len(rows),
        rows_parsed=len(samples),
        rows_skipped=len(rows) - len(samples),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped:
        logger.warning("轨迹CSV中有 %s 行无法解析，已跳过", summary.rows_skipped)
    return samples, summary


def write_location_samples(samples: Iterable[LocationSample], out_path: str | Path) -> None:
    """Write fixes as a track file; unknown speed/accuracy become -1."""

    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.writer(f)
        w.writerow(TRACK_FIELDNAMES)
        for s in samples:
            w.writerow(
                [
                    s.timestamp_ms,
                    f"{s.latitude:.7f}",
                    f"{s.longitude:.7f}",
                    "-1" if s.speed_mps is None else f"{s.speed_mps:.2f}",
                    "-1" if s.accuracy_m is None else f"{s.accuracy_m:.1f}",
                ]
            )
