"""Clock and display helpers for epoch-millisecond timestamps."""

from __future__ import annotations

import time
from datetime import datetime

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def now_ms() -> int:
    """Current wall-clock time in Unix epoch milliseconds."""

    return int(time.time() * 1000)


def tzinfo_from_name(tz_name: str) -> ZoneInfo:
    """Look up an IANA zone such as "Asia/Tokyo".

    Raises:
        ValueError: If the zone is unknown on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"无效时区：{tz_name!r}。例如可用：Asia/Tokyo") from exc


def dt_from_epoch_ms(epoch_ms: int, tz_name: str) -> datetime:
    """Aware datetime for an epoch-ms timestamp in ``tz_name``."""

    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=tzinfo_from_name(tz_name))


def format_duration(ms: float) -> str:
    """Format a duration as HH:MM:SS.

    Fractional seconds are floored and negative durations are shown as zero.
    The hours field grows past two digits when needed.
    """

    minutes, sec = divmod(max(0, int(ms // 1000)), 60)
    h, m = divmod(minutes, 60)
    return f"{h:02d}:{m:02d}:{sec:02d}"
