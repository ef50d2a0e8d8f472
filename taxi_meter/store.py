"""JSON file persistence for drive history and session snapshots.

Missing, empty or corrupt files read as "nothing stored"; callers never have to
handle a broken backing file.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from taxi_meter.models import DEFAULT_TZ, MAX_HISTORY_ITEMS, DriveHistoryItem
from taxi_meter.session import SessionSnapshot
from taxi_meter.timeutils import dt_from_epoch_ms, format_duration

logger = logging.getLogger(__name__)


class JsonFileStore:
    """A single JSON document persisted on disk."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Any | None:
        """Read the document (None if the file is missing, empty or corrupt)."""

        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("读取失败，按空数据处理：%s (%s)", self._path, exc)
            return None
        if not raw.strip():
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            # File corrupted: keep a backup and start fresh
            backup = self._path.with_suffix(self._path.suffix + ".broken")
            try:
                backup.write_bytes(raw)
            except OSError:
                pass
            logger.warning("JSON文件损坏，已备份到 %s", backup)
            return None

    def save(self, data: Any) -> None:
        """Persist the document (atomic-ish: write tmp, then replace)."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)

    def clear(self) -> None:
        """Remove the document if it exists."""

        self._path.unlink(missing_ok=True)


class HistoryStore:
    """Finished drives, newest first, capped at ``max_items``."""

    def __init__(self, path: str | Path, max_items: int = MAX_HISTORY_ITEMS) -> None:
        self._file = JsonFileStore(path)
        self._max_items = max_items

    def load_history(self) -> list[DriveHistoryItem]:
        raw = self._file.load()
        if not isinstance(raw, list):
            if raw is not None:
                logger.warning("历史记录格式不正确（不是列表），按空处理：%s", self._file.path)
            return []

        items: list[DriveHistoryItem] = []
        skipped = 0
        for entry in raw:
            try:
                items.append(DriveHistoryItem.from_dict(entry))
            except (KeyError, TypeError, ValueError, AttributeError):
                skipped += 1
        if skipped:
            logger.warning("历史记录中有 %s 条解析失败已跳过", skipped)
        return items[: self._max_items]

    def append_history(self, item: DriveHistoryItem) -> None:
        current = self.load_history()
        items = [item, *current][: self._max_items]
        self._file.save([i.to_dict() for i in items])

    def export_history_as_text(self, out_path: str | Path, tz_name: str = DEFAULT_TZ) -> Path:
        """Write a plain-text report of the history and return its path."""

        p = Path(out_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        lines = [f"# drive history ({tz_name})", ""]
        for i, item in enumerate(self.load_history(), start=1):
            start = dt_from_epoch_ms(item.started_at_ms, tz_name)
            end = dt_from_epoch_ms(item.finished_at_ms, tz_name)
            lines.append(f"[{i}] {start.isoformat(sep=' ', timespec='seconds')} -> {end.isoformat(sep=' ', timespec='seconds')}")
            lines.append(
                f"    preset={item.preset_id} fare={item.fare_yen} distance={item.distance_km:.2f}km "
                f"time={format_duration(item.elapsed_ms)}"
            )
            lines.append(
                f"    samples accepted={item.accepted_samples} filtered={item.filtered_samples} "
                f"steps distance={item.distance_charge_steps} time={item.time_charge_steps} "
                f"pauses={len(item.pause_logs)}"
            )
        p.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return p


class SnapshotStore:
    """The checkpoint of the in-progress session, if any."""

    def __init__(self, path: str | Path) -> None:
        self._file = JsonFileStore(path)

    def load_snapshot(self) -> SessionSnapshot | None:
        raw = self._file.load()
        if raw is None:
            return None
        try:
            return SessionSnapshot.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("快照数据无效，按无快照处理：%s (%s)", self._file.path, exc)
            return None

    def save_snapshot(self, snapshot: SessionSnapshot) -> None:
        self._file.save(snapshot.to_dict())

    def clear_snapshot(self) -> None:
        self._file.clear()


class PersistenceGateway(Protocol):
    """Storage used by the meter. Implementations may raise; the meter treats
    every call as best-effort."""

    def load_history(self) -> list[DriveHistoryItem]: ...

    def append_history(self, item: DriveHistoryItem) -> None: ...

    def load_snapshot(self) -> SessionSnapshot | None: ...

    def save_snapshot(self, snapshot: SessionSnapshot) -> None: ...

    def clear_snapshot(self) -> None: ...


@dataclass(frozen=True, slots=True)
class FilePersistence:
    """History and snapshot stores side by side on disk."""

    history: HistoryStore
    snapshot: SnapshotStore

    @classmethod
    def from_paths(
        cls,
        history_path: str | Path,
        snapshot_path: str | Path,
        max_history_items: int = MAX_HISTORY_ITEMS,
    ) -> FilePersistence:
        return cls(history=HistoryStore(history_path, max_history_items), snapshot=SnapshotStore(snapshot_path))

    def load_history(self) -> list[DriveHistoryItem]:
        return self.history.load_history()

    def append_history(self, item: DriveHistoryItem) -> None:
        self.history.append_history(item)

    def export_history_as_text(self, out_path: str | Path, tz_name: str = DEFAULT_TZ) -> Path:
        return self.history.export_history_as_text(out_path, tz_name)

    def load_snapshot(self) -> SessionSnapshot | None:
        return self.snapshot.load_snapshot()

    def save_snapshot(self, snapshot: SessionSnapshot) -> None:
        self.snapshot.save_snapshot(snapshot)

    def clear_snapshot(self) -> None:
        self.snapshot.clear_snapshot()
