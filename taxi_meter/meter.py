"""The taxi meter: owner of the live drive session.

``TaxiMeter`` wires the pure session transitions to the outside world: it asks
the location provider for permission, subscribes to fixes while running,
persists snapshots and appends finished drives to the history. Storage is
best-effort; a failing store is logged and never interrupts metering.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Literal, Sequence

from taxi_meter.config import MeterConfig
from taxi_meter.fare import FARE_PRESETS, BillingMode, FarePreset, format_yen, get_preset_by_id
from taxi_meter.location import LocationProvider, LocationSubscription, PermissionStatus
from taxi_meter.models import DriveHistoryItem, LocationSample
from taxi_meter.session import (
    SampleOutcome,
    Session,
    SessionSnapshot,
    SessionState,
    apply_sample,
    can_transition,
    elapsed_ms,
    finish_session,
    idle_session,
    pause_session,
    restore_session,
    resume_session,
    snapshot_from_session,
    start_session,
)
from taxi_meter.store import PersistenceGateway
from taxi_meter.timeutils import format_duration, now_ms

logger = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = "需要定位权限，请在设备设置中允许后再开始计价。"


@dataclass(frozen=True, slots=True)
class MeterReading:
    """What the meter display shows at one moment."""

    state: SessionState
    preset_id: str
    fare_yen: int
    elapsed_ms: int
    distance_km: float
    speed_kmh: float | None
    billing_mode: BillingMode
    accepted_samples: int
    filtered_samples: int
    started_at_ms: int | None

    @property
    def fare_text(self) -> str:
        return format_yen(self.fare_yen)

    @property
    def elapsed_text(self) -> str:
        return format_duration(self.elapsed_ms)

    @property
    def speed_text(self) -> str:
        return "-- km/h" if self.speed_kmh is None else f"{self.speed_kmh:.1f} km/h"


class TaxiMeter:
    """Runs one drive session at a time.

    Args:
        provider: Location feed.
        persistence: History/snapshot storage, or None to keep nothing.
        presets: Selectable fare presets; the first one is the default.
        config: Intervals and storage settings.
        clock: Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        provider: LocationProvider,
        persistence: PersistenceGateway | None = None,
        *,
        presets: Sequence[FarePreset] = FARE_PRESETS,
        config: MeterConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if not presets:
            raise ValueError("至少需要一个票价预设")
        self._provider = provider
        self._persistence = persistence
        self._presets = tuple(presets)
        self._config = config or MeterConfig()
        self._clock = clock
        # samples may arrive from a provider thread
        self._lock = threading.RLock()
        self._preset = self._presets[0]
        self._session = idle_session(self._preset)
        self._subscription: LocationSubscription | None = None
        self._last_snapshot_ms: int | None = None
        self.permission: PermissionStatus | Literal["unknown"] = "unknown"
        self.status_message: str | None = None

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def preset(self) -> FarePreset:
        return self._preset

    @property
    def presets(self) -> tuple[FarePreset, ...]:
        return self._presets

    @property
    def can_change_preset(self) -> bool:
        return self._session.state is SessionState.IDLE

    def select_preset(self, preset_id: str) -> bool:
        """Switch preset and reset the meter; only allowed while idle."""

        with self._lock:
            if not self.can_change_preset:
                logger.info("计价中不能切换票价预设（当前状态：%s）", self._session.state.value)
                return False
            self._preset = get_preset_by_id(preset_id, self._presets)
            self._session = idle_session(self._preset)
            return True

    def start(self) -> bool:
        """Start a new drive. Returns False if not idle or permission is denied."""

        with self._lock:
            if not can_transition(self._session.state, "start"):
                return False
            self.status_message = None
            if not self._acquire_permission():
                return False

            now = self._clock()
            self._session = start_session(self._session, self._preset, now)
            self._start_watch()
            self._save_snapshot(now)
            logger.info("开始计价（preset=%s）", self._preset.id)
            return True

    def handle_sample(self, sample: LocationSample) -> SampleOutcome:
        """Process one fix from the location feed."""

        with self._lock:
            self._session, outcome = apply_sample(self._session, self._preset, sample)
        if outcome.status == "rejected":
            logger.debug(
                "[gps-noise-filtered] %s delta_km=%.4f delta_s=%.1f speed_kmh=%.1f accuracy_m=%s",
                outcome.reason,
                outcome.delta_km,
                outcome.delta_seconds,
                outcome.speed_kmh or 0.0,
                sample.accuracy_m,
            )
        return outcome

    def pause(self) -> bool:
        with self._lock:
            if not can_transition(self._session.state, "pause"):
                return False
            now = self._clock()
            self._stop_watch()
            self._session = pause_session(self._session, now)
            self._save_snapshot(now)
            logger.info("已暂停（累计时长=%s）", format_duration(self._session.elapsed_accumulated_ms))
            return True

    def resume(self) -> bool:
        with self._lock:
            if not can_transition(self._session.state, "resume"):
                return False
            now = self._clock()
            self._session = resume_session(self._session, now)
            self._start_watch()
            self._save_snapshot(now)
            logger.info("已恢复计价")
            return True

    def finish(self) -> DriveHistoryItem | None:
        """Finish the drive, record it and reset to idle.

        Returns:
            The history record, or None if there was no drive to finish.
        """

        with self._lock:
            if not can_transition(self._session.state, "finish"):
                return None
            now = self._clock()
            self._stop_watch()
            self._session, item = finish_session(self._session, self._preset, now)
            if item is not None:
                self._best_effort("append_history", item)
                logger.info(
                    "计价结束：fare=%s distance=%.2fkm time=%s",
                    item.fare_yen,
                    item.distance_km,
                    format_duration(item.elapsed_ms),
                )
            self._best_effort("clear_snapshot")
            self._last_snapshot_ms = None
            return item

    def restore(self, snapshot: SessionSnapshot | None = None) -> bool:
        """Reopen an interrupted drive in the paused state.

        Args:
            snapshot: Snapshot to restore; loaded from storage when omitted.

        Returns:
            False if not idle, nothing to restore or permission is denied.
        """

        with self._lock:
            if not can_transition(self._session.state, "restore"):
                return False
            if snapshot is None:
                snapshot = self._best_effort("load_snapshot")
            if snapshot is None:
                return False
            self.status_message = None
            if not self._acquire_permission():
                return False

            preset = get_preset_by_id(snapshot.preset_id, self._presets)
            if preset.id != snapshot.preset_id:
                logger.warning("快照中的票价预设 %r 未配置，改用 %r", snapshot.preset_id, preset.id)
            self._preset = preset
            self._session = restore_session(self._session, snapshot)
            self._save_snapshot(self._clock())
            logger.info("已从快照恢复（fare=%s，暂停中）", self._session.fare_yen)
            return True

    def reading(self, now: int | None = None) -> MeterReading:
        with self._lock:
            s = self._session
            at = self._clock() if now is None else now
            return MeterReading(
                state=s.state,
                preset_id=s.preset_id,
                fare_yen=s.fare_yen,
                elapsed_ms=elapsed_ms(s, at),
                distance_km=s.distance_km,
                speed_kmh=s.speed_kmh,
                billing_mode=s.billing_mode,
                accepted_samples=s.accepted_sample_count,
                filtered_samples=s.filtered_sample_count,
                started_at_ms=s.started_at_ms,
            )

    def tick(self) -> MeterReading:
        """Display refresh; also writes the periodic snapshot when it is due."""

        with self._lock:
            now = self._clock()
            if self._session.state is not SessionState.IDLE and (
                self._last_snapshot_ms is None
                or now - self._last_snapshot_ms >= self._config.snapshot_interval_ms
            ):
                self._save_snapshot(now)
            return self.reading(now)

    def history(self) -> list[DriveHistoryItem]:
        return self._best_effort("load_history") or []

    def close(self) -> None:
        """Stop background activity (the session itself is kept)."""

        with self._lock:
            self._stop_watch()

    def _acquire_permission(self) -> bool:
        try:
            status = self._provider.get_permission()
            if status != "granted":
                status = self._provider.request_permission()
        except Exception as exc:
            logger.warning("查询定位权限失败：%s", exc)
            status = "denied"
        self.permission = status
        if status != "granted":
            self.status_message = PERMISSION_DENIED_MESSAGE
            logger.info("定位权限被拒绝")
            return False
        return True

    def _start_watch(self) -> None:
        self._stop_watch()
        self._subscription = self._provider.watch(
            self.handle_sample,
            self._config.location_update_interval_ms,
            self._config.location_distance_interval_m,
        )

    def _stop_watch(self) -> None:
        if self._subscription is not None:
            self._subscription.remove()
            self._subscription = None

    def _save_snapshot(self, now: int) -> None:
        snapshot = snapshot_from_session(self._session, now)
        if snapshot is None:
            return
        self._last_snapshot_ms = now
        self._best_effort("save_snapshot", snapshot)

    def _best_effort(self, operation: str, *args: Any) -> Any:
        """Call a persistence operation, logging and swallowing any failure."""

        if self._persistence is None:
            return None
        try:
            return getattr(self._persistence, operation)(*args)
        except Exception as exc:
            logger.warning("%s 失败（已忽略）：%s", operation, exc)
            return None
