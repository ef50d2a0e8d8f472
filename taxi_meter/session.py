"""Drive session state machine.

A ``Session`` is an immutable value; every transition is a plain function that
returns the next session. ``TaxiMeter`` (see ``taxi_meter.meter``) owns the
current value and applies these functions as commands and samples arrive.

States and legal transitions::

    idle --start--> running --pause--> paused --resume--> running
    idle --restore--> paused
    running/paused --finish--> idle

Anything else is a no-op that returns the input session unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Final, Literal
from uuid import uuid4

from taxi_meter.fare import (
    BillingMode,
    FarePreset,
    FareRuntime,
    apply_segment,
    billing_mode,
    charged_steps,
    create_runtime,
)
from taxi_meter.geo import distance_km_between
from taxi_meter.models import Coordinate, DriveHistoryItem, LocationSample, PauseLog, SessionEvent
from taxi_meter.noise import NoiseReason, classify_sample, derive_speed_kmh

# Fixes with identical or reordered timestamps are treated as 0.1s apart
MIN_SAMPLE_INTERVAL_S: Final[float] = 0.1
SNAPSHOT_VERSION: Final[int] = 1


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


Action = Literal["start", "pause", "resume", "finish", "restore"]

TRANSITIONS: Final[dict[tuple[SessionState, str], SessionState]] = {
    (SessionState.IDLE, "start"): SessionState.RUNNING,
    (SessionState.IDLE, "restore"): SessionState.PAUSED,
    (SessionState.RUNNING, "pause"): SessionState.PAUSED,
    (SessionState.RUNNING, "finish"): SessionState.IDLE,
    (SessionState.PAUSED, "resume"): SessionState.RUNNING,
    (SessionState.PAUSED, "finish"): SessionState.IDLE,
}


def can_transition(state: SessionState, action: Action) -> bool:
    return (state, action) in TRANSITIONS


@dataclass(frozen=True, slots=True)
class Session:
    """State of one drive, from start to finish.

    ``elapsed_accumulated_ms`` holds the finalized running time of all closed
    segments; the open segment (while running) starts at
    ``running_segment_start_ms``. ``last_point``/``last_sample_time_ms`` track
    the latest raw fix, accepted or not.
    """

    state: SessionState
    preset_id: str
    fare_runtime: FareRuntime
    started_at_ms: int | None = None
    elapsed_accumulated_ms: int = 0
    running_segment_start_ms: int | None = None
    paused_at_ms: int | None = None
    distance_km: float = 0.0
    first_accepted_point: Coordinate | None = None
    last_accepted_point: Coordinate | None = None
    last_point: Coordinate | None = None
    last_sample_time_ms: int | None = None
    accepted_sample_count: int = 0
    filtered_sample_count: int = 0
    distance_charge_steps: int = 0
    time_charge_steps: int = 0
    speed_kmh: float | None = None
    billing_mode: BillingMode = "unknown"
    pause_logs: tuple[PauseLog, ...] = ()
    events: tuple[SessionEvent, ...] = ()

    @property
    def fare_yen(self) -> int:
        return self.fare_runtime.fare_yen


@dataclass(frozen=True, slots=True)
class SampleOutcome:
    """What happened to one location sample."""

    status: Literal["ignored", "baseline", "accepted", "rejected"]
    reason: NoiseReason | None = None
    delta_km: float = 0.0
    delta_seconds: float = 0.0
    speed_kmh: float | None = None


def idle_session(preset: FarePreset) -> Session:
    """A reset meter showing the flag-fall fare of ``preset``."""

    return Session(state=SessionState.IDLE, preset_id=preset.id, fare_runtime=create_runtime(preset))


def elapsed_ms(session: Session, now_ms: int) -> int:
    """Billable running time; frozen while paused."""

    if session.state is SessionState.RUNNING and session.running_segment_start_ms is not None:
        return session.elapsed_accumulated_ms + max(0, now_ms - session.running_segment_start_ms)
    return session.elapsed_accumulated_ms


def start_session(session: Session, preset: FarePreset, now_ms: int) -> Session:
    if not can_transition(session.state, "start"):
        return session
    return Session(
        state=SessionState.RUNNING,
        preset_id=preset.id,
        fare_runtime=create_runtime(preset),
        started_at_ms=now_ms,
        running_segment_start_ms=now_ms,
        events=(SessionEvent(type="start", at_ms=now_ms),),
    )


def _finalize_running_segment(session: Session, now_ms: int) -> Session:
    if session.running_segment_start_ms is None:
        return session
    segment_ms = max(0, now_ms - session.running_segment_start_ms)
    return replace(
        session,
        elapsed_accumulated_ms=session.elapsed_accumulated_ms + segment_ms,
        running_segment_start_ms=None,
    )


def _close_pause(session: Session, now_ms: int) -> Session:
    paused_at = session.paused_at_ms if session.paused_at_ms is not None else now_ms
    log = PauseLog(paused_at_ms=paused_at, resumed_at_ms=now_ms, duration_ms=max(0, now_ms - paused_at))
    return replace(session, paused_at_ms=None, pause_logs=session.pause_logs + (log,))


def pause_session(session: Session, now_ms: int) -> Session:
    if not can_transition(session.state, "pause"):
        return session
    session = _finalize_running_segment(session, now_ms)
    return replace(
        session,
        state=SessionState.PAUSED,
        paused_at_ms=now_ms,
        speed_kmh=None,
        billing_mode="unknown",
        events=session.events + (SessionEvent(type="pause", at_ms=now_ms),),
    )


def resume_session(session: Session, now_ms: int) -> Session:
    """Resume a paused session.

    The last point is cleared so the first fix after the pause only
    re-establishes the baseline instead of billing the pause gap.
    """

    if not can_transition(session.state, "resume"):
        return session
    session = _close_pause(session, now_ms)
    return replace(
        session,
        state=SessionState.RUNNING,
        running_segment_start_ms=now_ms,
        last_point=None,
        last_sample_time_ms=None,
        events=session.events + (SessionEvent(type="resume", at_ms=now_ms),),
    )


def finish_session(
    session: Session,
    preset: FarePreset,
    now_ms: int,
) -> tuple[Session, DriveHistoryItem | None]:
    """Finish a running or paused session.

    Returns:
        (idle session, history record). The record is None when the session
        never started or the transition is illegal.
    """

    if not can_transition(session.state, "finish"):
        return session, None

    if session.state is SessionState.PAUSED:
        session = _close_pause(session, now_ms)
    else:
        session = _finalize_running_segment(session, now_ms)
    session = replace(session, events=session.events + (SessionEvent(type="finish", at_ms=now_ms),))

    item = None
    if session.started_at_ms is not None:
        item = DriveHistoryItem(
            id=uuid4().hex,
            created_at_ms=now_ms,
            started_at_ms=session.started_at_ms,
            finished_at_ms=now_ms,
            elapsed_ms=session.elapsed_accumulated_ms,
            distance_km=session.distance_km,
            fare_yen=session.fare_yen,
            preset_id=session.preset_id,
            from_point=session.first_accepted_point,
            to_point=session.last_accepted_point,
            accepted_samples=session.accepted_sample_count,
            filtered_samples=session.filtered_sample_count,
            distance_charge_steps=session.distance_charge_steps,
            time_charge_steps=session.time_charge_steps,
            pause_logs=session.pause_logs,
            events=session.events,
        )
    return idle_session(preset), item


def apply_sample(session: Session, preset: FarePreset, sample: LocationSample) -> tuple[Session, SampleOutcome]:
    """Process one location fix while running.

    The first fix of a running stretch only sets the baseline. Later fixes are
    measured against the previous raw fix, classified, and (if accepted)
    charged. A rejected fix still becomes the new reference point.
    """

    if session.state is not SessionState.RUNNING:
        return session, SampleOutcome(status="ignored")

    point = sample.coordinate
    if session.last_point is None or session.last_sample_time_ms is None:
        baseline = replace(session, last_point=point, last_sample_time_ms=sample.timestamp_ms)
        return baseline, SampleOutcome(status="baseline")

    delta_km = distance_km_between(session.last_point, point)
    delta_seconds = max(MIN_SAMPLE_INTERVAL_S, (sample.timestamp_ms - session.last_sample_time_ms) / 1000.0)
    speed = derive_speed_kmh(sample.speed_mps, delta_km, delta_seconds)
    reason = classify_sample(delta_km, delta_seconds, speed, sample.accuracy_m)

    if reason is not None:
        rejected = replace(
            session,
            filtered_sample_count=session.filtered_sample_count + 1,
            speed_kmh=None,
            billing_mode="unknown",
            last_point=point,
            last_sample_time_ms=sample.timestamp_ms,
        )
        return rejected, SampleOutcome(
            status="rejected",
            reason=reason,
            delta_km=delta_km,
            delta_seconds=delta_seconds,
            speed_kmh=speed,
        )

    runtime = apply_segment(preset, session.fare_runtime, max(0.0, delta_km), delta_seconds, speed)
    mode = billing_mode(preset, speed)
    distance_steps = session.distance_charge_steps
    time_steps = session.time_charge_steps
    if mode == "time":
        time_steps += charged_steps(session.fare_runtime, runtime, preset.low_speed_step_fare_yen)
    else:
        distance_steps += charged_steps(session.fare_runtime, runtime, preset.distance_step_fare_yen)

    accepted = replace(
        session,
        fare_runtime=runtime,
        distance_km=session.distance_km + max(0.0, delta_km),
        accepted_sample_count=session.accepted_sample_count + 1,
        first_accepted_point=session.first_accepted_point or point,
        last_accepted_point=point,
        distance_charge_steps=distance_steps,
        time_charge_steps=time_steps,
        speed_kmh=speed,
        billing_mode=mode,
        last_point=point,
        last_sample_time_ms=sample.timestamp_ms,
    )
    return accepted, SampleOutcome(
        status="accepted",
        delta_km=delta_km,
        delta_seconds=delta_seconds,
        speed_kmh=speed,
    )


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Serializable checkpoint of a running or paused session.

    ``elapsed_ms`` is the running time finalized at ``saved_at_ms``.
    """

    saved_at_ms: int
    preset_id: str
    state: SessionState
    started_at_ms: int | None
    elapsed_ms: int
    paused_at_ms: int | None
    distance_km: float
    fare_runtime: FareRuntime
    first_accepted_point: Coordinate | None = None
    last_accepted_point: Coordinate | None = None
    accepted_sample_count: int = 0
    filtered_sample_count: int = 0
    distance_charge_steps: int = 0
    time_charge_steps: int = 0
    pause_logs: tuple[PauseLog, ...] = ()
    events: tuple[SessionEvent, ...] = ()
    version: int = SNAPSHOT_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "savedAtMs": self.saved_at_ms,
            "presetId": self.preset_id,
            "sessionState": self.state.value,
            "startedAtMs": self.started_at_ms,
            "elapsedMs": self.elapsed_ms,
            "pausedAtMs": self.paused_at_ms,
            "distanceKm": self.distance_km,
            "fareRuntime": self.fare_runtime.to_dict(),
            "firstAcceptedPoint": self.first_accepted_point.to_dict() if self.first_accepted_point else None,
            "lastAcceptedPoint": self.last_accepted_point.to_dict() if self.last_accepted_point else None,
            "acceptedSampleCount": self.accepted_sample_count,
            "filteredSampleCount": self.filtered_sample_count,
            "distanceChargeSteps": self.distance_charge_steps,
            "timeChargeSteps": self.time_charge_steps,
            "pauseLogs": [p.to_dict() for p in self.pause_logs],
            "events": [e.to_dict() for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: Any) -> SessionSnapshot:
        """Parse a stored snapshot.

        Raises:
            KeyError, TypeError, ValueError: If the snapshot is malformed.
        """

        version = int(data.get("version", SNAPSHOT_VERSION))
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"unsupported snapshot version: {version}")
        state = SessionState(data["sessionState"])
        if state is SessionState.IDLE:
            raise ValueError("snapshot of an idle session")
        started = data.get("startedAtMs")
        paused_at = data.get("pausedAtMs")
        return cls(
            saved_at_ms=int(data["savedAtMs"]),
            preset_id=str(data["presetId"]),
            state=state,
            started_at_ms=int(started) if started is not None else None,
            elapsed_ms=int(data["elapsedMs"]),
            paused_at_ms=int(paused_at) if paused_at is not None else None,
            distance_km=float(data["distanceKm"]),
            fare_runtime=FareRuntime.from_dict(data["fareRuntime"]),
            first_accepted_point=Coordinate.from_dict(data.get("firstAcceptedPoint")),
            last_accepted_point=Coordinate.from_dict(data.get("lastAcceptedPoint")),
            accepted_sample_count=int(data.get("acceptedSampleCount", 0)),
            filtered_sample_count=int(data.get("filteredSampleCount", 0)),
            distance_charge_steps=int(data.get("distanceChargeSteps", 0)),
            time_charge_steps=int(data.get("timeChargeSteps", 0)),
            pause_logs=tuple(PauseLog.from_dict(p) for p in data.get("pauseLogs", [])),
            events=tuple(SessionEvent.from_dict(e) for e in data.get("events", [])),
            version=version,
        )


def snapshot_from_session(session: Session, now_ms: int) -> SessionSnapshot | None:
    """Checkpoint an active session; idle sessions have no snapshot."""

    if session.state is SessionState.IDLE:
        return None
    return SessionSnapshot(
        saved_at_ms=now_ms,
        preset_id=session.preset_id,
        state=session.state,
        started_at_ms=session.started_at_ms,
        elapsed_ms=elapsed_ms(session, now_ms),
        paused_at_ms=session.paused_at_ms,
        distance_km=session.distance_km,
        fare_runtime=session.fare_runtime,
        first_accepted_point=session.first_accepted_point,
        last_accepted_point=session.last_accepted_point,
        accepted_sample_count=session.accepted_sample_count,
        filtered_sample_count=session.filtered_sample_count,
        distance_charge_steps=session.distance_charge_steps,
        time_charge_steps=session.time_charge_steps,
        pause_logs=session.pause_logs,
        events=session.events,
    )


def restore_session(session: Session, snapshot: SessionSnapshot) -> Session:
    """Rebuild a session from a snapshot, always in the paused state.

    A snapshot written while running is frozen at its save time: the open
    segment ends there and the pause (covering the interruption) starts there.
    """

    if not can_transition(session.state, "restore"):
        return session

    events = snapshot.events
    paused_at = snapshot.paused_at_ms
    if snapshot.state is SessionState.RUNNING or paused_at is None:
        paused_at = snapshot.saved_at_ms
        events = events + (SessionEvent(type="pause", at_ms=paused_at),)

    return Session(
        state=SessionState.PAUSED,
        preset_id=snapshot.preset_id,
        fare_runtime=snapshot.fare_runtime,
        started_at_ms=snapshot.started_at_ms,
        elapsed_accumulated_ms=snapshot.elapsed_ms,
        paused_at_ms=paused_at,
        distance_km=snapshot.distance_km,
        first_accepted_point=snapshot.first_accepted_point,
        last_accepted_point=snapshot.last_accepted_point,
        accepted_sample_count=snapshot.accepted_sample_count,
        filtered_sample_count=snapshot.filtered_sample_count,
        distance_charge_steps=snapshot.distance_charge_steps,
        time_charge_steps=snapshot.time_charge_steps,
        pause_logs=snapshot.pause_logs,
        events=events,
    )
