"""Data models for positions, session logs and finished drives."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final, Literal

EventType = Literal["start", "pause", "resume", "finish"]


@dataclass(frozen=True, slots=True)
class Coordinate:
    """A position in decimal degrees."""

    latitude: float
    longitude: float

    def to_dict(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, data: Any) -> Coordinate | None:
        if data is None:
            return None
        return cls(latitude=float(data["latitude"]), longitude=float(data["longitude"]))


@dataclass(frozen=True, slots=True)
class LocationSample:
    """A single location fix delivered by the positioning feed.

    Attributes:
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        timestamp_ms: Unix epoch milliseconds of the fix.
        speed_mps: Sensor-reported speed in meters/second, None if unknown.
        accuracy_m: Horizontal accuracy in meters, None if unknown.
    """

    latitude: float
    longitude: float
    timestamp_ms: int
    speed_mps: float | None = None
    accuracy_m: float | None = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


@dataclass(frozen=True, slots=True)
class PauseLog:
    """A closed pause interval."""

    paused_at_ms: int
    resumed_at_ms: int
    duration_ms: int

    def to_dict(self) -> dict[str, int]:
        return {
            "pausedAtMs": self.paused_at_ms,
            "resumedAtMs": self.resumed_at_ms,
            "durationMs": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: Any) -> PauseLog:
        return cls(
            paused_at_ms=int(data["pausedAtMs"]),
            resumed_at_ms=int(data["resumedAtMs"]),
            duration_ms=int(data["durationMs"]),
        )


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """A lifecycle event of a drive session."""

    type: EventType
    at_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "atMs": self.at_ms}

    @classmethod
    def from_dict(cls, data: Any) -> SessionEvent:
        event_type = str(data["type"])
        if event_type not in ("start", "pause", "resume", "finish"):
            raise ValueError(f"unknown session event type: {event_type!r}")
        return cls(type=event_type, at_ms=int(data["atMs"]))  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class DriveHistoryItem:
    """An immutable record of a finished drive.

    Note:
        The JSON keys use camelCase so history files stay readable by the
        mobile meter that writes the same format.
    """

    id: str
    created_at_ms: int
    started_at_ms: int
    finished_at_ms: int
    elapsed_ms: int
    distance_km: float
    fare_yen: int
    preset_id: str
    from_point: Coordinate | None
    to_point: Coordinate | None
    accepted_samples: int
    filtered_samples: int
    distance_charge_steps: int
    time_charge_steps: int
    pause_logs: tuple[PauseLog, ...] = ()
    events: tuple[SessionEvent, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "createdAtMs": self.created_at_ms,
            "startedAtMs": self.started_at_ms,
            "finishedAtMs": self.finished_at_ms,
            "elapsedMs": self.elapsed_ms,
            "distanceKm": self.distance_km,
            "fareYen": self.fare_yen,
            "presetId": self.preset_id,
            "from": self.from_point.to_dict() if self.from_point else None,
            "to": self.to_point.to_dict() if self.to_point else None,
            "acceptedSamples": self.accepted_samples,
            "filteredSamples": self.filtered_samples,
            "distanceChargeSteps": self.distance_charge_steps,
            "timeChargeSteps": self.time_charge_steps,
            "pauseLogs": [p.to_dict() for p in self.pause_logs],
            "events": [e.to_dict() for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: Any) -> DriveHistoryItem:
        """Parse one history entry.

        Raises:
            KeyError, TypeError, ValueError: If the entry is malformed.
        """

        return cls(
            id=str(data["id"]),
            created_at_ms=int(data["createdAtMs"]),
            started_at_ms=int(data["startedAtMs"]),
            finished_at_ms=int(data["finishedAtMs"]),
            elapsed_ms=int(data["elapsedMs"]),
            distance_km=float(data["distanceKm"]),
            fare_yen=int(data["fareYen"]),
            preset_id=str(data["presetId"]),
            from_point=Coordinate.from_dict(data.get("from")),
            to_point=Coordinate.from_dict(data.get("to")),
            accepted_samples=int(data.get("acceptedSamples", 0)),
            filtered_samples=int(data.get("filteredSamples", 0)),
            distance_charge_steps=int(data.get("distanceChargeSteps", 0)),
            time_charge_steps=int(data.get("timeChargeSteps", 0)),
            pause_logs=tuple(PauseLog.from_dict(p) for p in data.get("pauseLogs", [])),
            events=tuple(SessionEvent.from_dict(e) for e in data.get("events", [])),
        )


DEFAULT_TZ: Final[str] = "Asia/Tokyo"
MAX_HISTORY_ITEMS: Final[int] = 100
