"""Location feed interface and a replay provider for recorded tracks."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Literal, Protocol

from taxi_meter.models import LocationSample

logger = logging.getLogger(__name__)

PermissionStatus = Literal["granted", "denied"]
SampleCallback = Callable[[LocationSample], None]


class LocationSubscription(Protocol):
    def remove(self) -> None: ...


class LocationProvider(Protocol):
    """Source of location fixes (device sensor, replayed file, ...)."""

    def get_permission(self) -> PermissionStatus: ...

    def request_permission(self) -> PermissionStatus: ...

    def watch(
        self,
        callback: SampleCallback,
        interval_ms: int,
        distance_interval_m: float,
    ) -> LocationSubscription: ...


class _ReplaySubscription:
    def __init__(self, provider: ReplayLocationProvider, callback: SampleCallback) -> None:
        self._provider = provider
        self.callback = callback
        self.active = True

    def remove(self) -> None:
        if self.active:
            self.active = False
            self._provider._unsubscribe(self)


class ReplayLocationProvider:
    """Feeds recorded samples to the current watcher on demand.

    Samples are delivered one at a time from the caller's thread. Removing the
    subscription (e.g. on pause) stops delivery; fixes pushed while nobody is
    watching are dropped, like a sensor that is switched off.
    """

    def __init__(self, samples: Iterable[LocationSample] = (), granted: bool = True) -> None:
        self._pending = list(samples)
        self._granted = granted
        self._permission_asked = False
        self._subscriptions: list[_ReplaySubscription] = []

    @property
    def watching(self) -> bool:
        return bool(self._subscriptions)

    @property
    def remaining(self) -> int:
        return len(self._pending)

    def get_permission(self) -> PermissionStatus:
        return "granted" if self._granted and self._permission_asked else "denied"

    def request_permission(self) -> PermissionStatus:
        self._permission_asked = True
        return "granted" if self._granted else "denied"

    def watch(
        self,
        callback: SampleCallback,
        interval_ms: int = 1000,
        distance_interval_m: float = 1.0,
    ) -> _ReplaySubscription:
        sub = _ReplaySubscription(self, callback)
        self._subscriptions.append(sub)
        logger.debug("location watch started (interval=%sms, distance=%sm)", interval_ms, distance_interval_m)
        return sub

    def _unsubscribe(self, sub: _ReplaySubscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)
        logger.debug("location watch stopped")

    def push(self, sample: LocationSample) -> bool:
        """Deliver one sample to the watchers; False if nobody is watching."""

        if not self._subscriptions:
            return False
        for sub in list(self._subscriptions):
            if sub.active:
                sub.callback(sample)
        return True

    def next_timestamp_ms(self) -> int | None:
        return self._pending[0].timestamp_ms if self._pending else None

    def step(self) -> LocationSample | None:
        """Pop and deliver the next recorded sample."""

        if not self._pending:
            return None
        sample = self._pending.pop(0)
        self.push(sample)
        return sample

    def play(self, until_ms: int | None = None) -> int:
        """Deliver recorded samples up to ``until_ms`` (inclusive, all if None).

        Returns:
            Number of samples consumed.
        """

        count = 0
        while self._pending and (until_ms is None or self._pending[0].timestamp_ms <= until_ms):
            self.step()
            count += 1
        return count
