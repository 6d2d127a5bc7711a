"""
Geolocation sources.

A source yields one `Position` per call or raises a `GeolocationError`
(`PermissionDenied`, `PositionUnavailable`, `GeolocationTimeout`). The continuous
variant is a subscription: `watch_position()` returns a handle whose `cancel()`
stops further callbacks synchronously.

Concrete sources:
- `StaticGeolocationSource`: a fixed fix (or a fixed failure), for dev and tests.
- `SimulatedGeolocationSource`: a base point plus random jitter (~1 km).
- `HttpGeolocationSource`: IP geolocation over HTTP (coarse, no prompt).
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Any, Callable, Protocol

import httpx

from civicwatch.config.settings import Settings
from civicwatch.core.http import get_json
from civicwatch.core.time import Clock, now_ms
from civicwatch.domain.errors import (
    GeolocationError,
    GeolocationTimeout,
    PositionUnavailable,
)
from civicwatch.domain.models import Position
from civicwatch.location.permission import PermissionState

logger = logging.getLogger(__name__)

PositionCallback = Callable[[Position], None]
ErrorCallback = Callable[[GeolocationError], None]


class WatchHandle(Protocol):
    def cancel(self) -> None: ...


class GeolocationSource(Protocol):
    async def get_current_position(
        self, *, prompt: bool, timeout_s: float, maximum_age_s: float
    ) -> Position: ...

    def watch_position(
        self, on_position: PositionCallback, on_error: ErrorCallback | None = None
    ) -> WatchHandle: ...


class PollingWatch:
    """Watch subscription backed by an asyncio task that polls a source.

    Must be started from inside a running event loop.
    """

    def __init__(
        self,
        source: "PollingGeolocationSource",
        on_position: PositionCallback,
        on_error: ErrorCallback | None,
        *,
        interval_s: float,
        timeout_s: float,
    ):
        self._source = source
        self._on_position = on_position
        self._on_error = on_error
        self._interval_s = float(interval_s)
        self._timeout_s = float(timeout_s)
        self._cancelled = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while not self._cancelled:
            try:
                position = await self._source.get_current_position(
                    prompt=False, timeout_s=self._timeout_s, maximum_age_s=0
                )
            except GeolocationError as exc:
                if not self._cancelled and self._on_error is not None:
                    self._deliver(self._on_error, exc)
            except Exception:
                logger.exception("Watch poll failed; retrying in %.1fs", self._interval_s)
            else:
                if not self._cancelled:
                    self._deliver(self._on_position, position)
            await asyncio.sleep(self._interval_s)

    @staticmethod
    def _deliver(callback: Callable[[Any], None], value: Any) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception("Watch callback raised; the subscription stays active")

    def cancel(self) -> None:
        self._cancelled = True
        self._task.cancel()


class PollingGeolocationSource(ABC):
    """Base for sources without a native update stream.

    Subclasses implement `_fetch()`. Fixes younger than `maximum_age_s` are reused.
    """

    def __init__(self, *, clock: Clock = now_ms, watch_interval_s: float = 5.0):
        self._clock = clock
        self._watch_interval_s = float(watch_interval_s)
        self._last: Position | None = None

    @abstractmethod
    async def _fetch(self, *, prompt: bool, timeout_s: float) -> Position: ...

    async def get_current_position(
        self, *, prompt: bool, timeout_s: float, maximum_age_s: float
    ) -> Position:
        last = self._last
        if last is not None and maximum_age_s > 0:
            if self._clock() - last.timestamp_ms <= maximum_age_s * 1000:
                return last
        position = await self._fetch(prompt=prompt, timeout_s=timeout_s)
        self._last = position
        return position

    def watch_position(
        self, on_position: PositionCallback, on_error: ErrorCallback | None = None
    ) -> PollingWatch:
        return PollingWatch(
            self,
            on_position,
            on_error,
            interval_s=self._watch_interval_s,
            timeout_s=max(self._watch_interval_s, 1.0),
        )

    def permission_state(self) -> PermissionState:
        return "unknown"


class StaticGeolocationSource(PollingGeolocationSource):
    """Always answers with the same position, or always fails with `error`."""

    def __init__(
        self,
        position: Position | None = None,
        *,
        error: GeolocationError | None = None,
        clock: Clock = now_ms,
        watch_interval_s: float = 5.0,
    ):
        super().__init__(clock=clock, watch_interval_s=watch_interval_s)
        if position is None and error is None:
            error = PositionUnavailable()
        self._position = position
        self._error = error
        self.calls: list[bool] = []

    async def _fetch(self, *, prompt: bool, timeout_s: float) -> Position:
        self.calls.append(prompt)
        if self._error is not None:
            raise self._error
        assert self._position is not None
        return self._position.model_copy(update={"timestamp_ms": self._clock()})

    def permission_state(self) -> PermissionState:
        if isinstance(self._error, GeolocationError) and self._error.code == 1:
            return "denied"
        return "granted" if self._error is None else "prompt"


class SimulatedGeolocationSource(PollingGeolocationSource):
    """A development source jittering around a base coordinate."""

    def __init__(
        self,
        base_lat: float,
        base_lng: float,
        *,
        variation_deg: float = 0.01,
        accuracy_m: float = 10.0,
        rng: random.Random | None = None,
        clock: Clock = now_ms,
        watch_interval_s: float = 5.0,
    ):
        super().__init__(clock=clock, watch_interval_s=watch_interval_s)
        self._base_lat = float(base_lat)
        self._base_lng = float(base_lng)
        self._variation = float(variation_deg)
        self._accuracy_m = float(accuracy_m)
        self._rng = rng or random.Random()

    async def _fetch(self, *, prompt: bool, timeout_s: float) -> Position:
        return Position(
            lat=self._base_lat + (self._rng.random() - 0.5) * self._variation,
            lng=self._base_lng + (self._rng.random() - 0.5) * self._variation,
            accuracy_m=self._accuracy_m,
            timestamp_ms=self._clock(),
        )

    def permission_state(self) -> PermissionState:
        return "granted"


class HttpGeolocationSource(PollingGeolocationSource):
    """Coarse IP-based geolocation from a JSON HTTP endpoint.

    The endpoint must return an object carrying latitude/longitude fields; a
    `"status": "fail"` payload (ip-api style) counts as unavailable.
    """

    def __init__(
        self,
        url: str,
        *,
        lat_field: str = "lat",
        lng_field: str = "lon",
        accuracy_m: float | None = None,
        clock: Clock = now_ms,
        watch_interval_s: float = 5.0,
    ):
        super().__init__(clock=clock, watch_interval_s=watch_interval_s)
        self._url = url
        self._lat_field = lat_field
        self._lng_field = lng_field
        self._accuracy_m = accuracy_m

    async def _fetch(self, *, prompt: bool, timeout_s: float) -> Position:
        try:
            payload: Any = await get_json(self._url, timeout_seconds=timeout_s)
        except httpx.TimeoutException as exc:
            raise GeolocationTimeout(f"IP geolocation timed out: {exc}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise PositionUnavailable(f"IP geolocation failed: {exc}") from exc

        if not isinstance(payload, dict) or payload.get("status") == "fail":
            raise PositionUnavailable("IP geolocation returned no position")
        try:
            return Position(
                lat=float(payload[self._lat_field]),
                lng=float(payload[self._lng_field]),
                accuracy_m=self._accuracy_m,
                timestamp_ms=self._clock(),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise PositionUnavailable(f"IP geolocation payload is malformed: {exc}") from exc

    def permission_state(self) -> PermissionState:
        return "granted"


class UnsupportedGeolocationSource(PollingGeolocationSource):
    """Stands in when no geolocation capability is configured."""

    async def _fetch(self, *, prompt: bool, timeout_s: float) -> Position:
        raise GeolocationError()

    def permission_state(self) -> PermissionState:
        return "unsupported"


def build_geolocation_source(settings: Settings, *, clock: Clock = now_ms) -> GeolocationSource:
    """Create the source selected by `settings.location.source`."""
    loc = settings.location
    if loc.source == "http":
        return HttpGeolocationSource(
            loc.http.url,
            lat_field=loc.http.lat_field,
            lng_field=loc.http.lng_field,
            accuracy_m=loc.http.accuracy_m,
            clock=clock,
            watch_interval_s=loc.watch_poll_seconds,
        )
    if loc.source == "simulated":
        return SimulatedGeolocationSource(
            loc.simulated.base_lat,
            loc.simulated.base_lng,
            variation_deg=loc.simulated.variation_deg,
            accuracy_m=loc.simulated.accuracy_m,
            clock=clock,
            watch_interval_s=loc.watch_poll_seconds,
        )
    logger.info("No geolocation source configured; only cached/default locations are available.")
    return UnsupportedGeolocationSource(clock=clock, watch_interval_s=loc.watch_poll_seconds)
