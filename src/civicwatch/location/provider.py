"""
Location provider.

`get_location()` resolves a user's location in this order, first success wins:
1. a cached location younger than the TTL,
2. the source without prompting, when permission was granted before,
3. the source in prompting mode (remembering the grant on success),
4. on any source failure: the cached location even if expired, else the default.

Source failures never escape; callers read `from_cache` / `expired` /
`is_default` on the result to show "approximate location" advisories.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from civicwatch.core.time import Clock, now_ms
from civicwatch.domain.errors import GeolocationError, GeolocationTimeout
from civicwatch.domain.models import Coordinate, LocationResult, Position, UserLocation
from civicwatch.location.cache import LocationCache
from civicwatch.location.permission import PermissionState, PermissionTracker
from civicwatch.location.sources import GeolocationSource, WatchHandle

logger = logging.getLogger(__name__)

LocationCallback = Callable[[UserLocation], None]


@dataclass(frozen=True)
class ProviderTimeouts:
    """Bounds applied to source calls (seconds)."""

    fix_timeout_s: float = 10.0
    granted_max_age_s: float = 300.0
    prompt_max_age_s: float = 0.0


class WatchSubscription:
    """Handle returned by `LocationProvider.watch_location()`.

    `cancel()` is synchronous and idempotent; once it returns, no further
    update reaches the cache or the callback.
    """

    def __init__(self, provider: "LocationProvider", user_key: str, callback: LocationCallback):
        self._provider = provider
        self._user_key = user_key
        self._callback = callback
        self._handle: WatchHandle | None = None
        self._active = True
        self.updates = 0

    @property
    def active(self) -> bool:
        return self._active

    def _attach(self, handle: WatchHandle) -> None:
        self._handle = handle

    def _on_position(self, position: Position) -> None:
        if not self._active:
            return
        saved = self._provider.cache.save(self._user_key, position)
        self.updates += 1
        self._callback(saved)

    def _on_error(self, error: GeolocationError) -> None:
        logger.warning("Location watch error for %s: %s", self._user_key, error.message)

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._handle is not None:
            self._handle.cancel()


class LocationProvider:
    def __init__(
        self,
        cache: LocationCache,
        permissions: PermissionTracker,
        source: GeolocationSource,
        *,
        default_location: Coordinate,
        timeouts: ProviderTimeouts | None = None,
        clock: Clock = now_ms,
    ):
        self.cache = cache
        self.permissions = permissions
        self._source = source
        self._default = default_location
        self._timeouts = timeouts or ProviderTimeouts()
        self._clock = clock

    def default_location(self) -> LocationResult:
        return LocationResult(
            lat=self._default.lat,
            lng=self._default.lng,
            captured_at_ms=self._clock(),
            is_default=True,
        )

    async def _request(self, *, prompt: bool) -> Position:
        max_age = self._timeouts.prompt_max_age_s if prompt else self._timeouts.granted_max_age_s
        try:
            return await asyncio.wait_for(
                self._source.get_current_position(
                    prompt=prompt,
                    timeout_s=self._timeouts.fix_timeout_s,
                    maximum_age_s=max_age,
                ),
                timeout=self._timeouts.fix_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise GeolocationTimeout() from exc

    async def get_location(self, user_key: str) -> LocationResult:
        if not isinstance(user_key, str) or not user_key.strip():
            raise ValueError("user_key must be a non-empty string")

        cached = self.cache.read(user_key)
        if cached is not None and not self.cache.is_expired(cached):
            logger.debug("Using cached location for %s", user_key)
            return LocationResult(**cached.model_dump(), from_cache=True, expired=False)

        try:
            if self.permissions.granted(user_key):
                position = await self._request(prompt=False)
                saved = self.cache.save(user_key, position)
            else:
                position = await self._request(prompt=True)
                saved = self.cache.save(user_key, position)
                self.permissions.mark_granted(user_key)
            return LocationResult(**saved.model_dump(), from_cache=False, expired=False)
        except GeolocationError as exc:
            logger.warning("Could not obtain location for %s: %s", user_key, exc.message)

        # `cached` may be None or expired at this point.
        if cached is not None:
            return LocationResult(**cached.model_dump(), from_cache=True, expired=True)

        logger.info("Falling back to default location for %s", user_key)
        return self.default_location()

    def permission_state(self, user_key: str) -> PermissionState:
        """Best-known permission state: the source's answer, else the remembered grant."""
        probe = getattr(self._source, "permission_state", None)
        state: PermissionState = probe() if callable(probe) else "unknown"
        if state == "unknown" and self.permissions.granted(user_key):
            return "granted"
        return state

    def clear(self, user_key: str) -> None:
        """Forget the cached location and the permission flag (logout / user switch)."""
        self.cache.clear(user_key)
        self.permissions.clear(user_key)

    async def refresh(self, user_key: str) -> LocationResult:
        self.clear(user_key)
        return await self.get_location(user_key)

    def watch_location(self, user_key: str, callback: LocationCallback) -> WatchSubscription:
        """Save every update from the source until the subscription is cancelled."""
        if not isinstance(user_key, str) or not user_key.strip():
            raise ValueError("user_key must be a non-empty string")
        subscription = WatchSubscription(self, user_key, callback)
        subscription._attach(self._source.watch_position(subscription._on_position, subscription._on_error))
        return subscription
