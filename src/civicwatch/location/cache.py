"""
Last-known location cache.

One `UserLocation` per user under `location:{userKey}`, stored in the browser-era
shape `{lat, lng, accuracy?, timestamp}` so existing stores stay readable.
Freshness is a pure function of the capture timestamp and a TTL in hours.
"""

from __future__ import annotations

import logging
from typing import Any

from civicwatch.core.store import Keys, Store, store_key
from civicwatch.core.time import MS_PER_HOUR, Clock, now_ms
from civicwatch.domain.models import Coordinate, UserLocation

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 24.0


def is_expired(location: UserLocation, now_epoch_ms: int, ttl_hours: float = DEFAULT_TTL_HOURS) -> bool:
    """True when the location is strictly older than `ttl_hours`."""
    return now_epoch_ms - location.captured_at_ms > ttl_hours * MS_PER_HOUR


def _to_record(location: UserLocation) -> dict[str, Any]:
    record: dict[str, Any] = {
        "lat": location.lat,
        "lng": location.lng,
        "timestamp": location.captured_at_ms,
    }
    if location.accuracy_m is not None:
        record["accuracy"] = location.accuracy_m
    return record


def _from_record(raw: Any) -> UserLocation | None:
    if not isinstance(raw, dict):
        return None
    try:
        return UserLocation(
            lat=float(raw["lat"]),
            lng=float(raw["lng"]),
            accuracy_m=float(raw["accuracy"]) if raw.get("accuracy") is not None else None,
            captured_at_ms=int(raw["timestamp"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


class LocationCache:
    def __init__(self, store: Store, *, clock: Clock = now_ms, ttl_hours: float = DEFAULT_TTL_HOURS):
        self._store = store
        self._clock = clock
        self._ttl_hours = float(ttl_hours)

    @property
    def ttl_hours(self) -> float:
        return self._ttl_hours

    def save(self, user_key: str, location: Coordinate) -> UserLocation:
        """Overwrite the cached location, stamped with the current time."""
        accuracy = getattr(location, "accuracy_m", None)
        saved = UserLocation(
            lat=location.lat,
            lng=location.lng,
            accuracy_m=accuracy,
            captured_at_ms=self._clock(),
        )
        self._store.set(store_key(Keys.LOCATION, user_key), _to_record(saved))
        logger.debug("Saved location for %s: %.5f,%.5f", user_key, saved.lat, saved.lng)
        return saved

    def read(self, user_key: str) -> UserLocation | None:
        raw = self._store.get(store_key(Keys.LOCATION, user_key))
        if raw is None:
            return None
        location = _from_record(raw)
        if location is None:
            logger.warning("Ignoring malformed cached location for %s", user_key)
        return location

    def is_expired(
        self, location: UserLocation, now_epoch_ms: int | None = None, ttl_hours: float | None = None
    ) -> bool:
        now = self._clock() if now_epoch_ms is None else now_epoch_ms
        ttl = self._ttl_hours if ttl_hours is None else ttl_hours
        return is_expired(location, now, ttl)

    def clear(self, user_key: str) -> None:
        self._store.delete(store_key(Keys.LOCATION, user_key))
