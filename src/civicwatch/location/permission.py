"""
Geolocation permission memory.

Remembers that a user already granted geolocation on this device so the
provider can skip the prompting path next time.
"""

from __future__ import annotations

from typing import Literal

from civicwatch.core.store import Keys, Store, store_key

PermissionState = Literal["granted", "denied", "prompt", "unsupported", "unknown"]


class PermissionTracker:
    def __init__(self, store: Store):
        self._store = store

    def granted(self, user_key: str) -> bool:
        return self._store.get(store_key(Keys.LOCATION_PERMISSION, user_key)) == "true"

    def mark_granted(self, user_key: str) -> None:
        self._store.set(store_key(Keys.LOCATION_PERMISSION, user_key), "true")

    def clear(self, user_key: str) -> None:
        self._store.delete(store_key(Keys.LOCATION_PERMISSION, user_key))
