"""
Watch-zone persistence.

All zones live in one list under the `watchZones` key and are filtered by
owner in memory. Every mutation is a read-modify-write of that list followed by
a single `Store.set`.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from civicwatch.core.store import Keys, Store
from civicwatch.core.time import Clock, now_ms
from civicwatch.domain.errors import NotFoundError, ValidationError
from civicwatch.domain.models import WatchZone, WatchZoneInput, WatchZonePatch

logger = logging.getLogger(__name__)

MIN_RADIUS_KM = 0.5
MAX_RADIUS_KM = 50.0


def _new_id() -> str:
    return uuid.uuid4().hex


class WatchZoneStore:
    def __init__(
        self,
        store: Store,
        *,
        clock: Clock = now_ms,
        id_factory: Callable[[], str] = _new_id,
        min_radius_km: float = MIN_RADIUS_KM,
        max_radius_km: float = MAX_RADIUS_KM,
    ):
        self._store = store
        self._clock = clock
        self._id_factory = id_factory
        self._min_radius_km = float(min_radius_km)
        self._max_radius_km = float(max_radius_km)

    def _load_all(self) -> list[WatchZone]:
        raw = self._store.get(Keys.WATCH_ZONES)
        if not isinstance(raw, list):
            return []
        zones: list[WatchZone] = []
        for item in raw:
            try:
                zones.append(WatchZone.model_validate(item))
            except PydanticValidationError:
                logger.warning("Skipping malformed watch zone record: %r", item)
        return zones

    def _save_all(self, zones: list[WatchZone]) -> None:
        payload: list[dict[str, Any]] = [z.model_dump(mode="json") for z in zones]
        self._store.set(Keys.WATCH_ZONES, payload)

    def _validate(self, *, name: str, radius_km: float) -> None:
        if not name or not name.strip():
            raise ValidationError("Zone name must not be blank", field="name")
        if not (self._min_radius_km <= radius_km <= self._max_radius_km):
            raise ValidationError(
                f"Zone radius must be between {self._min_radius_km:g} and {self._max_radius_km:g} km",
                field="radius_km",
            )

    def create(self, zone: WatchZoneInput) -> WatchZone:
        self._validate(name=zone.name, radius_km=zone.radius_km)
        if not zone.owner_id or not zone.owner_id.strip():
            raise ValidationError("Zone owner must not be blank", field="owner_id")

        zones = self._load_all()
        existing_ids = {z.id for z in zones}
        zone_id = self._id_factory()
        while zone_id in existing_ids:
            zone_id = self._id_factory()

        created = WatchZone(
            id=zone_id,
            name=zone.name.strip(),
            center=zone.center,
            radius_km=float(zone.radius_km),
            owner_id=zone.owner_id,
            active=zone.active,
            created_at_ms=self._clock(),
        )
        zones.append(created)
        self._save_all(zones)
        logger.info("Created watch zone %s (%s) for %s", created.id, created.name, created.owner_id)
        return created

    def list_by_owner(self, owner_id: str) -> list[WatchZone]:
        return [z for z in self._load_all() if z.owner_id == owner_id]

    def get(self, zone_id: str) -> WatchZone:
        for z in self._load_all():
            if z.id == zone_id:
                return z
        raise NotFoundError(f"Watch zone '{zone_id}' not found")

    def update(self, zone_id: str, patch: WatchZonePatch) -> WatchZone:
        zones = self._load_all()
        for index, current in enumerate(zones):
            if current.id != zone_id:
                continue
            changes = patch.model_dump(exclude_unset=True, exclude_none=True)
            if "center" in changes:
                changes["center"] = patch.center
            updated = current.model_copy(update=changes)
            self._validate(name=updated.name, radius_km=updated.radius_km)
            if "name" in changes:
                updated = updated.model_copy(update={"name": updated.name.strip()})
            zones[index] = updated
            self._save_all(zones)
            return updated
        raise NotFoundError(f"Watch zone '{zone_id}' not found")

    def set_active(self, zone_id: str, active: bool) -> WatchZone:
        return self.update(zone_id, WatchZonePatch(active=active))

    def delete(self, zone_id: str) -> None:
        """Remove a zone; unknown ids are a no-op."""
        zones = self._load_all()
        remaining = [z for z in zones if z.id != zone_id]
        if len(remaining) == len(zones):
            return
        self._save_all(remaining)
        logger.info("Deleted watch zone %s", zone_id)
