"""
"Nearby" incident filtering for the map view.

`ProximityFilter.within()` keeps incidents whose distance from a center is at
most the radius, preserving input order. `filter_incidents()` applies the map's
type/severity/status selectors (None means "all"). `ProximityPreference`
persists the per-user "only nearby" toggle.
"""

from __future__ import annotations

from typing import Iterable

from civicwatch.core.geo import DistanceCalculator, LatLng
from civicwatch.core.store import Keys, Store, store_key
from civicwatch.domain.models import Incident, IncidentStatus, IncidentType, Severity

DEFAULT_RADIUS_KM = 5.0


class ProximityFilter:
    def __init__(self, calculator: DistanceCalculator, *, default_radius_km: float = DEFAULT_RADIUS_KM):
        self._calculator = calculator
        self.default_radius_km = float(default_radius_km)

    def distance_to(self, center: LatLng, incident: Incident) -> float:
        return self._calculator.distance_km(center, incident.location)

    def within(
        self, incidents: Iterable[Incident], center: LatLng, radius_km: float | None = None
    ) -> list[Incident]:
        radius = self.default_radius_km if radius_km is None else float(radius_km)
        return [i for i in incidents if self.distance_to(center, i) <= radius]


def filter_incidents(
    incidents: Iterable[Incident],
    *,
    type: IncidentType | None = None,
    severity: Severity | None = None,
    status: IncidentStatus | None = None,
) -> list[Incident]:
    out: list[Incident] = []
    for incident in incidents:
        if type is not None and incident.type != type:
            continue
        if severity is not None and incident.severity != severity:
            continue
        if status is not None and incident.status != status:
            continue
        out.append(incident)
    return out


class ProximityPreference:
    """Remembers whether a user keeps the "only nearby" toggle on."""

    def __init__(self, store: Store):
        self._store = store

    def enabled(self, user_key: str) -> bool:
        return self._store.get(store_key(Keys.PROXIMITY_FILTER_ENABLED, user_key)) == "true"

    def set_enabled(self, user_key: str, enabled: bool) -> None:
        self._store.set(store_key(Keys.PROXIMITY_FILTER_ENABLED, user_key), "true" if enabled else "false")
