"""
Watch-zone matching.

Decides, for one incident and one user, which of the user's active zones
contain the incident. Delivery (toast, desktop, sound, email) belongs to the
caller; `decide_alert()` only says whether and through which channels.
"""

from __future__ import annotations

import logging

from civicwatch.core.geo import DistanceCalculator
from civicwatch.domain.models import AlertDecision, Incident, MatchResult, NotificationSettings
from civicwatch.notifications.settings import NotificationSettingsStore
from civicwatch.zones.store import WatchZoneStore

logger = logging.getLogger(__name__)


class NotificationMatcher:
    def __init__(
        self,
        zones: WatchZoneStore,
        calculator: DistanceCalculator,
        settings_store: NotificationSettingsStore | None = None,
    ):
        self._zones = zones
        self._calculator = calculator
        self._settings_store = settings_store

    def match_zones(
        self, incident: Incident, owner_id: str, settings: NotificationSettings
    ) -> list[MatchResult]:
        """All active zones of `owner_id` containing the incident, nearest first."""
        if not settings.enabled:
            return []
        if incident.severity not in settings.severity_filter:
            return []
        if incident.type not in settings.type_filter:
            return []

        matches: list[MatchResult] = []
        for zone in self._zones.list_by_owner(owner_id):
            if not zone.active:
                continue
            d = self._calculator.distance_km(zone.center, incident.location)
            if d <= zone.radius_km:
                matches.append(MatchResult(zone=zone, distance_km=d))

        matches.sort(key=lambda m: m.distance_km)
        return matches

    def _require_settings_store(self) -> NotificationSettingsStore:
        if self._settings_store is None:
            raise RuntimeError("NotificationMatcher was built without a settings store")
        return self._settings_store

    def match_for_user(self, incident: Incident, owner_id: str) -> list[MatchResult]:
        """`match_zones()` with the user's stored settings."""
        settings = self._require_settings_store().get(owner_id)
        return self.match_zones(incident, owner_id, settings)

    def decide_alert(self, incident: Incident, owner_id: str) -> AlertDecision:
        settings = self._require_settings_store().get(owner_id)
        matches = self.match_zones(incident, owner_id, settings)
        if not matches:
            return AlertDecision(notify=False)
        logger.info(
            "Incident %s falls in %d watch zone(s) of %s (nearest: %s)",
            incident.id,
            len(matches),
            owner_id,
            matches[0].zone.name,
        )
        return AlertDecision(
            notify=True,
            matches=matches,
            zone_name=matches[0].zone.name,
            sound=settings.sound,
            desktop=settings.desktop,
            email=settings.email,
        )
