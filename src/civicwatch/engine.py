"""
Engine wiring.

`build_engine()` constructs every service from one `Settings` object and one
`Store`, so entrypoints (API, CLI) and tests share the same composition and no
service is a module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from civicwatch.config.settings import Settings, get_settings
from civicwatch.core.env import resolve_project_path
from civicwatch.core.geo import DistanceCalculator
from civicwatch.core.store import FileStore, MemoryStore, Store
from civicwatch.core.time import Clock, now_ms
from civicwatch.domain.models import Coordinate, NotificationSettings
from civicwatch.location.cache import LocationCache
from civicwatch.location.permission import PermissionTracker
from civicwatch.location.provider import LocationProvider, ProviderTimeouts
from civicwatch.location.sources import GeolocationSource, build_geolocation_source
from civicwatch.notifications.matcher import NotificationMatcher
from civicwatch.notifications.settings import NotificationSettingsStore
from civicwatch.proximity import ProximityFilter, ProximityPreference
from civicwatch.zones.store import WatchZoneStore

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    settings: Settings
    store: Store
    calculator: DistanceCalculator
    location_cache: LocationCache
    permissions: PermissionTracker
    locations: LocationProvider
    zones: WatchZoneStore
    notification_settings: NotificationSettingsStore
    matcher: NotificationMatcher
    proximity: ProximityFilter
    proximity_preference: ProximityPreference


def build_store(settings: Settings) -> Store:
    """Create the store backend selected by settings (file dir resolved against the project root)."""
    if settings.store.backend == "memory":
        return MemoryStore()
    return FileStore(resolve_project_path(settings.store.dir))


def build_engine(
    settings: Settings | None = None,
    *,
    store: Store | None = None,
    source: GeolocationSource | None = None,
    clock: Clock = now_ms,
) -> Engine:
    settings = settings or get_settings()
    store = store if store is not None else build_store(settings)
    source = source if source is not None else build_geolocation_source(settings, clock=clock)

    calculator = DistanceCalculator(earth_radius_km=settings.geo.earth_radius_km)
    loc = settings.location
    cache = LocationCache(store, clock=clock, ttl_hours=loc.ttl_hours)
    permissions = PermissionTracker(store)
    provider = LocationProvider(
        cache,
        permissions,
        source,
        default_location=Coordinate(lat=loc.default.lat, lng=loc.default.lng),
        timeouts=ProviderTimeouts(
            fix_timeout_s=loc.fix_timeout_seconds,
            granted_max_age_s=loc.granted_max_age_seconds,
            prompt_max_age_s=loc.prompt_max_age_seconds,
        ),
        clock=clock,
    )
    zones = WatchZoneStore(
        store,
        clock=clock,
        min_radius_km=settings.zones.min_radius_km,
        max_radius_km=settings.zones.max_radius_km,
    )
    notification_settings = NotificationSettingsStore(
        store,
        defaults=NotificationSettings.model_validate(settings.notifications.defaults.model_dump()),
    )
    logger.debug("Engine built (store=%s, source=%s)", type(store).__name__, type(source).__name__)
    return Engine(
        settings=settings,
        store=store,
        calculator=calculator,
        location_cache=cache,
        permissions=permissions,
        locations=provider,
        zones=zones,
        notification_settings=notification_settings,
        matcher=NotificationMatcher(zones, calculator, notification_settings),
        proximity=ProximityFilter(calculator, default_radius_km=settings.proximity.default_radius_km),
        proximity_preference=ProximityPreference(store),
    )
