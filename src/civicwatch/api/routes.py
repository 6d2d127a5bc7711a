"""
API routes.

Endpoints:
- GET    `/api/health`
- GET    `/api/settings`: public engine settings (radius bounds, TTL, default radius).
- GET    `/api/users/{user_key}/location`: resolve a location (cache, source, fallback).
- PUT    `/api/users/{user_key}/location`: store a fix reported by the client.
- DELETE `/api/users/{user_key}/location`: forget location + permission (logout).
- GET    `/api/users/{owner_id}/zones`, POST same path: list / create watch zones.
- PATCH  `/api/zones/{zone_id}`, DELETE same path: edit / delete a watch zone.
- GET    `/api/users/{user_key}/notification-settings`, PUT same path.
- POST   `/api/users/{owner_id}/matches`: which zones an incident falls into.
- POST   `/api/proximity`: incidents within a radius of a center.
- GET    `/api/users/{user_key}/proximity-filter`, PUT same path: "only nearby" toggle.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from civicwatch.config.settings import get_settings
from civicwatch.core.geo import format_distance
from civicwatch.core.store import record_store_stats
from civicwatch.domain.errors import NotFoundError, ValidationError
from civicwatch.domain.models import (
    AlertDecision,
    Coordinate,
    Incident,
    LocationResult,
    NotificationSettings,
    Position,
    WatchZone,
    WatchZoneInput,
    WatchZonePatch,
)
from civicwatch.engine import Engine, build_engine

router = APIRouter()


class ZoneCreateRequest(BaseModel):
    name: str
    center: Coordinate
    radius_km: float
    active: bool = True


class LocationReport(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0)


class ProximityRequest(BaseModel):
    center: Coordinate
    radius_km: float | None = Field(default=None, gt=0)
    incidents: list[Incident] = Field(default_factory=list)


class ProximityToggle(BaseModel):
    enabled: bool


@lru_cache
def _engine() -> Engine:
    return build_engine(get_settings())


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": str(exc)})


def _invalid(exc: ValueError) -> HTTPException:
    detail = {"code": "VALIDATION_ERROR", "message": str(exc)}
    if isinstance(exc, ValidationError) and exc.field:
        detail["field"] = exc.field
    return HTTPException(status_code=422, detail=detail)


@router.get("/api/health")
def get_health() -> dict:
    return {"status": "ok"}


@router.get("/api/settings")
def get_public_settings() -> dict:
    """Return safe-to-expose settings for UI defaults (store paths and source URLs removed)."""
    settings = _engine().settings
    return {
        "app": {"name": settings.app.name},
        "location": {
            "ttl_hours": settings.location.ttl_hours,
            "fix_timeout_seconds": settings.location.fix_timeout_seconds,
            "default": settings.location.default.model_dump(),
        },
        "zones": settings.zones.model_dump(),
        "proximity": settings.proximity.model_dump(),
    }


@router.get("/api/users/{user_key}/location")
async def get_location(user_key: str) -> dict:
    engine = _engine()
    try:
        with record_store_stats() as stats:
            result = await engine.locations.get_location(user_key)
            permission = engine.locations.permission_state(user_key)
    except ValueError as e:
        raise _invalid(e) from e
    return {
        "location": result.model_dump(mode="json"),
        "permission": permission,
        "meta": {"store": stats.as_dict()},
    }


@router.put("/api/users/{user_key}/location", response_model=LocationResult)
def put_location(user_key: str, report: LocationReport) -> LocationResult:
    """Store a fix the client obtained itself (e.g., browser geolocation)."""
    engine = _engine()
    try:
        position = Position(
            lat=report.lat,
            lng=report.lng,
            accuracy_m=report.accuracy_m,
            timestamp_ms=0,
        )
        saved = engine.location_cache.save(user_key, position)
        engine.permissions.mark_granted(user_key)
    except ValueError as e:
        raise _invalid(e) from e
    return LocationResult(**saved.model_dump(), from_cache=False, expired=False)


@router.delete("/api/users/{user_key}/location", status_code=204)
def delete_location(user_key: str) -> None:
    try:
        _engine().locations.clear(user_key)
    except ValueError as e:
        raise _invalid(e) from e


@router.get("/api/users/{owner_id}/zones", response_model=list[WatchZone])
def list_zones(owner_id: str) -> list[WatchZone]:
    return _engine().zones.list_by_owner(owner_id)


@router.post("/api/users/{owner_id}/zones", response_model=WatchZone, status_code=201)
def create_zone(owner_id: str, body: ZoneCreateRequest) -> WatchZone:
    try:
        return _engine().zones.create(WatchZoneInput(owner_id=owner_id, **body.model_dump()))
    except ValidationError as e:
        raise _invalid(e) from e


@router.patch("/api/zones/{zone_id}", response_model=WatchZone)
def patch_zone(zone_id: str, patch: WatchZonePatch) -> WatchZone:
    try:
        return _engine().zones.update(zone_id, patch)
    except NotFoundError as e:
        raise _not_found(e) from e
    except ValidationError as e:
        raise _invalid(e) from e


@router.delete("/api/zones/{zone_id}", status_code=204)
def delete_zone(zone_id: str) -> None:
    _engine().zones.delete(zone_id)


@router.get("/api/users/{user_key}/notification-settings", response_model=NotificationSettings)
def get_notification_settings(user_key: str) -> NotificationSettings:
    try:
        return _engine().notification_settings.get(user_key)
    except ValueError as e:
        raise _invalid(e) from e


@router.put("/api/users/{user_key}/notification-settings", response_model=NotificationSettings)
def put_notification_settings(user_key: str, settings: NotificationSettings) -> NotificationSettings:
    try:
        return _engine().notification_settings.save(user_key, settings)
    except ValueError as e:
        raise _invalid(e) from e


@router.post("/api/users/{owner_id}/matches", response_model=AlertDecision)
def post_matches(owner_id: str, incident: Incident) -> AlertDecision:
    """Decide whether `incident` should alert `owner_id` (no delivery happens here)."""
    try:
        return _engine().matcher.decide_alert(incident, owner_id)
    except ValueError as e:
        raise _invalid(e) from e


@router.post("/api/proximity")
def post_proximity(body: ProximityRequest) -> dict:
    proximity = _engine().proximity
    radius = body.radius_km if body.radius_km is not None else proximity.default_radius_km
    nearby = proximity.within(body.incidents, body.center, radius)
    items = []
    for incident in nearby:
        d = proximity.distance_to(body.center, incident)
        items.append(
            {
                "incident": incident.model_dump(mode="json"),
                "distance_km": d,
                "distance_label": format_distance(d),
            }
        )
    return {"radius_km": radius, "count": len(items), "results": items}


@router.get("/api/users/{user_key}/proximity-filter")
def get_proximity_filter(user_key: str) -> dict:
    try:
        return {"enabled": _engine().proximity_preference.enabled(user_key)}
    except ValueError as e:
        raise _invalid(e) from e


@router.put("/api/users/{user_key}/proximity-filter")
def put_proximity_filter(user_key: str, body: ProximityToggle) -> dict:
    try:
        _engine().proximity_preference.set_enabled(user_key, body.enabled)
    except ValueError as e:
        raise _invalid(e) from e
    return {"enabled": body.enabled}
