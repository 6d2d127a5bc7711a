"""
Domain models (Pydantic).

These types are the plain data the engine exchanges with UI layers:
- locations (`Coordinate`, `Position`, `UserLocation`, `LocationResult`)
- watch zones (`WatchZoneInput`, `WatchZonePatch`, `WatchZone`)
- notification preferences (`NotificationSettings`)
- consumed incidents (`Incident`) and derived results (`MatchResult`, `AlertDecision`)

Keeping these models in one place helps:
- validation (reject bad coordinates early),
- consistent JSON output across CLI/API.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class IncidentType(str, Enum):
    INCENDIO = "INCENDIO"
    ACCIDENTE = "ACCIDENTE"
    INUNDACION = "INUNDACION"
    DESLIZAMIENTO = "DESLIZAMIENTO"
    TERREMOTO = "TERREMOTO"
    OTRO = "OTRO"


class Severity(str, Enum):
    BAJA = "BAJA"
    MEDIA = "MEDIA"
    ALTA = "ALTA"
    CRITICA = "CRITICA"


class IncidentStatus(str, Enum):
    PENDIENTE = "PENDIENTE"
    EN_PROCESO = "EN_PROCESO"
    RESUELTO = "RESUELTO"
    CANCELADO = "CANCELADO"


class Coordinate(BaseModel):
    """A geographic point in decimal degrees."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Position(Coordinate):
    """One fix reported by a geolocation source."""

    accuracy_m: float | None = Field(default=None, ge=0)
    timestamp_ms: int


class UserLocation(Coordinate):
    """A location the engine handed out or cached; superseded, never mutated."""

    accuracy_m: float | None = Field(default=None, ge=0)
    captured_at_ms: int
    is_default: bool = False


class LocationResult(UserLocation):
    """`UserLocation` plus where it came from."""

    from_cache: bool = False
    expired: bool = False


class WatchZoneInput(BaseModel):
    """Fields a user supplies when creating a watch zone."""

    name: str
    center: Coordinate
    radius_km: float
    owner_id: str
    active: bool = True


class WatchZonePatch(BaseModel):
    """Whole-field edits to an existing zone; unset fields are left alone."""

    name: str | None = None
    center: Coordinate | None = None
    radius_km: float | None = None
    active: bool | None = None


class WatchZone(BaseModel):
    """A named circular area owned by one user."""

    id: str
    name: str
    center: Coordinate
    radius_km: float
    owner_id: str
    active: bool = True
    created_at_ms: int


class NotificationSettings(BaseModel):
    """Per-user alert preferences; always saved as a whole."""

    enabled: bool = True
    type_filter: set[IncidentType] = Field(default_factory=lambda: set(IncidentType))
    severity_filter: set[Severity] = Field(
        default_factory=lambda: {Severity.MEDIA, Severity.ALTA, Severity.CRITICA}
    )
    sound: bool = True
    desktop: bool = False
    email: bool = False

    @field_serializer("type_filter", "severity_filter")
    def _serialize_filter(self, values: set[Enum]) -> list[str]:
        return sorted(v.value for v in values)


class Incident(BaseModel):
    """An incident as delivered by the reporting backend (consumed, not owned)."""

    id: str
    type: IncidentType
    severity: Severity
    location: Coordinate
    created_at_ms: int = 0
    status: IncidentStatus = IncidentStatus.PENDIENTE
    description: str = ""


class MatchResult(BaseModel):
    zone: WatchZone
    distance_km: float = Field(..., ge=0)


class AlertDecision(BaseModel):
    """Whether an incident should alert a user, and through which channels."""

    notify: bool
    matches: list[MatchResult] = Field(default_factory=list)
    zone_name: str | None = None
    sound: bool = False
    desktop: bool = False
    email: bool = False
