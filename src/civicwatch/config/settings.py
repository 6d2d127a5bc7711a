# src/civicwatch/config/settings.py
"""
Engine settings (Pydantic).

Settings are loaded from `src/civicwatch/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `CIVICWATCH_LOG_LEVEL`, `CIVICWATCH_STORE_DIR`)
- an external YAML file via `CIVICWATCH_CONFIG_PATH`

Design rule:
- Constants such as the Earth radius, cache TTL and default radius live in YAML,
  not inside formulas.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal
from civicwatch.core.env import load_dotenv_if_present

import yaml
from pydantic import BaseModel, Field, model_validator


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `civicwatch.config`."""
    text = resources.files("civicwatch.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "CivicWatch"
    log_level: str = "INFO"


class StoreSettings(BaseModel):
    backend: Literal["file", "memory"] = "file"
    dir: str = ".cache/civicwatch"


class GeoSettings(BaseModel):
    earth_radius_km: float = Field(6371.0, gt=0)


class DefaultLocationSettings(BaseModel):
    lat: float = Field(9.9281, ge=-90, le=90)
    lng: float = Field(-84.0907, ge=-180, le=180)


class HttpSourceSettings(BaseModel):
    url: str = "http://ip-api.com/json/"
    lat_field: str = "lat"
    lng_field: str = "lon"
    accuracy_m: float = 5000.0


class SimulatedSourceSettings(BaseModel):
    base_lat: float = Field(9.9281, ge=-90, le=90)
    base_lng: float = Field(-84.0907, ge=-180, le=180)
    variation_deg: float = Field(0.01, ge=0)
    accuracy_m: float = 10.0


class LocationSettings(BaseModel):
    ttl_hours: float = Field(24, gt=0)
    fix_timeout_seconds: float = Field(10, gt=0)
    granted_max_age_seconds: float = Field(300, ge=0)
    prompt_max_age_seconds: float = Field(0, ge=0)
    watch_poll_seconds: float = Field(5, gt=0)
    source: Literal["simulated", "http", "none"] = "simulated"
    default: DefaultLocationSettings = Field(default_factory=DefaultLocationSettings)
    http: HttpSourceSettings = Field(default_factory=HttpSourceSettings)
    simulated: SimulatedSourceSettings = Field(default_factory=SimulatedSourceSettings)


class ZoneSettings(BaseModel):
    min_radius_km: float = Field(0.5, gt=0)
    max_radius_km: float = Field(50, gt=0)

    @model_validator(mode="after")
    def _validate_bounds(self) -> "ZoneSettings":
        if self.max_radius_km < self.min_radius_km:
            raise ValueError("zones.max_radius_km must be >= zones.min_radius_km")
        return self


class ProximitySettings(BaseModel):
    default_radius_km: float = Field(5, gt=0)


class NotificationDefaults(BaseModel):
    enabled: bool = True
    sound: bool = True
    desktop: bool = False
    email: bool = False
    severity_filter: list[str] = Field(default_factory=lambda: ["MEDIA", "ALTA", "CRITICA"])
    type_filter: list[str] = Field(
        default_factory=lambda: ["INCENDIO", "ACCIDENTE", "INUNDACION", "DESLIZAMIENTO", "TERREMOTO", "OTRO"]
    )


class NotificationSettingsConfig(BaseModel):
    defaults: NotificationDefaults = Field(default_factory=NotificationDefaults)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    geo: GeoSettings = Field(default_factory=GeoSettings)
    location: LocationSettings = Field(default_factory=LocationSettings)
    zones: ZoneSettings = Field(default_factory=ZoneSettings)
    proximity: ProximitySettings = Field(default_factory=ProximitySettings)
    notifications: NotificationSettingsConfig = Field(default_factory=NotificationSettingsConfig)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small.
    """
    load_dotenv_if_present()
    data = dict(data)
    store_dir = os.getenv("CIVICWATCH_STORE_DIR")
    if store_dir:
        data.setdefault("store", {})["dir"] = store_dir

    store_backend = os.getenv("CIVICWATCH_STORE_BACKEND")
    if store_backend:
        data.setdefault("store", {})["backend"] = store_backend.strip().lower()

    log_level = os.getenv("CIVICWATCH_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    source = os.getenv("CIVICWATCH_GEOLOCATION_SOURCE")
    if source:
        data.setdefault("location", {})["source"] = source.strip().lower()

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("CIVICWATCH_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
