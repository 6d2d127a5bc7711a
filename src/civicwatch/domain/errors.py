"""
Engine error taxonomy.

- Geolocation failures (`PermissionDenied`, `PositionUnavailable`, `GeolocationTimeout`)
  are raised by sources and absorbed by `LocationProvider`.
- `ValidationError` and `NotFoundError` come from watch-zone mutations and are
  surfaced to callers as-is.
"""

from __future__ import annotations


class CivicWatchError(Exception):
    """Base class for all engine errors."""


class GeolocationError(CivicWatchError):
    """A geolocation source could not produce a fix.

    `code` follows the browser Geolocation API numbering (0 = unsupported).
    """

    code = 0
    default_message = "Geolocation is not supported"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class PermissionDenied(GeolocationError):
    code = 1
    default_message = "User denied the request for geolocation"


class PositionUnavailable(GeolocationError):
    code = 2
    default_message = "Location information is unavailable"


class GeolocationTimeout(GeolocationError):
    code = 3
    default_message = "The request to get the user location timed out"


class ValidationError(CivicWatchError, ValueError):
    """Input rejected before anything was persisted."""

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(CivicWatchError, LookupError):
    """The referenced entity does not exist."""
