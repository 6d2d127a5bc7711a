"""
Per-user notification preferences.

Settings are created from configured defaults on first access and always saved
whole; callers read-modify-write the full object.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError as PydanticValidationError

from civicwatch.core.store import Keys, Store, store_key
from civicwatch.domain.models import NotificationSettings

logger = logging.getLogger(__name__)


class NotificationSettingsStore:
    def __init__(self, store: Store, *, defaults: NotificationSettings | None = None):
        self._store = store
        self._defaults = defaults or NotificationSettings()

    def defaults(self) -> NotificationSettings:
        return self._defaults.model_copy(deep=True)

    def get(self, user_key: str) -> NotificationSettings:
        key = store_key(Keys.NOTIFICATION_SETTINGS, user_key)
        raw = self._store.get(key)
        if raw is not None:
            try:
                return NotificationSettings.model_validate(raw)
            except PydanticValidationError:
                logger.warning("Replacing malformed notification settings for %s with defaults", user_key)
        settings = self.defaults()
        self._store.set(key, settings.model_dump(mode="json"))
        return settings

    def save(self, user_key: str, settings: NotificationSettings) -> NotificationSettings:
        self._store.set(store_key(Keys.NOTIFICATION_SETTINGS, user_key), settings.model_dump(mode="json"))
        return settings
