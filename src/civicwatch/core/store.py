"""
Key-value persistence for engine state.

Everything the engine remembers (cached location, permission flag, watch zones,
notification settings, the "nearby" toggle) is one JSON-serializable value under
one string key:
- `store_key()` is the single place where per-user keys are assembled.
- `FileStore` keeps one JSON file per key under `.cache/civicwatch/` by default,
  with SHA-256 hashed file names and atomic replace on write.
- `MemoryStore` is the in-process variant used by tests and ephemeral runs.

Writes are whole-value replacements; concurrent writers for the same key are not
coordinated (last writer wins).
"""

from __future__ import annotations

import contextvars
import json
from contextlib import contextmanager
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Any, Iterator, Protocol


class Keys:
    """Namespaces of the persisted values."""

    LOCATION = "location"
    LOCATION_PERMISSION = "locationPermission"
    PROXIMITY_FILTER_ENABLED = "proximityFilterEnabled"
    NOTIFICATION_SETTINGS = "notificationSettings"
    WATCH_ZONES = "watchZones"


def store_key(namespace: str, user_key: str) -> str:
    """Build the `{namespace}:{userKey}` key for a per-user value."""
    if not isinstance(user_key, str) or not user_key.strip():
        raise ValueError("user_key must be a non-empty string")
    return f"{namespace}:{user_key.strip()}"


class Store(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


@dataclass
class StoreStats:
    """Per-request store usage stats (best-effort)."""

    reads: int = 0
    misses: int = 0
    writes: int = 0
    deletes: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "reads": int(self.reads),
            "misses": int(self.misses),
            "writes": int(self.writes),
            "deletes": int(self.deletes),
        }


_store_stats_var: contextvars.ContextVar[StoreStats | None] = contextvars.ContextVar(
    "civicwatch_store_stats", default=None
)


def _stats() -> StoreStats | None:
    return _store_stats_var.get()


@contextmanager
def record_store_stats() -> Iterator[StoreStats]:
    """Capture store stats within the current context (thread/task-safe)."""

    stats = StoreStats()
    token = _store_stats_var.set(stats)
    try:
        yield stats
    finally:
        _store_stats_var.reset(token)


def _count_read(hit: bool) -> None:
    st = _stats()
    if st:
        st.reads += 1
        if not hit:
            st.misses += 1


class MemoryStore:
    """A dict-backed store. Values are JSON round-tripped so callers never share state."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        _count_read(raw is not None)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)
        st = _stats()
        if st:
            st.writes += 1

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
        st = _stats()
        if st:
            st.deletes += 1


class FileStore:
    """A filesystem-backed store keyed by string."""

    def __init__(self, base_dir: Path):
        self._base_dir = Path(base_dir)

    def _key_path(self, key: str) -> Path:
        """Return the file path for a key (hash-based)."""
        digest = sha256(key.encode("utf-8")).hexdigest()
        return self._base_dir / f"{digest}.json"

    def get(self, key: str) -> Any | None:
        """Read the value stored under `key`; missing or unreadable files read as None."""
        path = self._key_path(key)
        if not path.exists():
            _count_read(False)
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            _count_read(False)
            return None
        _count_read(True)
        return raw.get("value") if isinstance(raw, dict) else None

    def set(self, key: str, value: Any) -> None:
        """Write a JSON-serializable value to disk.

        Notes:
        - Writes via a temporary file + atomic replace to avoid partial/corrupt files.
        - The original key is kept in the envelope to make the directory inspectable.
        """
        path = self._key_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = {"key": key, "value": value}
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)
        st = _stats()
        if st:
            st.writes += 1

    def delete(self, key: str) -> None:
        self._key_path(key).unlink(missing_ok=True)
        st = _stats()
        if st:
            st.deletes += 1
