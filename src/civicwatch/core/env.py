"""
`.env` loading and project-relative paths.

The file store defaults to a relative directory (`.cache/civicwatch`). The API,
CLI and tests may start from different working directories, so relative paths
are anchored at the project root: `CIVICWATCH_PROJECT_ROOT` when set, else the
nearest parent holding a `.env`, `.git` or `pyproject.toml`.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

_ROOT_MARKERS = (".env", ".git", "pyproject.toml")


@lru_cache
def get_project_root() -> Path:
    override = os.getenv("CIVICWATCH_PROJECT_ROOT")
    if override:
        return Path(override).expanduser().resolve()

    cwd = Path.cwd().resolve()
    for candidate in (cwd, *cwd.parents):
        if any((candidate / marker).exists() for marker in _ROOT_MARKERS):
            return candidate
    return cwd


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load the project `.env` once; variables already set in the process win."""
    env_path = get_project_root() / ".env"
    if not env_path.is_file():
        return None
    load_dotenv(dotenv_path=env_path, override=False)
    return env_path


def resolve_project_path(path: str | Path) -> Path:
    p = Path(path).expanduser()
    return p if p.is_absolute() else (get_project_root() / p).resolve()
