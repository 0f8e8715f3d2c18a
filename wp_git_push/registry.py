from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .models import RegisteredPlugin

_LOGGER = logging.getLogger(__name__)

STATE_FILE_NAME = "state.json"
LOG_TTL = timedelta(hours=1)


class OptionStore:
    """Flat key/value blob persisted as a single JSON document."""

    def __init__(self, state_dir: Path) -> None:
        self._path = Path(state_dir) / STATE_FILE_NAME

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Corrupt state file {self._path}: {exc}") from exc
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self.load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self.load()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self._write(data)

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, default=str)
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class PluginRegistry:
    """Plugins explicitly tracked by the service, keyed by slug.

    Entries outlive the plugin's ``.git`` directory so a wiped working copy
    can be reported as needing a restore.
    """

    KEY = "registered_plugins"

    def __init__(self, store: OptionStore) -> None:
        self._store = store

    def all(self) -> dict[str, RegisteredPlugin]:
        raw = self._store.get(self.KEY) or {}
        plugins: dict[str, RegisteredPlugin] = {}
        for slug, entry in raw.items():
            try:
                plugins[slug] = RegisteredPlugin(slug=slug, **entry)
            except (TypeError, ValidationError) as exc:
                _LOGGER.warning("Ignoring malformed registration for %s: %s", slug, exc)
        return plugins

    def register(self, slug: str, github_repo: str) -> RegisteredPlugin:
        plugin = RegisteredPlugin(
            slug=slug,
            github_repo=github_repo,
            registered_at=datetime.now(timezone.utc),
        )
        raw = self._store.get(self.KEY) or {}
        raw[slug] = plugin.model_dump(mode="json", exclude={"slug"})
        self._store.set(self.KEY, raw)
        _LOGGER.info("Registered plugin %s -> %s", slug, github_repo)
        return plugin

    def unregister(self, slug: str) -> bool:
        raw = self._store.get(self.KEY) or {}
        if slug not in raw:
            return False
        del raw[slug]
        self._store.set(self.KEY, raw)
        _LOGGER.info("Unregistered plugin %s", slug)
        return True

    def is_registered(self, slug: str) -> bool:
        return slug in (self._store.get(self.KEY) or {})

    def github_repo(self, slug: str) -> str | None:
        plugin = self.all().get(slug)
        return plugin.github_repo if plugin else None


class SavedLog:
    """Operator log kept across page reloads for a limited time."""

    KEY = "saved_log"

    def __init__(self, store: OptionStore, ttl: timedelta = LOG_TTL) -> None:
        self._store = store
        self._ttl = ttl

    def save(self, text: str) -> None:
        expires = datetime.now(timezone.utc) + self._ttl
        self._store.set(self.KEY, {"text": text, "expires_at": expires.isoformat()})

    def load(self) -> str | None:
        entry = self._store.get(self.KEY)
        if not entry:
            return None
        expires_at = datetime.fromisoformat(entry["expires_at"])
        if expires_at <= datetime.now(timezone.utc):
            self.clear()
            return None
        return entry.get("text")

    def clear(self) -> None:
        self._store.set(self.KEY, None)
