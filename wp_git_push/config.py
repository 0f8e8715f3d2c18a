from __future__ import annotations

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, PositiveInt, ValidationError

if TYPE_CHECKING:
    from .registry import OptionStore

APP_NAME = "WP Git Push"
APP_VERSION = "1.0.0"
OPTIONS_PATH = Path(os.getenv("WP_GIT_PUSH_OPTIONS_FILE", "/data/options.json"))
LOCAL_DEV_OPTIONS = Path("./dev/options.json")
STATE_DIR = Path(os.getenv("WP_GIT_PUSH_STATE_DIR", "/data/state"))
BACKUP_DIR = Path(os.getenv("WP_GIT_PUSH_BACKUP_DIR", "/data/backups"))
DOWNLOAD_DIR = Path(os.getenv("WP_GIT_PUSH_DOWNLOAD_DIR", "/data/downloads"))
PLUGINS_DIR = Path(os.getenv("WP_PLUGIN_DIR", "/var/www/html/wp-content/plugins"))
DEFAULT_HTTP_PORT = 8099


class Options(BaseModel):
    plugins_dir: str = str(PLUGINS_DIR)
    backup_dir: str = str(BACKUP_DIR)
    state_dir: str = str(STATE_DIR)
    download_dir: str = str(DOWNLOAD_DIR)
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    github_raw_url: str = "https://raw.githubusercontent.com"
    default_branch: str = "main"
    default_commit_message: str = "Update from WordPress"
    initial_commit_message: str = "Initial commit"
    git_user_email: str = "wordpress@localhost"
    git_user_name: str = "WordPress"
    max_backups: PositiveInt = 5
    api_timeout: PositiveInt = 30
    probe_timeout: PositiveInt = 10
    archive_timeout: PositiveInt = 180
    git_timeout: PositiveInt = 120
    verify_ssl: bool = True
    log_level: str = Field(default="info", pattern=r"^(debug|info|warning|error)$")
    http_api_port: int = DEFAULT_HTTP_PORT

    @property
    def user_agent(self) -> str:
        return f"{APP_NAME.replace(' ', '-')}/{APP_VERSION}"

    def plugin_path(self, slug: str) -> Path:
        return Path(self.plugins_dir) / slug


class Credentials:
    """GitHub token holder shared by the API client and the reconciler.

    The token is read lazily from the option store, then from the configured
    options, then from ``GITHUB_TOKEN``. ``invalidate`` drops the cached value
    so the next read goes back to the store.
    """

    def __init__(self, store: OptionStore, options: Options) -> None:
        self._store = store
        self._options = options
        self._token: str | None = None
        self._loaded = False

    @property
    def token(self) -> str | None:
        if not self._loaded:
            self._token = (
                self._store.get("github_token")
                or self._options.github_token
                or os.getenv("GITHUB_TOKEN")
                or None
            )
            self._loaded = True
        return self._token

    def save(self, token: str | None) -> None:
        self._store.set("github_token", token or None)
        self.invalidate()

    def invalidate(self) -> None:
        self._token = None
        self._loaded = False


def _load_raw_options() -> dict[str, Any]:
    candidates = [OPTIONS_PATH, LOCAL_DEV_OPTIONS]
    for candidate in candidates:
        if candidate.exists():
            with candidate.open("r", encoding="utf-8") as handle:
                return json.load(handle)
    raise FileNotFoundError(
        "No options file found. Provide /data/options.json or ./dev/options.json"
    )


def load_options() -> Options:
    raw = _load_raw_options()
    try:
        return Options(**raw)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid options: {exc}") from exc
