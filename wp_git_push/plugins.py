from __future__ import annotations

import logging
import re
from pathlib import Path

from .models import PluginHeaders

_LOGGER = logging.getLogger(__name__)

PLUGIN_NAME_MARKER = "Plugin Name:"
VERSION_HEADER = re.compile(r"^[ \t]*\*?[ \t]*Version:[ \t]*(.+)$", re.IGNORECASE | re.MULTILINE)
NAME_HEADER = re.compile(r"^[ \t/*#@]*Plugin Name:[ \t]*(.+)$", re.IGNORECASE | re.MULTILINE)
VERSION_FORMAT = re.compile(r"^\d+\.\d+\.?\d*$")
SLUG_FORMAT = re.compile(r"^[a-z0-9\-]+$")


class PluginFileError(RuntimeError):
    """Raised when a plugin folder or its main file cannot be used."""


def extract_version(content: str) -> str | None:
    """Return the first ``Version:`` header value in a plugin file body."""
    match = VERSION_HEADER.search(content)
    if not match:
        return None
    return match.group(1).strip() or None


def is_plugin_main_file(content: str) -> bool:
    return PLUGIN_NAME_MARKER in content


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def find_main_file(plugin_path: Path) -> Path | None:
    plugin_path = Path(plugin_path)
    if not plugin_path.is_dir():
        return None
    preferred = [
        plugin_path / f"{plugin_path.name}.php",
        plugin_path / "plugin.php",
        plugin_path / "index.php",
    ]
    for candidate in preferred:
        if candidate.is_file() and is_plugin_main_file(_read_text(candidate)):
            return candidate
    for candidate in sorted(plugin_path.glob("*.php")):
        if candidate.is_file() and is_plugin_main_file(_read_text(candidate)):
            return candidate
    return None


def read_headers(main_file: Path) -> PluginHeaders:
    content = _read_text(main_file)
    match = NAME_HEADER.search(content)
    name = match.group(1).strip() if match else main_file.parent.name
    return PluginHeaders(name=name, version=extract_version(content))


def list_installed(plugins_dir: Path) -> list[tuple[str, Path, PluginHeaders]]:
    """Plugin folders under ``plugins_dir`` that carry a main plugin file."""
    plugins_dir = Path(plugins_dir)
    if not plugins_dir.is_dir():
        _LOGGER.warning("Plugins directory %s does not exist", plugins_dir)
        return []
    installed: list[tuple[str, Path, PluginHeaders]] = []
    for entry in sorted(plugins_dir.iterdir(), key=lambda p: p.name.lower()):
        if not entry.is_dir() or entry.name.startswith("."):
            continue
        main_file = find_main_file(entry)
        if main_file is None:
            continue
        installed.append((entry.name, main_file, read_headers(main_file)))
    return installed


def update_version(plugin_path: Path, version: str) -> Path:
    """Rewrite the plugin's ``Version:`` header and its ``<SLUG>_VERSION`` constant."""
    if not version or not VERSION_FORMAT.match(version):
        raise PluginFileError("Invalid version format. Use: 1.0.0")
    plugin_path = Path(plugin_path)
    if not plugin_path.is_dir():
        raise PluginFileError("Plugin not found.")
    main_file = find_main_file(plugin_path)
    if main_file is None:
        raise PluginFileError("Cannot write to plugin file.")

    content = _read_text(main_file)
    updated, count = re.subn(
        r"^([ \t]*\*?[ \t]*Version:[ \t]*)[\d.]+",
        lambda match: match.group(1) + version,
        content,
        count=1,
        flags=re.IGNORECASE | re.MULTILINE,
    )
    if count == 0:
        raise PluginFileError("Version header not found in plugin file.")

    constant = plugin_path.name.upper().replace("-", "_") + "_VERSION"
    updated = re.sub(
        r"define\s*\(\s*['\"]" + re.escape(constant) + r"['\"]\s*,\s*['\"][\d.]+['\"]\s*\)",
        f"define('{constant}', '{version}')",
        updated,
        flags=re.IGNORECASE,
    )
    try:
        main_file.write_text(updated, encoding="utf-8")
    except OSError as exc:
        raise PluginFileError(f"Failed to write file: {exc}") from exc
    _LOGGER.info("Set %s version to %s", plugin_path.name, version)
    return main_file


def rename_plugin(plugins_dir: Path, old_slug: str, new_slug: str) -> Path:
    if not old_slug:
        raise PluginFileError("No plugin selected.")
    if not new_slug:
        raise PluginFileError("Enter a new folder name.")
    if not SLUG_FORMAT.match(new_slug):
        raise PluginFileError("Invalid name. Use lowercase, numbers, hyphens only.")
    if old_slug == new_slug:
        raise PluginFileError("Names are the same.")

    old_path = Path(plugins_dir) / old_slug
    new_path = Path(plugins_dir) / new_slug
    if not old_path.is_dir():
        raise PluginFileError("Source folder not found.")
    if new_path.exists():
        raise PluginFileError("Target folder already exists.")
    try:
        old_path.rename(new_path)
    except OSError as exc:
        raise PluginFileError(f"Rename failed: {exc}") from exc
    _LOGGER.info("Renamed plugin folder %s -> %s", old_slug, new_slug)
    return new_path
