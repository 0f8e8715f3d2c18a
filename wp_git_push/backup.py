from __future__ import annotations

import logging
import re
import shutil
import tarfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from .models import BackupRecord

_LOGGER = logging.getLogger(__name__)

BACKUP_PREFIX = "git-backup-"
BACKUP_SUFFIX = ".tar.gz"
_BACKUP_NAME = re.compile(re.escape(BACKUP_PREFIX) + r"(\d+)" + re.escape(BACKUP_SUFFIX) + "$")


class BackupError(RuntimeError):
    """Raised when creating or restoring a backup fails."""


class BackupManager:
    """Timestamped tarballs of each plugin's ``.git`` directory."""

    def __init__(
        self,
        backup_dir: Path,
        max_backups: int = 5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backup_dir = Path(backup_dir)
        self._max_backups = max_backups
        self._clock = clock

    def backup_dir(self, slug: str) -> Path:
        return self._backup_dir / slug

    def create(self, plugin_path: Path) -> BackupRecord | None:
        plugin_path = Path(plugin_path)
        git_dir = plugin_path / ".git"
        if not git_dir.is_dir():
            return None

        target_dir = self.backup_dir(plugin_path.name)
        target_dir.mkdir(parents=True, exist_ok=True)
        timestamp = int(self._clock())
        archive = target_dir / f"{BACKUP_PREFIX}{timestamp}{BACKUP_SUFFIX}"
        while archive.exists():
            timestamp += 1
            archive = target_dir / f"{BACKUP_PREFIX}{timestamp}{BACKUP_SUFFIX}"

        try:
            with tarfile.open(archive, "w:gz") as tar:
                tar.add(git_dir, arcname=".git")
        except (OSError, tarfile.TarError) as exc:
            archive.unlink(missing_ok=True)
            raise BackupError(f"Failed to archive {git_dir}: {exc}") from exc

        _LOGGER.info("Backed up %s to %s", git_dir, archive)
        self.cleanup(plugin_path.name)
        return self._record(archive)

    def create_with_log(self, plugin_path: Path) -> tuple[BackupRecord | None, list[str]]:
        log = ["Creating backup..."]
        try:
            record = self.create(plugin_path)
        except BackupError as exc:
            _LOGGER.warning("Backup of %s failed: %s", plugin_path, exc)
            record = None
        if record is None:
            log.append("WARNING: Backup failed (non-fatal)")
            return None, log
        log.append(f"OK  Backup: {record.filename}")
        return record, log

    def list_all(self, slug: str) -> list[BackupRecord]:
        directory = self.backup_dir(slug)
        if not directory.is_dir():
            return []
        records = [
            self._record(path)
            for path in directory.glob(f"{BACKUP_PREFIX}*{BACKUP_SUFFIX}")
            if path.is_file()
        ]
        records.sort(
            key=lambda record: (record.timestamp, Path(record.path).stat().st_mtime),
            reverse=True,
        )
        return records

    def get_latest(self, slug: str) -> BackupRecord | None:
        backups = self.list_all(slug)
        return backups[0] if backups else None

    def has_backups(self, slug: str) -> bool:
        return bool(self.list_all(slug))

    def cleanup(self, slug: str, keep: int | None = None) -> int:
        keep = self._max_backups if keep is None else keep
        deleted = 0
        for record in self.list_all(slug)[keep:]:
            try:
                Path(record.path).unlink()
                deleted += 1
            except OSError as exc:
                _LOGGER.warning("Could not delete old backup %s: %s", record.path, exc)
        if deleted:
            _LOGGER.debug("Removed %d old backup(s) for %s", deleted, slug)
        return deleted

    def resolve(self, slug: str, filename: str) -> Path:
        directory = self.backup_dir(slug).resolve()
        archive = (directory / filename).resolve()
        try:
            archive.relative_to(directory)
        except ValueError as exc:
            raise BackupError(f"Unsafe backup path {filename}") from exc
        return archive

    def restore(self, archive: Path, plugin_path: Path) -> None:
        archive = Path(archive)
        plugin_path = Path(plugin_path)
        if not archive.is_file():
            raise BackupError("Backup file not found")
        if not plugin_path.is_dir():
            raise BackupError("Plugin directory not found")

        git_dir = plugin_path / ".git"
        if git_dir.is_dir():
            shutil.rmtree(git_dir)

        try:
            with tarfile.open(archive, "r:gz") as tar:
                tar.extractall(plugin_path, filter="data")
        except (OSError, tarfile.TarError) as exc:
            raise BackupError(f"Extract failed: {exc}") from exc

        if not git_dir.is_dir():
            raise BackupError(".git not restored")
        _LOGGER.info("Restored %s from %s", git_dir, archive.name)

    @staticmethod
    def _record(path: Path) -> BackupRecord:
        stat = path.stat()
        match = _BACKUP_NAME.search(path.name)
        timestamp = int(match.group(1)) if match else int(stat.st_mtime)
        return BackupRecord(
            filename=path.name,
            path=str(path),
            timestamp=timestamp,
            created_at=datetime.fromtimestamp(timestamp, tz=timezone.utc),
            size=stat.st_size,
        )
