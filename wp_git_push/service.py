from __future__ import annotations

import asyncio
import logging
import re
import shutil
from pathlib import Path
from typing import Any

import httpx

from .backup import BackupError, BackupManager
from .config import Credentials, Options, load_options
from .git_client import GitOperations, home_dir, process_user
from .github import GitHubClient, build_remote_url, parse_remote_url
from .models import (
    BackupRecord,
    CommitInfo,
    GitStatus,
    PluginInfo,
    ReconciliationResult,
    RemoteRef,
    Repository,
)
from .plugins import PluginFileError, list_installed, rename_plugin, update_version
from .reconciler import ReconcileError, VersionReconciler
from .registry import OptionStore, PluginRegistry, SavedLog

_LOGGER = logging.getLogger(__name__)

_SAFE_SLUG = re.compile(r"^[A-Za-z0-9._-]+$")
_SAFE_REF = re.compile(r"^[A-Za-z0-9._/-]+$")


class ServiceError(RuntimeError):
    """A request could not be completed; ``log`` carries the operator log."""

    def __init__(self, message: str, log: list[str] | None = None, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.log = log
        self.extra = extra


class PluginPushService:
    """Application context shared by every request handler."""

    def __init__(
        self,
        options: Options | None = None,
        http_client: httpx.AsyncClient | None = None,
        git_ops: GitOperations | None = None,
        backups: BackupManager | None = None,
    ) -> None:
        self.options = options or load_options()
        self.store = OptionStore(Path(self.options.state_dir))
        self.credentials = Credentials(self.store, self.options)
        self.registry = PluginRegistry(self.store)
        self.saved_log = SavedLog(self.store)
        self.git = git_ops or GitOperations(self.options)
        self.github = GitHubClient(self.options, self.credentials, client=http_client)
        self.backups = backups or BackupManager(
            Path(self.options.backup_dir), self.options.max_backups
        )
        self.reconciler = VersionReconciler(self.github, self.git, self.registry)

    # -- helpers ---------------------------------------------------------

    def plugin_path(self, slug: str) -> Path:
        if not slug or not _SAFE_SLUG.match(slug) or slug in {".", ".."}:
            raise ServiceError("No plugin specified" if not slug else f"Invalid plugin name {slug!r}")
        return self.options.plugin_path(slug)

    def _existing_plugin_path(self, slug: str, message: str = "Plugin not found") -> Path:
        path = self.plugin_path(slug)
        if not path.is_dir():
            raise ServiceError(message)
        return path

    @staticmethod
    def _parse_repo(github_repo: str) -> RemoteRef:
        parsed = parse_remote_url(f"https://github.com/{github_repo.strip().strip('/')}")
        if not parsed:
            raise ServiceError("Invalid repository format")
        return parsed

    def _remote_url_for(self, repo: RemoteRef) -> str:
        return build_remote_url(repo.owner, repo.repo, self.credentials.token)

    # -- system and token ------------------------------------------------

    async def system_check(self) -> dict[str, Any]:
        git_info = await asyncio.to_thread(self.git.shell.check_available)
        return {"git": git_info, "process_user": process_user(), "home_dir": home_dir()}

    def token_configured(self) -> bool:
        return bool(self.credentials.token)

    async def save_token(self, token: str) -> str | None:
        token = token.strip()
        if not token:
            self.credentials.save(None)
            _LOGGER.info("GitHub token cleared")
            return None
        check = await self.github.verify_token(token)
        if not check.valid:
            raise ServiceError(f"Invalid token: {check.message}")
        self.credentials.save(token)
        _LOGGER.info("GitHub token saved for %s", check.username)
        return check.username

    async def repositories(self) -> list[Repository]:
        return await self.github.list_repositories()

    # -- plugins ---------------------------------------------------------

    async def list_plugins(self) -> list[PluginInfo]:
        installed = await asyncio.to_thread(list_installed, Path(self.options.plugins_dir))
        registered = self.registry.all()
        plugins: list[PluginInfo] = []
        for slug, main_file, headers in installed:
            has_git = GitOperations.has_git(main_file.parent)
            entry = registered.get(slug)
            plugins.append(
                PluginInfo(
                    slug=slug,
                    name=headers.name,
                    version=headers.version,
                    main_file=main_file.name,
                    has_git=has_git,
                    registered=entry is not None,
                    github_repo=entry.github_repo if entry else None,
                    needs_restore=entry is not None and not has_git,
                )
            )
        return plugins

    async def git_status(self, slug: str) -> GitStatus:
        path = self._existing_plugin_path(slug)
        return await asyncio.to_thread(self.git.status, path)

    async def push_plugin(self, slug: str, message: str = "", force: bool = False) -> dict[str, Any]:
        path = self._existing_plugin_path(slug)
        status = await asyncio.to_thread(self.git.status, path)
        remote = status.remote

        await asyncio.to_thread(self.backups.create_with_log, path)
        result = await asyncio.to_thread(self.git.quick_push, path, message or None, force)
        if not result.success:
            raise ServiceError("Push failed", log=result.log, remote=remote)
        return {"log": "\n".join(result.log), "remote": remote}

    async def init_repository(self, slug: str, github_repo: str, message: str = "") -> dict[str, Any]:
        if not slug or not github_repo:
            raise ServiceError("Missing required fields")
        path = self._existing_plugin_path(slug)
        repo = self._parse_repo(github_repo)
        remote_url = self._remote_url_for(repo)
        reinitialize = GitOperations.has_git(path)

        result = await asyncio.to_thread(
            self.git.full_init_and_push,
            path,
            remote_url,
            message or self.options.initial_commit_message,
            reinitialize,
        )
        if not result.success:
            raise ServiceError(f"{(result.stage or 'init').capitalize()} failed", log=result.log)

        self.registry.register(slug, repo.full_name)
        _, backup_log = await asyncio.to_thread(self.backups.create_with_log, path)
        log = [*result.log, *backup_log, "OK  Plugin registered (will persist after updates)"]
        return {"log": "\n".join(log)}

    def unregister(self, slug: str) -> bool:
        self.plugin_path(slug)
        return self.registry.unregister(slug)

    async def restore_git(self, slug: str) -> str:
        path = self._existing_plugin_path(slug, "Plugin folder not found")
        github_repo = self.registry.github_repo(slug)
        if not github_repo:
            raise ServiceError("No GitHub repo registered for this plugin")

        latest = self.backups.get_latest(slug)
        if latest:
            try:
                await asyncio.to_thread(self.backups.restore, Path(latest.path), path)
                return "backup"
            except BackupError as exc:
                _LOGGER.warning("Restoring %s from backup failed, re-initializing: %s", slug, exc)

        remote_url = self._remote_url_for(self._parse_repo(github_repo))
        result = await asyncio.to_thread(
            self.git.full_init_and_push, path, remote_url, "Re-init after update", True
        )
        if not result.success:
            raise ServiceError(f"Failed to restore: {result.stage} failed", log=result.log)
        await asyncio.to_thread(self.backups.create_with_log, path)
        return "reinit"

    def rename(self, slug: str, new_slug: str) -> str:
        self.plugin_path(slug)
        try:
            rename_plugin(Path(self.options.plugins_dir), slug, new_slug)
        except PluginFileError as exc:
            raise ServiceError(str(exc)) from exc
        github_repo = self.registry.github_repo(slug)
        if github_repo:
            self.registry.unregister(slug)
            self.registry.register(new_slug, github_repo)
        return new_slug

    def set_version(self, slug: str, version: str) -> str:
        path = self.plugin_path(slug)
        try:
            update_version(path, version)
        except PluginFileError as exc:
            raise ServiceError(str(exc)) from exc
        return version

    # -- backups ---------------------------------------------------------

    async def create_backup(self, slug: str) -> BackupRecord:
        path = self.plugin_path(slug)
        if not GitOperations.has_git(path):
            raise ServiceError("No git repository in this plugin")
        try:
            record = await asyncio.to_thread(self.backups.create, path)
        except BackupError as exc:
            raise ServiceError(str(exc)) from exc
        if record is None:
            raise ServiceError("Backup failed")
        return record

    async def backup_all(self) -> tuple[int, list[str]]:
        backed_up = 0
        errors: list[str] = []
        for plugin in await self.list_plugins():
            if not plugin.has_git:
                continue
            try:
                await self.create_backup(plugin.slug)
                backed_up += 1
            except ServiceError as exc:
                errors.append(f"{plugin.slug}: {exc.message}")
        if not backed_up:
            raise ServiceError("No plugins backed up. " + ", ".join(errors))
        return backed_up, errors

    def backup_info(self, slug: str) -> dict[str, Any]:
        path = self.plugin_path(slug)
        backups = self.backups.list_all(slug)
        return {
            "has_git": GitOperations.has_git(path),
            "backup_count": len(backups),
            "latest": backups[0] if backups else None,
            "backups": backups,
        }

    async def restore_backup(self, slug: str, filename: str | None = None) -> None:
        path = self.plugin_path(slug)
        try:
            if filename:
                archive = self.backups.resolve(slug, filename)
            else:
                latest = self.backups.get_latest(slug)
                if latest is None:
                    raise ServiceError("No backups found")
                archive = Path(latest.path)
            await asyncio.to_thread(self.backups.restore, archive, path)
        except BackupError as exc:
            raise ServiceError(str(exc)) from exc

    async def export_backup(self, slug: str) -> Path:
        """Copy the latest backup into the download directory."""
        self.plugin_path(slug)
        latest = self.backups.get_latest(slug)
        if latest is None:
            raise ServiceError("No backups found")
        destination = Path(self.options.download_dir) / f"{slug}-{latest.filename}"
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, latest.path, destination)
        except OSError as exc:
            _LOGGER.warning("Copying backup %s failed: %s", latest.path, exc)
            raise ServiceError("Failed to prepare download") from exc
        return destination

    # -- versions --------------------------------------------------------

    async def check_version(self, slug: str) -> ReconciliationResult:
        path = self._existing_plugin_path(slug)
        try:
            return await self.reconciler.reconcile(slug, path)
        except ReconcileError as exc:
            raise ServiceError(str(exc)) from exc

    async def check_all_versions(self) -> list[ReconciliationResult]:
        results: list[ReconciliationResult] = []
        registered = self.registry.all()
        for plugin in await self.list_plugins():
            path = self.options.plugin_path(plugin.slug)
            is_registered = plugin.slug in registered
            if not is_registered and not plugin.has_git:
                continue
            if plugin.has_git and not is_registered:
                status = await asyncio.to_thread(self.git.status, path)
                remote = parse_remote_url(status.remote_url) if status.remote_url else None
                if remote:
                    self.registry.register(plugin.slug, remote.full_name)
            try:
                results.append(await self.reconciler.reconcile(plugin.slug, path))
            except ReconcileError as exc:
                _LOGGER.debug("Skipping %s: %s", plugin.slug, exc)
        return results

    async def commit_history(self, slug: str) -> list[CommitInfo]:
        remote = await self._plugin_remote(slug)
        return await self.github.list_commits(remote.owner, remote.repo)

    async def download_archive(self, slug: str, ref: str) -> Path:
        if not ref or not _SAFE_REF.match(ref) or ".." in ref:
            raise ServiceError("No commit specified" if not ref else f"Invalid ref {ref!r}")
        remote = await self._plugin_remote(slug)
        label = ref.replace("/", "-")[:40]
        destination = Path(self.options.download_dir) / f"{slug}-{label}.zip"
        return await self.github.download_archive(remote.owner, remote.repo, ref, destination)

    async def _plugin_remote(self, slug: str) -> RemoteRef:
        path = self.plugin_path(slug)
        github_repo = self.registry.github_repo(slug)
        if GitOperations.has_git(path):
            status = await asyncio.to_thread(self.git.status, path)
            if status.remote:
                github_repo = status.remote
        remote = parse_remote_url(f"https://github.com/{github_repo}") if github_repo else None
        if remote is None:
            raise ServiceError("No GitHub repository known for this plugin")
        return remote

    # -- lifecycle -------------------------------------------------------

    def public_config(self) -> dict[str, Any]:
        data = self.options.model_dump()
        data.pop("github_token", None)
        return data

    async def shutdown(self) -> None:
        await self.github.aclose()

