"""Sync status between a local plugin and its GitHub repository.

The remote version is discovered by probing likely locations of the main
plugin file on raw.githubusercontent.com, in a fixed order that puts the most
common repository layouts first. When no candidate yields a ``Version:``
header, the repository root is listed and every PHP file is checked for a
plugin header instead.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence

from .git_client import GitOperations
from .github import GitHubClient, parse_remote_url
from .models import GitStatus, PluginHeaders, ReconciliationResult, VersionStatus
from .plugins import extract_version, find_main_file, is_plugin_main_file, read_headers
from .registry import PluginRegistry

_LOGGER = logging.getLogger(__name__)

DEFAULT_BRANCHES = ("main", "master")
GENERIC_FILES = ("plugin.php", "index.php")

_SPECIAL_FORMS = {"dev": 0, "alpha": 1, "a": 1, "beta": 2, "b": 2, "rc": 3, "#": 4, "pl": 5, "p": 5}
_RELEASE_RANK = _SPECIAL_FORMS["#"]


@dataclass(frozen=True)
class ProbeCandidate:
    branch: str
    path: str


class ProbeCandidates:
    """Ordered candidate locations for a plugin's main file.

    Iterating yields a fresh generator each time, so the sequence can be
    walked again from the start.
    """

    def __init__(self, repo: str, slug: str, branch: str | None = None) -> None:
        self.repo = repo
        self.slug = slug
        self.branches: tuple[str, ...] = (branch,) if branch else DEFAULT_BRANCHES

    def file_names(self) -> list[str]:
        names = [f"{self.repo}.php"]
        if self.slug != self.repo:
            names.append(f"{self.slug}.php")
        names.extend(GENERIC_FILES)
        return names

    def folders(self) -> list[str]:
        folders = [self.repo]
        if self.slug != self.repo:
            folders.append(self.slug)
        return folders

    def __iter__(self) -> Iterator[ProbeCandidate]:
        names = self.file_names()
        for branch in self.branches:
            for name in names:
                yield ProbeCandidate(branch, name)
            for folder in self.folders():
                for name in names:
                    yield ProbeCandidate(branch, f"{folder}/{name}")


def _version_segments(version: str) -> list[str]:
    version = re.sub(r"[-_+]", ".", version.strip())
    version = re.sub(r"(?<=\d)(?=[^\d.])|(?<=[^\d.])(?=\d)", ".", version)
    return [segment for segment in version.split(".") if segment]


def _segment_rank(segment: str) -> int:
    return _SPECIAL_FORMS.get(segment.lower(), -1)


def _compare_segment(left: str | None, right: str | None) -> int:
    if left is None:
        left = "0" if right is None or right.isdecimal() else "#"
    if right is None:
        right = "0" if left.isdecimal() else "#"
    if left.isdecimal() and right.isdecimal():
        return (int(left) > int(right)) - (int(left) < int(right))
    left_rank = _RELEASE_RANK if left.isdecimal() else _segment_rank(left)
    right_rank = _RELEASE_RANK if right.isdecimal() else _segment_rank(right)
    return (left_rank > right_rank) - (left_rank < right_rank)


def compare_versions(left: str, right: str) -> int:
    """Compare dotted versions segment by segment; returns -1, 0 or 1.

    Numeric segments compare as integers (``2.10.0 > 2.9.9``) and missing
    trailing segments count as zero. Pre-release words sort
    ``dev < alpha < beta < RC < release < pl``.
    """
    left_parts = _version_segments(left)
    right_parts = _version_segments(right)
    for index in range(max(len(left_parts), len(right_parts))):
        a = left_parts[index] if index < len(left_parts) else None
        b = right_parts[index] if index < len(right_parts) else None
        result = _compare_segment(a, b)
        if result:
            return result
    return 0


def classify(local_version: str | None, github_version: str | None) -> VersionStatus:
    if not github_version or not local_version:
        return "unknown"
    result = compare_versions(local_version, github_version)
    if result > 0:
        return "needs_push"
    if result < 0:
        return "behind"
    return "current"


class ReconcileError(RuntimeError):
    """Raised when a plugin cannot be reconciled at all (no remote, no main file)."""


class VersionReconciler:
    def __init__(
        self,
        github: GitHubClient,
        git_ops: GitOperations,
        registry: PluginRegistry,
    ) -> None:
        self._github = github
        self._git = git_ops
        self._registry = registry

    async def probe_remote_version(
        self, owner: str, repo: str, slug: str, branch: str | None = None
    ) -> str | None:
        candidates = ProbeCandidates(repo, slug, branch)
        for candidate in candidates:
            content = await self._github.fetch_raw(owner, repo, candidate.branch, candidate.path)
            if content is None:
                continue
            version = extract_version(content)
            if version:
                _LOGGER.debug(
                    "Found %s/%s version %s in %s@%s",
                    owner, repo, version, candidate.path, candidate.branch,
                )
                return version
        return await self._probe_listing(owner, repo, candidates.branches)

    async def _probe_listing(self, owner: str, repo: str, branches: Sequence[str]) -> str | None:
        for branch in branches:
            contents = await self._github.list_contents(owner, repo, branch)
            if not contents:
                continue
            php_files = [
                item["name"]
                for item in contents
                if item.get("type") == "file" and item.get("name", "").lower().endswith(".php")
            ]
            for name in php_files:
                content = await self._github.fetch_raw(owner, repo, branch, name)
                if content is None or not is_plugin_main_file(content):
                    continue
                version = extract_version(content)
                if version:
                    _LOGGER.debug("Found %s/%s version %s via listing (%s)", owner, repo, version, name)
                    return version
        _LOGGER.info("No version header found for %s/%s", owner, repo)
        return None

    def _local_state(
        self, plugin_path: Path
    ) -> tuple[Path | None, PluginHeaders | None, GitStatus | None]:
        main_file = find_main_file(plugin_path)
        headers = read_headers(main_file) if main_file else None
        status = self._git.status(plugin_path) if GitOperations.has_git(plugin_path) else None
        return main_file, headers, status

    async def reconcile(self, slug: str, plugin_path: Path) -> ReconciliationResult:
        main_file, headers, status = await asyncio.to_thread(self._local_state, plugin_path)
        local_version = headers.version if headers else None
        name = headers.name if headers else slug

        if status is None:
            github_repo = self._registry.github_repo(slug)
            if github_repo is None:
                raise ReconcileError("Plugin does not have git initialized")
            return ReconciliationResult(
                slug=slug,
                name=name,
                local_version=local_version,
                status="needs_restore",
                needs_restore=True,
                remote=github_repo,
            )

        if main_file is None:
            raise ReconcileError("Could not find plugin main file")

        if not status.remote_url:
            raise ReconcileError("No remote configured")
        remote = parse_remote_url(status.remote_url)
        if remote is None:
            raise ReconcileError("Could not parse remote URL")

        github_version = await self.probe_remote_version(
            remote.owner, remote.repo, slug, status.branch or None
        )
        return ReconciliationResult(
            slug=slug,
            name=name,
            local_version=local_version,
            github_version=github_version,
            status=classify(local_version, github_version),
            has_changes=status.has_changes,
            remote=remote.full_name,
            branch=status.branch or "main",
        )
