from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx

from .config import Credentials, Options
from .models import CommitInfo, RemoteRef, Repository, TokenCheck

_LOGGER = logging.getLogger(__name__)

PER_PAGE = 100
MAX_PAGES = 10

_TOKEN_HTTPS = re.compile(r"^https://([^@/]+)@github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$")
_PLAIN_HTTPS = re.compile(r"^https://github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$")
_SSH = re.compile(r"^git@github\.com:([^/]+)/([^/]+?)(?:\.git)?$")
_USERINFO = re.compile(r"^(?P<scheme>[a-z][a-z0-9+.-]*://)[^@/]+@", re.IGNORECASE)


class GitHubAPIError(RuntimeError):
    """Raised when a GitHub API call fails or returns a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def parse_remote_url(url: str) -> RemoteRef | None:
    """Split a GitHub remote URL into owner, repo and (optionally) token.

    Returns ``None`` for anything that is not one of the three supported
    shapes so callers can branch on truthiness.
    """
    url = url.strip()
    match = _TOKEN_HTTPS.match(url)
    if match:
        return RemoteRef(owner=match.group(2), repo=match.group(3), token=match.group(1))
    match = _PLAIN_HTTPS.match(url)
    if match:
        return RemoteRef(owner=match.group(1), repo=match.group(2))
    match = _SSH.match(url)
    if match:
        return RemoteRef(owner=match.group(1), repo=match.group(2))
    return None


def build_remote_url(owner: str, repo: str, token: str | None = None, ssh: bool = False) -> str:
    if ssh:
        return f"git@github.com:{owner}/{repo}.git"
    if token:
        return f"https://{token}@github.com/{owner}/{repo}.git"
    return f"https://github.com/{owner}/{repo}.git"


def sanitize_remote_url(url: str) -> str:
    """Drop any credentials embedded in a remote URL."""
    parsed = parse_remote_url(url)
    if parsed:
        return build_remote_url(parsed.owner, parsed.repo)
    return _USERINFO.sub(r"\g<scheme>", url.strip())


class GitHubClient:
    def __init__(
        self,
        options: Options,
        credentials: Credentials,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._options = options
        self._credentials = credentials
        self._api_url = options.github_api_url.rstrip("/")
        self._raw_url = options.github_raw_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=options.api_timeout,
            verify=options.verify_ssl,
            follow_redirects=True,
        )

    def _headers(self, token: str | None, accept: str = "application/vnd.github.v3+json") -> dict[str, str]:
        headers = {"Accept": accept, "User-Agent": self._options.user_agent}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(
        self,
        endpoint: str,
        token: str | None = None,
        method: str = "GET",
        body: dict[str, Any] | None = None,
    ) -> Any:
        token = token or self._credentials.token
        url = f"{self._api_url}{endpoint}"
        try:
            resp = await self._client.request(
                method,
                url,
                headers=self._headers(token),
                json=body,
                timeout=self._options.api_timeout,
            )
        except httpx.HTTPError as exc:
            raise GitHubAPIError(f"GitHub request failed: {exc}") from exc

        try:
            payload = resp.json() if resp.content else None
        except json.JSONDecodeError:
            payload = None

        if not 200 <= resp.status_code < 300:
            message = None
            if isinstance(payload, dict):
                message = payload.get("message")
            raise GitHubAPIError(
                message or f"GitHub API error (HTTP {resp.status_code})",
                status_code=resp.status_code,
            )
        return payload

    async def verify_token(self, token: str) -> TokenCheck:
        try:
            user = await self.request("/user", token=token)
        except GitHubAPIError as exc:
            return TokenCheck(valid=False, message=exc.message)
        if isinstance(user, dict) and user.get("login"):
            return TokenCheck(
                valid=True,
                username=user["login"],
                name=user.get("name") or user["login"],
            )
        return TokenCheck(valid=False, message="Invalid response from GitHub")

    async def list_repositories(self) -> list[Repository]:
        if not self._credentials.token:
            raise GitHubAPIError("No GitHub token configured.")

        repositories: list[Repository] = []
        for page in range(1, MAX_PAGES + 1):
            endpoint = (
                f"/user/repos?per_page={PER_PAGE}&page={page}"
                "&sort=updated&affiliation=owner,collaborator"
            )
            items = await self.request(endpoint)
            if not items:
                break
            for item in items:
                repositories.append(
                    Repository(
                        name=item["name"],
                        full_name=item["full_name"],
                        html_url=item["html_url"],
                        ssh_url=item.get("ssh_url"),
                        clone_url=item.get("clone_url"),
                        private=bool(item.get("private")),
                        owner=item["owner"]["login"],
                        default_branch=item.get("default_branch") or self._options.default_branch,
                        updated_at=item.get("updated_at"),
                    )
                )
            if len(items) < PER_PAGE:
                break
        repositories.sort(key=lambda repo: repo.name.lower())
        _LOGGER.debug("Fetched %d repositories", len(repositories))
        return repositories

    async def fetch_raw(self, owner: str, repo: str, ref: str, path: str) -> str | None:
        """Return a file's raw content, or ``None`` when it cannot be fetched."""
        url = f"{self._raw_url}/{owner}/{repo}/{ref}/{path}"
        try:
            resp = await self._client.get(
                url,
                headers=self._headers(self._credentials.token, accept="text/plain"),
                timeout=self._options.probe_timeout,
            )
        except httpx.HTTPError as exc:
            _LOGGER.debug("Raw fetch %s failed: %s", url, exc)
            return None
        if resp.status_code != 200:
            _LOGGER.debug("Raw fetch %s returned HTTP %s", url, resp.status_code)
            return None
        return resp.text

    async def list_contents(self, owner: str, repo: str, ref: str) -> list[dict[str, Any]] | None:
        try:
            contents = await self.request(f"/repos/{owner}/{repo}/contents?ref={ref}")
        except GitHubAPIError as exc:
            _LOGGER.debug("Listing %s/%s@%s failed: %s", owner, repo, ref, exc)
            return None
        return contents if isinstance(contents, list) else None

    async def list_commits(self, owner: str, repo: str, per_page: int = 30) -> list[CommitInfo]:
        commits = await self.request(f"/repos/{owner}/{repo}/commits?per_page={per_page}")
        if not isinstance(commits, list) or not commits:
            raise GitHubAPIError("No commits found")
        history: list[CommitInfo] = []
        for commit in commits:
            sha = commit["sha"]
            details = commit.get("commit") or {}
            message = (details.get("message") or "No message").split("\n", 1)[0][:50]
            raw_date = (details.get("committer") or {}).get("date")
            date = ""
            if raw_date:
                committed = datetime.fromisoformat(raw_date.replace("Z", "+00:00"))
                date = f"{committed:%b} {committed.day}, {committed.year}"
            history.append(
                CommitInfo(
                    sha=sha,
                    short_sha=sha[:7],
                    message=message,
                    date=date,
                    name=f"{message} ({date} - {sha[:7]})",
                )
            )
        return history

    async def download_archive(self, owner: str, repo: str, ref: str, destination: Path) -> Path:
        url = f"{self._api_url}/repos/{owner}/{repo}/zipball/{ref}"
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with self._client.stream(
                "GET",
                url,
                headers=self._headers(self._credentials.token),
                timeout=self._options.archive_timeout,
            ) as resp:
                if resp.status_code != 200:
                    raise GitHubAPIError(
                        f"Archive download failed (HTTP {resp.status_code})",
                        status_code=resp.status_code,
                    )
                with destination.open("wb") as handle:
                    async for chunk in resp.aiter_bytes():
                        handle.write(chunk)
        except httpx.HTTPError as exc:
            destination.unlink(missing_ok=True)
            raise GitHubAPIError(f"Archive download failed: {exc}") from exc
        _LOGGER.info("Downloaded %s/%s@%s to %s", owner, repo, ref, destination)
        return destination

    async def aclose(self) -> None:
        await self._client.aclose()
