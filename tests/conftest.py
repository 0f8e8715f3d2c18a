from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from wp_git_push.config import Credentials, Options
from wp_git_push.github import GitHubClient
from wp_git_push.registry import OptionStore

API_URL = "https://api.github.test"
RAW_URL = "https://raw.github.test"
GIT_AVAILABLE = shutil.which("git") is not None

Responder = Callable[[httpx.Request], httpx.Response]


class FakeGitHub:
    """Routes requests by host + path; anything unrouted is a 404."""

    def __init__(self) -> None:
        self.routes: dict[str, Responder] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        url: str,
        status: int = 200,
        text: str | None = None,
        payload: Any = None,
    ) -> None:
        def respond(_: httpx.Request) -> httpx.Response:
            if payload is not None:
                return httpx.Response(status, json=payload)
            return httpx.Response(status, text=text or "")

        self.routes[url] = respond

    def add_handler(self, url: str, handler: Responder) -> None:
        self.routes[url] = handler

    def raw(self, owner: str, repo: str, branch: str, path: str, text: str) -> None:
        self.add(f"{RAW_URL}/{owner}/{repo}/{branch}/{path}", text=text)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        responder = self.routes.get(key)
        if responder is None:
            return httpx.Response(404, content=json.dumps({"message": "Not Found"}).encode())
        return responder(request)

    def raw_paths(self) -> list[str]:
        raw_host = httpx.URL(RAW_URL).host
        return [req.url.path for req in self.requests if req.url.host == raw_host]


def plugin_source(name: str, version: str | None = "1.0.0", extra: str = "") -> str:
    lines = ["<?php", "/**", f" * Plugin Name: {name}"]
    if version is not None:
        lines.append(f" * Version: {version}")
    lines.extend([" */", extra])
    return "\n".join(lines) + "\n"


def make_plugin(plugins_dir: Path, slug: str, version: str | None = "1.0.0", name: str | None = None) -> Path:
    path = plugins_dir / slug
    path.mkdir(parents=True, exist_ok=True)
    (path / f"{slug}.php").write_text(plugin_source(name or slug.title(), version))
    return path


@pytest.fixture(autouse=True)
def _no_ambient_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)


@pytest.fixture
def options(tmp_path: Path) -> Options:
    plugins_dir = tmp_path / "plugins"
    plugins_dir.mkdir()
    return Options(
        plugins_dir=str(plugins_dir),
        backup_dir=str(tmp_path / "backups"),
        state_dir=str(tmp_path / "state"),
        download_dir=str(tmp_path / "downloads"),
        github_api_url=API_URL,
        github_raw_url=RAW_URL,
    )


@pytest.fixture
def store(options: Options) -> OptionStore:
    return OptionStore(Path(options.state_dir))


@pytest.fixture
def credentials(store: OptionStore, options: Options) -> Credentials:
    return Credentials(store, options)


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def github_client(options: Options, credentials: Credentials, fake_github: FakeGitHub) -> GitHubClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_github.handler))
    return GitHubClient(options, credentials, client=client)
