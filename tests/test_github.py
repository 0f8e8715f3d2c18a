from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from conftest import API_URL, FakeGitHub
from wp_git_push.config import Credentials
from wp_git_push.github import (
    GitHubAPIError,
    GitHubClient,
    build_remote_url,
    parse_remote_url,
    sanitize_remote_url,
)
from wp_git_push.models import RemoteRef


def test_parse_remote_url_shapes() -> None:
    assert parse_remote_url("https://tok@github.com/acme/widget.git") == RemoteRef("acme", "widget", "tok")
    assert parse_remote_url("https://github.com/acme/widget") == RemoteRef("acme", "widget")
    assert parse_remote_url("https://github.com/acme/widget.git") == RemoteRef("acme", "widget")
    assert parse_remote_url("git@github.com:acme/widget.git") == RemoteRef("acme", "widget")
    assert parse_remote_url("https://gitlab.com/acme/widget.git") is None
    assert parse_remote_url("not a url") is None


def test_build_and_parse_round_trip() -> None:
    url = build_remote_url("acme", "widget", "tok123")
    parsed = parse_remote_url(url)
    assert parsed == RemoteRef(owner="acme", repo="widget", token="tok123")
    assert parse_remote_url(build_remote_url("acme", "widget")) == RemoteRef("acme", "widget")
    assert build_remote_url("acme", "widget", ssh=True) == "git@github.com:acme/widget.git"


def test_sanitize_remote_url_strips_credentials() -> None:
    assert sanitize_remote_url("https://tok@github.com/acme/widget.git") == "https://github.com/acme/widget.git"
    assert sanitize_remote_url("https://user:pw@example.com/x.git") == "https://example.com/x.git"
    assert sanitize_remote_url("/srv/git/widget.git") == "/srv/git/widget.git"


@pytest.mark.asyncio
async def test_request_maps_error_message(github_client: GitHubClient, fake_github: FakeGitHub) -> None:
    fake_github.add(f"{API_URL}/user", status=401, payload={"message": "Bad credentials"})
    with pytest.raises(GitHubAPIError) as excinfo:
        await github_client.request("/user", token="nope")
    assert excinfo.value.message == "Bad credentials"
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_request_without_message_uses_status(github_client: GitHubClient, fake_github: FakeGitHub) -> None:
    fake_github.add(f"{API_URL}/user", status=500, text="oops")
    with pytest.raises(GitHubAPIError, match=r"HTTP 500"):
        await github_client.request("/user")


@pytest.mark.asyncio
async def test_request_sends_bearer_and_user_agent(github_client: GitHubClient, fake_github: FakeGitHub) -> None:
    fake_github.add(f"{API_URL}/user", payload={"login": "octo"})
    await github_client.request("/user", token="tok123")
    sent = fake_github.requests[-1]
    assert sent.headers["Authorization"] == "Bearer tok123"
    assert sent.headers["User-Agent"].startswith("WP-Git-Push/")


@pytest.mark.asyncio
async def test_transport_error_becomes_api_error(options, credentials: Credentials) -> None:
    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    client = GitHubClient(options, credentials, client=httpx.AsyncClient(transport=httpx.MockTransport(boom)))
    with pytest.raises(GitHubAPIError):
        await client.request("/user")
    assert await client.fetch_raw("acme", "widget", "main", "widget.php") is None


@pytest.mark.asyncio
async def test_verify_token(github_client: GitHubClient, fake_github: FakeGitHub) -> None:
    fake_github.add(f"{API_URL}/user", payload={"login": "octo", "name": None})
    check = await github_client.verify_token("tok")
    assert check.valid and check.username == "octo" and check.name == "octo"

    fake_github.add(f"{API_URL}/user", status=401, payload={"message": "Bad credentials"})
    check = await github_client.verify_token("tok")
    assert not check.valid
    assert check.message == "Bad credentials"


def _repo(name: str) -> dict:
    return {
        "name": name,
        "full_name": f"octo/{name}",
        "html_url": f"https://github.com/octo/{name}",
        "owner": {"login": "octo"},
        "private": False,
    }


@pytest.mark.asyncio
async def test_list_repositories_paginates_and_stops_on_short_page(
    github_client: GitHubClient, fake_github: FakeGitHub, credentials: Credentials
) -> None:
    credentials.save("tok")
    pages = {
        "1": [_repo(f"repo-{i:03d}") for i in range(100)],
        "2": [_repo("Alpha"), _repo("zeta")],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["per_page"] == "100"
        return httpx.Response(200, json=pages.get(request.url.params["page"], []))

    fake_github.add_handler(f"{API_URL}/user/repos", handler)
    repos = await github_client.list_repositories()
    assert len(repos) == 102
    assert repos[0].name == "Alpha"
    assert repos[-1].name == "zeta"
    assert len(fake_github.requests) == 2


@pytest.mark.asyncio
async def test_list_repositories_caps_at_ten_pages(
    github_client: GitHubClient, fake_github: FakeGitHub, credentials: Credentials
) -> None:
    credentials.save("tok")
    fake_github.add_handler(
        f"{API_URL}/user/repos",
        lambda request: httpx.Response(200, json=[_repo("r") for _ in range(100)]),
    )
    repos = await github_client.list_repositories()
    assert len(repos) == 1000
    assert len(fake_github.requests) == 10


@pytest.mark.asyncio
async def test_list_repositories_requires_token(github_client: GitHubClient) -> None:
    with pytest.raises(GitHubAPIError, match="No GitHub token"):
        await github_client.list_repositories()


@pytest.mark.asyncio
async def test_list_commits(github_client: GitHubClient, fake_github: FakeGitHub) -> None:
    fake_github.add(
        f"{API_URL}/repos/acme/widget/commits",
        payload=[
            {
                "sha": "abcdef1234567890",
                "commit": {
                    "message": "Bump version\n\nlong body",
                    "committer": {"date": "2024-03-05T10:00:00Z"},
                },
            }
        ],
    )
    commits = await github_client.list_commits("acme", "widget")
    assert commits[0].short_sha == "abcdef1"
    assert commits[0].message == "Bump version"
    assert commits[0].date == "Mar 5, 2024"


@pytest.mark.asyncio
async def test_download_archive(github_client: GitHubClient, fake_github: FakeGitHub, tmp_path: Path) -> None:
    fake_github.add_handler(
        f"{API_URL}/repos/acme/widget/zipball/main",
        lambda request: httpx.Response(200, content=b"PK\x03\x04zip"),
    )
    target = await github_client.download_archive("acme", "widget", "main", tmp_path / "out" / "w.zip")
    assert target.read_bytes() == b"PK\x03\x04zip"

    with pytest.raises(GitHubAPIError):
        await github_client.download_archive("acme", "widget", "nope", tmp_path / "out" / "x.zip")
