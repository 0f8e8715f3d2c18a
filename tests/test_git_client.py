from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from conftest import GIT_AVAILABLE, make_plugin
from wp_git_push.config import Options
from wp_git_push.git_client import GitOperations, GitShell

pytestmark = pytest.mark.skipif(not GIT_AVAILABLE, reason="git missing")


def _bare_remote(root: Path) -> Path:
    remote = root / "remote.git"
    subprocess.run(["git", "init", "-q", "--bare", str(remote)], check=True)
    return remote


def _remote_log(remote: Path, branch: str = "main") -> str:
    return subprocess.run(
        ["git", "--git-dir", str(remote), "log", "--format=%s", branch],
        check=True,
        capture_output=True,
        text=True,
    ).stdout


def test_run_reports_failures_instead_of_raising(tmp_path: Path) -> None:
    shell = GitShell()
    result = shell.run(["rev-parse", "HEAD"], tmp_path)
    assert not result.success
    assert result.exit_code != 0
    assert result.output

    missing = shell.run(["status"], tmp_path / "nope")
    assert not missing.success
    assert "does not exist" in missing.output


def test_check_available() -> None:
    info = GitShell().check_available()
    assert info["available"] is True
    assert str(info["version"]).startswith("git version")


def test_status_of_non_repo(options: Options) -> None:
    path = make_plugin(Path(options.plugins_dir), "foo")
    assert GitOperations(options).status(path).is_repo is False


def test_full_init_and_push(options: Options, tmp_path: Path) -> None:
    path = make_plugin(Path(options.plugins_dir), "foo")
    remote = _bare_remote(tmp_path)
    ops = GitOperations(options)

    result = ops.full_init_and_push(path, str(remote), "Initial commit")
    assert result.success, "\n".join(result.log)
    assert result.stage is None
    assert "  SUCCESS" in result.log
    assert _remote_log(remote).strip() == "Initial commit"

    status = ops.status(path)
    assert status.is_repo
    assert status.branch == "main"
    assert status.has_changes is False


def test_full_init_and_push_reports_failing_stage(options: Options, tmp_path: Path) -> None:
    path = make_plugin(Path(options.plugins_dir), "foo")
    result = GitOperations(options).full_init_and_push(path, str(tmp_path / "no-such-remote.git"))
    assert not result.success
    assert result.stage == "push"
    assert any(line.startswith("FAILED: push") for line in result.log)
    assert (path / ".git").is_dir()


def test_quick_push_and_nothing_to_commit(options: Options, tmp_path: Path) -> None:
    path = make_plugin(Path(options.plugins_dir), "foo")
    remote = _bare_remote(tmp_path)
    ops = GitOperations(options)
    assert ops.full_init_and_push(path, str(remote)).success

    (path / "readme.txt").write_text("hello\n")
    status = ops.status(path)
    assert status.has_changes
    assert any("readme.txt" in line for line in status.changed_files)

    result = ops.quick_push(path, "Add readme")
    assert result.success, "\n".join(result.log)
    assert _remote_log(remote).splitlines()[0] == "Add readme"

    result = ops.quick_push(path, "No-op")
    assert result.success
    assert "Nothing to commit" in result.log


def test_quick_push_requires_repo(options: Options) -> None:
    path = make_plugin(Path(options.plugins_dir), "foo")
    result = GitOperations(options).quick_push(path)
    assert not result.success
    assert result.stage == "status"


def test_status_strips_token_from_remote(options: Options) -> None:
    path = make_plugin(Path(options.plugins_dir), "foo")
    ops = GitOperations(options)
    assert ops.init(path).success
    assert ops.add_remote(path, "https://secret@github.com/acme/foo.git").success

    status = ops.status(path)
    assert status.remote == "acme/foo"
    assert status.remote_url == "https://github.com/acme/foo.git"
    assert "secret" not in status.model_dump_json()


def test_reinitialize_replaces_existing_repo(options: Options) -> None:
    path = make_plugin(Path(options.plugins_dir), "foo")
    ops = GitOperations(options)
    assert ops.init(path).success
    (path / ".git" / "marker").write_text("old")

    result = ops.init(path, reinitialize=True)
    assert result.success
    assert result.log[0] == "Removing existing .git folder..."
    assert not (path / ".git" / "marker").exists()
