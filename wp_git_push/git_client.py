from __future__ import annotations

import logging
import os
import pwd
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Sequence

import git

from .config import Options
from .github import parse_remote_url, sanitize_remote_url
from .models import CommandResult, GitStatus, WorkflowResult

_LOGGER = logging.getLogger(__name__)

RULE = "=" * 51


def home_dir() -> str:
    home = os.getenv("HOME")
    if home and os.path.isdir(home):
        return home
    try:
        entry = pwd.getpwuid(os.getuid())
        if os.path.isdir(entry.pw_dir):
            return entry.pw_dir
    except KeyError:
        pass
    return tempfile.gettempdir()


def process_user() -> str:
    try:
        return pwd.getpwuid(os.geteuid()).pw_name
    except KeyError:
        return os.getenv("USER") or os.getenv("USERNAME") or "unknown"


class GitShell:
    """Runs ``git`` subcommands and reports the outcome instead of raising."""

    def __init__(self, timeout: float | None = None) -> None:
        self._timeout = timeout

    def run(self, args: Sequence[str], cwd: Path | str | None = None) -> CommandResult:
        command = ["git", *args]
        if cwd is not None and not Path(cwd).is_dir():
            return CommandResult(False, f"Working directory {cwd} does not exist", -1)
        try:
            status, stdout, stderr = git.Git(cwd).execute(
                command,
                with_extended_output=True,
                with_exceptions=False,
                kill_after_timeout=self._timeout,
                env={"HOME": home_dir(), "GIT_TERMINAL_PROMPT": "0"},
            )
        except git.GitCommandNotFound as exc:
            return CommandResult(False, f"git executable not found: {exc}", 127)
        except OSError as exc:
            return CommandResult(False, f"Failed to run git: {exc}", -1)
        output = "\n".join(part for part in (stdout, stderr) if part)
        if status != 0:
            _LOGGER.debug("git %s exited with %s: %s", args[0] if args else "", status, output)
        return CommandResult(status == 0, output, status)

    def check_available(self) -> dict[str, object]:
        path = shutil.which("git")
        if not path:
            return {"available": False, "message": "Git not installed"}
        result = self.run(["--version"])
        return {
            "available": result.success,
            "version": result.output.strip(),
            "path": path,
        }


class GitOperations:
    def __init__(self, options: Options, shell: GitShell | None = None) -> None:
        self._options = options
        self._shell = shell or GitShell(timeout=options.git_timeout)

    @property
    def shell(self) -> GitShell:
        return self._shell

    @staticmethod
    def has_git(path: Path) -> bool:
        return (Path(path) / ".git").is_dir()

    def status(self, path: Path) -> GitStatus:
        if not self.has_git(path):
            return GitStatus(is_repo=False)

        status = GitStatus(is_repo=True)
        result = self._shell.run(["rev-parse", "--abbrev-ref", "HEAD"], path)
        if result.success:
            status.branch = result.output.strip()

        result = self._shell.run(["remote", "get-url", "origin"], path)
        if result.success:
            raw_url = result.output.strip()
            parsed = parse_remote_url(raw_url)
            if parsed:
                status.remote = parsed.full_name
            status.remote_url = sanitize_remote_url(raw_url)

        result = self._shell.run(["status", "--porcelain"], path)
        if result.success and result.output.strip():
            status.has_changes = True
            status.changed_files = [line for line in result.output.splitlines() if line.strip()]
        return status

    def init(self, path: Path, reinitialize: bool = False) -> WorkflowResult:
        log: list[str] = []
        git_dir = Path(path) / ".git"
        if reinitialize and git_dir.is_dir():
            log.append("Removing existing .git folder...")
            shutil.rmtree(git_dir, ignore_errors=True)

        log.append("Initializing git repository...")
        result = self._shell.run(["init"], path)
        if not result.success:
            log.append(f"FAILED: {result.output}")
            return WorkflowResult(False, log, stage="init")
        log.append("OK  Git initialized")

        branch = self._options.default_branch
        result = self._shell.run(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], path)
        if not result.success:
            log.append(f"FAILED: {result.output}")
            return WorkflowResult(False, log, stage="init")
        log.append(f"OK  Branch created: {branch}")
        return WorkflowResult(True, log)

    def configure_identity(
        self, path: Path, email: str | None = None, name: str | None = None
    ) -> WorkflowResult:
        email = email or self._options.git_user_email
        name = name or self._options.git_user_name
        for key, value in (("user.email", email), ("user.name", name)):
            result = self._shell.run(["config", key, value], path)
            if not result.success:
                return WorkflowResult(False, [f"FAILED: git config {key}: {result.output}"], stage="identity")
        return WorkflowResult(True, ["OK  Git user configured"])

    def stage_and_commit(self, path: Path, message: str | None = None) -> WorkflowResult:
        log: list[str] = []
        message = message or self._options.default_commit_message

        log.append("Staging files...")
        result = self._shell.run(["add", "."], path)
        if not result.success:
            log.append(f"FAILED: staging: {result.output}")
            return WorkflowResult(False, log, stage="commit")
        log.append("OK  Files staged")

        log.append("Creating commit...")
        result = self._shell.run(["commit", "-m", message], path)
        if not result.success:
            if "nothing to commit" in result.output:
                log.append("Nothing to commit")
                return WorkflowResult(True, log, nothing_to_commit=True)
            log.append(f"FAILED: commit: {result.output}")
            return WorkflowResult(False, log, stage="commit")
        log.append("OK  Commit created")
        return WorkflowResult(True, log)

    def add_remote(self, path: Path, url: str, name: str = "origin") -> CommandResult:
        self._shell.run(["remote", "remove", name], path)
        return self._shell.run(["remote", "add", name, url], path)

    def push(
        self,
        path: Path,
        remote: str = "origin",
        branch: str | None = None,
        force: bool = False,
        set_upstream: bool = False,
    ) -> CommandResult:
        args = ["push"]
        if force:
            args.append("--force")
        if set_upstream:
            args.append("-u")
        args.extend([remote, branch or self._options.default_branch])
        return self._shell.run(args, path)

    def full_init_and_push(
        self,
        path: Path,
        remote_url: str,
        message: str | None = None,
        reinitialize: bool = False,
    ) -> WorkflowResult:
        message = message or self._options.initial_commit_message
        title = "REINITIALIZE" if reinitialize else "INITIALIZE"
        log = [RULE, f"  {title} GIT REPOSITORY", f"  {_now()}", RULE, ""]

        steps = (
            lambda: self.init(path, reinitialize),
            lambda: self.configure_identity(path),
            lambda: self._add_remote_step(path, remote_url),
            lambda: self.stage_and_commit(path, message),
            lambda: self._push_step(path, force=True, set_upstream=True),
        )
        for step in steps:
            result = step()
            log.extend(result.log)
            if not result.success:
                _LOGGER.warning("Init-and-push for %s failed at stage %s", path, result.stage)
                return WorkflowResult(False, log, stage=result.stage)
            log.append("")

        log.extend([RULE, "  SUCCESS", RULE])
        _LOGGER.info("Initialized and pushed %s to %s", path, sanitize_remote_url(remote_url))
        return WorkflowResult(True, log)

    def quick_push(self, path: Path, message: str | None = None, force: bool = False) -> WorkflowResult:
        log = [RULE, f"  GIT PUSH - {_now()}", RULE, ""]

        status = self.status(path)
        if not status.is_repo:
            log.append("FAILED: Not a git repository")
            return WorkflowResult(False, log, stage="status")

        log.extend([f"Branch: {status.branch}", f"Remote: {status.remote}", ""])

        result = self.stage_and_commit(path, message)
        log.extend(result.log)
        if not result.success:
            return WorkflowResult(False, log, stage="commit")

        log.append("")
        result = self._push_step(path, branch=status.branch or None, force=force)
        log.extend(result.log)
        if not result.success:
            return WorkflowResult(False, log, stage="push")
        _LOGGER.info("Pushed %s (branch %s)", path, status.branch)
        return WorkflowResult(True, log)

    def _add_remote_step(self, path: Path, remote_url: str) -> WorkflowResult:
        log = ["Adding remote origin..."]
        result = self.add_remote(path, remote_url)
        if not result.success:
            log.append(f"FAILED: {result.output}")
            return WorkflowResult(False, log, stage="remote")
        log.append("OK  Remote added")
        return WorkflowResult(True, log)

    def _push_step(
        self,
        path: Path,
        branch: str | None = None,
        force: bool = False,
        set_upstream: bool = False,
    ) -> WorkflowResult:
        log = ["Pushing to GitHub..."]
        result = self.push(path, "origin", branch, force=force, set_upstream=set_upstream)
        if not result.success:
            log.append(f"FAILED: push: {result.output}")
            return WorkflowResult(False, log, stage="push")
        log.append("OK  Pushed successfully!")
        return WorkflowResult(True, log)


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")
