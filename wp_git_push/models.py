from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

VersionStatus = Literal["needs_push", "behind", "current", "unknown", "needs_restore"]


@dataclass
class CommandResult:
    success: bool
    output: str
    exit_code: int


@dataclass
class WorkflowResult:
    success: bool
    log: list[str] = field(default_factory=list)
    stage: str | None = None
    nothing_to_commit: bool = False


@dataclass(frozen=True)
class RemoteRef:
    owner: str
    repo: str
    token: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class RegisteredPlugin(BaseModel):
    slug: str
    github_repo: str
    registered_at: datetime


class GitStatus(BaseModel):
    is_repo: bool
    branch: str = ""
    remote: str = ""
    remote_url: str = ""
    has_changes: bool = False
    changed_files: list[str] = Field(default_factory=list)


class ReconciliationResult(BaseModel):
    slug: str
    name: str = ""
    local_version: str | None = None
    github_version: str | None = None
    status: VersionStatus
    has_changes: bool = False
    needs_restore: bool = False
    remote: str = ""
    branch: str = "main"


class BackupRecord(BaseModel):
    filename: str
    path: str
    timestamp: int
    created_at: datetime
    size: int


class Repository(BaseModel):
    name: str
    full_name: str
    html_url: str
    ssh_url: str | None = None
    clone_url: str | None = None
    private: bool = False
    owner: str
    default_branch: str = "main"
    updated_at: str | None = None


class TokenCheck(BaseModel):
    valid: bool
    username: str | None = None
    name: str | None = None
    message: str | None = None


class CommitInfo(BaseModel):
    sha: str
    short_sha: str
    message: str
    date: str
    name: str


class PluginHeaders(BaseModel):
    name: str
    version: str | None = None


class PluginInfo(BaseModel):
    slug: str
    name: str
    version: str | None = None
    main_file: str
    has_git: bool = False
    registered: bool = False
    github_repo: str | None = None
    needs_restore: bool = False
