from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import APP_VERSION
from .github import GitHubAPIError
from .service import PluginPushService, ServiceError


class TokenBody(BaseModel):
    token: str = ""


class PushBody(BaseModel):
    message: str = ""
    force: bool = False


class InitBody(BaseModel):
    github_repo: str
    message: str = ""


class RestoreBackupBody(BaseModel):
    backup: str | None = None


class RenameBody(BaseModel):
    new_name: str


class VersionBody(BaseModel):
    version: str


class ArchiveBody(BaseModel):
    ref: str


class LogBody(BaseModel):
    log: str = ""


def create_app(service: PluginPushService) -> FastAPI:
    app = FastAPI(title="WP Git Push", version=APP_VERSION)

    @app.exception_handler(ServiceError)
    async def service_error(_: Request, exc: ServiceError) -> JSONResponse:
        content: dict[str, Any] = {"message": exc.message, **exc.extra}
        if exc.log is not None:
            content["log"] = "\n".join(exc.log)
        return JSONResponse(status_code=400, content=content)

    @app.exception_handler(GitHubAPIError)
    async def github_error(_: Request, exc: GitHubAPIError) -> JSONResponse:
        return JSONResponse(
            status_code=502,
            content={"message": exc.message, "status_code": exc.status_code},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/system")
    async def system() -> dict[str, Any]:
        return {"message": "System check complete", **await service.system_check()}

    @app.get("/config")
    async def config() -> dict[str, Any]:
        return service.public_config()

    @app.get("/token")
    async def token_status() -> dict[str, Any]:
        configured = service.token_configured()
        message = "Token configured" if configured else "No token configured"
        return {"message": message, "configured": configured}

    @app.put("/token")
    async def save_token(body: TokenBody) -> dict[str, Any]:
        username = await service.save_token(body.token)
        if username is None:
            return {"message": "Token cleared"}
        return {"message": "Token saved", "username": username}

    @app.get("/repos")
    async def repos() -> dict[str, Any]:
        repositories = await service.repositories()
        return {
            "message": f"Found {len(repositories)} repositories",
            "repos": [repo.model_dump() for repo in repositories],
            "count": len(repositories),
        }

    @app.get("/plugins")
    async def plugins() -> dict[str, Any]:
        items = await service.list_plugins()
        return {"message": f"Found {len(items)} plugins", "plugins": [p.model_dump() for p in items]}

    @app.get("/plugins/{slug}/status")
    async def plugin_status(slug: str) -> dict[str, Any]:
        status = await service.git_status(slug)
        return {"message": "Status loaded", **status.model_dump()}

    @app.post("/plugins/{slug}/push")
    async def push(slug: str, body: PushBody | None = None) -> dict[str, Any]:
        body = body or PushBody()
        result = await service.push_plugin(slug, body.message, body.force)
        return {"message": "Push complete", **result}

    @app.post("/plugins/{slug}/init")
    async def init(slug: str, body: InitBody) -> dict[str, Any]:
        result = await service.init_repository(slug, body.github_repo, body.message)
        return {"message": "Repository initialized", **result}

    @app.delete("/plugins/{slug}/registration")
    async def unregister(slug: str) -> dict[str, Any]:
        removed = service.unregister(slug)
        return {"message": "Plugin unregistered from dashboard", "removed": removed}

    @app.post("/plugins/{slug}/restore-git")
    async def restore_git(slug: str) -> dict[str, Any]:
        method = await service.restore_git(slug)
        message = "Git restored from backup" if method == "backup" else "Git reinitialized"
        return {"message": message, "method": method}

    @app.get("/plugins/{slug}/backups")
    async def backup_info(slug: str) -> dict[str, Any]:
        info = service.backup_info(slug)
        latest = info["latest"]
        return {
            "message": "Info loaded",
            "has_git": info["has_git"],
            "backup_count": info["backup_count"],
            "latest": latest.model_dump(mode="json") if latest else None,
            "backups": [record.model_dump(mode="json") for record in info["backups"]],
        }

    @app.post("/plugins/{slug}/backups")
    async def create_backup(slug: str) -> dict[str, Any]:
        record = await service.create_backup(slug)
        return {"message": f"Backup created: {record.filename}", "file": record.filename}

    @app.post("/plugins/{slug}/backups/restore")
    async def restore_backup(slug: str, body: RestoreBackupBody | None = None) -> dict[str, Any]:
        await service.restore_backup(slug, (body or RestoreBackupBody()).backup)
        return {"message": "Backup restored"}

    @app.post("/plugins/{slug}/backups/download")
    async def download_backup(slug: str) -> dict[str, Any]:
        path = await service.export_backup(slug)
        return {"message": "Backup ready", "path": str(path), "filename": path.name}

    @app.post("/backups")
    async def backup_all() -> dict[str, Any]:
        count, errors = await service.backup_all()
        message = f"Backed up {count} plugin(s)"
        if errors:
            message += ". Errors: " + ", ".join(errors)
        return {"message": message, "count": count}

    @app.get("/plugins/{slug}/version")
    async def check_version(slug: str) -> dict[str, Any]:
        result = await service.check_version(slug)
        return {"message": "Check complete", **result.model_dump()}

    @app.put("/plugins/{slug}/version")
    async def update_version(slug: str, body: VersionBody) -> dict[str, Any]:
        version = service.set_version(slug, body.version)
        return {"message": f"Version updated to {version}", "new_version": version}

    @app.get("/versions")
    async def check_all_versions() -> dict[str, Any]:
        results = await service.check_all_versions()
        return {
            "message": "Version check complete",
            "plugins": [result.model_dump() for result in results],
            "count": len(results),
        }

    @app.post("/plugins/{slug}/rename")
    async def rename(slug: str, body: RenameBody) -> dict[str, Any]:
        new_slug = service.rename(slug, body.new_name)
        return {"message": f'Renamed "{slug}" -> "{new_slug}"', "new_slug": new_slug}

    @app.get("/plugins/{slug}/commits")
    async def commits(slug: str) -> dict[str, Any]:
        history = await service.commit_history(slug)
        return {
            "message": f"Loaded {len(history)} commits",
            "versions": [commit.model_dump() for commit in history],
        }

    @app.post("/plugins/{slug}/archive")
    async def archive(slug: str, body: ArchiveBody) -> dict[str, Any]:
        path = await service.download_archive(slug, body.ref)
        return {"message": "Download ready", "path": str(path), "filename": path.name}

    @app.get("/log")
    async def get_log() -> dict[str, Any]:
        return {"message": "Log loaded", "log": service.saved_log.load()}

    @app.put("/log")
    async def save_log(body: LogBody) -> dict[str, str]:
        service.saved_log.save(body.log)
        return {"message": "Log saved"}

    @app.delete("/log")
    async def clear_log() -> dict[str, str]:
        service.saved_log.clear()
        return {"message": "Log cleared"}

    return app
