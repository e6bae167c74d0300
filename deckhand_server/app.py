import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from deckhand_common.config import DeckhandConfig
from deckhand_common.errors import DeckhandError
from deckhand_controller.services import Services, create_services

from .auth import create_verify_token_dependency, hash_api_token

logger = logging.getLogger(__name__)

# Global instances (initialized at startup)
services: Services | None = None
token_hash: str | None = None
configured: DeckhandConfig | None = None
prepared: Services | None = None

ERROR_STATUS = {
    "container_not_found": 404,
    "unmanaged_container": 404,
    "commit_not_found": 404,
    "invalid_commit_ref": 400,
    "daemon_unreachable": 503,
    "operation_timeout": 504,
}


def configure(config: DeckhandConfig, validated: Services | None = None) -> None:
    """
    Use an already-loaded configuration instead of reading the environment.

    Args:
        config: Server configuration
        validated: Services that already passed startup validation
    """
    global configured, prepared
    configured = config
    prepared = validated


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI app.

    Handles startup and shutdown events:
    - Startup: Load config, build controllers, validate repository and runtime
      (skipped when the entrypoint already validated them)
    - Shutdown: Close the runtime client
    """
    global services, token_hash

    config = configured or DeckhandConfig.from_env()
    config.validate_server()

    if prepared is not None:
        services = prepared
    else:
        services = create_services(config)
        await services.validate()

    token_hash = config.api_token_hash or hash_api_token(config.api_token or "")
    logger.info(f"Managing {len(config.containers)} container(s) and repo {config.repo_path}")

    yield

    if services:
        services.close()


app = FastAPI(title="Deckhand", lifespan=lifespan)


def get_services() -> Services:
    """
    Get the global services bundle.

    Raises:
        RuntimeError: If services are not initialized
    """
    if services is None:
        raise RuntimeError("Services not initialized")
    return services


def get_token_hash() -> str:
    """
    Get the configured API token hash.

    Raises:
        RuntimeError: If the server was started without a token
    """
    if token_hash is None:
        raise RuntimeError("API token not configured")
    return token_hash


verify_token = create_verify_token_dependency(get_token_hash)
authenticated = [Depends(verify_token)]


@app.exception_handler(DeckhandError)
async def deckhand_error_handler(request: Request, exc: DeckhandError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.kind, 502)
    logger.warning(f"{request.method} {request.url.path} failed ({exc.kind}): {exc.detail}")
    return JSONResponse(status_code=status_code, content=exc.to_error_detail().to_dict())


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint (no authentication required)."""
    return {"status": "ok"}


@app.get("/api/status", dependencies=authenticated)
async def get_status(svc: Services = Depends(get_services)) -> dict[str, Any]:
    """Combined git and container snapshot for dashboards."""
    snapshot = await svc.status.get_snapshot()
    return snapshot.to_dict()


# ============================================================================
# Git
# ============================================================================


@app.post("/api/git/fetch", dependencies=authenticated)
async def git_fetch(svc: Services = Depends(get_services)) -> dict[str, Any]:
    result = await svc.git.fetch()
    return result.to_dict()


@app.post("/api/git/pull", dependencies=authenticated)
async def git_pull(svc: Services = Depends(get_services)) -> dict[str, Any]:
    """
    Fast-forward pull.

    A diverged branch is reported with success=false and rejected=true;
    it is never merged automatically.
    """
    outcome = await svc.git.pull()
    return outcome.to_dict()


@app.get("/api/git/incoming", dependencies=authenticated)
async def git_incoming(
    limit: int = 20, svc: Services = Depends(get_services)
) -> list[dict[str, Any]]:
    commits = await svc.git.get_incoming_commits(limit)
    return [commit.to_dict() for commit in commits]


@app.get("/api/git/commits/{ref}", dependencies=authenticated)
async def git_commit(ref: str, svc: Services = Depends(get_services)) -> dict[str, Any]:
    commit = await svc.git.get_commit_info(ref)
    return commit.to_dict()


# ============================================================================
# Containers
# ============================================================================


@app.get("/api/containers", dependencies=authenticated)
async def list_containers(svc: Services = Depends(get_services)) -> list[dict[str, Any]]:
    records = await svc.containers.get_all_statuses()
    return [record.to_dict() for record in records]


@app.post("/api/containers/start-all", dependencies=authenticated)
async def start_all(svc: Services = Depends(get_services)) -> dict[str, Any]:
    return (await svc.containers.start_all()).to_dict()


@app.post("/api/containers/stop-all", dependencies=authenticated)
async def stop_all(svc: Services = Depends(get_services)) -> dict[str, Any]:
    return (await svc.containers.stop_all()).to_dict()


@app.post("/api/containers/restart-all", dependencies=authenticated)
async def restart_all(svc: Services = Depends(get_services)) -> dict[str, Any]:
    return (await svc.containers.restart_all()).to_dict()


@app.post("/api/containers/update-all", dependencies=authenticated)
async def update_all(svc: Services = Depends(get_services)) -> dict[str, Any]:
    return (await svc.containers.update_all()).to_dict()


@app.get("/api/containers/{name}", dependencies=authenticated)
async def get_container(name: str, svc: Services = Depends(get_services)) -> dict[str, Any]:
    record = await svc.containers.get_status(name)
    return record.to_dict()


@app.post("/api/containers/{name}/start", dependencies=authenticated)
async def start_container(name: str, svc: Services = Depends(get_services)) -> dict[str, Any]:
    return (await svc.containers.start(name)).to_dict()


@app.post("/api/containers/{name}/stop", dependencies=authenticated)
async def stop_container(name: str, svc: Services = Depends(get_services)) -> dict[str, Any]:
    return (await svc.containers.stop(name)).to_dict()


@app.post("/api/containers/{name}/restart", dependencies=authenticated)
async def restart_container(name: str, svc: Services = Depends(get_services)) -> dict[str, Any]:
    return (await svc.containers.restart(name)).to_dict()


@app.post("/api/containers/{name}/update", dependencies=authenticated)
async def update_container(name: str, svc: Services = Depends(get_services)) -> dict[str, Any]:
    """Pull the newest image for one container and recreate it."""
    return (await svc.containers.update_container(name)).to_dict()
