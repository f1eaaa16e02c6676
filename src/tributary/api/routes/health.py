"""Health check endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

router = APIRouter()

SERVICE_NAME = "tributary-api"
SERVICE_VERSION = "0.1.0"


async def _check_database(request: Request) -> str:
    try:
        async with request.app.state.db_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return f"error: {exc}"
    return "ok"


def _check_scheduler(request: Request) -> str:
    task = getattr(request.app.state, "scheduler_task", None)
    if task is None:
        return "disabled"
    return "stopped" if task.done() else "ok"


@router.get("/health")
async def health_check(request: Request):
    registry = getattr(request.app.state, "registry", None)
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "providers": len(registry) if registry is not None else 0,
    }


@router.get("/health/live")
async def liveness():
    """200 for as long as the process can answer."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness(request: Request):
    """Database reachable and, when enabled, the scheduler loop still running."""
    checks = {
        "database": await _check_database(request),
        "scheduler": _check_scheduler(request),
    }
    ready = all(value in ("ok", "disabled") for value in checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )
