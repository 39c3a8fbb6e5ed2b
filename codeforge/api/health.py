"""Health check endpoints."""

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from .. import __version__
from ..dependencies.services import SessionDep

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/health", summary="Basic health check")
async def basic_health_check():
    """Liveness of the API process; does not touch docker."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "codeforge",
    }


@router.get("/health/docker", summary="Docker availability")
async def docker_health_check(session: SessionDep):
    available = await session.cli.is_available()
    content = {
        "status": "healthy" if available else "unhealthy",
        "docker_command": session.cli.docker_command,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if not available:
        logger.warning("Docker health check failed", docker_command=session.cli.docker_command)
        return JSONResponse(status_code=503, content=content)
    return content
