"""FastAPI control application for a workspace's containers."""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from . import __version__
from .api import commands, health, state
from .config import settings
from .models.errors import CodeForgeException
from .services.session import WorkspaceSession
from .utils.error_handlers import (
    codeforge_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .utils.logging import setup_logging

setup_logging()
logger = structlog.get_logger()


def create_app(session: Optional[WorkspaceSession] = None) -> FastAPI:
    """Build the app; a session is created at startup unless one is given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting CodeForge control API", version=__version__)
        if settings.api.api_debug:
            logger.warning("Debug mode is enabled")

        workspace_session = session or WorkspaceSession()
        app.state.session = workspace_session
        try:
            await workspace_session.start()
        except CodeForgeException as e:
            logger.error("Initial readiness refresh failed", error=e.message)

        logger.info(
            "CodeForge control API startup completed",
            workspace=workspace_session.workspace_path,
            image=workspace_session.image_name,
        )

        yield

        logger.info("Shutting down CodeForge control API")
        await workspace_session.close()
        logger.info("CodeForge control API shutdown completed")

    app = FastAPI(
        title="CodeForge",
        description="Docker container lifecycle and readiness for a workspace",
        version=__version__,
        debug=settings.api.api_debug,
        lifespan=lifespan,
    )

    app.add_exception_handler(CodeForgeException, codeforge_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health.router, tags=["health"])
    app.include_router(state.router, tags=["state"])
    app.include_router(commands.router, tags=["commands"])
    return app


app = create_app()


def run_server():
    logger.info(f"Starting HTTP server on {settings.api.api_host}:{settings.api.api_port}")
    uvicorn.run(
        "codeforge.main:app",
        host=settings.api.api_host,
        port=settings.api.api_port,
        log_level=settings.logging.log_level.lower(),
    )


if __name__ == "__main__":
    run_server()
