"""Container listing and command dispatch endpoints."""

from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse

from ..dependencies.services import SessionDep
from ..models.errors import ErrorType

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/containers", summary="Containers of this workspace")
async def list_containers(
    session: SessionDep,
    refresh: bool = Query(True, description="Query the daemon before answering"),
):
    records = await session.registry.list_active(refresh=refresh)
    return {
        "prefix": session.registry.prefix,
        "count": len(records),
        "running": sum(1 for r in records if r.running),
        "containers": [r.to_dict() for r in records],
    }


@router.post("/commands/{command}", summary="Dispatch a command")
async def dispatch_command(
    command: str,
    session: SessionDep,
    params: Optional[Dict[str, Any]] = Body(default=None),
):
    """Run a command through the single-flight gateway.

    A rejected command answers 409 and an unknown one 404. Handler
    failures are reported inside the outcome with status 200.
    """
    outcome = await session.dispatch(command, **(params or {}))
    body = outcome.to_dict()
    if outcome.rejected:
        return JSONResponse(status_code=409, content=body)
    if outcome.error_type == ErrorType.VALIDATION.value and outcome.error.startswith("Unknown command"):
        return JSONResponse(status_code=404, content=body)
    return body


@router.get("/capabilities", summary="Available commands")
async def capabilities(session: SessionDep):
    return session.capabilities()
