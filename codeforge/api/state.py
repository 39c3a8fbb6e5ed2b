"""Readiness state endpoints."""

import structlog
from fastapi import APIRouter

from ..dependencies.services import SessionDep

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/state", summary="Current readiness snapshot")
async def get_state(session: SessionDep):
    return session.snapshot.to_dict()


@router.post("/state/refresh", summary="Refresh readiness now")
async def refresh_state(session: SessionDep):
    snapshot = await session.synchronizer.refresh(trigger="api")
    return snapshot.to_dict()
