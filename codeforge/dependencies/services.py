"""Service dependency injection for the control API."""

from typing import Annotated

import structlog
from fastapi import Depends, Request

from ..services.session import WorkspaceSession

logger = structlog.get_logger(__name__)


def get_session(request: Request) -> WorkspaceSession:
    """The workspace session owned by the running app (set in lifespan)."""
    return request.app.state.session


SessionDep = Annotated[WorkspaceSession, Depends(get_session)]
