"""Services for the CodeForge container core."""

from .gateway import CommandDispatchGateway, CommandSpec
from .session import WorkspaceSession
from .synchronizer import StateSynchronizer

__all__ = [
    "CommandDispatchGateway",
    "CommandSpec",
    "StateSynchronizer",
    "WorkspaceSession",
]
