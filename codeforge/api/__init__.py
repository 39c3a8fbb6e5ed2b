"""Control API routers."""

from . import commands, health, state

__all__ = ["commands", "health", "state"]
