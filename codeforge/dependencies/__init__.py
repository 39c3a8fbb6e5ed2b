"""Dependency injection for the control API."""

from .services import SessionDep, get_session

__all__ = ["SessionDep", "get_session"]
