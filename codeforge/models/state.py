"""Readiness snapshot and command outcome models."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple


class InitializationPhase(str, Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    NOT_INITIALIZED = "not_initialized"
    INITIALIZED = "initialized"


class BuildPhase(str, Enum):
    UNKNOWN = "unknown"
    NOT_BUILT = "not_built"
    READY = "ready"


@dataclass(frozen=True)
class ReadinessSnapshot:
    """Complete, immutable view of workspace readiness.

    Every field always carries a value. A probe that failed leaves its
    field at the safe default and adds a message to ``errors``.
    """

    is_initialized: bool = False
    is_built: bool = False
    container_count: int = 0
    is_loading: bool = False
    loading_label: Optional[str] = None
    initialization: InitializationPhase = InitializationPhase.UNKNOWN
    build: BuildPhase = BuildPhase.UNKNOWN
    missing_components: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()
    sequence: int = 0
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def with_loading(self, loading: bool, label: Optional[str] = None) -> "ReadinessSnapshot":
        return replace(self, is_loading=loading, loading_label=label if loading else None)

    def same_state(self, other: "ReadinessSnapshot") -> bool:
        """Compare the externally derived fields, ignoring bookkeeping."""
        return (
            self.is_initialized == other.is_initialized
            and self.is_built == other.is_built
            and self.container_count == other.container_count
        )

    def to_dict(self) -> dict:
        return {
            "is_initialized": self.is_initialized,
            "is_built": self.is_built,
            "container_count": self.container_count,
            "is_loading": self.is_loading,
            "loading_label": self.loading_label,
            "initialization": self.initialization.value,
            "build": self.build.value,
            "missing_components": list(self.missing_components),
            "errors": list(self.errors),
            "sequence": self.sequence,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass(frozen=True)
class CommandOutcome:
    """Terminal result of a dispatched command."""

    command: str
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    rejected: bool = False
    declined: bool = False
    result: Any = None

    def to_dict(self) -> dict:
        result = self.result
        if isinstance(result, (list, tuple)):
            result = [r.to_dict() if hasattr(r, "to_dict") else r for r in result]
        elif hasattr(result, "to_dict"):
            result = result.to_dict()
        return {
            "command": self.command,
            "success": self.success,
            "error": self.error,
            "error_type": self.error_type,
            "rejected": self.rejected,
            "declined": self.declined,
            "result": result,
        }


@dataclass(frozen=True)
class InitializationStatus:
    """Which initialization marker files exist for a workspace."""

    is_initialized: bool
    missing_components: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "is_initialized": self.is_initialized,
            "missing_components": list(self.missing_components),
        }
