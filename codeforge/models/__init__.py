"""Data models for the CodeForge container core."""

from .errors import (
    ErrorType,
    ErrorDetail,
    ErrorResponse,
    CodeForgeException,
    ResourceNotFoundError,
    DaemonUnreachableError,
    OperationFailedError,
    PartialFailureError,
    UserDeclinedConfirmation,
)
from .containers import (
    ContainerType,
    ContainerRecord,
    ImageRecord,
    RunConfig,
    CommandResult,
    TerminationFailure,
    TerminationResult,
)
from .state import (
    InitializationPhase,
    BuildPhase,
    ReadinessSnapshot,
    CommandOutcome,
    InitializationStatus,
)

__all__ = [
    # Errors
    "ErrorType",
    "ErrorDetail",
    "ErrorResponse",
    "CodeForgeException",
    "ResourceNotFoundError",
    "DaemonUnreachableError",
    "OperationFailedError",
    "PartialFailureError",
    "UserDeclinedConfirmation",
    # Containers and images
    "ContainerType",
    "ContainerRecord",
    "ImageRecord",
    "RunConfig",
    "CommandResult",
    "TerminationFailure",
    "TerminationResult",
    # Readiness state
    "InitializationPhase",
    "BuildPhase",
    "ReadinessSnapshot",
    "CommandOutcome",
    "InitializationStatus",
]
