"""Error models and exception classes for the CodeForge container core."""

import time
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Sequence

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .containers import TerminationResult


class ErrorType(str, Enum):
    """Error type enumeration."""

    RESOURCE_NOT_FOUND = "resource_not_found"
    DAEMON_UNREACHABLE = "daemon_unreachable"
    OPERATION_FAILED = "operation_failed"
    PARTIAL_FAILURE = "partial_failure"
    USER_DECLINED = "user_declined"
    VALIDATION = "validation"
    COMMAND_REJECTED = "command_rejected"
    INTERNAL = "internal"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: Optional[str] = Field(None, description="Field or resource the detail refers to")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    error: str = Field(..., description="Main error message")
    error_type: ErrorType = Field(..., description="Error category")
    details: Optional[List[ErrorDetail]] = Field(
        None, description="Additional error details"
    )
    timestamp: float = Field(default_factory=time.time, description="Error timestamp")

    class Config:
        use_enum_values = True


# Custom Exception Classes


class CodeForgeException(Exception):
    """Base exception for the container core."""

    status_code = 500

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL,
        details: Optional[List[ErrorDetail]] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.details = details or []
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.message,
            error_type=self.error_type,
            details=self.details if self.details else None,
        )


class ResourceNotFoundError(CodeForgeException):
    """The docker binary, an image or a workspace file is absent."""

    status_code = 404

    def __init__(self, resource: str, message: Optional[str] = None, **kwargs):
        self.resource = resource
        super().__init__(
            message=message or f"{resource} not found",
            error_type=ErrorType.RESOURCE_NOT_FOUND,
            **kwargs,
        )


class DaemonUnreachableError(CodeForgeException):
    """The docker binary ran but could not talk to the daemon."""

    status_code = 503

    def __init__(self, stderr: str = "", message: Optional[str] = None, **kwargs):
        self.stderr = stderr
        super().__init__(
            message=message or "Docker daemon is not reachable",
            error_type=ErrorType.DAEMON_UNREACHABLE,
            **kwargs,
        )


class OperationFailedError(CodeForgeException):
    """A docker invocation exited non-zero.

    ``stderr`` is the daemon's output, untouched.
    """

    status_code = 502

    def __init__(
        self,
        argv: Sequence[str],
        exit_code: int,
        stderr: str,
        message: Optional[str] = None,
        **kwargs,
    ):
        self.argv = list(argv)
        self.exit_code = exit_code
        self.stderr = stderr
        summary = stderr.strip() or f"exit code {exit_code}"
        super().__init__(
            message=message or f"docker {' '.join(self.argv[1:2])} failed: {summary}",
            error_type=ErrorType.OPERATION_FAILED,
            **kwargs,
        )


class PartialFailureError(CodeForgeException):
    """A bulk operation finished with mixed outcomes."""

    status_code = 207

    def __init__(self, result: "TerminationResult", message: Optional[str] = None):
        self.result = result
        details = [
            ErrorDetail(field=failure.container_id, message=failure.error, code="terminate_failed")
            for failure in result.failed
        ]
        super().__init__(
            message=message
            or f"{result.failed_count} of {result.total} container(s) failed to terminate",
            error_type=ErrorType.PARTIAL_FAILURE,
            details=details,
        )


class UserDeclinedConfirmation(CodeForgeException):
    """The caller declined a confirmation-sensitive operation.

    This is an explicit no-op, not a failure.
    """

    status_code = 200

    def __init__(self, operation: str, message: Optional[str] = None):
        self.operation = operation
        super().__init__(
            message=message or f"{operation} was declined",
            error_type=ErrorType.USER_DECLINED,
        )
