"""Exception handlers registered on the control API.

Every error leaves the API as an ``ErrorResponse`` body. Docker failures
keep the daemon's stderr in ``details`` so clients see what Docker said.
"""

import traceback
from typing import List, Optional, Union

import structlog
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from ..models.errors import (
    CodeForgeException,
    DaemonUnreachableError,
    ErrorDetail,
    ErrorResponse,
    ErrorType,
    OperationFailedError,
)

logger = structlog.get_logger(__name__)

_STATUS_ERROR_TYPES = {
    400: ErrorType.VALIDATION,
    404: ErrorType.RESOURCE_NOT_FOUND,
    409: ErrorType.COMMAND_REJECTED,
    422: ErrorType.VALIDATION,
    502: ErrorType.OPERATION_FAILED,
    503: ErrorType.DAEMON_UNREACHABLE,
}


def _error_json(
    status_code: int,
    message: str,
    error_type: ErrorType,
    details: Optional[List[ErrorDetail]] = None,
) -> JSONResponse:
    body = ErrorResponse(error=message, error_type=error_type, details=details or None)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _docker_details(exc: CodeForgeException) -> List[ErrorDetail]:
    details = list(exc.details)
    if isinstance(exc, OperationFailedError):
        details.append(
            ErrorDetail(field=" ".join(exc.argv), message=exc.stderr, code=f"exit_{exc.exit_code}")
        )
    elif isinstance(exc, DaemonUnreachableError) and exc.stderr:
        details.append(ErrorDetail(field="daemon", message=exc.stderr, code="unreachable"))
    return details


async def codeforge_exception_handler(request: Request, exc: CodeForgeException) -> JSONResponse:
    """Render a domain exception with its own status code."""
    log = logger.bind(
        path=request.url.path,
        method=request.method,
        error_type=exc.error_type.value,
        status_code=exc.status_code,
    )
    if exc.status_code >= 500:
        log.error("Docker operation failed", message=exc.message)
    else:
        log.info("Request ended with a handled error", message=exc.message)

    return _error_json(exc.status_code, exc.message, exc.error_type, _docker_details(exc))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    error_type = _STATUS_ERROR_TYPES.get(exc.status_code, ErrorType.INTERNAL)
    logger.warning(
        "HTTP error",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return _error_json(exc.status_code, str(exc.detail), error_type)


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    """Flatten pydantic errors into one detail per offending field."""
    details = [
        ErrorDetail(
            field=".".join(str(part) for part in error["loc"]),
            message=error["msg"],
            code=error["type"],
        )
        for error in exc.errors()
    ]
    logger.warning(
        "Invalid request",
        path=request.url.path,
        fields=[d.field for d in details],
    )
    return _error_json(422, "Request validation failed", ErrorType.VALIDATION, details)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        traceback=traceback.format_exc(),
    )
    return _error_json(500, "An unexpected error occurred", ErrorType.INTERNAL)
