"""Error classification for scan and scheduler failures.

Every exception raised while running a scan is mapped to an
:class:`ErrorCode` together with a retryable flag. The retry executor
uses the flag to decide whether another attempt is worthwhile; the CLI
and the execution history use the code and the user-facing message.

Classification is pattern based: it looks at the exception type, its
message and any ``code`` / ``status_code`` attribute. Errors that match
nothing are treated as retryable internal errors.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from dqscan.exceptions import (
    DQScanError,
    InvalidExpression,
    InvalidScheduleError,
    ScheduleNotFoundError,
    UnsupportedScanType,
    UnsupportedScheduleType,
)
from dqscan.timeutil import utcnow


class ErrorCategory(str, Enum):
    """Broad families of failure."""

    CONNECTION = "connection"
    AUTH = "auth"
    QUERY = "query"
    DATA = "data"
    VALIDATION = "validation"
    INTERNAL = "internal"


class ErrorCode(str, Enum):
    """Stable error codes attached to classified failures."""

    CONNECTION_FAILED = "CONNECTION_FAILED"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    CONNECTION_LOST = "CONNECTION_LOST"

    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_EXPIRED = "AUTH_EXPIRED"

    QUERY_SYNTAX_ERROR = "QUERY_SYNTAX_ERROR"
    QUERY_TIMEOUT = "QUERY_TIMEOUT"
    QUERY_PERMISSION_DENIED = "QUERY_PERMISSION_DENIED"

    DATA_NOT_FOUND = "DATA_NOT_FOUND"

    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_PARAMETER = "MISSING_PARAMETER"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]


_CATEGORIES: Dict[ErrorCode, ErrorCategory] = {
    ErrorCode.CONNECTION_FAILED: ErrorCategory.CONNECTION,
    ErrorCode.CONNECTION_TIMEOUT: ErrorCategory.CONNECTION,
    ErrorCode.CONNECTION_LOST: ErrorCategory.CONNECTION,
    ErrorCode.AUTH_INVALID_CREDENTIALS: ErrorCategory.AUTH,
    ErrorCode.AUTH_EXPIRED: ErrorCategory.AUTH,
    ErrorCode.QUERY_SYNTAX_ERROR: ErrorCategory.QUERY,
    ErrorCode.QUERY_TIMEOUT: ErrorCategory.QUERY,
    ErrorCode.QUERY_PERMISSION_DENIED: ErrorCategory.QUERY,
    ErrorCode.DATA_NOT_FOUND: ErrorCategory.DATA,
    ErrorCode.VALIDATION_ERROR: ErrorCategory.VALIDATION,
    ErrorCode.MISSING_PARAMETER: ErrorCategory.VALIDATION,
    ErrorCode.INTERNAL_ERROR: ErrorCategory.INTERNAL,
    ErrorCode.SERVICE_UNAVAILABLE: ErrorCategory.INTERNAL,
}

RETRYABLE_CODES = frozenset({
    ErrorCode.CONNECTION_FAILED,
    ErrorCode.CONNECTION_TIMEOUT,
    ErrorCode.CONNECTION_LOST,
    ErrorCode.QUERY_TIMEOUT,
    ErrorCode.SERVICE_UNAVAILABLE,
    ErrorCode.INTERNAL_ERROR,
})

USER_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.CONNECTION_FAILED: "Unable to connect to the data warehouse. Please check your connection settings.",
    ErrorCode.CONNECTION_TIMEOUT: "Connection timed out. The service may be slow or unavailable.",
    ErrorCode.CONNECTION_LOST: "Connection was lost. Please try again.",
    ErrorCode.AUTH_INVALID_CREDENTIALS: "Invalid credentials. Please check your username and password.",
    ErrorCode.AUTH_EXPIRED: "Your session has expired. Please reconnect.",
    ErrorCode.QUERY_SYNTAX_ERROR: "There was an error in the query syntax.",
    ErrorCode.QUERY_TIMEOUT: "The query took too long to execute. Try narrowing the scan.",
    ErrorCode.QUERY_PERMISSION_DENIED: "You do not have permission to access this resource.",
    ErrorCode.DATA_NOT_FOUND: "The requested data was not found.",
    ErrorCode.VALIDATION_ERROR: "Invalid input provided. Please check your request.",
    ErrorCode.MISSING_PARAMETER: "Required parameter is missing.",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Please try again later.",
    ErrorCode.SERVICE_UNAVAILABLE: "The service is temporarily unavailable. Please try again later.",
}


class ScanError(DQScanError):
    """A failure that already knows its classification."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        retryable: Optional[bool] = None,
        user_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.code = ErrorCode(code)
        self.retryable = self.code in RETRYABLE_CODES if retryable is None else retryable
        self.user_message = user_message or USER_MESSAGES[self.code]


@dataclass(frozen=True)
class ClassifiedError:
    """Result of classifying an exception."""

    code: ErrorCode
    retryable: bool
    message: str
    user_message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> ErrorCategory:
        return self.code.category

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "category": self.category.value,
            "retryable": self.retryable,
            "message": self.message,
            "user_message": self.user_message,
        }


_VALIDATION_TYPES = (
    InvalidExpression,
    InvalidScheduleError,
    UnsupportedScheduleType,
    UnsupportedScanType,
)

_TIMEOUT_TYPES = (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)
_CONNECTION_LOST_TYPES = (
    ConnectionResetError,
    ConnectionAbortedError,
    BrokenPipeError,
    httpx.RemoteProtocolError,
    httpx.ReadError,
)


def _error_code_attr(error: BaseException) -> Optional[str]:
    code = getattr(error, "code", None)
    if code is None:
        return None
    return str(code)


def _status_code(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def _match(error: BaseException, message: str, code: Optional[str], status: Optional[int]) -> ErrorCode:
    lowered = message.lower()

    if isinstance(error, _VALIDATION_TYPES):
        return ErrorCode.VALIDATION_ERROR
    if isinstance(error, ScheduleNotFoundError):
        return ErrorCode.DATA_NOT_FOUND

    if (
        isinstance(error, (ConnectionRefusedError, httpx.ConnectError))
        or "ECONNREFUSED" in message
        or "ENOTFOUND" in message
        or "connection refused" in lowered
    ):
        return ErrorCode.CONNECTION_FAILED

    # Statement timeouts keep their own code, so check them before generic timeouts
    if "query execution time exceeded" in lowered or "statement timeout" in lowered:
        return ErrorCode.QUERY_TIMEOUT

    if (
        isinstance(error, _TIMEOUT_TYPES)
        or "timeout" in lowered
        or "timed out" in lowered
        or "ETIMEDOUT" in message
    ):
        return ErrorCode.CONNECTION_TIMEOUT

    if (
        isinstance(error, _CONNECTION_LOST_TYPES)
        or "connection reset" in lowered
        or "connection lost" in lowered
        or "connection closed" in lowered
    ):
        return ErrorCode.CONNECTION_LOST

    if (
        "incorrect username or password" in lowered
        or "authentication failed" in lowered
        or code == "390100"
        or status == 401
    ):
        return ErrorCode.AUTH_INVALID_CREDENTIALS

    if "expired" in lowered or code == "390114":
        return ErrorCode.AUTH_EXPIRED

    if "sql compilation error" in lowered or "syntax error" in lowered or code == "001003":
        return ErrorCode.QUERY_SYNTAX_ERROR

    if "does not exist" in lowered or code == "002003" or status == 404:
        return ErrorCode.DATA_NOT_FOUND

    if (
        isinstance(error, PermissionError)
        or "permission" in lowered
        or "access denied" in lowered
        or code == "003001"
        or status == 403
    ):
        return ErrorCode.QUERY_PERMISSION_DENIED

    if (status is not None and status >= 500) or "service unavailable" in lowered:
        return ErrorCode.SERVICE_UNAVAILABLE

    return ErrorCode.INTERNAL_ERROR


def classify(error: BaseException) -> ClassifiedError:
    """Classify an exception.

    Args:
        error: The exception to classify

    Returns:
        The classification; a :class:`ScanError` keeps its own code and
        retryable flag.
    """
    if isinstance(error, ScanError):
        return ClassifiedError(
            code=error.code,
            retryable=error.retryable,
            message=error.message,
            user_message=error.user_message,
            details=dict(error.details),
        )

    message = str(error) or type(error).__name__
    code = _match(error, message, _error_code_attr(error), _status_code(error))
    details = dict(error.details) if isinstance(error, DQScanError) else {}

    return ClassifiedError(
        code=code,
        retryable=code in RETRYABLE_CODES,
        message=message,
        user_message=USER_MESSAGES[code],
        details=details,
    )


def is_retryable_error(error: BaseException) -> bool:
    """Check whether another attempt could succeed."""
    return classify(error).retryable


def error_response(error: BaseException) -> Dict[str, Any]:
    """Build a JSON-serializable error payload for an exception."""
    classified = classify(error)
    return {
        "success": False,
        "error": {
            "code": classified.code.value,
            "message": classified.message,
            "user_message": classified.user_message,
        },
        "metadata": {
            "timestamp": utcnow().isoformat(),
            "retryable": classified.retryable,
        },
    }
