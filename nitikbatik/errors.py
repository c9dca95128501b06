from enum import Enum
from typing import Optional

NETWORK_MESSAGE = "Network error: cannot reach the API server. Please try again."
TIMEOUT_MESSAGE = "Request timeout: API server took too long to respond"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"
    RESPONSE = "response"
    SETUP = "setup"


class NitikError(Exception):
    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class FormValidationError(NitikError):
    """Raised before submit when required form fields are missing."""

    kind = ErrorKind.VALIDATION

    def __init__(self, fields: list[str]) -> None:
        super().__init__(f"Required fields missing: {', '.join(fields)}")
        self.fields = fields


class ApiError(NitikError):
    kind = ErrorKind.RESPONSE

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResponseError(ApiError):
    """The server answered, either with an error status or with `status: false`.

    `detail` holds the message from the response body, when there was one.
    """

    def __init__(self, message: str, status_code: Optional[int] = None,
                 detail: Optional[str] = None) -> None:
        super().__init__(message, status_code)
        self.detail = detail


class NetworkError(ApiError):
    kind = ErrorKind.NETWORK

    def __init__(self, message: str = NETWORK_MESSAGE, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out
        if timed_out:
            self.kind = ErrorKind.TIMEOUT


class RequestSetupError(ApiError):
    kind = ErrorKind.SETUP


def error_message(exc: Exception, fallback: str) -> str:
    """User-facing text for a failed store operation."""
    if isinstance(exc, ResponseError):
        return exc.detail or fallback
    if isinstance(exc, (NetworkError, FormValidationError)):
        return exc.message
    return fallback
