from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    def __init__(self, message: str, field_errors: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.field_errors = dict(field_errors or {})


class ConfigError(AppError):
    pass


class StoreError(AppError):
    """A record store call failed. `status` is the HTTP-like code when known."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientStoreError(StoreError):
    pass


class RateLimitError(StoreError):
    def __init__(self, message: str = "Rate limited.", status: Optional[int] = 429):
        super().__init__(message, status)


class TerminalStoreError(StoreError):
    pass


class NotFoundError(TerminalStoreError):
    def __init__(self, message: str = "Record not found.", status: Optional[int] = 404):
        super().__init__(message, status)


def store_error_for_status(status: Optional[int], detail: str = "") -> StoreError:
    detail = detail or f"Store request failed with status {status}."
    if status == 429:
        return RateLimitError(detail)
    if status == 404:
        return NotFoundError(detail)
    if status is not None and 400 <= status < 500:
        return TerminalStoreError(detail, status)
    return TransientStoreError(detail, status)


_STATUS_MESSAGES = {
    400: "The data you entered is invalid. Please check your inputs.",
    401: "Your session has expired. Please log in again.",
    403: "You do not have permission to perform this action.",
    404: "The requested resource was not found.",
    429: "Too many requests. Please wait a moment and try again.",
}


def user_message(error: BaseException) -> str:
    if isinstance(error, ValidationError):
        return str(error)

    status = getattr(error, "status", None)
    if status in _STATUS_MESSAGES:
        return _STATUS_MESSAGES[status]
    if isinstance(status, int) and status >= 500:
        return "A server error occurred. Please try again later."
    if isinstance(error, TimeoutError) or "timeout" in str(error).lower():
        return "The request timed out. Please try again."
    if isinstance(error, (TransientStoreError, ConnectionError)):
        return "Unable to connect to the server. Please check your internet connection."
    return "An unexpected error occurred. Please try again."
