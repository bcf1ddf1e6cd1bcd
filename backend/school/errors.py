"""
Error types and small helpers shared by the school services.

Why:
    Every operation in the portal is a handful of table calls. Failures from
    the database (RLS denials, duplicates, misconfigured policies) must reach
    the web adapter as stable error codes rather than driver exceptions, and
    the same few wrappers (error formatting, required-field checks, retries)
    are reused by most services.

Design:
    The exception classes subclass the matching builtins (ValueError,
    LookupError, PermissionError) so callers can keep catching the builtin
    family while the web layer maps the concrete class to an HTTP status.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Callable, Generic, Iterable, Mapping, Optional, TypeVar

logger = logging.getLogger("eduportal.school.errors")

T = TypeVar("T")


class DataError(Exception):
    """Base class for persistence failures.

    Attributes mirror what the hosted database reports so diagnostics can show
    them: `code` (short machine-readable reason), `details` and `hint`.
    """

    code = "data_error"

    def __init__(self, message: str = "", *, code: str | None = None, details: str | None = None, hint: str | None = None) -> None:
        super().__init__(message or (code or self.code))
        if code:
            self.code = code
        self.message = message or self.code
        self.details = details
        self.hint = hint


class ValidationError(DataError, ValueError):
    code = "invalid_input"


class RecordNotFoundError(DataError, LookupError):
    code = "not_found"


class DuplicateRecordError(DataError):
    code = "duplicate"


class AccessDeniedError(DataError, PermissionError):
    code = "forbidden"


class PolicyRecursionError(AccessDeniedError):
    """Raised when an RLS policy references itself (infinite recursion)."""

    code = "policy_recursion"


class NotAuthenticatedError(DataError, PermissionError):
    code = "unauthenticated"


def handle_error(error: Any, operation: str) -> str:
    """Log an error consistently and return a user-facing message."""
    logger.error("[%s] operation failed: %s", operation, error.__class__.__name__)
    message = "An unknown error occurred"
    if isinstance(error, str):
        message = error
    elif getattr(error, "message", None):
        message = str(error.message)
    elif isinstance(error, BaseException) and str(error):
        message = str(error)
    details = getattr(error, "details", None)
    if details:
        logger.error("[%s] error details: %s", operation, details)
    hint = getattr(error, "hint", None)
    if hint:
        logger.error("[%s] error hint: %s", operation, hint)
    return message


@dataclass
class OperationResult(Generic[T]):
    data: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def with_error_handling(operation: str, fn: Callable[[], T]) -> OperationResult[T]:
    """Run `fn` and capture any exception as a formatted error message."""
    try:
        return OperationResult(data=fn())
    except Exception as exc:
        return OperationResult(error=handle_error(exc, operation))


def validate_required_fields(data: Mapping[str, Any], required: Iterable[str]) -> bool:
    missing = [field for field in required if not data.get(field)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", code="missing_fields")
    return True


def retry_with_backoff(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    delay: float = 1.0,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Call `fn`, retrying up to `retries` times with doubling delay.

    The last exception is re-raised once retries are exhausted.
    """
    pause = sleep or time.sleep
    attempt = 0
    wait = delay
    while True:
        try:
            return fn()
        except Exception:
            if attempt >= retries:
                raise
            attempt += 1
            pause(wait)
            wait *= 2


def ensure_authenticated(user: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if not user or not user.get("sub"):
        raise NotAuthenticatedError("User is not authenticated. Please log in and try again.")
    return user
