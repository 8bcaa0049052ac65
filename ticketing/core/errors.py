"""
Domain errors and shared error-handling helpers.

Service functions raise the `TicketingError` subclasses below; the API layer
maps them to HTTP responses through `status_code` and `code`.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

T = TypeVar("T")


class TicketingError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NotFoundError(TicketingError):
    status_code = 404
    code = "not_found"


class RequestNotFound(NotFoundError):
    code = "request_not_found"

    def __init__(self, request_ref: object) -> None:
        super().__init__(f"Request {request_ref} not found")
        self.request_ref = request_ref


class BranchNotFound(NotFoundError):
    code = "branch_not_found"


class PartnerNotFound(NotFoundError):
    code = "partner_not_found"


class InvalidStatusTransition(TicketingError):
    status_code = 409
    code = "invalid_status_transition"

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        super().__init__(message or f"Cannot transition from {current} to {target}")
        self.current = current
        self.target = target


class RequestAlreadyClosed(TicketingError):
    status_code = 409
    code = "request_already_closed"


class ValidationError(TicketingError):
    status_code = 422
    code = "validation_error"


class AuthorizationError(TicketingError):
    status_code = 403
    code = "forbidden"


def _format_extra(extra: dict | None) -> str:
    if not extra:
        return ""
    parts: list[str] = []
    for key, value in extra.items():
        if value is None:
            continue
        parts.append(f"{key}={value}")
    return f" {' '.join(parts)}" if parts else ""


def log_exception(logger: logging.Logger, msg: str, *, extra: dict | None = None, exc: Exception | None = None) -> None:
    """
    Log an exception with context. Uses logger.exception for stack traces.
    """
    suffix = _format_extra(extra)
    if exc is not None:
        logger.error(f"{msg}{suffix}: {exc}", exc_info=exc)
        return
    logger.exception(f"{msg}{suffix}")


def guarded_call(
    name: str,
    fn: Callable[[], T],
    *,
    fallback: T | None = None,
    logger: logging.Logger | None = None,
    context: dict | None = None,
) -> T | None:
    """
    Execute fn with logging on failure. Returns fallback if provided.
    """
    try:
        return fn()
    except Exception as exc:
        if logger:
            log_exception(logger, f"{name} failed", extra=context or {}, exc=exc)
        return fallback
