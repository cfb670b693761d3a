"""HTTP status helpers."""

from __future__ import annotations

from enum import IntEnum
from http import HTTPStatus as _HTTPStatus


class Status(IntEnum):
    """Enumeration of the HTTP status codes emitted by the adaptor."""

    OK = 200
    NO_CONTENT = 204
    SEE_OTHER = 303
    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    CONFLICT = 409
    INTERNAL_SERVER_ERROR = 500


def ensure_status(status: int | Status) -> int:
    """Normalize ``status`` to an ``int`` and ensure it is within the HTTP range."""

    code = int(status)
    if code < 100 or code > 599:
        raise ValueError(f"Invalid HTTP status code: {status}")
    return code


def reason_phrase(status: int | Status) -> str:
    """Return the HTTP reason phrase for ``status`` if known."""

    try:
        code = ensure_status(status)
    except ValueError:
        return "Unknown Status"
    try:
        return _HTTPStatus(code).phrase
    except ValueError:  # pragma: no cover - non-standard status codes
        return "Unknown Status"


def is_success(status: int | Status) -> bool:
    return 200 <= ensure_status(status) < 300


def is_redirect(status: int | Status) -> bool:
    return 300 <= ensure_status(status) < 400


def is_error(status: int | Status) -> bool:
    """Return ``True`` if ``status`` is either a client or server error."""

    return ensure_status(status) >= 400


__all__ = [
    "Status",
    "ensure_status",
    "is_error",
    "is_redirect",
    "is_success",
    "reason_phrase",
]
