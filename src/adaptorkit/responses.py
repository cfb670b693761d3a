"""Response primitives."""

from __future__ import annotations

from typing import Iterable

import msgspec

from .exceptions import HTTPError
from .http import Status

DEFAULT_SECURITY_HEADERS: tuple[tuple[str, str], ...] = (
    ("x-content-type-options", "nosniff"),
    ("referrer-policy", "no-referrer"),
    ("x-frame-options", "DENY"),
    ("cache-control", "no-store"),
)

Headers = tuple[tuple[str, str], ...]


class Response(msgspec.Struct, frozen=True):
    """Immutable response payload."""

    status: int = int(Status.OK)
    headers: Headers = ()
    body: bytes = b""

    def with_headers(self, headers: Iterable[tuple[str, str]]) -> "Response":
        """Return a new response with ``headers`` appended."""

        return Response(status=self.status, headers=self.headers + tuple(headers), body=self.body)

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None


def apply_default_security_headers(
    response: Response,
    *,
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    """Append default security headers to ``response`` when missing."""

    baseline = tuple(headers or DEFAULT_SECURITY_HEADERS)
    if not baseline:
        return response
    existing = {name.lower() for name, _ in response.headers}
    additions = tuple((name, value) for name, value in baseline if name.lower() not in existing)
    if not additions:
        return response
    return response.with_headers(additions)


def EmptyResponse(status: int | Status, *, headers: Iterable[tuple[str, str]] | None = None) -> Response:
    """Create a bodyless response carrying only ``status``."""

    return apply_default_security_headers(Response(status=int(status), headers=tuple(headers or ())))


def RedirectResponse(location: str, *, status: int | Status = Status.SEE_OTHER) -> Response:
    """Create a redirect to ``location``."""

    return EmptyResponse(status, headers=(("location", location),))


def PlainTextResponse(
    text: str,
    *,
    status: int | Status = Status.OK,
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    """Create a plain text response."""

    default_headers = (("content-type", "text/plain; charset=utf-8"),)
    combined = default_headers + tuple(headers or ())
    response = Response(status=int(status), headers=combined, body=text.encode("utf-8"))
    return apply_default_security_headers(response)


def exception_to_response(exc: HTTPError) -> Response:
    response = Response(
        status=exc.status,
        headers=(("content-type", "application/json"),),
        body=exc.to_response_body(),
    )
    return apply_default_security_headers(response)


__all__ = [
    "DEFAULT_SECURITY_HEADERS",
    "EmptyResponse",
    "PlainTextResponse",
    "RedirectResponse",
    "Response",
    "apply_default_security_headers",
    "exception_to_response",
]
