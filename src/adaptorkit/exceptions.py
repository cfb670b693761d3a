"""Adaptor exception types."""

from __future__ import annotations

from typing import Any

from .http import Status, ensure_status, reason_phrase
from .serialization import json_encode


class AdaptorError(Exception):
    """Base error type."""


class ConfigError(AdaptorError):
    """Raised when configuration is missing or cannot be converted."""


class HTTPError(AdaptorError):
    """Structured HTTP error that is msgspec serializable."""

    def __init__(self, status: int | Status, detail: Any) -> None:
        status_code = ensure_status(status)
        super().__init__(status_code, detail)
        self.status = status_code
        self.detail = detail
        self.reason = reason_phrase(status_code)

    def to_response_body(self) -> bytes:
        return json_encode({"error": {"status": self.status, "reason": self.reason, "detail": self.detail}})


class SsoError(AdaptorError):
    """Base type for failures while completing a single-sign-on exchange."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class TransportFailure(SsoError):
    """The back-channel request could not be delivered or answered."""


class ProtocolFailure(SsoError):
    """The SOAP/SAML envelope was malformed or carried a failure status."""


class AuthenticationRejected(SsoError):
    """A well-formed response that does not authenticate this session."""


class PreconditionViolation(SsoError):
    """The exchange arrived in a state where it cannot be processed."""

    def __init__(self, reason: str, status: int | Status = Status.CONFLICT) -> None:
        super().__init__(reason)
        self.status = ensure_status(status)


__all__ = [
    "AdaptorError",
    "AuthenticationRejected",
    "ConfigError",
    "HTTPError",
    "PreconditionViolation",
    "ProtocolFailure",
    "SsoError",
    "TransportFailure",
]
