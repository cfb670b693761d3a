"""Per-session single-sign-on state."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Final, Iterable

from .clock import SystemTimeProvider, TimeProvider
from .exceptions import PreconditionViolation

if TYPE_CHECKING:
    from .saml import SamlClient

NEVER_EXPIRES: Final = 2**63 - 1


class AuthnPhase(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    ATTEMPTING = "attempting"
    AUTHENTICATED = "authenticated"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


@dataclass(frozen=True, slots=True)
class AuthnIdentity:
    """Identity resolved from a verified assertion.

    ``groups`` and ``password`` are only populated by the legacy
    security-manager extension; ``None`` means the identity provider did not
    supply them.
    """

    username: str
    groups: frozenset[str] | None = None
    password: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.username:
            raise ValueError("username is required")
        if self.groups is not None and not isinstance(self.groups, frozenset):
            object.__setattr__(self, "groups", frozenset(self.groups))

    @classmethod
    def create(
        cls,
        username: str,
        *,
        groups: Iterable[str] | None = None,
        password: str | None = None,
    ) -> "AuthnIdentity":
        return cls(username, None if groups is None else frozenset(groups), password)


class AuthnState:
    """State machine for one session's SSO attempt.

    ``UNAUTHENTICATED`` until :meth:`start_attempt` records the SAML client
    whose AuthnRequest is outstanding, ``ATTEMPTING`` until a verified
    assertion arrives, then ``AUTHENTICATED`` with an identity and expiry.
    A failed verification leaves the state untouched.
    """

    def __init__(self, time_provider: TimeProvider | None = None) -> None:
        self.time_provider = time_provider or SystemTimeProvider()
        self._lock = threading.Lock()
        self._phase = AuthnPhase.UNAUTHENTICATED
        self._client: SamlClient | None = None
        self._original_resource: str | None = None
        self._identity: AuthnIdentity | None = None
        self._expiration_time_millis: int | None = None

    def start_attempt(self, client: SamlClient, original_resource: str) -> None:
        """Record an attempt driven by ``client``.

        Restarting while an attempt is outstanding abandons the earlier one.
        Restarting while authenticated is only allowed once the
        authentication has expired.
        """

        with self._lock:
            if self._phase is AuthnPhase.AUTHENTICATED and self._unexpired():
                raise PreconditionViolation("already_authenticated")
            self._phase = AuthnPhase.ATTEMPTING
            self._client = client
            self._original_resource = original_resource
            self._identity = None
            self._expiration_time_millis = None

    def authenticated(self, identity: AuthnIdentity, expiration_time_millis: int) -> None:
        with self._lock:
            self._phase = AuthnPhase.AUTHENTICATED
            self._identity = identity
            self._expiration_time_millis = expiration_time_millis
            self._client = None

    def is_authenticated(self) -> bool:
        with self._lock:
            return self._phase is AuthnPhase.AUTHENTICATED and self._unexpired()

    def _unexpired(self) -> bool:
        expiration = self._expiration_time_millis
        if expiration is None:
            return False
        return self.time_provider.current_time_millis() < expiration

    @property
    def phase(self) -> AuthnPhase:
        return self._phase

    @property
    def client(self) -> SamlClient | None:
        return self._client

    @property
    def outstanding_request_id(self) -> str | None:
        with self._lock:
            if self._phase is not AuthnPhase.ATTEMPTING or self._client is None:
                return None
            return self._client.request_id

    @property
    def original_resource(self) -> str | None:
        return self._original_resource

    @property
    def identity(self) -> AuthnIdentity | None:
        return self._identity

    @property
    def expiration_time_millis(self) -> int | None:
        return self._expiration_time_millis


__all__ = [
    "NEVER_EXPIRES",
    "AuthnIdentity",
    "AuthnPhase",
    "AuthnState",
]
