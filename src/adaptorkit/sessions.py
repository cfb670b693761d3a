"""Per-client session storage with idle expiry."""

from __future__ import annotations

import asyncio
import logging
import secrets
import threading
from typing import Any, Iterator, Protocol, TypeVar

from .clock import TimeProvider
from .requests import Request

logger = logging.getLogger(__name__)

T = TypeVar("T")

_REQUEST_SESSION_ATTRIBUTE = "adaptorkit.session_id"


class Session:
    """Bag of typed attributes that belongs to a single client.

    Attributes are keyed by their class, so each concern (authentication
    state, for example) owns at most one value per session.  ``lock``
    serialises handlers that mutate the session's attributes.
    """

    __slots__ = ("_attributes", "_guard", "_last_access_millis", "id", "lock")

    def __init__(self, session_id: str, now_millis: int) -> None:
        self.id = session_id
        self.lock = asyncio.Lock()
        self._guard = threading.Lock()
        self._attributes: dict[type[Any], Any] = {}
        self._last_access_millis = now_millis

    def get_attribute(self, kind: type[T]) -> T | None:
        with self._guard:
            return self._attributes.get(kind)

    def set_attribute(self, value: Any) -> None:
        with self._guard:
            self._attributes[type(value)] = value

    def remove_attribute(self, kind: type[Any]) -> Any | None:
        with self._guard:
            return self._attributes.pop(kind, None)

    @property
    def last_access_millis(self) -> int:
        with self._guard:
            return self._last_access_millis

    def _touch(self, now_millis: int) -> None:
        with self._guard:
            if now_millis > self._last_access_millis:
                self._last_access_millis = now_millis

    def __repr__(self) -> str:
        return f"Session(id={self.id[:6]}..., last_access_millis={self._last_access_millis})"


class ClientStore(Protocol):
    """Strategy that ties inbound exchanges to a session id."""

    def retrieve(self, request: Request) -> str | None:
        """Return the session id previously associated with ``request``'s client."""

    def store(self, request: Request, session: Session) -> None:
        """Associate ``session`` with ``request``'s client for future exchanges."""


class PeerAddressClientStore:
    """Identify clients by the transport-level peer host."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_peer: dict[str, str] = {}

    @staticmethod
    def _peer(request: Request) -> str | None:
        if request.client is None:
            return None
        return request.client[0]

    def retrieve(self, request: Request) -> str | None:
        peer = self._peer(request)
        if peer is None:
            return None
        with self._lock:
            return self._by_peer.get(peer)

    def store(self, request: Request, session: Session) -> None:
        peer = self._peer(request)
        if peer is None:
            raise ValueError("request has no peer address to bind a session to")
        with self._lock:
            self._by_peer[peer] = session.id


class CookieClientStore:
    """Identify clients by an opaque session cookie."""

    def __init__(self, cookie_name: str = "sessid", *, secure: bool = False) -> None:
        self.cookie_name = cookie_name
        self.secure = secure

    def retrieve(self, request: Request) -> str | None:
        bound = request.attributes.get(_REQUEST_SESSION_ATTRIBUTE)
        if isinstance(bound, str):
            return bound
        return request.cookies.get(self.cookie_name) or None

    def store(self, request: Request, session: Session) -> None:
        request.attributes[_REQUEST_SESSION_ATTRIBUTE] = session.id
        cookie = f"{self.cookie_name}={session.id}; Path=/; HttpOnly"
        if self.secure:
            cookie += "; Secure"
        request.defer_header("set-cookie", cookie)


class SessionManager:
    """Thread-safe registry of sessions keyed by session id.

    Registry operations are O(1) dictionary updates under a short lock and
    never span I/O, so lookups for different clients do not wait on one
    another.  Idle sessions are evicted during lookups at most once every
    ``cleanup_rate_millis``; an explicit :meth:`cleanup` sweeps immediately.
    """

    def __init__(
        self,
        time_provider: TimeProvider,
        client_store: ClientStore,
        session_lifetime_millis: int,
        cleanup_rate_millis: int,
    ) -> None:
        if session_lifetime_millis <= 0:
            raise ValueError("session_lifetime_millis must be positive")
        if cleanup_rate_millis < 0:
            raise ValueError("cleanup_rate_millis must not be negative")
        self.time_provider = time_provider
        self.client_store = client_store
        self.session_lifetime_millis = session_lifetime_millis
        self.cleanup_rate_millis = cleanup_rate_millis
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._last_cleanup_millis = time_provider.current_time_millis()

    def get_session(self, request: Request, create: bool = True) -> Session | None:
        """Return the session for ``request``'s client.

        When no live session exists a new one is created and registered with
        the client store if ``create`` is true; otherwise ``None`` is returned.
        """

        now = self.time_provider.current_time_millis()
        self._maybe_cleanup(now)
        session_id = self.client_store.retrieve(request)
        with self._lock:
            session = self._sessions.get(session_id) if session_id else None
            if session is not None and self._is_expired(session, now):
                del self._sessions[session.id]
                logger.debug("Evicted idle session on access")
                session = None
            if session is not None:
                session._touch(now)
                return session
            if not create:
                return None
            session = Session(self._generate_id(), now)
            self._sessions[session.id] = session
        try:
            self.client_store.store(request, session)
        except Exception:
            self.invalidate(session.id)
            raise
        logger.debug("Created session %r", session)
        return session

    def invalidate(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def cleanup(self) -> int:
        """Evict every idle session and return how many were removed."""

        now = self.time_provider.current_time_millis()
        with self._lock:
            self._last_cleanup_millis = now
            expired = [key for key, session in self._sessions.items() if self._is_expired(session, now)]
            for key in expired:
                del self._sessions[key]
        if expired:
            logger.debug("Evicted %d idle sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        with self._lock:
            return iter(list(self._sessions.values()))

    def _maybe_cleanup(self, now: int) -> None:
        with self._lock:
            due = now - self._last_cleanup_millis >= self.cleanup_rate_millis
        if due:
            self.cleanup()

    def _is_expired(self, session: Session, now: int) -> bool:
        return now - session.last_access_millis > self.session_lifetime_millis

    def _generate_id(self) -> str:
        while True:
            candidate = secrets.token_urlsafe(32)
            if candidate not in self._sessions:
                return candidate


__all__ = [
    "ClientStore",
    "CookieClientStore",
    "PeerAddressClientStore",
    "Session",
    "SessionManager",
]
