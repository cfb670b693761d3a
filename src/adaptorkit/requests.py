"""Request primitives."""

from __future__ import annotations

from http.cookies import CookieError, SimpleCookie
from typing import Mapping, MutableMapping
from urllib.parse import parse_qsl

from .exceptions import HTTPError
from .http import Status

_MAX_QUERY_PARAMS = 1024


class Request:
    """View of an incoming exchange.

    Everything except :attr:`attributes` and the deferred response headers is
    read-only once constructed.  Client stores use those two to make a newly
    created session visible for the remainder of the exchange and to emit the
    headers that bind it to future exchanges.
    """

    __slots__ = (
        "_cookies",
        "_deferred_headers",
        "_query_params",
        "_raw_query",
        "attributes",
        "client",
        "headers",
        "method",
        "path",
        "path_params",
        "scheme",
    )

    def __init__(
        self,
        *,
        method: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        query_string: str | None = None,
        client: tuple[str, int] | None = None,
        scheme: str = "http",
        path_params: Mapping[str, str] | None = None,
    ) -> None:
        self.method = method.upper()
        self.path = path
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.client = client
        self.scheme = scheme
        self.path_params = dict(path_params or {})
        self.attributes: MutableMapping[str, object] = {}
        self._raw_query = query_string or ""
        self._query_params: MutableMapping[str, list[str]] | None = None
        self._cookies: dict[str, str] | None = None
        self._deferred_headers: list[tuple[str, str]] = []

    @staticmethod
    def _parse_query(raw: str) -> MutableMapping[str, list[str]]:
        parsed: MutableMapping[str, list[str]] = {}
        try:
            pairs = parse_qsl(
                raw,
                keep_blank_values=True,
                max_num_fields=_MAX_QUERY_PARAMS,
            )
        except ValueError as exc:
            raise HTTPError(Status.BAD_REQUEST, {"detail": "too_many_query_parameters"}) from exc
        for key, value in pairs:
            parsed.setdefault(key, []).append(value)
        return parsed

    @property
    def query_params(self) -> MutableMapping[str, list[str]]:
        if self._query_params is None:
            self._query_params = self._parse_query(self._raw_query)
        return self._query_params

    def query_param(self, name: str) -> str | None:
        """Return the first value of ``name`` or ``None`` when absent."""

        values = self.query_params.get(name)
        if not values:
            return None
        return values[0]

    @property
    def raw_query(self) -> str:
        return self._raw_query

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    @property
    def cookies(self) -> Mapping[str, str]:
        if self._cookies is None:
            jar: dict[str, str] = {}
            raw = self.headers.get("cookie")
            if raw:
                parsed = SimpleCookie()
                try:
                    parsed.load(raw)
                except CookieError:
                    parsed = SimpleCookie()
                for name, morsel in parsed.items():
                    jar[name] = morsel.value
            self._cookies = jar
        return self._cookies

    @property
    def url(self) -> str:
        """Reconstruct the absolute URL the client requested."""

        host = self.headers.get("host", "localhost")
        target = self.path
        if self._raw_query:
            target = f"{target}?{self._raw_query}"
        return f"{self.scheme}://{host}{target}"

    def defer_header(self, name: str, value: str) -> None:
        """Attach ``name: value`` to whichever response this exchange produces."""

        self._deferred_headers.append((name.lower(), value))

    @property
    def deferred_headers(self) -> tuple[tuple[str, str], ...]:
        return tuple(self._deferred_headers)

