"""Back-channel HTTP transport used for artifact resolution."""

from __future__ import annotations

import http.client
import ssl
from typing import Mapping, Protocol
from urllib.error import HTTPError as UrllibHTTPError
from urllib.request import Request as UrllibRequest
from urllib.request import urlopen

from msgspec import Struct

from .exceptions import TransportFailure
from .execution import TaskExecutor

SOAP_HEADERS: Mapping[str, str] = {
    "content-type": "text/xml; charset=utf-8",
    "soapaction": "http://www.oasis-open.org/committees/security",
}


class TransportResponse(Struct, frozen=True):
    status: int
    body: bytes
    headers: tuple[tuple[str, str], ...] = ()


class HttpTransport(Protocol):
    """Send request bytes, receive response bytes and status."""

    async def send(self, url: str, body: bytes, headers: Mapping[str, str]) -> TransportResponse: ...


class UrllibTransport:
    """Blocking :func:`urllib.request.urlopen` run on a worker thread.

    TLS trust is whatever the default SSL context provides; pass ``context``
    to pin a private CA.
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        executor: TaskExecutor | None = None,
        context: ssl.SSLContext | None = None,
    ) -> None:
        self.timeout = timeout
        self.executor = executor or TaskExecutor()
        self.context = context

    async def send(self, url: str, body: bytes, headers: Mapping[str, str]) -> TransportResponse:
        return await self.executor.run(self._post, url, body, dict(headers))

    def _post(self, url: str, body: bytes, headers: dict[str, str]) -> TransportResponse:
        try:
            request = UrllibRequest(url, data=body, headers=headers, method="POST")
            with urlopen(request, timeout=self.timeout, context=self.context) as response:
                status = getattr(response, "status", 200)
                payload = response.read()
                response_headers = tuple(response.headers.items())
        except UrllibHTTPError as exc:
            raise TransportFailure(f"http_status_{exc.code}") from exc
        except OSError as exc:
            raise TransportFailure("connection_failed") from exc
        except (http.client.HTTPException, ValueError) as exc:
            raise TransportFailure("invalid_response") from exc
        if status != 200:
            raise TransportFailure(f"http_status_{status}")
        return TransportResponse(status=status, body=payload, headers=response_headers)


__all__ = [
    "SOAP_HEADERS",
    "HttpTransport",
    "TransportResponse",
    "UrllibTransport",
]
