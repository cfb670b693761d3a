from __future__ import annotations

import http.client
import io
import socket
import threading
from urllib.error import HTTPError as UrllibHTTPError
from urllib.error import URLError

import pytest

import adaptorkit.transport as transport_module
from adaptorkit.exceptions import TransportFailure
from adaptorkit.transport import SOAP_HEADERS, UrllibTransport


class FakeResponse:
    def __init__(self, status: int, body: bytes) -> None:
        self.status = status
        self._body = body
        self.headers = {"content-type": "text/xml"}

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc) -> None:
        return None


@pytest.mark.asyncio
async def test_urllib_transport_posts_body(monkeypatch) -> None:
    seen = {}

    def fake_urlopen(request, timeout=None, context=None):
        seen["method"] = request.get_method()
        seen["url"] = request.full_url
        seen["data"] = request.data
        seen["content_type"] = request.get_header("Content-type")
        seen["timeout"] = timeout
        return FakeResponse(200, b"<ok/>")

    monkeypatch.setattr(transport_module, "urlopen", fake_urlopen)
    transport = UrllibTransport(timeout=3.5)

    response = await transport.send("https://gsa/security-manager/samlartifact", b"<req/>", SOAP_HEADERS)
    await transport.executor.shutdown()

    assert response.status == 200
    assert response.body == b"<ok/>"
    assert ("content-type", "text/xml") in response.headers
    assert seen == {
        "method": "POST",
        "url": "https://gsa/security-manager/samlartifact",
        "data": b"<req/>",
        "content_type": "text/xml; charset=utf-8",
        "timeout": 3.5,
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "reason"),
    [
        (UrllibHTTPError("https://gsa", 503, "unavailable", {}, io.BytesIO(b"")), "http_status_503"),
        (URLError("refused"), "connection_failed"),
        (TimeoutError("slow"), "connection_failed"),
    ],
)
async def test_urllib_transport_maps_failures(monkeypatch, error: Exception, reason: str) -> None:
    def fake_urlopen(request, timeout=None, context=None):
        raise error

    monkeypatch.setattr(transport_module, "urlopen", fake_urlopen)
    transport = UrllibTransport()

    with pytest.raises(TransportFailure) as excinfo:
        await transport.send("https://gsa", b"", {})
    await transport.executor.shutdown()

    assert excinfo.value.reason == reason


@pytest.mark.asyncio
async def test_urllib_transport_rejects_unexpected_status(monkeypatch) -> None:
    monkeypatch.setattr(transport_module, "urlopen", lambda request, timeout=None, context=None: FakeResponse(202, b""))
    transport = UrllibTransport()

    with pytest.raises(TransportFailure) as excinfo:
        await transport.send("https://gsa", b"", {})
    await transport.executor.shutdown()

    assert excinfo.value.reason == "http_status_202"


@pytest.fixture
def truncating_server():
    """Serve one reply whose body is shorter than its Content-Length."""

    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)

    def serve() -> None:
        connection, _ = listener.accept()
        with connection:
            connection.recv(65536)
            connection.sendall(b"HTTP/1.1 200 OK\r\nContent-Length: 1000\r\n\r\n<short")

    worker = threading.Thread(target=serve, daemon=True)
    worker.start()
    yield f"http://127.0.0.1:{listener.getsockname()[1]}/security-manager/samlartifact"
    worker.join(timeout=5)
    listener.close()


@pytest.mark.asyncio
async def test_urllib_transport_maps_truncated_body(truncating_server: str) -> None:
    transport = UrllibTransport(timeout=5)

    with pytest.raises(TransportFailure) as excinfo:
        await transport.send(truncating_server, b"<req/>", SOAP_HEADERS)
    await transport.executor.shutdown()

    assert excinfo.value.reason == "invalid_response"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [http.client.BadStatusLine("garbage"), http.client.LineTooLong("header line")],
)
async def test_urllib_transport_maps_malformed_replies(monkeypatch, error: Exception) -> None:
    def fake_urlopen(request, timeout=None, context=None):
        raise error

    monkeypatch.setattr(transport_module, "urlopen", fake_urlopen)
    transport = UrllibTransport()

    with pytest.raises(TransportFailure) as excinfo:
        await transport.send("https://gsa", b"", {})
    await transport.executor.shutdown()

    assert excinfo.value.reason == "invalid_response"


@pytest.mark.asyncio
async def test_urllib_transport_rejects_malformed_url() -> None:
    transport = UrllibTransport()

    with pytest.raises(TransportFailure) as excinfo:
        await transport.send("not a url", b"", {})
    await transport.executor.shutdown()

    assert excinfo.value.reason == "invalid_response"
