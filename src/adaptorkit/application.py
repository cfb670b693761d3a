"""Application core."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence

from .clock import SystemTimeProvider, TimeProvider
from .config import AdaptorConfig
from .exceptions import HTTPError
from .execution import TaskExecutor
from .http import Status
from .metadata import SamlMetadata
from .requests import Request
from .responses import Response, apply_default_security_headers, exception_to_response
from .routing import ANY_METHOD, MethodNotAllowed, Router
from .sessions import ClientStore, CookieClientStore, SessionManager
from .sso import SamlServiceProvider
from .transport import HttpTransport, UrllibTransport

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]
Hook = Callable[[], Awaitable[None] | None]

HeaderPart = bytes | bytearray | memoryview | str


class AdaptorApp:
    """An adaptor's HTTP surface with the SAML assertion consumer mounted.

    The application owns the session registry, the back-channel transport and
    the executor used for blocking work, and serves as an ASGI callable.
    """

    def __init__(
        self,
        config: AdaptorConfig,
        *,
        time_provider: TimeProvider | None = None,
        client_store: ClientStore | None = None,
        transport: HttpTransport | None = None,
        executor: TaskExecutor | None = None,
        session_manager: SessionManager | None = None,
        metadata: SamlMetadata | None = None,
    ) -> None:
        self.config = config
        self.router = Router()
        self.time_provider = time_provider or SystemTimeProvider()
        self.executor = executor or TaskExecutor()
        self.metadata = metadata or SamlMetadata.from_config(config)
        self.transport = transport or UrllibTransport(
            timeout=config.transport_timeout_secs,
            executor=self.executor,
        )
        self.session_manager = session_manager or SessionManager(
            self.time_provider,
            client_store or CookieClientStore(config.session_cookie_name, secure=config.server_secure),
            config.session_idle_timeout_secs * 1000,
            config.session_cleanup_interval_secs * 1000,
        )
        max_lifetime = config.saml_max_session_lifetime_secs
        self.sso = SamlServiceProvider(
            self.session_manager,
            self.metadata,
            self.transport,
            time_provider=self.time_provider,
            max_lifetime_millis=None if max_lifetime is None else max_lifetime * 1000,
        )
        self._startup_hooks: list[Hook] = []
        self._shutdown_hooks: list[Hook] = []
        self.router.add_route(
            config.saml_assertion_consumer_path,
            methods=[ANY_METHOD],
            endpoint=self.sso.consumer.handle,
            name="saml_assertion_consumer",
        )

    # ------------------------------------------------------------------ routing
    def route(
        self,
        path: str,
        *,
        methods: Iterable[str],
        name: str | None = None,
    ) -> Callable[[Handler], Handler]:
        def decorator(func: Handler) -> Handler:
            self.router.add_route(path, methods=tuple(methods), endpoint=func, name=name)
            return func

        return decorator

    def get(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        return self.route(path, methods=["GET"], name=name)

    def post(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        return self.route(path, methods=["POST"], name=name)

    def include(self, *handlers: Handler) -> None:
        self.router.include(handlers)

    # ------------------------------------------------------------------ lifecycle
    def on_startup(self, func: Hook) -> Hook:
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Hook) -> Hook:
        self._shutdown_hooks.append(func)
        return func

    async def startup(self) -> None:
        for hook in self._startup_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    async def shutdown(self) -> None:
        for hook in self._shutdown_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result
        await self.executor.shutdown()

    # ------------------------------------------------------------------ request handling
    async def dispatch(
        self,
        method: str,
        path: str,
        *,
        query_string: str | None = None,
        headers: Mapping[str, str] | None = None,
        client: tuple[str, int] | None = None,
        scheme: str = "http",
    ) -> Response:
        if "?" in path:
            path, extra = path.split("?", 1)
            query_string = f"{query_string}&{extra}" if query_string else extra
        request = Request(
            method=method,
            path=path,
            headers=headers or {},
            query_string=query_string or "",
            client=client,
            scheme=scheme,
        )
        try:
            match = self.router.find(method, path)
        except MethodNotAllowed as exc:
            error = HTTPError(Status.METHOD_NOT_ALLOWED, {"detail": "method_not_allowed"})
            return exception_to_response(error).with_headers((("allow", ", ".join(exc.allowed)),))
        except LookupError:
            error = HTTPError(Status.NOT_FOUND, {"detail": "route_not_found"})
            return exception_to_response(error)
        request.path_params.update(match.params)
        try:
            response = await match.route.spec.endpoint(request)
        except HTTPError as exc:
            response = exception_to_response(exc)
        return self._finalize(request, response)

    @staticmethod
    def _finalize(request: Request, response: Response) -> Response:
        deferred = request.deferred_headers
        if deferred:
            response = response.with_headers(deferred)
        return apply_default_security_headers(response)

    # ------------------------------------------------------------------ interface adapters
    async def __call__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[[], Awaitable[Mapping[str, Any]]],
        send: Callable[[Mapping[str, Any]], Awaitable[None]],
    ) -> None:
        scope_type = scope.get("type")
        if scope_type == "http":
            await self._handle_http(scope, send)
            return
        if scope_type == "lifespan":
            await self._handle_lifespan(receive, send)
            return
        raise RuntimeError("AdaptorApp only supports HTTP and lifespan scopes")

    async def _handle_lifespan(
        self,
        receive: Callable[[], Awaitable[Mapping[str, Any]]],
        send: Callable[[Mapping[str, Any]], Awaitable[None]],
    ) -> None:
        while True:
            message = await receive()
            message_type = message.get("type")
            if message_type == "lifespan.startup":
                try:
                    await self.startup()
                except Exception as exc:
                    logger.exception("startup hook failed")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})
            elif message_type == "lifespan.shutdown":
                await self.shutdown()
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _handle_http(
        self,
        scope: Mapping[str, Any],
        send: Callable[[Mapping[str, Any]], Awaitable[None]],
    ) -> None:
        headers, header_errors = _decode_scope_headers(scope.get("headers", []))
        if header_errors:
            error = HTTPError(Status.BAD_REQUEST, {"detail": "invalid_header_encoding"})
            await _send_response(exception_to_response(error), send)
            return

        raw_client = scope.get("client")
        client = (str(raw_client[0]), int(raw_client[1])) if raw_client else None
        response = await self.dispatch(
            scope["method"],
            scope["path"],
            query_string=_decode_query_string(scope.get("query_string")),
            headers=headers,
            client=client,
            scheme=str(scope.get("scheme") or "http"),
        )
        await _send_response(response, send)


async def _send_response(response: Response, send: Callable[[Mapping[str, Any]], Awaitable[None]]) -> None:
    await send(
        {
            "type": "http.response.start",
            "status": response.status,
            "headers": [(name.encode("latin-1"), value.encode("latin-1")) for name, value in response.headers],
        }
    )
    await send({"type": "http.response.body", "body": response.body})


def _decode_scope_headers(raw_headers: Iterable[Sequence[HeaderPart]]) -> tuple[dict[str, str], bool]:
    decoded: dict[str, str] = {}
    had_errors = False
    for raw_name, raw_value in raw_headers:
        name, name_error = _decode_header_component(raw_name)
        value, value_error = _decode_header_component(raw_value)
        had_errors = had_errors or name_error or value_error
        key = name.lower()
        if key in decoded:
            separator = "; " if key == "cookie" else ", "
            decoded[key] = f"{decoded[key]}{separator}{value}"
        else:
            decoded[key] = value
    return decoded, had_errors


def _decode_header_component(component: object) -> tuple[str, bool]:
    if isinstance(component, str):
        return component, False
    if isinstance(component, (bytes, bytearray, memoryview)):
        return bytes(component).decode("latin-1"), False
    return str(component), True


def _decode_query_string(raw: object | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw).decode("latin-1")
    return str(raw)


__all__ = ["AdaptorApp"]
