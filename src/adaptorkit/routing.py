"""Routing utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Mapping, MutableMapping, Sequence

import rure
from rure.regex import RegexObject

if TYPE_CHECKING:
    from .requests import Request
    from .responses import Response

Endpoint = Callable[["Request"], Awaitable["Response"]]

ANY_METHOD = "*"

_PATH_PARAM_PATTERN = re.compile(r"{([a-zA-Z_][a-zA-Z0-9_]*)(?::([a-zA-Z_][a-zA-Z0-9_]*))?}")


@dataclass(slots=True)
class RouteSpec:
    path: str
    methods: tuple[str, ...]
    endpoint: Endpoint
    name: str | None = None


@dataclass(slots=True)
class Route:
    spec: RouteSpec
    pattern: RegexObject
    param_names: tuple[str, ...]

    def matches_method(self, method: str) -> bool:
        return ANY_METHOD in self.spec.methods or method in self.spec.methods


@dataclass(slots=True)
class RouteMatch:
    route: Route
    params: Mapping[str, str]


class Router:
    """Resolve ``(method, path)`` pairs to endpoints.

    Static paths are looked up in a dictionary; paths with ``{name}``
    placeholders are compiled to rure patterns and tried in registration
    order. A route registered for ``*`` answers every method.
    """

    def __init__(self) -> None:
        self._routes: list[Route] = []
        self._static_routes: dict[str, list[Route]] = {}
        self._dynamic_routes: list[Route] = []

    def add_route(
        self,
        path: str,
        *,
        methods: Sequence[str],
        endpoint: Endpoint,
        name: str | None = None,
    ) -> Route:
        if not path.startswith("/"):
            raise ValueError(f"Route path must start with '/': {path!r}")
        pattern, param_names = _compile_path(path)
        normalized_methods = tuple(dict.fromkeys(m.upper() for m in methods))
        if not normalized_methods:
            raise ValueError("A route needs at least one method")
        spec = RouteSpec(path=path, methods=normalized_methods, endpoint=endpoint, name=name)
        route = Route(spec=spec, pattern=pattern, param_names=param_names)
        self._routes.append(route)
        if param_names:
            self._dynamic_routes.append(route)
        else:
            self._static_routes.setdefault(path, []).append(route)
        return route

    def find(self, method: str, path: str) -> RouteMatch:
        """Return the route for ``method`` and ``path``.

        Raises :class:`LookupError` when nothing matches the path and
        :class:`MethodNotAllowed` when the path matches but not the method.
        """

        method = method.upper()
        path_matched = False
        for route in self._static_routes.get(path, ()):
            path_matched = True
            if route.matches_method(method):
                return RouteMatch(route=route, params={})
        for route in self._dynamic_routes:
            captures = route.pattern.match(path)
            if captures is None:
                continue
            path_matched = True
            if not route.matches_method(method):
                continue
            params: MutableMapping[str, str] = {}
            for name in route.param_names:
                group = captures.group(name)
                if group is not None:
                    params[name] = group
            return RouteMatch(route=route, params=params)
        if path_matched:
            raise MethodNotAllowed(method, path, self.allowed_methods(path))
        raise LookupError(f"No route matches {method} {path}")

    def allowed_methods(self, path: str) -> tuple[str, ...]:
        methods: dict[str, None] = {}
        for route in self._routes:
            if route.param_names:
                if route.pattern.match(path) is None:
                    continue
            elif route.spec.path != path:
                continue
            methods.update(dict.fromkeys(route.spec.methods))
        return tuple(methods)

    def include(self, handlers: Iterable[Endpoint]) -> None:
        for handler in handlers:
            spec: RouteSpec | None = getattr(handler, "__adaptorkit_route__", None)
            if spec is None:
                raise ValueError(f"Handler {handler!r} missing @route decorator metadata")
            self.add_route(spec.path, methods=spec.methods, endpoint=handler, name=spec.name)

    def __iter__(self):
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)


class MethodNotAllowed(LookupError):
    def __init__(self, method: str, path: str, allowed: tuple[str, ...]) -> None:
        super().__init__(f"{method} not allowed for {path}")
        self.method = method
        self.path = path
        self.allowed = allowed


def route(
    path: str,
    *,
    methods: Sequence[str],
    name: str | None = None,
) -> Callable[[Endpoint], Endpoint]:
    def decorator(func: Endpoint) -> Endpoint:
        spec = RouteSpec(path=path, methods=tuple(methods), endpoint=func, name=name)
        setattr(func, "__adaptorkit_route__", spec)
        return func

    return decorator


def get(path: str, *, name: str | None = None) -> Callable[[Endpoint], Endpoint]:
    return route(path, methods=["GET"], name=name)


def post(path: str, *, name: str | None = None) -> Callable[[Endpoint], Endpoint]:
    return route(path, methods=["POST"], name=name)


def _compile_path(path: str) -> tuple[RegexObject, tuple[str, ...]]:
    param_names: list[str] = []
    position = 0
    pieces: list[str] = []
    for match in _PATH_PARAM_PATTERN.finditer(path):
        pieces.append(re.escape(path[position : match.start()]))
        name = match.group(1)
        converter = match.group(2)
        if name in param_names:
            raise ValueError(f"Duplicate path parameter: {name}")
        param_names.append(name)
        if converter is None:
            pieces.append(f"(?P<{name}>[^/]+)")
        elif converter == "path":
            pieces.append(f"(?P<{name}>.*)")
        else:
            raise ValueError(f"Unsupported path converter: {converter}")
        position = match.end()
    pieces.append(re.escape(path[position:]))
    pattern = "^" + "".join(pieces) + "$"
    return rure.compile(pattern), tuple(param_names)


__all__ = [
    "ANY_METHOD",
    "MethodNotAllowed",
    "Route",
    "RouteMatch",
    "RouteSpec",
    "Router",
    "get",
    "post",
    "route",
]
