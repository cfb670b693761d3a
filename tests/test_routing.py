from __future__ import annotations

import pytest

from adaptorkit.responses import PlainTextResponse, Response
from adaptorkit.routing import MethodNotAllowed, Router, get, post, route


async def handler(request) -> Response:
    return PlainTextResponse("ok")


def test_router_matches_static_paths() -> None:
    router = Router()
    registered = router.add_route("/items", methods=["GET", "post"], endpoint=handler, name="items")

    assert registered.spec.methods == ("GET", "POST")
    assert router.find("get", "/items").route is registered
    assert router.find("POST", "/items").params == {}


def test_router_matches_path_parameters() -> None:
    router = Router()
    registered = router.add_route("/doc/{doc_id:path}", methods=["GET"], endpoint=handler)
    single = router.add_route("/items/{item_id}", methods=["GET"], endpoint=handler)

    match = router.find("GET", "/doc/a/b/c")
    assert match.route is registered
    assert match.params == {"doc_id": "a/b/c"}
    assert router.find("GET", "/items/5").route is single
    with pytest.raises(LookupError):
        router.find("GET", "/items/5/extra")


def test_router_escapes_literal_segments() -> None:
    router = Router()
    router.add_route("/a.b/{name}", methods=["GET"], endpoint=handler)

    assert router.find("GET", "/a.b/x").params == {"name": "x"}
    with pytest.raises(LookupError):
        router.find("GET", "/aXb/x")


def test_router_distinguishes_unknown_method() -> None:
    router = Router()
    router.add_route("/items", methods=["GET"], endpoint=handler)

    with pytest.raises(MethodNotAllowed) as excinfo:
        router.find("DELETE", "/items")
    assert excinfo.value.allowed == ("GET",)
    with pytest.raises(LookupError) as missing:
        router.find("GET", "/nothing")
    assert not isinstance(missing.value, MethodNotAllowed)


def test_wildcard_method_matches_everything() -> None:
    router = Router()
    registered = router.add_route("/samlassertionconsumer", methods=["*"], endpoint=handler)

    for method in ("GET", "POST", "PUT"):
        assert router.find(method, "/samlassertionconsumer").route is registered


@pytest.mark.parametrize(
    ("path", "methods"),
    [("items", ["GET"]), ("/items", []), ("/{a}/{a}", ["GET"]), ("/{a:int}", ["GET"])],
)
def test_invalid_routes_are_rejected(path: str, methods: list[str]) -> None:
    with pytest.raises(ValueError):
        Router().add_route(path, methods=methods, endpoint=handler)


def test_include_uses_decorator_metadata() -> None:
    @get("/a")
    async def a(request) -> Response:
        return PlainTextResponse("a")

    @post("/b")
    async def b(request) -> Response:
        return PlainTextResponse("b")

    @route("/c", methods=["PUT"], name="c")
    async def c(request) -> Response:
        return PlainTextResponse("c")

    router = Router()
    router.include([a, b, c])

    assert len(router) == 3
    assert router.find("PUT", "/c").route.spec.name == "c"
    with pytest.raises(ValueError):
        router.include([handler])
