import asyncio
from dataclasses import dataclass
from typing import Annotated, Iterator

import pytest
from pydantic import BaseModel

from fastbind import (
    APIError,
    App,
    BufferedResponseWriter,
    Context,
    Dep,
    Event,
    Header,
    Json,
    JSONResponse,
    NoParams,
    Path,
    Query,
    RegistrationError,
    Request,
    Settings,
    Validate,
)
from fastbind.testclient import TestClient


@dataclass
class AuthInput:
    token: Annotated[str, Header("Authorization")] = ""


@dataclass
class User:
    user_id: str
    name: str


class CreateItem(BaseModel):
    name: Annotated[str, Json(), Validate("required,min=3")] = ""
    price: Annotated[float, Json(), Validate("gt=0")] = 0.0
    owner: Annotated[str, Dep("auth.user_id")] = ""


class Item(BaseModel):
    id: int
    name: str
    price: float
    owner: str


@dataclass
class ShowItem:
    item_id: Annotated[int, Path("id")] = 0
    fields: Annotated[list[str], Query()] = None


@dataclass
class Feed:
    limit: Annotated[int, Query(), Validate("lte=10")] = 2
    user: Annotated[str, Dep("auth.name")] = ""


USERS = {"secret": User("u1", "Ada")}


def authenticate(ctx: Context, req: AuthInput) -> User:
    user = USERS.get(req.token)
    if user is None:
        raise APIError(401, "Invalid token", code="UNAUTHORIZED")
    return user


def build_app(settings: Settings) -> App:
    app = App(settings, title="Shop")
    app.register_dependency("auth", authenticate)

    @app.post("/items")
    def create_item(ctx: Context, req: CreateItem) -> Item:
        return Item(id=1, name=req.name, price=req.price, owner=req.owner)

    @app.get("/items/{id}")
    async def show_item(ctx: Context, req: ShowItem) -> dict:
        if req.item_id == 404:
            raise APIError(404, "Item not found", code="NOT_FOUND")
        if req.item_id == 500:
            raise RuntimeError("database exploded")
        return {"id": req.item_id, "fields": req.fields}

    @app.sse_get("/feed")
    def feed(ctx: Context, req: Feed) -> Iterator[Event[dict]]:
        for n in range(req.limit):
            yield Event({"n": n, "for": req.user}, event="entry")

    return app


AUTH = {"Authorization": "secret"}


def test_json_handler_with_dependency(settings: Settings) -> None:
    client = TestClient(build_app(settings))
    res = client.post("/items", json_body={"name": "pen", "price": 2.5}, headers=AUTH)
    assert res.status_code == 200
    assert res.headers["content-type"] == "application/json"
    assert res.json() == {"id": 1, "name": "pen", "price": 2.5, "owner": "u1"}


def test_dependency_error_response(settings: Settings) -> None:
    client = TestClient(build_app(settings))
    res = client.post("/items", json_body={"name": "pen", "price": 2.5})
    assert res.status_code == 401
    assert res.json() == {"code": "UNAUTHORIZED", "message": "Invalid token"}


def test_validation_error_response(settings: Settings) -> None:
    client = TestClient(build_app(settings))
    res = client.post("/items", json_body={"name": "p", "price": 0}, headers=AUTH)
    assert res.status_code == 400
    assert res.json() == {
        "code": "VALIDATION_ERROR",
        "message": "Validation failed",
        "validation_errors": {
            "name": ["failed min validation"],
            "price": ["failed gt validation"],
        },
    }


def test_path_and_query_parameters(settings: Settings) -> None:
    client = TestClient(build_app(settings))
    res = client.get("/items/3", params={"fields": "name, price"})
    assert res.status_code == 200
    assert res.json() == {"id": 3, "fields": ["name", "price"]}


def test_invalid_parameter_response(settings: Settings) -> None:
    client = TestClient(build_app(settings))
    res = client.get("/items/abc")
    assert res.status_code == 400
    assert res.json()["code"] == "INVALID_PARAMETER"


def test_business_error_and_internal_error(settings: Settings) -> None:
    client = TestClient(build_app(settings))
    res = client.get("/items/404")
    assert res.status_code == 404
    assert res.json() == {"code": "NOT_FOUND", "message": "Item not found"}

    res = client.get("/items/500")
    assert res.status_code == 500
    assert res.json() == {"code": "INTERNAL_ERROR", "message": "An internal error occurred"}


def test_unknown_route_and_method(settings: Settings) -> None:
    client = TestClient(build_app(settings))
    assert client.get("/nowhere").status_code == 404
    res = client.delete("/items/1")
    assert res.status_code == 405
    assert res.json()["code"] == "METHOD_NOT_ALLOWED"


def test_streaming_route(settings: Settings) -> None:
    client = TestClient(build_app(settings))
    res = client.get("/feed", headers=AUTH)
    assert res.status_code == 200
    assert res.headers["content-type"] == "text/event-stream"
    assert res.headers["cache-control"] == "no-cache"
    assert res.chunks == [
        'event: entry\ndata: {"n": 0, "for": "Ada"}\n\n',
        'event: entry\ndata: {"n": 1, "for": "Ada"}\n\n',
    ]


def test_streaming_route_errors_before_headers(settings: Settings) -> None:
    client = TestClient(build_app(settings))
    res = client.get("/feed", params={"limit": 50}, headers=AUTH)
    assert res.status_code == 400
    assert res.json()["validation_errors"] == {"limit": ["failed lte validation"]}
    assert client.get("/feed").status_code == 401


def test_stream_uses_configured_origin_and_indent() -> None:
    app = App(Settings(sse_allow_origin="https://ui.example", sse_indent=1))

    @app.sse_get("/one")
    def one(ctx: Context, req: NoParams) -> Iterator[Event[dict]]:
        yield Event({"a": 1})

    res = TestClient(app).get("/one")
    assert res.headers["access-control-allow-origin"] == "https://ui.example"
    assert res.text == 'data: {\ndata:  "a": 1\ndata: }\n\n'


def test_route_group(settings: Settings) -> None:
    app = App(settings)
    api = app.group("/api")
    v1 = api.group("v1")

    @v1.get("/ping/{word}")
    def ping(ctx: Context, req: ShowItem) -> str:
        return "pong"

    assert app.routes.routes[0].path == "/api/v1/ping/{word}"


def test_group_routes_are_served(settings: Settings) -> None:
    app = App(settings)

    @dataclass
    class Echo:
        word: Annotated[str, Path()] = ""

    @app.group("/api").get("/echo/{word}")
    def echo(ctx: Context, req: Echo) -> dict:
        return {"word": req.word}

    assert TestClient(app).get("/api/echo/hi").json() == {"word": "hi"}


def test_registration_errors_name_the_route(settings: Settings) -> None:
    app = App(settings)

    def bad(ctx: Context, req: int) -> dict:
        return {}

    with pytest.raises(RegistrationError, match="failed to compile handler for GET /bad"):
        app.register_handler("get", "/bad", bad)

    @dataclass
    class Unknown:
        name: Annotated[str, Query(), Validate("sparkly")] = ""

    def unknown(ctx: Context, req: Unknown) -> dict:
        return {}

    with pytest.raises(RegistrationError, match="unknown validation rule"):
        app.register_handler("GET", "/unknown", unknown)
    assert app.routes.routes == []


def test_duplicate_route_is_rejected(settings: Settings) -> None:
    app = App(settings)

    def handler(ctx: Context, req: NoParams) -> dict:
        return {}

    app.register_handler("GET", "/x", handler)
    with pytest.raises(RegistrationError, match="already registered"):
        app.register_handler("GET", "/x", handler)
    assert len(app.routes.routes) == 1


@pytest.mark.parametrize(
    ("path", "message"),
    [
        ("/users/{user-id}", "invalid path parameter name"),
        ("/users/{id}/posts/{id}", "duplicate path parameter"),
        ("/users/{id:[0-9}", "invalid path template"),
    ],
)
def test_malformed_path_template_is_rejected(settings: Settings, path: str, message: str) -> None:
    app = App(settings)

    def handler(ctx: Context, req: NoParams) -> dict:
        return {}

    with pytest.raises(RegistrationError, match=message):
        app.register_handler("GET", path, handler)
    assert app.routes.routes == []


def test_custom_validation_rule(settings: Settings) -> None:
    app = App(settings)
    app.register_validation_rule("even", lambda value, _: value % 2 == 0)

    @dataclass
    class Number:
        n: Annotated[int, Query(), Validate("even")] = 0

    @app.get("/even")
    def even(ctx: Context, req: Number) -> int:
        return req.n

    client = TestClient(app)
    assert client.get("/even", params={"n": 4}).json() == 4
    assert client.get("/even", params={"n": 3}).json()["validation_errors"] == {
        "n": ["failed even validation"]
    }


def test_exception_handlers(settings: Settings) -> None:
    class QuotaError(Exception):
        pass

    class DailyQuotaError(QuotaError):
        pass

    app = App(settings)
    app.add_exception_handler(
        QuotaError, lambda request, exc: (429, {"detail": "slow down"}, {"retry-after": "60"})
    )

    @app.get("/quota")
    def quota(ctx: Context, req: NoParams) -> dict:
        raise DailyQuotaError()

    res = TestClient(app).get("/quota")
    assert res.status_code == 429
    assert res.headers["retry-after"] == "60"
    assert res.json() == {"detail": "slow down"}


def test_set_error_handler(settings: Settings) -> None:
    app = App(settings)

    async def render(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse({"error": str(exc), "path": request.path}, status_code=418)

    app.set_error_handler(render)

    @app.get("/fail")
    def fail(ctx: Context, req: NoParams) -> dict:
        raise APIError(400, "nope")

    res = TestClient(app).get("/fail")
    assert res.status_code == 418
    assert res.json() == {"error": "nope", "path": "/fail"}


def test_broken_error_handler_falls_back(settings: Settings) -> None:
    app = App(settings)

    def broken(request: Request, exc: Exception) -> JSONResponse:
        raise KeyError("oops")

    app.set_error_handler(broken)

    @app.get("/fail")
    def fail(ctx: Context, req: NoParams) -> dict:
        raise APIError(400, "nope")

    res = TestClient(app).get("/fail")
    assert res.status_code == 500
    assert res.json()["code"] == "INTERNAL_ERROR"


def test_dispatch_without_asgi(settings: Settings) -> None:
    app = build_app(settings)
    writer = BufferedResponseWriter()
    request = Request("GET", "/items/9", query_string="fields=a")
    asyncio.run(app.dispatch(request, writer))
    assert writer.status == 200
    assert writer.body == b'{"id": 9, "fields": ["a"]}'


def test_lifespan_hooks(settings: Settings) -> None:
    app = App(settings)
    events = []

    @app.on_event("startup")
    async def start() -> None:
        events.append("startup")

    @app.on_event("shutdown")
    def stop() -> None:
        events.append("shutdown")

    messages = iter([{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}])
    sent = []

    async def receive() -> dict:
        return next(messages)

    async def send(message: dict) -> None:
        sent.append(message["type"])

    asyncio.run(app({"type": "lifespan"}, receive, send))
    assert events == ["startup", "shutdown"]
    assert sent == ["lifespan.startup.complete", "lifespan.shutdown.complete"]


def test_unknown_event_is_rejected(settings: Settings) -> None:
    with pytest.raises(ValueError):
        App(settings).on_event("reload")


def test_body_size_limit(settings: Settings) -> None:
    settings.max_body_size = 16
    client = TestClient(build_app(settings))
    res = client.post("/items", json_body={"name": "x" * 32, "price": 1}, headers=AUTH)
    assert res.status_code == 413
    assert res.json()["code"] == "BODY_TOO_LARGE"


def test_body_size_limit_applies_to_routes_without_json_fields(settings: Settings) -> None:
    @dataclass
    class Ping:
        note: Annotated[str, Query()] = ""

    settings.max_body_size = 10
    app = App(settings)
    calls = []

    @app.post("/ping")
    def ping(ctx: Context, req: Ping) -> dict:
        calls.append(req)
        return {}

    res = TestClient(app).post("/ping", body=b"x" * 1_000_000)
    assert res.status_code == 413
    assert res.json()["code"] == "BODY_TOO_LARGE"
    assert calls == []


def test_openapi_route(settings: Settings) -> None:
    app = build_app(settings)
    app.serve_openapi_json()
    doc = TestClient(app).get("/openapi.json").json()
    assert doc["info"]["title"] == "Shop"
    assert "/openapi.json" not in doc["paths"]
    assert set(doc["paths"]) == {"/items", "/items/{id}", "/feed"}
