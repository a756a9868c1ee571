from dataclasses import dataclass
from typing import Annotated, Iterator, Optional

import pytest
from pydantic import BaseModel

from fastbind import (
    App,
    Context,
    Dep,
    Event,
    Header,
    Json,
    NoParams,
    Path,
    Query,
    RegistrationError,
    SecuritySchemeType,
    Settings,
    Validate,
)
from fastbind.openapi import apply_constraints, operation_id


@dataclass
class Session:
    user_id: str
    expires: int = 0


@dataclass
class AuthInput:
    token: Annotated[str, Header("Authorization"), Validate("required")] = ""


@dataclass
class UpdateUser:
    user_id: Annotated[int, Path("id")] = 0
    name: Annotated[str, Json(), Validate("required,min=2,max=40")] = ""
    emails: Annotated[list[str], Json(), Validate("max=3")] = None
    dry_run: Annotated[bool, Query("dry_run")] = False
    page: Annotated[Optional[int], Query(), Validate("required,gte=1")] = None
    actor: Annotated[str, Dep("auth.user_id")] = ""


@dataclass
class WhoAmI:
    actor: Annotated[str, Dep("auth.user_id")] = ""


class UserOut(BaseModel):
    id: int
    name: str
    session: Session


def auth(ctx: Context, req: AuthInput) -> Session:
    return Session("u1")


def build() -> App:
    app = App(Settings(), title="Users", version="2.0.0", description="User admin")
    app.register_dependency("auth", auth, SecuritySchemeType.BEARER)
    app.add_server("http://localhost:8080", "Local development server")

    @app.put("/users/{id:[0-9]+}")
    def update(ctx: Context, req: UpdateUser) -> UserOut:
        raise NotImplementedError

    @app.sse_get("/events")
    def events(ctx: Context, req: NoParams) -> Iterator[Event[Session]]:
        yield Event(Session("u1"))

    @app.get("/hidden", include_in_schema=False)
    def hidden(ctx: Context, req: NoParams) -> dict:
        return {}

    return app


def test_document_header() -> None:
    doc = build().openapi_schema()
    assert doc["openapi"].startswith("3.0")
    assert doc["info"] == {"title": "Users", "version": "2.0.0", "description": "User admin"}
    assert set(doc["paths"]) == {"/users/{id}", "/events"}


def test_operation_parameters() -> None:
    op = build().openapi_schema()["paths"]["/users/{id}"]["put"]
    assert op["operationId"] == "putUsersById"
    params = {(p["in"], p["name"]): p for p in op["parameters"]}
    assert params[("path", "id")]["required"] is True
    assert params[("path", "id")]["schema"] == {"type": "integer"}
    assert params[("query", "dry_run")]["required"] is False
    assert params[("query", "dry_run")]["schema"] == {"type": "boolean"}
    assert params[("query", "page")]["required"] is True
    assert params[("query", "page")]["schema"] == {"type": "integer"}
    # header read by the dependency is documented on the operation
    assert params[("header", "Authorization")]["required"] is True


def test_request_body_and_constraints() -> None:
    op = build().openapi_schema()["paths"]["/users/{id}"]["put"]
    body = op["requestBody"]
    assert body["required"] is True
    schema = body["content"]["application/json"]["schema"]
    assert schema["required"] == ["name"]
    assert schema["properties"]["name"] == {"type": "string", "minLength": 2, "maxLength": 40}
    assert schema["properties"]["emails"] == {
        "type": "array",
        "items": {"type": "string"},
        "maxItems": 3,
    }


def test_responses_and_security() -> None:
    doc = build().openapi_schema()
    op = doc["paths"]["/users/{id}"]["put"]
    assert op["security"] == [{"BearerAuth": []}]
    assert op["responses"]["200"]["content"]["application/json"]["schema"] == {
        "$ref": "#/components/schemas/UserOut"
    }
    assert op["responses"]["401"] == {"$ref": "#/components/responses/UnauthorizedError"}
    assert op["responses"]["400"] == {"$ref": "#/components/responses/ValidationError"}
    schemas = doc["components"]["schemas"]
    assert "UserOut" in schemas
    assert "Session" in schemas
    assert set(doc["components"]["responses"]) == {
        "ValidationError",
        "UnauthorizedError",
        "InternalError",
    }


def test_streaming_operation() -> None:
    op = build().openapi_schema()["paths"]["/events"]["get"]
    assert "security" not in op
    assert "401" not in op["responses"]
    content = op["responses"]["200"]["content"]
    assert content == {"text/event-stream": {"schema": {"$ref": "#/components/schemas/Session"}}}


def test_operation_id() -> None:
    assert operation_id("GET", "/") == "get"
    assert operation_id("POST", "/user-groups/{group_id}/members") == "postUserGroupsByGroupIdMembers"


def test_apply_constraints() -> None:
    schema = {"type": "number"}
    apply_constraints(schema, "min=1,max=9.5")
    assert schema == {"type": "number", "minimum": 1.0, "maximum": 9.5}

    schema = {"type": "string"}
    apply_constraints(schema, "required,oneof=red green,email")
    assert schema == {"type": "string", "enum": ["red", "green"], "format": "email"}


def test_security_schemes_and_servers() -> None:
    doc = build().openapi_schema()
    assert doc["components"]["securitySchemes"] == {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "description": "Bearer token authentication",
        }
    }
    assert doc["servers"] == [
        {"url": "http://localhost:8080", "description": "Local development server"}
    ]


def test_dependency_with_several_schemes() -> None:
    app = App(Settings())
    app.register_dependency("auth", auth, "basic", SecuritySchemeType.API_KEY)

    @app.get("/me")
    def me(ctx: Context, req: WhoAmI) -> dict:
        return {}

    doc = app.openapi_schema()
    assert doc["paths"]["/me"]["get"]["security"] == [{"BasicAuth": []}, {"ApiKeyAuth": []}]
    schemes = doc["components"]["securitySchemes"]
    assert schemes["ApiKeyAuth"]["in"] == "header"
    assert schemes["ApiKeyAuth"]["name"] == "X-API-Key"
    assert schemes["BasicAuth"]["scheme"] == "basic"
    assert "servers" not in doc


def test_dependency_without_schemes_adds_no_requirement() -> None:
    app = App(Settings())
    app.register_dependency("auth", auth)

    @app.get("/me")
    def me(ctx: Context, req: WhoAmI) -> dict:
        return {}

    doc = app.openapi_schema()
    op = doc["paths"]["/me"]["get"]
    assert "security" not in op
    assert op["responses"]["401"] == {"$ref": "#/components/responses/UnauthorizedError"}
    assert "securitySchemes" not in doc["components"]


def test_unknown_security_scheme_is_rejected() -> None:
    app = App(Settings())
    with pytest.raises(RegistrationError, match="unknown security scheme type"):
        app.register_dependency("auth", auth, "oauth9")
    assert app.registry.names() == []
