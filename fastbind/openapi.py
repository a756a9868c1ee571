"""OpenAPI 3.0 documents derived from compiled binding plans."""

from __future__ import annotations

import dataclasses
import enum
import re
from typing import Any, Iterable, Mapping, Sequence, get_args, get_origin, get_type_hints

from pydantic import BaseModel

from .convert import FieldKind, classify, element_type, unwrap_optional
from .dependency import DependencyRegistry
from .introspect import BindingPlan, FieldSlot
from .params import DEPENDENCY, HEADER, JSON, PATH, QUERY
from .routing import Route
from .validation import parse_rules

_ERROR_SCHEMA = {
    "type": "object",
    "properties": {
        "code": {"type": "string"},
        "message": {"type": "string"},
        "details": {"type": "object", "additionalProperties": {"type": "string"}},
    },
}

_VALIDATION_ERROR_SCHEMA = {
    "type": "object",
    "properties": {
        "code": {"type": "string"},
        "message": {"type": "string"},
        "validation_errors": {
            "type": "object",
            "additionalProperties": {"type": "array", "items": {"type": "string"}},
        },
    },
}


class SecuritySchemeType(str, enum.Enum):
    """Authentication schemes a dependency can declare for the document."""

    BEARER = "bearer"
    BASIC = "basic"
    API_KEY = "apiKey"


_SECURITY_SCHEMES: dict[SecuritySchemeType, tuple[str, dict[str, str]]] = {
    SecuritySchemeType.BEARER: (
        "BearerAuth",
        {"type": "http", "scheme": "bearer", "description": "Bearer token authentication"},
    ),
    SecuritySchemeType.BASIC: (
        "BasicAuth",
        {"type": "http", "scheme": "basic", "description": "Basic authentication"},
    ),
    SecuritySchemeType.API_KEY: (
        "ApiKeyAuth",
        {
            "type": "apiKey",
            "in": "header",
            "name": "X-API-Key",
            "description": "API key authentication via X-API-Key header",
        },
    ),
}

SecurityMap = Mapping[str, Sequence[SecuritySchemeType]]


def security_scheme(scheme_type: SecuritySchemeType | str) -> tuple[str, dict[str, str]]:
    """Return the component name and body for *scheme_type*.

    Raises ``ValueError`` for an unknown type.
    """
    try:
        name, scheme = _SECURITY_SCHEMES[SecuritySchemeType(scheme_type)]
    except ValueError:
        raise ValueError(f"unknown security scheme type: {scheme_type}") from None
    return name, dict(scheme)


def operation_id(method: str, path: str) -> str:
    """``GET /users/{id}`` -> ``getUsersById``."""
    words = [method.lower()]
    for segment in path.strip("/").split("/"):
        if not segment:
            continue
        if segment.startswith("{"):
            name = segment.strip("{}").split(":")[0]
            words.append("By" + _camel(name))
        else:
            words.append(_camel(segment))
    return "".join(words)


def _camel(value: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[^0-9A-Za-z]+", value) if part)


def _openapi_path(path: str) -> str:
    return re.sub(r"{([^}:]+):[^}]+}", r"{\1}", path)


class SchemaBuilder:
    """Accumulates component schemas while rendering field types."""

    def __init__(self) -> None:
        self.schemas: dict[str, Any] = {}

    def type_schema(self, tp: Any) -> dict[str, Any]:
        tp = unwrap_optional(tp)
        if get_origin(tp) is not None and get_origin(tp) is dict:
            args = get_args(tp)
            value = self.type_schema(args[1]) if len(args) == 2 else {}
            return {"type": "object", "additionalProperties": value}
        kind = classify(tp)
        if kind is FieldKind.STRING:
            return {"type": "string"}
        if kind is FieldKind.INTEGER:
            return {"type": "integer"}
        if kind is FieldKind.FLOAT:
            return {"type": "number"}
        if kind is FieldKind.BOOLEAN:
            return {"type": "boolean"}
        if kind is FieldKind.SEQUENCE:
            return {"type": "array", "items": self.type_schema(element_type(tp))}
        if kind is FieldKind.STRUCT:
            return self._struct_ref(tp)
        return {"type": "object"}

    def _struct_ref(self, tp: type) -> dict[str, Any]:
        name = tp.__name__
        if name not in self.schemas:
            self.schemas[name] = {}  # placeholder breaks recursion
            if issubclass(tp, BaseModel):
                schema = tp.model_json_schema(ref_template="#/components/schemas/{model}")
                for def_name, definition in schema.pop("$defs", {}).items():
                    self.schemas.setdefault(def_name, definition)
            else:
                schema = self._dataclass_schema(tp)
            self.schemas[name] = schema
        return {"$ref": f"#/components/schemas/{name}"}

    def _dataclass_schema(self, tp: type) -> dict[str, Any]:
        props: dict[str, Any] = {}
        required: list[str] = []
        hints = _hints(tp)
        for f in dataclasses.fields(tp):
            props[f.name] = self.type_schema(hints.get(f.name, f.type))
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                required.append(f.name)
        schema: dict[str, Any] = {"type": "object", "properties": props}
        if required:
            schema["required"] = required
        return schema

    def slot_schema(self, slot: FieldSlot) -> dict[str, Any]:
        schema = self.type_schema(slot.annotation)
        if slot.rules:
            apply_constraints(schema, slot.rules)
        return schema


def _hints(tp: type) -> dict[str, Any]:
    try:
        return get_type_hints(tp)
    except Exception:  # noqa: BLE001 - fall back to raw field types
        return {}


def apply_constraints(schema: dict[str, Any], rules: str) -> None:
    """Translate rule strings into JSON-schema keywords where possible."""
    typ = schema.get("type")
    for tag, param in parse_rules(rules):
        if tag in ("min", "max") and param:
            try:
                bound = float(param)
            except ValueError:
                continue
            if typ == "string":
                schema["minLength" if tag == "min" else "maxLength"] = int(bound)
            elif typ == "array":
                schema["minItems" if tag == "min" else "maxItems"] = int(bound)
            elif typ in ("number", "integer"):
                schema["minimum" if tag == "min" else "maximum"] = bound
        elif tag == "oneof" and param:
            schema["enum"] = param.split()
        elif tag in ("email", "uuid") and typ == "string":
            schema["format"] = tag
        elif tag == "url" and typ == "string":
            schema["format"] = "uri"


def _is_required(slot: FieldSlot) -> bool:
    return bool(slot.rules) and any(tag == "required" for tag, _ in parse_rules(slot.rules or ""))


def _dependency_closure(plan: BindingPlan, registry: DependencyRegistry) -> list[str]:
    """Dependency names reachable from *plan*, in discovery order."""
    seen: list[str] = []
    pending = list(plan.dependencies)
    while pending:
        name = pending.pop(0)
        if name in seen:
            continue
        seen.append(name)
        compiled = registry.get(name)
        if compiled is not None:
            pending.extend(compiled.plan.dependencies)
    return seen


def build_operation(
    route: Route,
    registry: DependencyRegistry,
    builder: SchemaBuilder,
    security: SecurityMap | None = None,
) -> dict[str, Any]:
    plan = route.plan
    op: dict[str, Any] = {"operationId": operation_id(route.method, route.path)}
    params: list[dict[str, Any]] = []
    body_props: dict[str, Any] = {}
    body_required: list[str] = []
    deps = _dependency_closure(plan, registry)

    slots = list(plan.bound_slots)
    for name in deps:
        compiled = registry.get(name)
        if compiled is not None:
            slots.extend(compiled.plan.bound_slots)

    seen_params: set[tuple[str, str]] = set()
    for slot in slots:
        source = slot.source
        if source == DEPENDENCY or slot.extractor is None:
            continue
        key = slot.extractor.key
        if source in (PATH, QUERY, HEADER):
            if (source, key) in seen_params:
                continue
            seen_params.add((source, key))
            params.append(
                {
                    "name": key,
                    "in": source,
                    "required": source == PATH or _is_required(slot),
                    "schema": builder.slot_schema(slot),
                }
            )
        elif source == JSON and key not in body_props:
            body_props[key] = builder.slot_schema(slot)
            if _is_required(slot):
                body_required.append(key)
    if params:
        op["parameters"] = params
    if body_props:
        body_schema: dict[str, Any] = {"type": "object", "properties": body_props}
        if body_required:
            body_schema["required"] = body_required
        op["requestBody"] = {
            "required": bool(body_required),
            "content": {"application/json": {"schema": body_schema}},
        }
    requirements: list[dict[str, list[str]]] = []
    for name in deps:
        for scheme_type in (security or {}).get(name, ()):
            requirement: dict[str, list[str]] = {security_scheme(scheme_type)[0]: []}
            if requirement not in requirements:
                requirements.append(requirement)
    if requirements:
        op["security"] = requirements

    media = "text/event-stream" if plan.streaming else "application/json"
    responses: dict[str, Any] = {
        "200": {
            "description": "Event stream" if plan.streaming else "Successful response",
            "content": {media: {"schema": builder.type_schema(plan.response_type)}},
        },
        "400": {"$ref": "#/components/responses/ValidationError"},
        "500": {"$ref": "#/components/responses/InternalError"},
    }
    if deps:
        responses["401"] = {"$ref": "#/components/responses/UnauthorizedError"}
    op["responses"] = responses
    return op


def build_document(
    routes: Iterable[Route],
    registry: DependencyRegistry,
    *,
    title: str = "API",
    version: str = "1.0.0",
    description: str = "",
    servers: list[dict[str, str]] | None = None,
    security: SecurityMap | None = None,
) -> dict[str, Any]:
    """Generate an OpenAPI document for *routes*.

    *security* maps dependency names to the schemes they implement; routes
    that reach such a dependency carry the matching security requirement.
    """

    builder = SchemaBuilder()
    paths: dict[str, dict[str, Any]] = {}
    for route in routes:
        if not route.include_in_schema:
            continue
        paths.setdefault(_openapi_path(route.path), {})[route.method.lower()] = build_operation(
            route, registry, builder, security
        )
    info: dict[str, Any] = {"title": title, "version": version}
    if description:
        info["description"] = description
    doc: dict[str, Any] = {
        "openapi": "3.0.3",
        "info": info,
        "paths": paths,
        "components": {
            "schemas": builder.schemas,
            "responses": {
                "ValidationError": {
                    "description": "Validation error",
                    "content": {"application/json": {"schema": _VALIDATION_ERROR_SCHEMA}},
                },
                "UnauthorizedError": {
                    "description": "Authentication required",
                    "content": {"application/json": {"schema": _ERROR_SCHEMA}},
                },
                "InternalError": {
                    "description": "Internal server error",
                    "content": {"application/json": {"schema": _ERROR_SCHEMA}},
                },
            },
        },
    }
    schemes = dict(
        security_scheme(scheme_type)
        for scheme_types in (security or {}).values()
        for scheme_type in scheme_types
    )
    if schemes:
        doc["components"]["securitySchemes"] = schemes
    if servers:
        doc["servers"] = list(servers)
    return doc


__all__ = [
    "SchemaBuilder",
    "SecuritySchemeType",
    "apply_constraints",
    "build_document",
    "build_operation",
    "operation_id",
    "security_scheme",
]
