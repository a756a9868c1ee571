"""Strategies turning one external request source into one typed field value."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from .convert import coerce_string, get_type_adapter
from .errors import ExtractionError
from .http import Request
from .params import DEPENDENCY, HEADER, JSON, PATH, QUERY


@dataclass(frozen=True)
class DependencyRef:
    """Reference to a dependency result, optionally a member path into it."""

    name: str
    path: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "DependencyRef":
        parts = text.split(".")
        return cls(parts[0], tuple(parts[1:]))

    def __str__(self) -> str:
        return ".".join((self.name, *self.path))


class FieldExtractor:
    """Read one field from a request.

    ``zero`` produces the value used when the source is absent.
    """

    source = ""

    def __init__(self, key: str, annotation: Any, zero: Callable[[], Any]) -> None:
        self.key = key
        self.annotation = annotation
        self.zero = zero

    async def extract(self, request: Request) -> Any:
        raise NotImplementedError

    def _convert(self, raw: str) -> Any:
        try:
            return coerce_string(raw, self.annotation)
        except ValueError as exc:
            raise ExtractionError(
                f"invalid {self.source} parameter {self.key}: {exc}",
                source=self.source,
                name=self.key,
            ) from exc

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.key!r})"


class PathExtractor(FieldExtractor):
    source = PATH

    async def extract(self, request: Request) -> Any:
        raw = request.path_param(self.key)
        if raw is None:
            raise ExtractionError(
                f"path parameter {self.key} not found", source=PATH, name=self.key
            )
        return self._convert(raw)


class QueryExtractor(FieldExtractor):
    source = QUERY

    async def extract(self, request: Request) -> Any:
        raw = request.query(self.key)
        if raw == "":
            return self.zero()
        return self._convert(raw)


class HeaderExtractor(FieldExtractor):
    source = HEADER

    async def extract(self, request: Request) -> Any:
        raw = request.header(self.key)
        if raw == "":
            return self.zero()
        return self._convert(raw)


class JSONExtractor(FieldExtractor):
    """Pick ``key`` out of an object body, or decode the whole body.

    The whole-body fallback applies when the payload is not a JSON object,
    which lets a single field receive e.g. a top-level array.
    """

    source = JSON

    async def extract(self, request: Request) -> Any:
        body = await request.body()
        if not body:
            return self.zero()
        try:
            data = json.loads(body)
        except ValueError:
            return self._decode_whole(body)
        # null decodes like an empty object
        if data is None:
            return self.zero()
        if not isinstance(data, dict):
            return self._decode_whole(body)
        if self.key not in data:
            return self.zero()
        try:
            return get_type_adapter(self.annotation).validate_python(data[self.key])
        except PydanticValidationError as exc:
            raise ExtractionError(
                f"invalid json field {self.key}: {_first_error(exc)}",
                source=JSON,
                name=self.key,
            ) from exc

    def _decode_whole(self, body: bytes) -> Any:
        try:
            return get_type_adapter(self.annotation).validate_json(body)
        except PydanticValidationError as exc:
            raise ExtractionError(
                f"invalid request body: {_first_error(exc)}",
                source=JSON,
                name=self.key,
            ) from exc


class DependencyExtractor(FieldExtractor):
    """Marker for dependency-backed fields; the binder supplies the value."""

    source = DEPENDENCY

    def __init__(self, ref: DependencyRef, annotation: Any, zero: Callable[[], Any]) -> None:
        super().__init__(str(ref), annotation, zero)
        self.ref = ref

    async def extract(self, request: Request) -> Any:
        return None


def _first_error(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err.get('msg', '')}" if loc else str(err.get("msg", ""))


EXTRACTORS: dict[str, type[FieldExtractor]] = {
    PATH: PathExtractor,
    QUERY: QueryExtractor,
    HEADER: HeaderExtractor,
    JSON: JSONExtractor,
}


__all__ = [
    "DependencyExtractor",
    "DependencyRef",
    "EXTRACTORS",
    "FieldExtractor",
    "HeaderExtractor",
    "JSONExtractor",
    "PathExtractor",
    "QueryExtractor",
]
