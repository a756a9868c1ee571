"""Field metadata markers declaring where a request field comes from.

Markers are attached with :data:`typing.Annotated`::

    @dataclass
    class ShowPost:
        post_id: Annotated[int, Path("id")]
        author: Annotated[str, Dep("auth.username")] = ""
"""

from __future__ import annotations

from dataclasses import dataclass

PATH = "path"
QUERY = "query"
HEADER = "header"
JSON = "json"
DEPENDENCY = "dependency"


@dataclass(frozen=True)
class Source:
    """Base class for source markers; ``name`` is the external key."""

    name: str | None = None

    kind = ""


@dataclass(frozen=True)
class Path(Source):
    """Value captured by the routing layer from the URL template."""

    kind = PATH


@dataclass(frozen=True)
class Query(Source):
    """Value of a query-string parameter."""

    kind = QUERY


@dataclass(frozen=True)
class Header(Source):
    """Value of a request header (case-insensitive)."""

    kind = HEADER


@dataclass(frozen=True)
class Json(Source):
    """Member of a JSON object body, or the whole body if it is not an object."""

    kind = JSON


@dataclass(frozen=True)
class Dep(Source):
    """Result of a registered dependency, optionally a dotted path into it.

    ``Dep("auth")`` injects the whole result of ``auth``;
    ``Dep("auth.user_id")`` injects its ``user_id`` member.
    """

    kind = DEPENDENCY


@dataclass(frozen=True)
class Validate:
    """Comma-separated validation rules, e.g. ``"required,min=3"``."""

    rules: str


__all__ = [
    "DEPENDENCY",
    "HEADER",
    "JSON",
    "PATH",
    "QUERY",
    "Dep",
    "Header",
    "Json",
    "Path",
    "Query",
    "Source",
    "Validate",
]
