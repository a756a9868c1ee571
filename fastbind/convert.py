"""Type shapes and string-to-value coercion for request fields."""

from __future__ import annotations

import collections.abc
import dataclasses
import enum
import inspect
import re
import threading
import types
from typing import Any, Union, get_args, get_origin

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import ExtractionError


class FieldKind(enum.Enum):
    """Shapes a request field may take."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    SEQUENCE = "sequence"
    STRUCT = "struct"
    ANY = "any"


SCALAR_KINDS = frozenset(
    {FieldKind.STRING, FieldKind.INTEGER, FieldKind.FLOAT, FieldKind.BOOLEAN}
)

_SEQUENCE_ORIGINS = {
    list,
    tuple,
    set,
    frozenset,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
    collections.abc.Iterable,
}

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}

# int() and float() alone would also accept underscores and non-ASCII digits
_INT_RE = re.compile(r"[+-]?[0-9]+")
_FLOAT_RE = re.compile(
    r"[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|inf(?:inity)?|nan)",
    re.IGNORECASE,
)


def unwrap_optional(tp: Any) -> Any:
    """Return ``X`` for ``Optional[X]`` / ``X | None``, else *tp* unchanged."""
    origin = get_origin(tp)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(tp) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return tp


def is_struct_type(tp: Any) -> bool:
    return inspect.isclass(tp) and (
        dataclasses.is_dataclass(tp) or issubclass(tp, BaseModel)
    )


def classify(tp: Any) -> FieldKind:
    """Map a declared annotation to its :class:`FieldKind`."""
    tp = unwrap_optional(tp)
    if tp is bool:
        return FieldKind.BOOLEAN
    if tp is int:
        return FieldKind.INTEGER
    if tp is float:
        return FieldKind.FLOAT
    if tp is str:
        return FieldKind.STRING
    origin = get_origin(tp)
    if tp in _SEQUENCE_ORIGINS or origin in _SEQUENCE_ORIGINS:
        return FieldKind.SEQUENCE
    if is_struct_type(tp):
        return FieldKind.STRUCT
    return FieldKind.ANY


def element_type(tp: Any) -> Any:
    """Return the element annotation of a sequence type (``Any`` if bare)."""
    tp = unwrap_optional(tp)
    args = [a for a in get_args(tp) if a is not Ellipsis]
    return args[0] if args else Any


def string_coercible(tp: Any) -> bool:
    """Whether a value of *tp* can be produced from a single string."""
    kind = classify(tp)
    if kind in SCALAR_KINDS:
        return True
    if kind is FieldKind.SEQUENCE:
        return classify(element_type(tp)) in SCALAR_KINDS
    return False


def zero_value(tp: Any) -> Any:
    kind = classify(tp)
    if kind is FieldKind.STRING:
        return ""
    if kind is FieldKind.INTEGER:
        return 0
    if kind is FieldKind.FLOAT:
        return 0.0
    if kind is FieldKind.BOOLEAN:
        return False
    if kind is FieldKind.SEQUENCE:
        origin = get_origin(unwrap_optional(tp)) or unwrap_optional(tp)
        if origin in (tuple, set, frozenset):
            return origin()
        return []
    return None


def parse_bool(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"invalid boolean {value!r}")


def coerce_string(value: str, tp: Any) -> Any:
    """Convert *value* to *tp*; raises ``ValueError`` on malformed input.

    Sequences are comma separated and each element is stripped and coerced
    on its own; one bad element fails the whole value.
    """
    kind = classify(tp)
    if kind is FieldKind.STRING:
        return value
    if kind is FieldKind.INTEGER:
        if not _INT_RE.fullmatch(value):
            raise ValueError(f"invalid integer {value!r}")
        return int(value, 10)
    if kind is FieldKind.FLOAT:
        if not _FLOAT_RE.fullmatch(value):
            raise ValueError(f"invalid float {value!r}")
        return float(value)
    if kind is FieldKind.BOOLEAN:
        return parse_bool(value)
    if kind is FieldKind.SEQUENCE:
        elem = element_type(tp)
        items = [coerce_string(part.strip(), elem) for part in value.split(",")]
        origin = get_origin(unwrap_optional(tp)) or unwrap_optional(tp)
        if origin in (tuple, set, frozenset):
            return origin(items)
        return items
    raise ValueError(f"unsupported type: {tp!r}")


_TYPE_ADAPTER_CACHE: dict[Any, TypeAdapter] = {}
_CACHE_LOCK = threading.Lock()


def get_type_adapter(tp: Any) -> TypeAdapter:
    """Return a cached ``TypeAdapter`` for *tp*."""
    try:
        return _TYPE_ADAPTER_CACHE[tp]
    except (KeyError, TypeError):
        pass
    adapter = TypeAdapter(tp)
    try:
        with _CACHE_LOCK:
            _TYPE_ADAPTER_CACHE[tp] = adapter
    except TypeError:  # unhashable annotation
        pass
    return adapter


def convert_value(value: Any, tp: Any, *, name: str | None = None) -> Any:
    """Coerce an already-typed *value* into *tp* when it is not one already."""
    target = unwrap_optional(tp)
    if target is Any:
        return value
    if get_origin(target) is None and inspect.isclass(target) and isinstance(value, target):
        return value
    try:
        return get_type_adapter(tp).validate_python(value)
    except PydanticValidationError as exc:
        raise ExtractionError(
            f"cannot convert value for {name or 'field'} to {getattr(target, '__name__', target)}",
            name=name,
        ) from exc


def to_jsonable(value: Any) -> Any:
    """Return a JSON-compatible rendition of *value* inferred from its runtime type."""
    return get_type_adapter(Any).dump_python(value, mode="json")


__all__ = [
    "FieldKind",
    "SCALAR_KINDS",
    "classify",
    "coerce_string",
    "convert_value",
    "element_type",
    "get_type_adapter",
    "is_struct_type",
    "parse_bool",
    "string_coercible",
    "to_jsonable",
    "unwrap_optional",
    "zero_value",
]
