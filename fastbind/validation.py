"""Rule-string validation service backed by pydantic.

A rule table maps field names to comma-separated rule strings such as
``"required,min=3,max=32"``. Each distinct table is compiled once into a
pydantic model whose fields run the rules as after-validators; failures are
reported per field as ``"failed <rule> validation"``.
"""

from __future__ import annotations

import logging
import math
import re
import threading
import uuid
from collections.abc import Sized
from numbers import Number
from typing import Annotated, Any, Callable, Mapping
from urllib.parse import urlparse

from pydantic import AfterValidator, BaseModel, create_model
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

from .errors import RegistrationError

_LOGGER = logging.getLogger("fastbind.validation")

RuleFunc = Callable[[Any, str], bool]
"""``(value, param) -> ok``; ``param`` is ``""`` for rules without one."""

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_NUMERIC_RE = re.compile(r"^[-+]?[0-9]+(?:\.[0-9]+)?$")


def is_zero(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, Number) and not isinstance(value, bool):
        return value == 0
    if isinstance(value, (str, bytes, Sized)):
        return len(value) == 0
    return False


def _measure(value: Any) -> float | None:
    """Numbers compare by value, strings and collections by length."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Number):
        return float(value)  # type: ignore[arg-type]
    if isinstance(value, (str, bytes, Sized)):
        return float(len(value))
    return None


def _compare(op: Callable[[float, float], bool]) -> RuleFunc:
    def rule(value: Any, param: str) -> bool:
        measured = _measure(value)
        if measured is None:
            return False
        return op(measured, float(param))

    return rule


def _string_rule(test: Callable[[str, str], bool]) -> RuleFunc:
    def rule(value: Any, param: str) -> bool:
        return isinstance(value, str) and test(value, param)

    return rule


def _eq(value: Any, param: str) -> bool:
    if isinstance(value, str):
        return value == param
    measured = _measure(value)
    return measured is not None and math.isclose(measured, float(param))


def _oneof(value: Any, param: str) -> bool:
    return str(value) in param.split()


def _url(value: str, _: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


def _uuid(value: str, _: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


BUILTIN_RULES: dict[str, RuleFunc] = {
    "required": lambda value, _: not is_zero(value),
    "min": _compare(lambda a, b: a >= b),
    "max": _compare(lambda a, b: a <= b),
    "len": _compare(lambda a, b: a == b),
    "gt": _compare(lambda a, b: a > b),
    "gte": _compare(lambda a, b: a >= b),
    "lt": _compare(lambda a, b: a < b),
    "lte": _compare(lambda a, b: a <= b),
    "eq": _eq,
    "ne": lambda value, param: not _eq(value, param),
    "oneof": _oneof,
    "email": _string_rule(lambda v, _: bool(_EMAIL_RE.match(v))),
    "url": _string_rule(_url),
    "uuid": _string_rule(_uuid),
    "alpha": _string_rule(lambda v, _: v.isascii() and v.isalpha()),
    "alphanum": _string_rule(lambda v, _: v.isascii() and v.isalnum()),
    "numeric": _string_rule(lambda v, _: bool(_NUMERIC_RE.match(v))),
    "contains": _string_rule(lambda v, p: p in v),
    "startswith": _string_rule(lambda v, p: v.startswith(p)),
    "endswith": _string_rule(lambda v, p: v.endswith(p)),
}

OMITEMPTY = "omitempty"


def parse_rules(text: str) -> list[tuple[str, str]]:
    """Split ``"required,min=3"`` into ``[("required", ""), ("min", "3")]``."""
    parsed: list[tuple[str, str]] = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        tag, _, param = part.partition("=")
        parsed.append((tag.strip(), param.strip()))
    return parsed


class Validator:
    """Validation service; construct one per application and pass it around."""

    def __init__(self) -> None:
        self._rules: dict[str, RuleFunc] = dict(BUILTIN_RULES)
        self._compiled: dict[tuple[tuple[str, str], ...], tuple[type[BaseModel], dict[str, str]]] = {}
        self._lock = threading.Lock()

    def register_rule(self, tag: str, func: RuleFunc) -> None:
        """Add or replace rule *tag*; compiled tables are rebuilt lazily."""
        if not tag or "," in tag or "=" in tag:
            raise ValueError(f"invalid rule tag {tag!r}")
        with self._lock:
            self._rules[tag] = func
            self._compiled.clear()

    def compile(self, rules: Mapping[str, str]) -> type[BaseModel] | None:
        """Compile *rules* now, raising ``RegistrationError`` on unknown tags."""
        if not rules:
            return None
        return self._compile(rules)[0]

    def validate(self, value: Any, rules: Mapping[str, str]) -> dict[str, list[str]] | None:
        """Check *value*'s fields against *rules*.

        Returns ``None`` when every field passes, otherwise a mapping from
        field name to its violations.
        """
        if not rules:
            return None
        model, aliases = self._compile(rules)
        data = {alias: _read(value, name) for alias, name in aliases.items()}
        try:
            model.model_validate(data)
        except PydanticValidationError as exc:
            fields: dict[str, list[str]] = {}
            for err in exc.errors():
                alias = str(err["loc"][0]) if err.get("loc") else ""
                name = aliases.get(alias, alias)
                fields.setdefault(name, []).append(err["msg"])
            return fields
        return None

    def _compile(self, rules: Mapping[str, str]) -> tuple[type[BaseModel], dict[str, str]]:
        key = tuple(sorted(rules.items()))
        with self._lock:
            cached = self._compiled.get(key)
            if cached is not None:
                return cached
            definitions: dict[str, Any] = {}
            aliases: dict[str, str] = {}
            for idx, (name, field_rules) in enumerate(key):
                alias = f"f{idx}"
                aliases[alias] = name
                check = self._make_check(name, parse_rules(field_rules))
                definitions[alias] = (Annotated[Any, AfterValidator(check)], None)
            model = create_model("RuleTable", **definitions)
            self._compiled[key] = (model, aliases)
            _LOGGER.debug("compiled rule table for fields %s", sorted(rules))
            return model, aliases

    def _make_check(self, name: str, parsed: list[tuple[str, str]]) -> Callable[[Any], Any]:
        omit_empty = any(tag == OMITEMPTY for tag, _ in parsed)
        checks: list[tuple[str, str, RuleFunc]] = []
        for tag, param in parsed:
            if tag == OMITEMPTY:
                continue
            func = self._rules.get(tag)
            if func is None:
                raise RegistrationError(f"unknown validation rule {tag!r} on field {name}")
            checks.append((tag, param, func))

        def check(value: Any) -> Any:
            if omit_empty and is_zero(value):
                return value
            for tag, param, func in checks:
                try:
                    ok = func(value, param)
                except (TypeError, ValueError):
                    ok = False
                if not ok:
                    raise PydanticCustomError(
                        "rule", "failed {tag} validation", {"tag": tag}
                    )
            return value

        return check


def _read(value: Any, name: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(name)
    return getattr(value, name, None)


__all__ = ["BUILTIN_RULES", "RuleFunc", "Validator", "is_zero", "parse_rules"]
