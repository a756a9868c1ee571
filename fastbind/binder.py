"""Populate request values from a binding plan."""

from __future__ import annotations

import dataclasses
import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, cast

from pydantic import BaseModel

from .context import Context
from .convert import convert_value
from .errors import ValidationError
from .http import Request
from .introspect import BindingPlan
from .validation import Validator

if TYPE_CHECKING:
    from .dependency import DependencyRegistry, ResolvedDependencies


async def bind(
    plan: BindingPlan,
    ctx: Context,
    request: Request,
    scope: "ResolvedDependencies",
    registry: "DependencyRegistry",
    validator: Validator,
) -> Any:
    """Return a populated and validated instance of ``plan.request_type``.

    The first extraction or dependency error aborts binding and propagates
    unchanged; a value that fails validation raises
    :class:`~fastbind.errors.ValidationError`.
    """

    if plan.needs_body:
        await request.body()
    values = plan.new_values()
    for slot in plan.bound_slots:
        ref = slot.dependency
        if ref is not None:
            result = await registry.resolve(ref.name, ctx, request, scope)
            value = extract_nested_field(result, ref.path)
        else:
            assert slot.extractor is not None
            value = await slot.extractor.extract(request)
        if value is not None:
            values[slot.name] = convert_value(value, slot.annotation, name=slot.name)
    instance = plan.build(values)
    violations = validator.validate(instance, plan.rules)
    if violations:
        raise ValidationError(violations)
    return instance


_ABSENT = object()


def _member_names(obj: Any) -> list[str] | None:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return [f.name for f in dataclasses.fields(obj)]
    if isinstance(obj, BaseModel):
        return list(type(obj).model_fields)
    attrs = getattr(obj, "__dict__", None)
    if isinstance(attrs, dict):
        return [name for name in attrs if not name.startswith("_")]
    return None


def _member(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        if name in obj:
            return obj[name]
        keys = [key for key in obj if isinstance(key, str)]
        for key in keys:
            if key.casefold() == name.casefold():
                return obj[key]
        return _ABSENT
    names = _member_names(obj)
    if names is None:
        return _ABSENT
    if name in names:
        return getattr(obj, name)
    for candidate in names:
        if candidate.casefold() == name.casefold():
            return getattr(obj, candidate)
    return _ABSENT


def extract_nested_field(obj: Any, path: tuple[str, ...]) -> Any:
    """Walk *path* through *obj* by member name.

    Matching is case-sensitive first, then case-insensitive. A missing
    member or a value that cannot be navigated yields ``None``.
    """

    current = obj
    for segment in path:
        if current is None:
            return None
        current = _member(current, segment)
        if current is _ABSENT:
            return None
    return current


async def invoke(func: Callable[..., Any], ctx: Context, value: Any) -> Any:
    """Call a business function, awaiting it when it is a coroutine."""
    result = func(ctx, value)
    if inspect.isawaitable(result):
        result = await cast(Awaitable[Any], result)
    return result


__all__ = ["bind", "extract_nested_field", "invoke"]
