"""Compile handler and dependency functions into reusable binding plans.

Everything here runs once, at registration time. A function whose shape is
wrong raises :class:`~fastbind.errors.RegistrationError` before any request is
served; requests only ever see a finished, immutable :class:`BindingPlan`.
"""

from __future__ import annotations

import collections.abc
import dataclasses
import inspect
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import (
    Annotated,
    Any,
    Callable,
    Mapping,
    get_args,
    get_origin,
    get_type_hints,
)

from pydantic import BaseModel
from pydantic_core import PydanticUndefined

from .context import Context
from .convert import FieldKind, classify, is_struct_type, string_coercible, zero_value
from .errors import RegistrationError
from .extractors import EXTRACTORS, DependencyExtractor, DependencyRef, FieldExtractor
from .params import DEPENDENCY, JSON, Source, Validate
from .sse import Event

_LOGGER = logging.getLogger("fastbind")

_MISSING: Any = object()

_STREAM_ORIGINS = {
    collections.abc.Iterator,
    collections.abc.Iterable,
    collections.abc.Generator,
    collections.abc.AsyncIterator,
    collections.abc.AsyncIterable,
    collections.abc.AsyncGenerator,
}


@dataclass(frozen=True)
class FieldSlot:
    """One field of a request type and how to populate it."""

    index: int
    name: str
    annotation: Any
    kind: FieldKind
    extractor: FieldExtractor | None = None
    rules: str | None = None
    default: Any = _MISSING
    default_factory: Any = _MISSING

    @property
    def source(self) -> str | None:
        return self.extractor.source if self.extractor is not None else None

    @property
    def dependency(self) -> DependencyRef | None:
        if isinstance(self.extractor, DependencyExtractor):
            return self.extractor.ref
        return None

    def zero(self) -> Any:
        """Declared default when the request type has one, else the kind's zero."""
        if self.default_factory is not _MISSING:
            return self.default_factory()
        if self.default is not _MISSING:
            return self.default
        return zero_value(self.annotation)


@dataclass(frozen=True)
class BindingPlan:
    """Immutable recipe for turning one inbound call into one request value."""

    func: Callable[..., Any]
    request_type: type
    response_type: Any
    slots: tuple[FieldSlot, ...]
    rules: Mapping[str, str]
    needs_body: bool
    streaming: bool = False

    @property
    def bound_slots(self) -> tuple[FieldSlot, ...]:
        return tuple(slot for slot in self.slots if slot.extractor is not None)

    @property
    def dependencies(self) -> tuple[str, ...]:
        """Names of dependencies referenced directly by this plan, in order."""
        seen: dict[str, None] = {}
        for slot in self.slots:
            if slot.dependency is not None:
                seen.setdefault(slot.dependency.name, None)
        return tuple(seen)

    def new_values(self) -> dict[str, Any]:
        return {slot.name: slot.zero() for slot in self.slots}

    def build(self, values: Mapping[str, Any]) -> Any:
        """Instantiate the request type from populated *values*."""
        if issubclass(self.request_type, BaseModel):
            return self.request_type.model_construct(**values)
        return self.request_type(**values)


@dataclass(frozen=True)
class CompiledDependency:
    """A named dependency: its binding plan plus the owning instance."""

    name: str
    instance: Any
    plan: BindingPlan


def _resolve_hints(func: Callable[..., Any]) -> dict[str, Any]:
    try:
        return get_type_hints(func, include_extras=True)
    except Exception:  # noqa: BLE001 - locally defined types under postponed annotations
        _LOGGER.debug("falling back to raw annotations for %r", func, exc_info=True)
        return {}


def _describe(func: Any) -> str:
    return getattr(func, "__qualname__", None) or repr(func)


def check_signature(func: Any, what: str = "handler") -> tuple[type, Any]:
    """Validate ``(ctx: Context, req: RequestType) -> ResponseType``.

    Returns ``(request_type, response_annotation)``.
    """

    if not (inspect.isfunction(func) or inspect.ismethod(func)):
        raise RegistrationError(f"{what} must be a function")
    sig = inspect.signature(func)
    params = list(sig.parameters.values())
    if len(params) != 2 or any(
        p.kind not in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) for p in params
    ):
        raise RegistrationError(
            f"{what} {_describe(func)} must have signature: (ctx: Context, request: Request) -> Response"
        )
    hints = _resolve_hints(func)
    ctx_type = hints.get(params[0].name, params[0].annotation)
    if not (inspect.isclass(ctx_type) and issubclass(ctx_type, Context)):
        raise RegistrationError(f"first parameter of {_describe(func)} must be annotated as Context")
    req_type = hints.get(params[1].name, params[1].annotation)
    if not is_struct_type(req_type):
        raise RegistrationError(
            f"request parameter of {_describe(func)} must be a dataclass or pydantic model, got {req_type!r}"
        )
    if sig.return_annotation is inspect.Signature.empty:
        raise RegistrationError(f"{what} {_describe(func)} must declare a return type")
    return req_type, hints.get("return", sig.return_annotation)


def _iter_fields(tp: type) -> list[tuple[str, Any, Any, Any]]:
    """Return ``(name, raw annotation, default, default_factory)`` per field."""
    result: list[tuple[str, Any, Any, Any]] = []
    if dataclasses.is_dataclass(tp):
        hints = get_type_hints(tp, include_extras=True)
        for f in dataclasses.fields(tp):
            if not f.init:
                continue
            default = _MISSING if f.default is dataclasses.MISSING else f.default
            factory = _MISSING if f.default_factory is dataclasses.MISSING else f.default_factory
            result.append((f.name, hints.get(f.name, f.type), default, factory))
        return result
    for name, info in tp.model_fields.items():
        default = _MISSING if info.default is PydanticUndefined else info.default
        factory = _MISSING if info.default_factory is None else info.default_factory
        # pydantic moves Annotated metadata onto the FieldInfo
        annotation = Annotated[(info.annotation, *info.metadata)] if info.metadata else info.annotation
        result.append((name, annotation, default, factory))
    return result


def _split_annotated(annotation: Any) -> tuple[Any, list[Any]]:
    if get_origin(annotation) is Annotated:
        base, *metadata = get_args(annotation)
        return base, metadata
    return annotation, []


def compile_request_type(request_type: type) -> tuple[tuple[FieldSlot, ...], dict[str, str]]:
    """Build field slots and the rule table for *request_type*."""

    try:
        fields = _iter_fields(request_type)
    except (NameError, TypeError) as exc:
        raise RegistrationError(f"cannot resolve fields of {request_type!r}: {exc}") from exc
    slots: list[FieldSlot] = []
    rules: dict[str, str] = {}
    for index, (name, raw, default, factory) in enumerate(fields):
        annotation, metadata = _split_annotated(raw)
        sources = [m for m in metadata if isinstance(m, Source)]
        validations = [m.rules for m in metadata if isinstance(m, Validate)]
        if len(sources) > 1:
            raise RegistrationError(
                f"field {request_type.__name__}.{name} declares more than one source"
            )
        if validations:
            rules[name] = ",".join(validations)
        slot = FieldSlot(
            index=index,
            name=name,
            annotation=annotation,
            kind=classify(annotation),
            rules=rules.get(name),
            default=default,
            default_factory=factory,
        )
        if sources:
            slot = dataclasses.replace(
                slot, extractor=_make_extractor(request_type, slot, sources[0])
            )
        slots.append(slot)
    return tuple(slots), rules


def _make_extractor(request_type: type, slot: FieldSlot, source: Source) -> FieldExtractor:
    where = f"{request_type.__name__}.{slot.name}"
    if source.kind == DEPENDENCY:
        if not source.name:
            raise RegistrationError(f"field {where} must name a dependency")
        ref = DependencyRef.parse(source.name)
        if not ref.name or any(not part for part in ref.path):
            raise RegistrationError(f"field {where} has malformed dependency path {source.name!r}")
        return DependencyExtractor(ref, slot.annotation, slot.zero)
    if source.kind != JSON and not string_coercible(slot.annotation):
        raise RegistrationError(
            f"field {where} of type {slot.annotation!r} cannot be read from {source.kind}"
        )
    return EXTRACTORS[source.kind](source.name or slot.name, slot.annotation, slot.zero)


def _plan(func: Callable[..., Any], what: str, streaming: bool) -> BindingPlan:
    request_type, returns = check_signature(func, what)
    response_type = _event_payload_type(func, returns) if streaming else returns
    slots, rules = compile_request_type(request_type)
    plan = BindingPlan(
        func=func,
        request_type=request_type,
        response_type=response_type,
        slots=slots,
        rules=MappingProxyType(rules),
        needs_body=any(slot.source == JSON for slot in slots),
        streaming=streaming,
    )
    _LOGGER.debug(
        "compiled %s %s: %d bound fields, dependencies=%s",
        what,
        _describe(func),
        len(plan.bound_slots),
        plan.dependencies,
    )
    return plan


def _event_payload_type(func: Callable[..., Any], returns: Any) -> Any:
    origin = get_origin(returns)
    if origin not in _STREAM_ORIGINS:
        raise RegistrationError(
            f"streaming handler {_describe(func)} must return an iterator of Event[T]"
        )
    args = get_args(returns)
    item = args[0] if args else None
    if item is Event:
        return Any
    if get_origin(item) is not Event:
        raise RegistrationError(
            f"streaming handler {_describe(func)} must yield Event[T], got {item!r}"
        )
    (payload,) = get_args(item)
    return payload


def compile_handler(func: Callable[..., Any]) -> BindingPlan:
    """Compile a single-response handler."""
    return _plan(func, "handler", streaming=False)


def compile_stream_handler(func: Callable[..., Any]) -> BindingPlan:
    """Compile a streaming handler returning an (async) iterator of events."""
    return _plan(func, "streaming handler", streaming=True)


def compile_dependency(name: str, instance: Any) -> CompiledDependency:
    """Compile *instance*'s ``handle`` method (or *instance* itself if a function)."""
    if inspect.isfunction(instance) or inspect.ismethod(instance):
        func = instance
    else:
        func = getattr(instance, "handle", None)
        if func is None or not callable(func):
            raise RegistrationError(f"dependency {name} must have a handle method")
    try:
        plan = _plan(func, "dependency", streaming=False)
    except RegistrationError as exc:
        raise RegistrationError(f"failed to compile dependency {name}: {exc}") from exc
    return CompiledDependency(name=name, instance=instance, plan=plan)


__all__ = [
    "BindingPlan",
    "CompiledDependency",
    "FieldSlot",
    "check_signature",
    "compile_dependency",
    "compile_handler",
    "compile_request_type",
    "compile_stream_handler",
]
