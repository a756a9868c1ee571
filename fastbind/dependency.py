"""Named dependencies: registration and per-request resolution."""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Any, Iterator

from .binder import bind, extract_nested_field, invoke
from .context import Context
from .errors import DependencyCycleError, DependencyNotFoundError, RegistrationError
from .http import Request
from .introspect import CompiledDependency, compile_dependency
from .validation import Validator

_LOGGER = logging.getLogger("fastbind.dependency")


class ResolvedDependencies:
    """Dependency results computed so far for one inbound request.

    Owned by the task serving that request and discarded with it. A name is
    stored only after its dependency succeeded, so a failed dependency is
    attempted again if something else references it later in the same call.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._resolving: list[str] = []

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def store(self, name: str, value: Any) -> None:
        self._values[name] = value

    @contextlib.contextmanager
    def resolving(self, name: str) -> Iterator[None]:
        """Mark *name* as in progress, raising on re-entry."""
        if name in self._resolving:
            start = self._resolving.index(name)
            raise DependencyCycleError(self._resolving[start:] + [name])
        self._resolving.append(name)
        try:
            yield
        finally:
            self._resolving.pop()


class DependencyRegistry:
    """Name-keyed table of compiled dependencies.

    Written during application setup; read concurrently by every in-flight
    request afterwards.
    """

    def __init__(self, validator: Validator | None = None) -> None:
        self.validator = validator or Validator()
        self._dependencies: dict[str, CompiledDependency] = {}
        self._lock = threading.Lock()

    def register(self, name: str, instance: Any) -> CompiledDependency:
        """Compile *instance* and store it under *name*, replacing any previous one."""
        if not name or "." in name:
            raise RegistrationError(f"invalid dependency name {name!r}")
        compiled = compile_dependency(name, instance)
        self.validator.compile(compiled.plan.rules)
        with self._lock:
            if name in self._dependencies:
                _LOGGER.warning("replacing dependency %s", name)
            self._dependencies[name] = compiled
        return compiled

    def get(self, name: str) -> CompiledDependency | None:
        return self._dependencies.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._dependencies

    def names(self) -> list[str]:
        return list(self._dependencies)

    async def resolve(
        self,
        name: str,
        ctx: Context,
        request: Request,
        scope: ResolvedDependencies,
    ) -> Any:
        """Return the result of dependency *name* for this request.

        Cached results are returned without re-running the dependency.
        Validation and business errors raised while binding or running it
        propagate unmodified.
        """

        if name in scope:
            return scope.get(name)
        dependency = self._dependencies.get(name)
        if dependency is None:
            raise DependencyNotFoundError(name)
        with scope.resolving(name):
            value = await bind(dependency.plan, ctx, request, scope, self, self.validator)
            result = await invoke(dependency.plan.func, ctx, value)
        scope.store(name, result)
        _LOGGER.debug("resolved dependency %s", name)
        return result


__all__ = [
    "DependencyRegistry",
    "ResolvedDependencies",
    "extract_nested_field",
]
