"""Route table matching ``{name}`` URL templates."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .errors import RegistrationError
from .introspect import BindingPlan

_PARAM_RE = re.compile(r"{([^}:]+)(?::([^}]+))?}")


def compile_template(template: str) -> tuple[re.Pattern[str], tuple[str, ...]]:
    """Turn ``/users/{id}`` into a regex and its parameter names.

    ``{name:pattern}`` restricts the segment with a custom regex. Malformed
    templates raise :class:`~fastbind.errors.RegistrationError`.
    """

    names: list[str] = []
    parts: list[str] = []
    idx = 0
    for match in _PARAM_RE.finditer(template):
        parts.append(re.escape(template[idx : match.start()]))
        name, pattern = match.group(1), match.group(2)
        if not name.isidentifier():
            raise RegistrationError(f"invalid path parameter name {name!r} in {template}")
        if name in names:
            raise RegistrationError(f"duplicate path parameter {name!r} in {template}")
        names.append(name)
        parts.append(f"(?P<{name}>{pattern or '[^/]+'})")
        idx = match.end()
    parts.append(re.escape(template[idx:]))
    try:
        regex = re.compile("^" + "".join(parts) + "$")
    except re.error as exc:
        raise RegistrationError(f"invalid path template {template}: {exc}") from exc
    return regex, tuple(names)


def join_paths(prefix: str, path: str) -> str:
    if not prefix:
        return path
    return prefix.rstrip("/") + "/" + path.lstrip("/") if path else prefix


@dataclass
class Route:
    method: str
    path: str
    plan: BindingPlan
    include_in_schema: bool = True
    pattern: re.Pattern[str] = field(init=False, repr=False)
    param_names: tuple[str, ...] = field(init=False)

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.pattern, self.param_names = compile_template(self.path)

    def match(self, path: str) -> dict[str, str] | None:
        found = self.pattern.match(path)
        if found is None:
            return None
        return found.groupdict()


class RouteTable:
    """Ordered routes; first registered match wins."""

    def __init__(self) -> None:
        self.routes: list[Route] = []

    def add(self, route: Route) -> None:
        for existing in self.routes:
            if existing.method == route.method and existing.path == route.path:
                raise RegistrationError(f"route {route.method} {route.path} already registered")
        self.routes.append(route)

    def match(self, method: str, path: str) -> tuple[Route | None, dict[str, str], bool]:
        """Return ``(route, path_params, path_matched)``.

        ``path_matched`` is true when some route matched the path under a
        different method, which callers report as 405.
        """

        path_matched = False
        for route in self.routes:
            params = route.match(path)
            if params is None:
                continue
            if route.method == method.upper():
                return route, params, True
            path_matched = True
        return None, {}, path_matched


__all__ = ["Route", "RouteTable", "compile_template", "join_paths"]
