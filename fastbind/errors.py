"""Error types raised while compiling and executing handlers."""

from __future__ import annotations

import logging
from typing import Any, Mapping

_LOGGER = logging.getLogger("fastbind")

HTTP_400_BAD_REQUEST = 400
HTTP_404_NOT_FOUND = 404
HTTP_413_REQUEST_ENTITY_TOO_LARGE = 413
HTTP_500_INTERNAL_SERVER_ERROR = 500


class RegistrationError(TypeError):
    """Handler or dependency has a shape the introspector cannot compile."""


class APIError(Exception):
    """Structured error carrying an HTTP status, machine code and message.

    Handlers and dependencies raise this to control the error response. It is
    never wrapped on its way to the error handler, so callers can rely on
    ``status`` and ``code`` surviving any number of dependency hops.
    """

    def __init__(
        self,
        status: int,
        message: str,
        code: str | None = None,
        details: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message
        self.details: dict[str, str] | None = dict(details) if details else None

    def with_details(self, details: Mapping[str, str]) -> "APIError":
        """Replace the detail map and return ``self``."""
        self.details = dict(details)
        return self

    def with_detail(self, key: str, value: str) -> "APIError":
        """Add a single detail entry and return ``self``."""
        if self.details is None:
            self.details = {}
        self.details[key] = value
        return self

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.status}, {self.message!r}, code={self.code!r})"


class ExtractionError(APIError):
    """A request value could not be read or converted."""

    def __init__(self, message: str, *, source: str | None = None, name: str | None = None) -> None:
        super().__init__(HTTP_400_BAD_REQUEST, message, code="INVALID_PARAMETER")
        self.source = source
        self.name = name


class ValidationError(Exception):
    """Per-field validation failures."""

    status = HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    message = "Validation failed"

    def __init__(self, fields: Mapping[str, list[str]]) -> None:
        self.fields: dict[str, list[str]] = {k: list(v) for k, v in fields.items()}
        super().__init__(f"{self.message}: {self.fields}")


class DependencyNotFoundError(LookupError):
    """A dependency name was referenced but never registered."""

    status = HTTP_500_INTERNAL_SERVER_ERROR
    code = "DEPENDENCY_NOT_FOUND"

    def __init__(self, name: str) -> None:
        super().__init__(f"dependency {name} not found")
        self.name = name


class DependencyCycleError(RuntimeError):
    """A dependency transitively depends on itself."""

    def __init__(self, chain: list[str]) -> None:
        super().__init__("dependency cycle detected: " + " -> ".join(chain))
        self.chain = list(chain)


def error_payload(exc: BaseException) -> tuple[int, dict[str, Any]]:
    """Return ``(status, body)`` for *exc* using the standard error layout.

    Empty members are omitted from the body.
    """

    if isinstance(exc, ValidationError):
        return exc.status, {
            "code": exc.code,
            "message": exc.message,
            "validation_errors": exc.fields,
        }
    if isinstance(exc, APIError):
        body: dict[str, Any] = {"message": exc.message}
        if exc.code:
            body["code"] = exc.code
        if exc.details:
            body["details"] = exc.details
        return exc.status, body
    if isinstance(exc, DependencyNotFoundError):
        _LOGGER.error("server misconfiguration: %s", exc)
        return exc.status, {"code": exc.code, "message": str(exc)}
    _LOGGER.error("internal server error: %r", exc, exc_info=exc)
    return HTTP_500_INTERNAL_SERVER_ERROR, {
        "code": "INTERNAL_ERROR",
        "message": "An internal error occurred",
    }


__all__ = [
    "APIError",
    "DependencyCycleError",
    "DependencyNotFoundError",
    "ExtractionError",
    "RegistrationError",
    "ValidationError",
    "error_payload",
    "HTTP_400_BAD_REQUEST",
    "HTTP_404_NOT_FOUND",
    "HTTP_413_REQUEST_ENTITY_TOO_LARGE",
    "HTTP_500_INTERNAL_SERVER_ERROR",
]
