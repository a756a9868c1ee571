"""fastbind: typed request binding, dependency resolution and SSE streaming."""

from .app import App, NoParams, RouteGroup
from .config import Settings, configure_logging, load_settings
from .context import CancellationToken, Context
from .errors import (
    APIError,
    DependencyCycleError,
    DependencyNotFoundError,
    ExtractionError,
    RegistrationError,
    ValidationError,
)
from .http import BufferedResponseWriter, JSONResponse, Request, Response
from .openapi import SecuritySchemeType
from .params import Dep, Header, Json, Path, Query, Validate
from .sse import Event
from .validation import Validator

__version__ = "0.1.0"

__all__ = [
    "APIError",
    "App",
    "BufferedResponseWriter",
    "CancellationToken",
    "Context",
    "Dep",
    "DependencyCycleError",
    "DependencyNotFoundError",
    "Event",
    "ExtractionError",
    "Header",
    "JSONResponse",
    "Json",
    "NoParams",
    "Path",
    "Query",
    "RegistrationError",
    "Request",
    "Response",
    "RouteGroup",
    "SecuritySchemeType",
    "Settings",
    "Validate",
    "ValidationError",
    "Validator",
    "configure_logging",
    "load_settings",
    "__version__",
]
