"""Application object: registration API, dispatch and ASGI entry point."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, cast

from .asgi import (
    ASGIResponseWriter,
    EventHandler,
    Receive,
    Scope,
    Send,
    cancel_task,
    decode_headers,
    handle_lifespan,
    read_body,
    run_hooks,
    watch_disconnect,
)
from .config import Settings, configure_logging, load_settings
from .context import Context
from .dependency import DependencyRegistry
from .errors import APIError, RegistrationError
from .executor import ErrorHandler, Executor, default_error_handler, sse_headers
from .http import JSONResponse, Request, Response, ResponseWriter
from .introspect import BindingPlan, compile_handler, compile_stream_handler
from .openapi import SecuritySchemeType, build_document
from .routing import Route, RouteTable, join_paths
from .validation import RuleFunc, Validator

_LOGGER = logging.getLogger("fastbind")

ExceptionHandler = Callable[[Request, Exception], Any]
Decorator = Callable[[Callable[..., Any]], Callable[..., Any]]


@dataclass
class NoParams:
    """Request type for handlers that read nothing from the request."""


class _Shorthands:
    """Decorator shorthands shared by :class:`App` and :class:`RouteGroup`."""

    def register_handler(self, method: str, path: str, func: Callable[..., Any], **kwargs: Any) -> Route:
        raise NotImplementedError

    def register_streaming_handler(
        self, method: str, path: str, func: Callable[..., Any], **kwargs: Any
    ) -> Route:
        raise NotImplementedError

    def route(self, method: str, path: str, *, include_in_schema: bool = True) -> Decorator:
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register_handler(method, path, func, include_in_schema=include_in_schema)
            return func

        return decorator

    def sse(self, method: str, path: str, *, include_in_schema: bool = True) -> Decorator:
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register_streaming_handler(method, path, func, include_in_schema=include_in_schema)
            return func

        return decorator

    def get(self, path: str, **kwargs: Any) -> Decorator:
        return self.route("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Decorator:
        return self.route("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Decorator:
        return self.route("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Decorator:
        return self.route("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Decorator:
        return self.route("DELETE", path, **kwargs)

    def sse_get(self, path: str, **kwargs: Any) -> Decorator:
        return self.sse("GET", path, **kwargs)

    def sse_post(self, path: str, **kwargs: Any) -> Decorator:
        return self.sse("POST", path, **kwargs)


class RouteGroup(_Shorthands):
    """Routes registered under a shared path prefix."""

    def __init__(self, app: "App", prefix: str) -> None:
        self.app = app
        self.prefix = prefix

    def register_handler(self, method: str, path: str, func: Callable[..., Any], **kwargs: Any) -> Route:
        return self.app.register_handler(method, join_paths(self.prefix, path), func, **kwargs)

    def register_streaming_handler(
        self, method: str, path: str, func: Callable[..., Any], **kwargs: Any
    ) -> Route:
        return self.app.register_streaming_handler(
            method, join_paths(self.prefix, path), func, **kwargs
        )

    def group(self, prefix: str) -> "RouteGroup":
        return RouteGroup(self.app, join_paths(self.prefix, prefix))


class App(_Shorthands):
    """Typed-handler web application.

    Handlers take ``(ctx: Context, req: RequestType)`` and return a response
    value (or an iterator of :class:`~fastbind.sse.Event` for streaming
    routes). Request types are compiled once at registration; each call then
    binds, validates and invokes without further introspection.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        validator: Validator | None = None,
        title: str = "API",
        version: str = "1.0.0",
        description: str = "",
    ) -> None:
        self.settings = settings or load_settings()
        configure_logging(self.settings)
        self.title = title
        self.version = version
        self.description = description
        self.validator = validator or Validator()
        self.registry = DependencyRegistry(self.validator)
        self.routes = RouteTable()
        self.exception_handlers: dict[type[Exception], ExceptionHandler] = {}
        self.security: dict[str, list[SecuritySchemeType]] = {}
        self.servers: list[dict[str, str]] = []
        self._error_handler: ErrorHandler = default_error_handler
        self._startup_hooks: list[EventHandler] = []
        self._shutdown_hooks: list[EventHandler] = []
        self.executor = Executor(
            self.registry,
            self.validator,
            self.handle_error,
            stream_headers=sse_headers(self.settings.sse_allow_origin),
            event_indent=self.settings.sse_indent,
        )

    # registration -------------------------------------------------------

    def _add_route(
        self,
        method: str,
        path: str,
        func: Callable[..., Any],
        compile_plan: Callable[[Callable[..., Any]], BindingPlan],
        include_in_schema: bool,
    ) -> Route:
        method = method.upper()
        try:
            plan = compile_plan(func)
            self.validator.compile(plan.rules)
            route = Route(method, path, plan, include_in_schema=include_in_schema)
            self.routes.add(route)
        except RegistrationError as exc:
            raise RegistrationError(f"failed to compile handler for {method} {path}: {exc}") from exc
        _LOGGER.debug("registered %s %s", method, path)
        return route

    def register_handler(
        self,
        method: str,
        path: str,
        func: Callable[..., Any],
        *,
        include_in_schema: bool = True,
    ) -> Route:
        """Compile *func* and serve it as a single JSON response."""
        return self._add_route(method, path, func, compile_handler, include_in_schema)

    def register_streaming_handler(
        self,
        method: str,
        path: str,
        func: Callable[..., Any],
        *,
        include_in_schema: bool = True,
    ) -> Route:
        """Compile *func* and serve its events as Server-Sent Events."""
        return self._add_route(method, path, func, compile_stream_handler, include_in_schema)

    def register_dependency(
        self, name: str, instance: Any, *schemes: SecuritySchemeType | str
    ) -> None:
        """Make *instance* resolvable as ``Dep("name")``.

        *instance* is either a function with the handler shape or an object
        whose ``handle`` method has it. *schemes* name the authentication
        schemes it implements; they are published in the OpenAPI document.
        """
        try:
            scheme_types = [SecuritySchemeType(scheme) for scheme in schemes]
        except ValueError as exc:
            raise RegistrationError(f"dependency {name}: {exc}") from exc
        self.registry.register(name, instance)
        if scheme_types:
            self.security[name] = scheme_types

    def dependency(self, name: str, *schemes: SecuritySchemeType | str) -> Decorator:
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register_dependency(name, func, *schemes)
            return func

        return decorator

    def register_validation_rule(self, tag: str, func: RuleFunc) -> None:
        self.validator.register_rule(tag, func)

    def group(self, prefix: str) -> RouteGroup:
        return RouteGroup(self, prefix)

    def on_event(self, event: str) -> Callable[[EventHandler], EventHandler]:
        """Register a ``startup`` or ``shutdown`` hook."""
        if event not in ("startup", "shutdown"):
            raise ValueError(f"unknown event {event!r}")
        collection = self._startup_hooks if event == "startup" else self._shutdown_hooks

        def decorator(func: EventHandler) -> EventHandler:
            collection.append(func)
            return func

        return decorator

    # errors -------------------------------------------------------------

    def set_error_handler(self, handler: ErrorHandler) -> None:
        """Replace the handler used for exceptions without a specific one."""
        self._error_handler = handler

    def add_exception_handler(self, exc_type: type[Exception], handler: ExceptionHandler) -> None:
        """Register a custom *handler* for exceptions of type *exc_type*."""
        self.exception_handlers[exc_type] = handler

    def _lookup_handler(self, exc: Exception) -> ExceptionHandler | None:
        for cls in type(exc).__mro__:
            if cls in self.exception_handlers:
                return self.exception_handlers[cls]
        return None

    async def handle_error(self, request: Request, exc: Exception) -> Response:
        handler = self._lookup_handler(exc) or self._error_handler
        result = handler(request, exc)
        if inspect.isawaitable(result):
            result = await cast(Awaitable[Any], result)
        return _as_response(result)

    # dispatch -----------------------------------------------------------

    async def dispatch(
        self,
        request: Request,
        writer: ResponseWriter,
        ctx: Context | None = None,
    ) -> None:
        """Route *request* and write the handler's response to *writer*."""
        ctx = ctx or Context()
        route, params, path_matched = self.routes.match(request.method, request.path)
        if route is None:
            if path_matched:
                exc = APIError(405, "Method not allowed", code="METHOD_NOT_ALLOWED")
            else:
                exc = APIError(404, "Route not found", code="NOT_FOUND")
            await self.executor.fail(request, writer, exc)
            return
        request.path_params.update(params)
        await self.executor.run(route.plan, ctx, request, writer)

    async def startup(self) -> None:
        await run_hooks(self._startup_hooks)

    async def shutdown(self) -> None:
        await run_hooks(self._shutdown_hooks)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await handle_lifespan(receive, send, self._startup_hooks, self._shutdown_hooks)
        elif scope["type"] == "http":
            await self._handle_http(scope, receive, send)
        else:
            raise NotImplementedError(f"Unsupported scope type {scope['type']}")

    async def _handle_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        rejected: APIError | None = None
        try:
            body = await read_body(receive, self.settings.max_body_size)
        except APIError as exc:
            body, rejected = b"", exc
        request = Request(
            str(scope.get("method", "GET")),
            str(scope.get("path", "/")),
            query_string=cast(bytes, scope.get("query_string", b"")),
            headers=decode_headers(scope.get("headers", [])),
            body=body,
            max_body_size=self.settings.max_body_size,
        )
        if rejected is not None:
            _LOGGER.info("rejected %s %s: %s", request.method, request.path, rejected.message)
            await self.executor.fail(request, ASGIResponseWriter(send), rejected)
            return
        ctx = Context()
        watcher = asyncio.ensure_future(watch_disconnect(receive, ctx))
        try:
            await self.dispatch(request, ASGIResponseWriter(send), ctx)
        finally:
            await cancel_task(watcher)

    # schema -------------------------------------------------------------

    def openapi_schema(self) -> dict[str, Any]:
        """Return an OpenAPI 3.0 document describing registered routes."""
        return build_document(
            self.routes.routes,
            self.registry,
            title=self.title,
            version=self.version,
            description=self.description,
            servers=self.servers,
            security=self.security,
        )

    def add_server(self, url: str, description: str = "") -> None:
        """List *url* under ``servers`` in the OpenAPI document."""
        server = {"url": url}
        if description:
            server["description"] = description
        self.servers.append(server)

    def serve_openapi_json(self, path: str = "/openapi.json") -> None:
        """Serve :meth:`openapi_schema` at *path*."""

        def openapi(ctx: Context, req: NoParams) -> dict[str, Any]:
            return self.openapi_schema()

        self.register_handler("GET", path, openapi, include_in_schema=False)


def _as_response(result: Any) -> Response:
    """Accept a :class:`Response` or a ``(status, body[, headers])`` tuple."""
    if isinstance(result, Response):
        return result
    if isinstance(result, tuple) and len(result) in (2, 3):
        status, body = result[0], result[1]
        headers = cast(Mapping[str, str], result[2]) if len(result) == 3 else None
        return JSONResponse(body, status_code=status, headers=headers)
    raise TypeError(f"error handler returned {type(result).__name__}, expected a Response")


__all__ = ["App", "NoParams", "RouteGroup"]
