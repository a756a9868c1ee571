"""Run compiled handlers against one inbound request.

Single-response handlers go Idle -> BodyRead -> Bound -> Validated ->
Invoked -> Serialized; any failure hands the exception to the error handler
and nothing else happens. Streaming handlers bind the same way, then drive
the returned producer and write each event as soon as it is yielded.
"""

from __future__ import annotations

import collections.abc
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Mapping, cast

from .binder import bind, invoke
from .context import Context
from .convert import to_jsonable
from .dependency import DependencyRegistry, ResolvedDependencies
from .errors import error_payload
from .http import JSONResponse, Request, Response, ResponseWriter
from .introspect import BindingPlan
from .sse import SSE_MEDIA_TYPE, Event, format_event
from .validation import Validator

_LOGGER = logging.getLogger("fastbind")

ErrorHandler = Callable[[Request, Exception], "Response | Awaitable[Response]"]


def default_error_handler(request: Request, exc: Exception) -> Response:
    """Render *exc* as the standard JSON error body."""
    status, body = error_payload(exc)
    return JSONResponse(body, status_code=status)


def sse_headers(allow_origin: str | None = "*") -> dict[str, str]:
    headers = {
        "content-type": SSE_MEDIA_TYPE,
        "cache-control": "no-cache",
        "connection": "keep-alive",
    }
    if allow_origin:
        headers["access-control-allow-origin"] = allow_origin
        headers["access-control-allow-headers"] = "Cache-Control"
    return headers


class Executor:
    """Binds, invokes and serializes compiled handlers."""

    def __init__(
        self,
        registry: DependencyRegistry,
        validator: Validator,
        error_handler: ErrorHandler = default_error_handler,
        *,
        stream_headers: Mapping[str, str] | None = None,
        event_indent: int | None = None,
    ) -> None:
        self.registry = registry
        self.validator = validator
        self.error_handler = error_handler
        self.stream_headers = dict(stream_headers if stream_headers is not None else sse_headers())
        self.event_indent = event_indent

    async def run(
        self,
        plan: BindingPlan,
        ctx: Context,
        request: Request,
        writer: ResponseWriter,
    ) -> None:
        if plan.streaming:
            await self.run_stream(plan, ctx, request, writer)
        else:
            await self.run_single(plan, ctx, request, writer)

    async def _prepare(self, plan: BindingPlan, ctx: Context, request: Request) -> Any:
        """Bind, validate and invoke; returns the business function's result."""
        scope = ResolvedDependencies()
        value = await bind(plan, ctx, request, scope, self.registry, self.validator)
        return await invoke(plan.func, ctx, value)

    async def run_single(
        self,
        plan: BindingPlan,
        ctx: Context,
        request: Request,
        writer: ResponseWriter,
    ) -> None:
        try:
            result = await self._prepare(plan, ctx, request)
            body = json.dumps(to_jsonable(result)).encode()
        except Exception as exc:  # noqa: BLE001 - routed to the error handler
            await self.fail(request, writer, exc)
            return
        await writer.start(200, {"content-type": "application/json"})
        await writer.write(body)
        await writer.close()

    async def run_stream(
        self,
        plan: BindingPlan,
        ctx: Context,
        request: Request,
        writer: ResponseWriter,
    ) -> None:
        try:
            producer = await self._prepare(plan, ctx, request)
            if not isinstance(
                producer, (collections.abc.Iterable, collections.abc.AsyncIterable)
            ):
                raise TypeError(f"streaming handler returned {type(producer).__name__}, not an iterator")
        except Exception as exc:  # noqa: BLE001 - routed to the error handler
            await self.fail(request, writer, exc)
            return
        await writer.start(200, self.stream_headers)
        await writer.flush()
        sent = await self.stream_events(ctx, producer, writer)
        _LOGGER.debug("stream %s %s finished after %d events", request.method, request.path, sent)

    async def stream_events(self, ctx: Context, producer: Any, writer: ResponseWriter) -> int:
        """Write every event yielded by *producer*; returns how many were sent.

        Stops when the producer is exhausted, when *ctx* is cancelled (checked
        before each write) or when writing fails. Headers are already sent, so
        failures are only logged.
        """

        is_async = isinstance(producer, collections.abc.AsyncIterable)
        iterator: Any = producer.__aiter__() if is_async else iter(producer)
        sent = 0
        try:
            while True:
                try:
                    if is_async:
                        event = await iterator.__anext__()
                    else:
                        event = next(iterator)
                except (StopIteration, StopAsyncIteration):
                    break
                except Exception:  # noqa: BLE001 - headers already committed
                    _LOGGER.error("event producer failed", exc_info=True)
                    break
                if ctx.cancelled():
                    _LOGGER.debug("stream cancelled after %d events", sent)
                    break
                if not isinstance(event, Event):
                    _LOGGER.error("event producer yielded %r instead of Event", type(event).__name__)
                    break
                try:
                    chunk = format_event(event, indent=self.event_indent)
                except Exception:  # noqa: BLE001
                    _LOGGER.error("failed to serialize event", exc_info=True)
                    break
                try:
                    await writer.write(chunk)
                    await writer.flush()
                except Exception:  # noqa: BLE001
                    _LOGGER.error("error writing SSE event", exc_info=True)
                    break
                sent += 1
        finally:
            await _close_producer(iterator)
            try:
                await writer.close()
            except Exception:  # noqa: BLE001 - client already gone
                _LOGGER.debug("closing event stream failed", exc_info=True)
        return sent

    async def fail(self, request: Request, writer: ResponseWriter, exc: Exception) -> None:
        """Hand *exc* to the error handler and write its response."""
        if writer.started:
            _LOGGER.error("error after response started: %r", exc, exc_info=exc)
            await writer.close()
            return
        try:
            response = self.error_handler(request, exc)
            if inspect.isawaitable(response):
                response = await cast(Awaitable[Response], response)
        except Exception:  # noqa: BLE001 - broken custom handler
            _LOGGER.error("error handler raised", exc_info=True)
            response = default_error_handler(request, RuntimeError("error handler failed"))
        await response.send(writer)


async def _close_producer(iterator: Any) -> None:
    try:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
            return
        close = getattr(iterator, "close", None)
        if close is not None:
            close()
    except Exception:  # noqa: BLE001
        _LOGGER.debug("closing event producer failed", exc_info=True)


__all__ = ["ErrorHandler", "Executor", "default_error_handler", "sse_headers"]
