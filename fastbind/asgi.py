"""ASGI 3 glue: response writer, body reading, disconnect watching and lifespan."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping

from .context import Context
from .http import body_too_large

Scope = Dict[str, Any]
Message = Dict[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
EventHandler = Callable[[], Awaitable[None] | None]

_LOGGER = logging.getLogger("fastbind.asgi")


class ASGIResponseWriter:
    """``ResponseWriter`` backed by an ASGI ``send`` callable.

    Writes are buffered until :meth:`flush`, which emits one
    ``http.response.body`` message with ``more_body`` set.
    """

    def __init__(self, send: Send) -> None:
        self._send = send
        self._pending = bytearray()
        self._started = False
        self._closed = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, status: int, headers: Mapping[str, str]) -> None:
        if self._started:
            raise RuntimeError("response already started")
        self._started = True
        await self._send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [(k.lower().encode("latin1"), v.encode("latin1")) for k, v in headers.items()],
            }
        )

    async def write(self, data: bytes) -> None:
        if not self._started:
            raise RuntimeError("response not started")
        if self._closed:
            raise RuntimeError("response already closed")
        self._pending.extend(data)

    async def flush(self) -> None:
        if not self._started or self._closed or not self._pending:
            return
        chunk = bytes(self._pending)
        self._pending.clear()
        await self._send({"type": "http.response.body", "body": chunk, "more_body": True})

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._started:
            await self.start(500, {})
        chunk = bytes(self._pending)
        self._pending.clear()
        await self._send({"type": "http.response.body", "body": chunk, "more_body": False})


async def read_body(receive: Receive, max_size: int | None = None) -> bytes:
    """Collect every ``http.request`` chunk into one body.

    Raises a 413 :class:`~fastbind.errors.APIError` as soon as more than
    *max_size* bytes have arrived; the rest of the upload is never buffered.
    """

    chunks: list[bytes] = []
    total = 0
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            break
        chunk = message.get("body", b"")
        total += len(chunk)
        if max_size and total > max_size:
            raise body_too_large()
        chunks.append(chunk)
        if not message.get("more_body", False):
            break
    return b"".join(chunks)


async def watch_disconnect(receive: Receive, ctx: Context) -> None:
    """Cancel *ctx* once the client disconnects."""

    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            _LOGGER.debug("client disconnected")
            ctx.cancel()
            return


def decode_headers(raw: Iterable[tuple[bytes, bytes]]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for key, value in raw:
        name = key.decode("latin1").lower()
        text = value.decode("latin1")
        # repeated headers fold into one comma separated value
        headers[name] = f"{headers[name]}, {text}" if name in headers else text
    return headers


async def run_hooks(hooks: Iterable[EventHandler]) -> None:
    for func in hooks:
        result = func()
        if inspect.iscoroutine(result):
            await result


async def handle_lifespan(
    receive: Receive,
    send: Send,
    startup: Iterable[EventHandler],
    shutdown: Iterable[EventHandler],
) -> None:
    """Run startup and shutdown hooks for an ASGI lifespan scope."""

    message = await receive()  # lifespan.startup
    if message["type"] == "lifespan.startup":
        try:
            await run_hooks(startup)
        except Exception as exc:  # noqa: BLE001 - reported to the server
            _LOGGER.error("startup hook failed", exc_info=True)
            await send({"type": "lifespan.startup.failed", "message": str(exc)})
            return
        await send({"type": "lifespan.startup.complete"})
        message = await receive()  # lifespan.shutdown
    if message["type"] == "lifespan.shutdown":
        try:
            await run_hooks(shutdown)
        except Exception as exc:  # noqa: BLE001 - reported to the server
            _LOGGER.error("shutdown hook failed", exc_info=True)
            await send({"type": "lifespan.shutdown.failed", "message": str(exc)})
            return
        await send({"type": "lifespan.shutdown.complete"})


async def cancel_task(task: "asyncio.Task[Any]") -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


__all__ = [
    "ASGIResponseWriter",
    "decode_headers",
    "handle_lifespan",
    "read_body",
    "run_hooks",
    "watch_disconnect",
]
