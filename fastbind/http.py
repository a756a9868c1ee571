# flake8: noqa
"""Transport-facing HTTP primitives: inbound request view and output sinks."""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Mapping, Protocol
from urllib.parse import parse_qs

from .errors import HTTP_413_REQUEST_ENTITY_TOO_LARGE, APIError

BodyReader = Callable[[], Awaitable[bytes]]


def body_too_large() -> APIError:
    return APIError(
        HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        "request body too large",
        code="BODY_TOO_LARGE",
    )


class Request:
    """Represent an incoming HTTP request as seen by extractors.

    ``body`` may be given eagerly as bytes or as an async reader; either way
    it is read at most once and cached for every later extractor.
    """

    def __init__(
        self,
        method: str = "GET",
        path: str = "/",
        *,
        query_string: str | bytes = b"",
        headers: Mapping[str, str] | None = None,
        path_params: Mapping[str, str] | None = None,
        body: bytes | BodyReader = b"",
        max_body_size: int | None = None,
    ) -> None:
        self.method = method.upper()
        self.path = path
        if isinstance(query_string, bytes):
            query_string = query_string.decode("latin1")
        self.query_string = query_string
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.path_params = dict(path_params or {})
        self.query_params = parse_qs(query_string, keep_blank_values=True)
        self.max_body_size = max_body_size
        if isinstance(body, bytes):
            self._body: bytes | None = body
            self._reader: BodyReader | None = None
        else:
            self._body = None
            self._reader = body

    def path_param(self, name: str) -> str | None:
        return self.path_params.get(name)

    def query(self, name: str) -> str:
        """Return the first value of query parameter *name* or ``""``."""
        values = self.query_params.get(name)
        return values[0] if values else ""

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), "")

    @property
    def body_loaded(self) -> bool:
        return self._body is not None

    async def body(self) -> bytes:
        """Return the request body, reading it from the transport once."""
        if self._body is None:
            reader, self._reader = self._reader, None
            self._body = await reader() if reader is not None else b""
        if self.max_body_size and len(self._body) > self.max_body_size:
            raise body_too_large()
        return self._body


class ResponseWriter(Protocol):
    """Output sink supplied by the transport for one response."""

    @property
    def started(self) -> bool: ...

    async def start(self, status: int, headers: Mapping[str, str]) -> None: ...

    async def write(self, data: bytes) -> None: ...

    async def flush(self) -> None: ...

    async def close(self) -> None: ...


class BufferedResponseWriter:
    """In-memory writer recording status, headers and flushed chunks."""

    def __init__(self) -> None:
        self.status: int | None = None
        self.headers: dict[str, str] = {}
        self.chunks: list[bytes] = []
        self.closed = False
        self._pending = bytearray()

    @property
    def started(self) -> bool:
        return self.status is not None

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks) + bytes(self._pending)

    async def start(self, status: int, headers: Mapping[str, str]) -> None:
        if self.started:
            raise RuntimeError("response already started")
        self.status = status
        self.headers = {k.lower(): v for k, v in headers.items()}

    async def write(self, data: bytes) -> None:
        if not self.started:
            raise RuntimeError("response not started")
        self._pending.extend(data)

    async def flush(self) -> None:
        if self._pending:
            self.chunks.append(bytes(self._pending))
            self._pending.clear()

    async def close(self) -> None:
        await self.flush()
        self.closed = True


class Response:
    """Fully buffered HTTP response produced by handlers of last resort."""

    def __init__(
        self,
        content: str | bytes = b"",
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        media_type: str | None = None,
    ) -> None:
        if isinstance(content, str):
            self.body = content.encode()
            default_type = "text/plain; charset=utf-8"
        else:
            self.body = content
            default_type = "application/octet-stream"
        self.status_code = status_code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.media_type = media_type or default_type
        self.headers.setdefault("content-type", self.media_type)

    async def send(self, writer: ResponseWriter) -> None:
        """Write the whole response to *writer* and close it."""
        await writer.start(self.status_code, self.headers)
        if self.body:
            await writer.write(self.body)
        await writer.close()


class JSONResponse(Response):
    """Serialize content to JSON."""

    def __init__(
        self,
        content: Any,
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            json.dumps(content).encode(),
            status_code=status_code,
            headers=headers,
            media_type="application/json",
        )


__all__ = [
    "BufferedResponseWriter",
    "JSONResponse",
    "Request",
    "Response",
    "ResponseWriter",
    "body_too_large",
]
