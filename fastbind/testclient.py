"""Simple in-memory HTTP client for fastbind apps."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlencode

from .app import App
from .asgi import Message


@dataclass
class Response:
    """Container for HTTP response data."""

    status_code: int
    text: str
    headers: Mapping[str, str]
    content: bytes
    chunks: list[str] | None = None

    def json(self) -> Any:
        """Return the body parsed as JSON."""
        return json.loads(self.text)


class TestClient:
    """Execute requests against an ``App`` through its ASGI interface."""

    __test__ = False  # prevent Pytest from treating this as a test case

    def __init__(self, app: App) -> None:
        self.app = app

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        body: bytes | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send an HTTP request and return the response."""
        if body is not None and json_body is not None:
            raise ValueError("provide either json_body or body")
        header_map = {k.lower(): v for k, v in (headers or {}).items()}
        if json_body is not None:
            body = json.dumps(json_body).encode()
            header_map.setdefault("content-type", "application/json")
        query = urlencode(params or {}, doseq=True)
        return asyncio.run(self._call(method.upper(), path, query, header_map, body or b""))

    async def _call(
        self,
        method: str,
        path: str,
        query: str,
        headers: Mapping[str, str],
        body: bytes,
    ) -> Response:
        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": method,
            "path": path,
            "query_string": query.encode("latin1"),
            "headers": [(k.encode("latin1"), v.encode("latin1")) for k, v in headers.items()],
        }
        finished = asyncio.Event()
        delivered = False
        status = 500
        resp_headers: dict[str, str] = {}
        chunks: list[bytes] = []
        streamed = False

        async def receive() -> Message:
            nonlocal delivered
            if not delivered:
                delivered = True
                return {"type": "http.request", "body": body, "more_body": False}
            await finished.wait()
            return {"type": "http.disconnect"}

        async def send(message: Message) -> None:
            nonlocal status, streamed
            if message["type"] == "http.response.start":
                status = message["status"]
                for key, value in message.get("headers", []):
                    resp_headers[key.decode("latin1")] = value.decode("latin1")
            elif message["type"] == "http.response.body":
                more = message.get("more_body", False)
                streamed = streamed or more
                if message.get("body"):
                    chunks.append(message["body"])
                if not more:
                    finished.set()

        await self.app(scope, receive, send)
        content = b"".join(chunks)
        try:
            text = content.decode()
        except UnicodeDecodeError:
            text = content.decode("latin1")
        return Response(
            status,
            text,
            resp_headers,
            content,
            [c.decode() for c in chunks] if streamed else None,
        )

    def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a GET request."""
        return self.request("GET", path, params=params, headers=headers)

    def post(
        self,
        path: str,
        json_body: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> Response:
        """Send a POST request."""
        return self.request(
            "POST", path, json_body=json_body, body=body, params=params, headers=headers
        )

    def put(
        self,
        path: str,
        json_body: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return self.request("PUT", path, json_body=json_body, params=params, headers=headers)

    def patch(
        self,
        path: str,
        json_body: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return self.request("PATCH", path, json_body=json_body, params=params, headers=headers)

    def delete(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return self.request("DELETE", path, params=params, headers=headers)


__all__ = ["Response", "TestClient"]
