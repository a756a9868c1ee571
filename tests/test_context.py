"""Tests for cancellation tokens, request context and the ASGI writer."""

import asyncio
import threading

import pytest

from fastbind import APIError, CancellationToken, Context, Request
from fastbind.asgi import ASGIResponseWriter, decode_headers, read_body


def test_cancel_runs_callbacks_once() -> None:
    token = CancellationToken()
    calls = []
    token.add_callback(lambda: calls.append("a"))
    token.cancel()
    token.cancel()
    token.add_callback(lambda: calls.append("late"))
    assert token.cancelled()
    assert calls == ["a", "late"]


def test_cancel_from_another_thread() -> None:
    ctx = Context()
    worker = threading.Thread(target=ctx.cancel)
    worker.start()
    worker.join()
    assert ctx.cancelled()


def test_context_values_share_cancellation() -> None:
    parent = Context()
    child = parent.with_value("request_id", "r1")
    assert child.value("request_id") == "r1"
    assert parent.value("request_id") is None
    assert child.value("missing", "d") == "d"
    parent.cancel()
    assert child.cancelled()


def test_request_accessors() -> None:
    request = Request(
        "post",
        "/x",
        query_string=b"a=1&a=2&empty=",
        headers={"X-Trace": "t"},
        path_params={"id": "3"},
    )
    assert request.method == "POST"
    assert request.query("a") == "1"
    assert request.query("empty") == ""
    assert request.query("nope") == ""
    assert request.header("x-trace") == "t"
    assert request.path_param("id") == "3"
    assert request.path_param("other") is None


def test_asgi_writer_messages() -> None:
    sent = []

    async def send(message: dict) -> None:
        sent.append(message)

    async def run() -> None:
        writer = ASGIResponseWriter(send)
        await writer.start(200, {"Content-Type": "text/event-stream"})
        await writer.flush()
        await writer.write(b"data: 1\n\n")
        await writer.flush()
        await writer.close()
        with pytest.raises(RuntimeError):
            await writer.write(b"late")

    asyncio.run(run())
    assert sent == [
        {
            "type": "http.response.start",
            "status": 200,
            "headers": [(b"content-type", b"text/event-stream")],
        },
        {"type": "http.response.body", "body": b"data: 1\n\n", "more_body": True},
        {"type": "http.response.body", "body": b"", "more_body": False},
    ]


def test_read_body_joins_chunks() -> None:
    messages = iter(
        [
            {"type": "http.request", "body": b"ab", "more_body": True},
            {"type": "http.request", "body": b"cd", "more_body": False},
        ]
    )

    async def receive() -> dict:
        return next(messages)

    assert asyncio.run(read_body(receive)) == b"abcd"


def test_decode_headers_folds_repeats() -> None:
    raw = [(b"Accept", b"a"), (b"accept", b"b"), (b"X-One", b"1")]
    assert decode_headers(raw) == {"accept": "a, b", "x-one": "1"}


def test_read_body_stops_past_the_limit() -> None:
    received = []

    async def receive() -> dict:
        received.append(1)
        return {"type": "http.request", "body": b"x" * 8, "more_body": True}

    with pytest.raises(APIError) as info:
        asyncio.run(read_body(receive, max_size=20))
    assert info.value.status == 413
    assert len(received) == 3
