"""Server-Sent Events: the event type and its wire encoding."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Generic, TypeVar

from .convert import to_jsonable

T = TypeVar("T")

SSE_MEDIA_TYPE = "text/event-stream"


@dataclass
class Event(Generic[T]):
    """One server-sent event.

    ``data`` is serialized to JSON; ``event``, ``id`` and ``retry``
    (milliseconds) are emitted only when set.
    """

    data: T
    event: str | None = None
    id: str | None = None
    retry: int | None = None


def format_event(event: Event, *, indent: int | None = None) -> bytes:
    """Encode *event* in the ``text/event-stream`` wire format.

    A payload whose JSON rendition spans several lines is split across
    several ``data:`` lines. The trailing blank line terminates the event.
    """

    lines: list[str] = []
    if event.event:
        lines.append(f"event: {event.event}")
    if event.id:
        lines.append(f"id: {event.id}")
    if event.retry is not None and event.retry > 0:
        lines.append(f"retry: {event.retry}")
    payload = json.dumps(to_jsonable(event.data), indent=indent)
    for line in payload.split("\n"):
        lines.append(f"data: {line}")
    return ("\n".join(lines) + "\n\n").encode()


__all__ = ["Event", "SSE_MEDIA_TYPE", "format_event"]
