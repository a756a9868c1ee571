"""Request-scoped context passed as the first argument to every handler.

The context carries the cancellation signal of the inbound request. Transport
adapters cancel it when the client goes away; long-running handlers and the
streaming loop poll it cooperatively.
"""

from __future__ import annotations

import threading
from typing import Any, Callable


class CancellationToken:
    """Thread-safe token for cancelling long-running operations.

    Example:
        >>> token = CancellationToken()
        >>> token.cancelled()
        False
        >>> token.cancel()
        >>> token.cancelled()
        True
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], Any]] = []

    def cancel(self) -> None:
        """Mark the token as cancelled and run registered callbacks once.

        Safe to call from any thread; repeated calls are no-ops.
        """
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def cancelled(self) -> bool:
        """Return ``True`` once :meth:`cancel` has been called."""
        with self._lock:
            return self._cancelled

    def add_callback(self, callback: Callable[[], Any]) -> None:
        """Run *callback* on cancellation, immediately if already cancelled."""
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return
        callback()


class Context:
    """Per-request context handed to handlers and dependencies."""

    def __init__(
        self,
        token: CancellationToken | None = None,
        values: dict[str, Any] | None = None,
    ) -> None:
        self.token = token or CancellationToken()
        self._values = dict(values or {})

    def cancelled(self) -> bool:
        return self.token.cancelled()

    def cancel(self) -> None:
        self.token.cancel()

    def value(self, key: str, default: Any = None) -> Any:
        """Return a request-scoped value stored by the transport layer."""
        return self._values.get(key, default)

    def with_value(self, key: str, value: Any) -> "Context":
        """Return a child context sharing the cancellation token."""
        values = dict(self._values)
        values[key] = value
        return Context(self.token, values)


__all__ = ["CancellationToken", "Context"]
