"""
Ordered middleware chain wrapping job handlers in an onion model.

Middleware are async callables receiving the job context and a
zero-argument continuation:

    async def timing(ctx: JobContext, call_next: CallNext) -> Any:
        start = time.monotonic()
        result = await call_next()
        ctx.store["duration"] = time.monotonic() - start
        return result

The first middleware added is the outermost layer.
"""

import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

from ojs_worker.errors import MiddlewareNotFoundError
from ojs_worker.types.job import JobContext

# Continuation invoking the next inner layer
CallNext = Callable[[], Awaitable[Any]]

# Type alias for middleware functions
Middleware = Callable[[JobContext, CallNext], Awaitable[Any]]


@dataclass(frozen=True)
class MiddlewareEntry:
    """A middleware and the optional name used to locate it."""

    name: str | None
    middleware: Middleware


class MiddlewareChain:
    """
    Thread-safe ordered list of middleware.

    Structural edits and invocation snapshots share one lock, so an edit
    made while a job is running only affects jobs invoked afterwards.
    """

    def __init__(self) -> None:
        self._entries: list[MiddlewareEntry] = []
        self._lock = threading.Lock()

    def add(self, middleware: Middleware, name: str | None = None) -> "MiddlewareChain":
        """Append a middleware to the end (innermost position) of the chain."""
        entry = self._make_entry(middleware, name)
        with self._lock:
            self._entries.append(entry)
        return self

    use = add

    def prepend(self, middleware: Middleware, name: str | None = None) -> "MiddlewareChain":
        """Insert a middleware at the beginning (outermost position) of the chain."""
        entry = self._make_entry(middleware, name)
        with self._lock:
            self._entries.insert(0, entry)
        return self

    def insert_before(
        self,
        target: str,
        middleware: Middleware,
        name: str | None = None,
    ) -> "MiddlewareChain":
        """
        Insert a middleware before the first entry named target.

        Raises:
            MiddlewareNotFoundError: If no entry is named target. The chain
                is left unchanged.
        """
        entry = self._make_entry(middleware, name)
        with self._lock:
            index = self._find_index(target)
            self._entries.insert(index, entry)
        return self

    def insert_after(
        self,
        target: str,
        middleware: Middleware,
        name: str | None = None,
    ) -> "MiddlewareChain":
        """
        Insert a middleware after the first entry named target.

        Raises:
            MiddlewareNotFoundError: If no entry is named target. The chain
                is left unchanged.
        """
        entry = self._make_entry(middleware, name)
        with self._lock:
            index = self._find_index(target)
            self._entries.insert(index + 1, entry)
        return self

    def remove(self, name: str) -> "MiddlewareChain":
        """
        Remove the first entry with the given name.

        Raises:
            MiddlewareNotFoundError: If no entry has that name.
        """
        with self._lock:
            del self._entries[self._find_index(name)]
        return self

    def entries(self) -> list[tuple[str | None, Middleware]]:
        """Return (name, middleware) pairs in execution order."""
        with self._lock:
            return [(entry.name, entry.middleware) for entry in self._entries]

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return any(entry.name == name for entry in self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def invoke(self, ctx: JobContext, terminal: CallNext) -> Any:
        """
        Run the chain around a terminal handler.

        Each middleware receives ctx and a continuation for the next inner
        layer. A middleware that never awaits its continuation short-circuits
        the rest of the chain and its return value becomes the result.

        Args:
            ctx: Context passed to every middleware.
            terminal: Zero-argument coroutine function at the centre.

        Returns:
            Whatever the outermost layer returns.
        """
        with self._lock:
            snapshot = tuple(self._entries)

        call_next = terminal
        for entry in reversed(snapshot):
            call_next = partial(entry.middleware, ctx, call_next)

        return await call_next()

    def _find_index(self, name: str) -> int:
        # Caller holds the lock
        for index, entry in enumerate(self._entries):
            if entry.name == name:
                return index
        raise MiddlewareNotFoundError(name)

    @staticmethod
    def _make_entry(middleware: Middleware, name: str | None) -> MiddlewareEntry:
        if not callable(middleware):
            raise TypeError(f"middleware must be callable, got {type(middleware).__name__}")
        return MiddlewareEntry(name=name, middleware=middleware)
