from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Callable

Listener = Callable[..., Any]


class EventEmitter:
    """Named-event callback registry owned by a single component instance.

    Delivery is synchronous: :meth:`emit` returns only after every listener
    ran. A listener that raises propagates to the emitter's caller.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        """Subscribe *callback* to *event*. Returns an unsubscribe function."""
        if callback not in self._listeners[event]:
            self._listeners[event].append(callback)
        return lambda: self.off(event, callback)

    def off(self, event: str, callback: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and callback in listeners:
            listeners.remove(callback)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        # Copy so listeners may unsubscribe themselves mid-delivery
        for callback in list(self._listeners.get(event, ())):
            callback(*args, **kwargs)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def wait_for(self, event: str) -> tuple[asyncio.Future, Callable[[], None]]:
        """Future resolved with the first payload of *event*.

        Returns ``(future, cancel)``; ``cancel()`` detaches the listener and
        cancels the future if it has not fired. Callers must invoke it in a
        ``finally`` block.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def _resolve(*args: Any, **kwargs: Any) -> None:
            if not future.done():
                future.set_result(args[0] if len(args) == 1 else args)
            self.off(event, _resolve)

        self.on(event, _resolve)

        def _cancel() -> None:
            self.off(event, _resolve)
            if not future.done():
                future.cancel()

        return future, _cancel
