"""In-process observer used to announce lifecycle and delivery events."""

import asyncio
import inspect
import itertools
import logging
import threading
from typing import Any, Callable, Dict, List, Set, Tuple

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class EventEmitter:
    """Named-event observer.

    Handlers run in registration order. A handler that raises is logged and
    skipped; the remaining handlers still run and emit() never raises.
    Coroutine handlers are scheduled as tasks on the running loop.

    Example:
        emitter = EventEmitter()
        token = emitter.on("connection_opened", lambda conn: ...)
        emitter.emit("connection_opened", conn)
        emitter.off(token)
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Tuple[int, Handler]]] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()
        self._tasks: Set[asyncio.Task] = set()

    def on(self, event: str, handler: Handler) -> int:
        """Register ``handler`` for ``event``.

        Returns:
            Token accepted by off().
        """
        token = next(self._counter)
        with self._lock:
            self._handlers.setdefault(event, []).append((token, handler))
        return token

    def off(self, token: int) -> bool:
        """Unregister a handler. Returns False if the token was unknown."""
        with self._lock:
            for event, handlers in self._handlers.items():
                for index, (handler_token, _) in enumerate(handlers):
                    if handler_token == token:
                        del handlers[index]
                        if not handlers:
                            del self._handlers[event]
                        return True
        return False

    def emit(self, event: str, *args: Any, **kwargs: Any) -> int:
        """Invoke every handler registered for ``event``.

        Returns:
            Number of handlers that ran without raising.
        """
        with self._lock:
            handlers = [handler for _, handler in self._handlers.get(event, [])]

        succeeded = 0
        for handler in handlers:
            try:
                result = handler(*args, **kwargs)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
                succeeded += 1
            except Exception:
                logger.exception(f"Handler for '{event}' failed")
        return succeeded

    def _schedule(self, event: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(done: asyncio.Task) -> None:
            self._tasks.discard(done)
            if not done.cancelled() and done.exception() is not None:
                logger.error(
                    f"Async handler for '{event}' failed: {done.exception()!r}"
                )

        task.add_done_callback(_done)

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._handlers.get(event, []))
