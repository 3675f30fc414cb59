"""In-process publish/subscribe bus.

Features never import each other; they communicate by emitting and
subscribing to named events on one shared EventBus instance.

Usage:
    bus = EventBus()

    def on_ping(payload):
        print(payload["n"])

    bus.on("ping", on_ping)
    bus.emit("ping", {"n": 1})

`emit` is synchronous and never suspends. Handlers run in registration
order. A handler that is a coroutine function is spawned as its own task:
`emit` does not wait for it, and its failure is logged by the task's done
callback without reaching the publisher. Subscribers that need to react to
their own failures should catch inside the handler.
"""

import asyncio
import inspect
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None] | Callable[[Any], Awaitable[None]]

# Warn when one event accumulates this many subscribers (likely a leak)
MAX_LISTENERS = 100


@dataclass(frozen=True, eq=False)
class _Subscription:
    handler: EventHandler
    once: bool = False


class EventBus:
    """Internal pub/sub register for inter-feature communication."""

    def __init__(self, max_listeners: int = MAX_LISTENERS) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}
        self._max_listeners = max_listeners
        self._lock = threading.Lock()
        self._tasks: set[asyncio.Task[Any]] = set()

    def on(self, event: str, handler: EventHandler) -> None:
        """Subscribe to an event. Handler is called on every emission."""
        self._add(event, _Subscription(handler))

    def once(self, event: str, handler: EventHandler) -> None:
        """Subscribe for a single emission only.

        The handler is deregistered before it runs, whether it succeeds or
        not.
        """
        self._add(event, _Subscription(handler, once=True))

    def off(self, event: str, handler: EventHandler) -> None:
        """Unsubscribe the most recent registration of `handler` for `event`."""
        with self._lock:
            subs = self._subscriptions.get(event)
            if not subs:
                return
            for index in range(len(subs) - 1, -1, -1):
                if subs[index].handler == handler:
                    del subs[index]
                    break
            if not subs:
                del self._subscriptions[event]

    def emit(self, event: str, payload: Any = None) -> None:
        """Publish an event to every handler currently registered for it."""
        with self._lock:
            subs = list(self._subscriptions.get(event, ()))
            if not subs:
                logger.debug("event_no_subscribers", extra={"event.name": event})
                return
            # One-shot handlers are removed before any handler runs
            fired_once = [s for s in subs if s.once]
            if fired_once:
                remaining = [
                    s for s in self._subscriptions[event] if s not in fired_once
                ]
                if remaining:
                    self._subscriptions[event] = remaining
                else:
                    del self._subscriptions[event]

        for sub in subs:
            self._invoke(event, sub.handler, payload)

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(event, ()))

    def clear(self, event: str | None = None) -> None:
        """Remove subscribers for one event, or for all events."""
        with self._lock:
            if event is None:
                self._subscriptions.clear()
            else:
                self._subscriptions.pop(event, None)

    async def drain(self) -> None:
        """Wait for async handlers spawned by earlier emits to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _add(self, event: str, subscription: _Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.setdefault(event, [])
            subs.append(subscription)
            count = len(subs)
        if count > self._max_listeners:
            logger.warning(
                "event_listener_limit_exceeded",
                extra={"event.name": event, "event.listeners": count},
            )

    def _invoke(self, event: str, handler: EventHandler, payload: Any) -> None:
        try:
            result = handler(payload)
        except Exception as e:
            logger.error(
                "event_handler_failed",
                extra={"event.name": event, "error.message": str(e)},
                exc_info=True,
            )
            return

        if inspect.isawaitable(result):
            self._spawn(event, result)

    def _spawn(self, event: str, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
            task = asyncio.ensure_future(awaitable, loop=loop)
        except RuntimeError:
            # No running loop to host the handler
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("event_handler_no_loop", extra={"event.name": event})
            return

        self._tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            if exc := t.exception():
                logger.error(
                    "event_handler_failed",
                    extra={"event.name": event, "error.message": str(exc)},
                    exc_info=exc,
                )

        task.add_done_callback(_done)
