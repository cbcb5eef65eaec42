"""Event hub interface and an in-process implementation.

The gateway never owns the bus. It subscribes to command events, publishes
lifecycle notifications, and sends CRUD events to whatever data layer is
listening on the hub. ``HubDataLayer`` turns the bus's callback convention
``(err, result)`` into a single awaitable result.
"""

from __future__ import annotations

import asyncio
import inspect
import sys
from collections import defaultdict
from typing import Any, Callable, Protocol

import structlog

from gateway.errors import DataLayerError, DataLayerTimeout
from gateway.models.crud import CrudEvent

logger = structlog.get_logger()

Handler = Callable[..., Any]


class Hub(Protocol):
    """What the gateway needs from the hosting bus."""

    def on(self, event: str, handler: Handler) -> None: ...

    def emit(self, event: str, *args: Any) -> None: ...

    def ready(self, source: str, message: str) -> None: ...

    def shutdown(self) -> None: ...


class DataLayer(Protocol):
    async def dispatch(self, event: CrudEvent) -> Any: ...


class EventHub:
    """Minimal in-process publish/subscribe hub.

    Synchronous handlers run inline in subscription order. Coroutine
    handlers are scheduled on the running loop. A failing handler is logged
    and does not stop delivery to the others.
    """

    def __init__(self, exit_func: Callable[[int], Any] = sys.exit) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()
        self._exit_func = exit_func
        self._shutting_down = False

    def on(self, event: str, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Handler) -> None:
        try:
            self._handlers[event].remove(handler)
        except ValueError:
            pass

    def listeners(self, event: str) -> list[Handler]:
        return list(self._handlers.get(event, ()))

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(*args)
            except Exception:
                logger.exception("hub_handler_error", hub_event=event)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done(event))

    def _task_done(self, event: str) -> Callable[[asyncio.Task], None]:
        def _done(task: asyncio.Task) -> None:
            self._tasks.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.error("hub_handler_error", hub_event=event, error=str(task.exception()))

        return _done

    def ready(self, source: str, message: str) -> None:
        logger.info("module_ready", source=source, message=message)
        self.emit(f"{source}.ready", message)

    def shutdown(self) -> None:
        """Stop the hosting process. Only the first request has an effect."""
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.error("hub_shutdown_requested")
        self.emit("hub.shutdown")
        self._exit_func(1)


class HubDataLayer:
    """Send typed CRUD events over the hub and await the callback's answer."""

    def __init__(self, hub: Hub, timeout: float = 30.0) -> None:
        self._hub = hub
        self._timeout = timeout

    async def dispatch(self, event: CrudEvent) -> Any:
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def _callback(err: Any = None, result: Any = None) -> None:
            if future.done():
                logger.debug("crud_callback_ignored", verb=event.verb.value, resource=event.name)
                return
            if err:
                future.set_exception(DataLayerError(err))
            else:
                future.set_result(result)

        self._hub.emit(event.verb.value, *event.args, _callback)
        try:
            return await asyncio.wait_for(future, self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "crud_timeout",
                verb=event.verb.value,
                resource=event.name,
                timeout=self._timeout,
            )
            raise DataLayerTimeout(f"no answer to {event.verb.value} {event.name} within {self._timeout}s")
