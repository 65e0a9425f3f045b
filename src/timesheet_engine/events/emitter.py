"""Async event emitter used as the notification trigger.

Handlers are isolated: a failing handler is logged and reported back to
the caller in the returned error list, but never interrupts the workflow
that emitted the event or the other handlers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar, Union

from timesheet_engine.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)

Handler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


@dataclass
class HandlerRegistration:
    """Registration of an event handler."""

    handler: Handler
    event_types: set[str] | None  # None = all events
    categories: set[EventCategory] | None  # None = all categories

    def matches(self, event: DomainEvent) -> bool:
        if self.event_types and event.event_type not in self.event_types:
            return False
        if self.categories and event.category not in self.categories:
            return False
        return True


class AsyncEventEmitter:
    """Publishes domain events to sync or async handlers.

    Usage:
        emitter = AsyncEventEmitter()
        emitter.on(TimesheetSubmitted, notify_reviewers)
        emitter.on_category(EventCategory.ADJUSTMENT, notify_employee)

        async with emitter.batch():
            await emitter.emit(event)
        # delivered when the block exits cleanly, dropped on error
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []
        self._batching = False
        self._batch: list[DomainEvent] = []

    def on(self, event_type: type[T] | list[type[T]], handler: Handler) -> None:
        """Register handler for specific event type(s)."""
        types = event_type if isinstance(event_type, list) else [event_type]
        self._handlers.append(
            HandlerRegistration(handler, {t.__name__ for t in types}, None)
        )

    def on_category(
        self,
        category: EventCategory | list[EventCategory],
        handler: Handler,
    ) -> None:
        """Register handler for event category(ies)."""
        cats = category if isinstance(category, list) else [category]
        self._handlers.append(HandlerRegistration(handler, None, set(cats)))

    def on_all(self, handler: Handler) -> None:
        self._handlers.append(HandlerRegistration(handler, None, None))

    def off(self, handler: Handler) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    def child(self) -> AsyncEventEmitter:
        """Emitter sharing these handlers but with its own batch state (one per request)."""
        child = AsyncEventEmitter()
        child._handlers = self._handlers
        return child

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def emit(self, event: DomainEvent) -> list[Exception]:
        """Emit an event to all matching handlers.

        Returns the exceptions raised by handlers (empty when all succeeded
        or while batching).
        """
        if self._batching:
            self._batch.append(event)
            return []
        return await self._dispatch(event)

    async def _dispatch(self, event: DomainEvent) -> list[Exception]:
        errors: list[Exception] = []
        pending: list[Awaitable[None]] = []

        for reg in self._handlers:
            if not reg.matches(event):
                continue
            try:
                result = reg.handler(event)
            except Exception as e:
                logger.exception("Handler %s failed for event %s", reg.handler, event.event_type)
                errors.append(e)
                continue
            if inspect.isawaitable(result):
                pending.append(self._await_handler(reg.handler, result, event))

        if pending:
            results = await asyncio.gather(*pending, return_exceptions=True)
            errors.extend(r for r in results if isinstance(r, Exception))
        return errors

    async def _await_handler(
        self,
        handler: Handler,
        awaitable: Awaitable[None],
        event: DomainEvent,
    ) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception("Async handler %s failed for event %s", handler, event.event_type)
            raise

    def batch(self) -> EventBatch:
        """Collect events until the context exits, then deliver them together."""
        return EventBatch(self)

    def _start_batch(self) -> None:
        self._batching = True
        self._batch = []

    def _discard_batch(self) -> None:
        self._batching = False
        self._batch = []

    async def _end_batch(self) -> list[Exception]:
        self._batching = False
        events, self._batch = self._batch, []

        errors: list[Exception] = []
        for event in events:
            errors.extend(await self._dispatch(event))
        return errors


class EventBatch:
    """Async context manager for batching events."""

    def __init__(self, emitter: AsyncEventEmitter) -> None:
        self._emitter = emitter
        self._errors: list[Exception] = []

    async def __aenter__(self) -> EventBatch:
        self._emitter._start_batch()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None:
            self._errors = await self._emitter._end_batch()
        else:
            # Operation failed; nothing it announced actually happened
            self._emitter._discard_batch()

    async def add(self, event: DomainEvent) -> None:
        await self._emitter.emit(event)

    @property
    def errors(self) -> list[Exception]:
        """Errors from handler execution (available after the context exits)."""
        return self._errors


class RecordingHandler:
    """Handler that keeps every event it receives; handy for wiring checks."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def __call__(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[T]) -> list[T]:
        return [e for e in self.events if isinstance(e, event_type)]
