"""In-process pub/sub event bus for store and retrieval lifecycle events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["ChatMemEvent", dict[str, Any]], None | Awaitable[None]]


class ChatMemEvent(StrEnum):
    """All event types published by chatmem components.

    Typed payloads live in :mod:`chatmem.events.payloads`.

    ``MESSAGE_SAVED``
        ``id: int``, ``role: str``, ``token_count: int | None``

    ``MESSAGE_SKIPPED``
        ``role: str``, ``reason: str``. Published for summarization messages
        that are kept out of long-term memory.

    ``MESSAGES_CLEARED``
        ``deleted_count: int``

    ``FTS_REBUILT``
        ``indexed_count: int``

    ``LTM_BATCH_CLASSIFIED``
        ``batch: int``, ``offset_tokens: int``, ``candidates: int``,
        ``relevant: int``

    ``LTM_RELEVANCE_FALLBACK``
        ``candidates: int``, ``error: str``. The judge call failed and every
        candidate of the batch was treated as relevant.

    ``LTM_RETRIEVAL_COMPLETED``
        ``found: bool``, ``relevant: int``, ``batches: int``,
        ``total_tokens: int``, ``has_more: bool``
    """

    MESSAGE_SAVED = "message.saved"
    MESSAGE_SKIPPED = "message.skipped"
    MESSAGES_CLEARED = "messages.cleared"
    FTS_REBUILT = "fts.rebuilt"

    LTM_BATCH_CLASSIFIED = "ltm.batch_classified"
    LTM_RELEVANCE_FALLBACK = "ltm.relevance_fallback"
    LTM_RETRIEVAL_COMPLETED = "ltm.retrieval_completed"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    - Sync handlers run inline within ``publish()``.
    - Async handlers are scheduled on the running loop (fire-and-forget).
    - Handler exceptions are logged and never reach the publisher.

    Example::

        bus = EventBus()

        def on_batch(event, payload):
            print(f"batch {payload['batch']}: {payload['relevant']} relevant")

        bus.subscribe(ChatMemEvent.LTM_BATCH_CLASSIFIED, on_batch)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[ChatMemEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._logger = logger or structlog.get_logger("chatmem.events")

    def subscribe(self, event: ChatMemEvent, handler: Handler) -> None:
        """Register a handler for a specific event type."""
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for every event type."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: ChatMemEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: ChatMemEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Args:
            event: The event type to publish.
            payload: Event-specific data dictionary.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                    except RuntimeError:
                        # No running loop: the coroutine can never be awaited
                        result.close()
                        continue
                    loop.create_task(result)  # noqa: RUF006
            except Exception as exc:
                self._logger.error(
                    "event_handler_error",
                    event_type=str(event),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )
