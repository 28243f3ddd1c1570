"""Typed payload definitions for each ChatMemEvent.

Usage example::

    from chatmem.events.bus import ChatMemEvent, EventBus
    from chatmem.events.payloads import RetrievalCompletedPayload

    def on_done(event: ChatMemEvent, payload: RetrievalCompletedPayload) -> None:
        print(f"{payload['relevant']} relevant messages in {payload['batches']} batches")

    bus.subscribe(ChatMemEvent.LTM_RETRIEVAL_COMPLETED, on_done)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import TypedDict

# ── Store ─────────────────────────────────────────────────────────────────────


class MessageSavedPayload(TypedDict):
    """Payload for :attr:`ChatMemEvent.MESSAGE_SAVED`."""

    id: int
    role: str
    token_count: int | None


class MessageSkippedPayload(TypedDict):
    """Payload for :attr:`ChatMemEvent.MESSAGE_SKIPPED`."""

    role: str
    reason: str


class MessagesClearedPayload(TypedDict):
    """Payload for :attr:`ChatMemEvent.MESSAGES_CLEARED`."""

    deleted_count: int


class FtsRebuiltPayload(TypedDict):
    """Payload for :attr:`ChatMemEvent.FTS_REBUILT`."""

    indexed_count: int


# ── Retrieval ─────────────────────────────────────────────────────────────────


class BatchClassifiedPayload(TypedDict):
    """Payload for :attr:`ChatMemEvent.LTM_BATCH_CLASSIFIED`."""

    batch: int
    """1-based batch number within the retrieval run."""
    offset_tokens: int
    """Token offset the page was fetched at."""
    candidates: int
    relevant: int


class RelevanceFallbackPayload(TypedDict):
    """Payload for :attr:`ChatMemEvent.LTM_RELEVANCE_FALLBACK`."""

    candidates: int
    error: str


class RetrievalCompletedPayload(TypedDict):
    """Payload for :attr:`ChatMemEvent.LTM_RETRIEVAL_COMPLETED`."""

    found: bool
    relevant: int
    batches: int
    total_tokens: int
    has_more: bool
