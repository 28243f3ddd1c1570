"""chatmem event bus."""

from chatmem.events.bus import ChatMemEvent, EventBus, Handler
from chatmem.events.payloads import (
    BatchClassifiedPayload,
    FtsRebuiltPayload,
    MessagesClearedPayload,
    MessageSavedPayload,
    MessageSkippedPayload,
    RelevanceFallbackPayload,
    RetrievalCompletedPayload,
)

__all__ = [
    "BatchClassifiedPayload",
    "ChatMemEvent",
    "EventBus",
    "FtsRebuiltPayload",
    "Handler",
    "MessageSavedPayload",
    "MessageSkippedPayload",
    "MessagesClearedPayload",
    "RelevanceFallbackPayload",
    "RetrievalCompletedPayload",
]
