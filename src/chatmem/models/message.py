"""Message and result models for chatmem."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant", "system"]

# ── Message ────────────────────────────────────────────────────────────────────


class Message(BaseModel):
    """
    A single persisted chat message.

    Messages are append-only: created once by ``MessageStore.save_message()``,
    never updated, and removed only by ``clear_messages()``.
    """

    id: int
    """AUTOINCREMENT surrogate key assigned by the store. Never reused."""
    role: Role
    content: str
    timestamp: str
    """SQLite ``CURRENT_TIMESTAMP`` format (``YYYY-MM-DD HH:MM:SS``)."""
    session_id: str | None = None
    is_summarization: bool = False
    token_count: int | None = None
    """Token estimate computed at save time. NULL rows never enter LTM paging."""
    cumulative_tokens: int | None = None
    """Running token sum in LTM order. Only set on rows returned by the paginator."""

    def as_chat(self) -> dict[str, str]:
        """Render as a ``{"role", "content"}`` dict for a chat-completion request."""
        return {"role": self.role, "content": self.content}


# ── Store results ──────────────────────────────────────────────────────────────


class StoreResult(BaseModel):
    """Base for store operation results. Callers must check ``success``."""

    success: bool
    error: str | None = None


class SaveResult(StoreResult):
    """Result of ``save_message()``."""

    id: int | None = None
    skipped: bool = False
    """True when the message was a summarization and was not persisted."""


class MessagesResult(StoreResult):
    """A plain list of messages."""

    messages: list[Message] = Field(default_factory=list)


class LTMPage(StoreResult):
    """
    One page of the LTM token-budget view.

    ``total_tokens`` is the cumulative token position of the last returned
    row (or the requested offset for an empty page) and is the offset to
    pass when requesting the next page.
    """

    messages: list[Message] = Field(default_factory=list)
    total_tokens: int = 0
    has_more: bool = False


class CountResult(StoreResult):
    count: int = 0


class ClearResult(StoreResult):
    deleted_count: int = 0


class IdRangeResult(StoreResult):
    min_id: int | None = None
    max_id: int | None = None


class TokenTotalResult(StoreResult):
    total: int = 0


class RebuildResult(StoreResult):
    indexed_count: int = 0


# ── Retrieval and usage ────────────────────────────────────────────────────────


class RetrievalResult(BaseModel):
    """The outcome of one ``LTMRetriever.retrieve()`` run."""

    relevant_messages: list[Message] = Field(default_factory=list)
    total_tokens: int = 0
    """Final token offset reached by the loop."""
    has_more: bool = False
    """Whether the last fetched page reported more history beyond it."""
    found: bool = False
    """True if at least one non-empty page was fetched."""
    batches: int = 0
    """Number of pages fully consumed (offset advanced past)."""


class TokenUsageReport(BaseModel):
    """Token usage for one chat completion, exact or locally estimated."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated: bool = False
    """True when the provider omitted ``usage`` and counts were estimated."""
    max_context_tokens: int = 0
    context_usage_percent: float = 0.0


class SearchResolution(BaseModel):
    """The result of ``MemorySession.resolve_search()``."""

    triggered: bool = False
    """True when the model response contained a search marker."""
    query: str | None = None
    response_text: str
    retrieval: RetrievalResult | None = None
    messages: list[dict[str, Any]] = Field(default_factory=list)
    """The message list of the last completion request sent."""
    raw_response: dict[str, Any] | None = None
    usage: TokenUsageReport | None = None
    saved_id: int | None = None
    """Row id of the persisted assistant reply, when it was saved."""
