"""
chatmem: token-budgeted long-term memory for LLM chat proxies.

Primary entry point::

    from chatmem import MemorySession, make_send_fn

    async with MemorySession.open() as memory:
        await memory.remember("user", "Hello!", "deepseek-chat")
        result = await memory.recall(
            "What did I say?", "deepseek-chat", "deepseek", make_send_fn("deepseek")
        )
"""

from chatmem.session import MemorySession
from chatmem.models import (
    ChatMemConfig,
    StoreConfig,
    RetrievalConfig,
    ProviderConfig,
    Message,
    LTMPage,
    SaveResult,
    MessagesResult,
    RetrievalResult,
    SearchResolution,
    TokenUsageReport,
)
from chatmem.events.bus import EventBus, ChatMemEvent
from chatmem.ltm import (
    LTMRetriever,
    RelevanceFilter,
    find_search_request,
    is_summarization_message,
    parse_relevant_indices,
    strip_search_markers,
)
from chatmem.providers import SendFn, extract_token_usage, make_send_fn
from chatmem.store import MessageStore, StorePool
from chatmem.tokens import TokenEstimator, context_limit_for, ltm_page_budget

__version__ = "0.1.0"

__all__ = [
    # Core
    "MemorySession",
    # Config
    "ChatMemConfig",
    "StoreConfig",
    "RetrievalConfig",
    "ProviderConfig",
    # Models
    "Message",
    "LTMPage",
    "SaveResult",
    "MessagesResult",
    "RetrievalResult",
    "SearchResolution",
    "TokenUsageReport",
    # Events
    "EventBus",
    "ChatMemEvent",
    # Retrieval
    "LTMRetriever",
    "RelevanceFilter",
    "find_search_request",
    "is_summarization_message",
    "parse_relevant_indices",
    "strip_search_markers",
    # Providers
    "SendFn",
    "extract_token_usage",
    "make_send_fn",
    # Storage & tokens
    "MessageStore",
    "StorePool",
    "TokenEstimator",
    "context_limit_for",
    "ltm_page_budget",
]
