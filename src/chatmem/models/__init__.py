"""chatmem data models."""

from chatmem.models.config import (
    ChatMemConfig,
    ProviderConfig,
    ProviderName,
    RetrievalConfig,
    StoreConfig,
)
from chatmem.models.message import (
    ClearResult,
    CountResult,
    IdRangeResult,
    LTMPage,
    Message,
    MessagesResult,
    RebuildResult,
    RetrievalResult,
    Role,
    SaveResult,
    SearchResolution,
    StoreResult,
    TokenTotalResult,
    TokenUsageReport,
)

__all__ = [
    # Config
    "ChatMemConfig",
    "ProviderConfig",
    "ProviderName",
    "RetrievalConfig",
    "StoreConfig",
    # Message
    "Message",
    "Role",
    # Store results
    "StoreResult",
    "SaveResult",
    "MessagesResult",
    "LTMPage",
    "CountResult",
    "ClearResult",
    "IdRangeResult",
    "TokenTotalResult",
    "RebuildResult",
    # Retrieval
    "RetrievalResult",
    "TokenUsageReport",
    "SearchResolution",
]
