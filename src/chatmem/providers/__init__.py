"""Provider bridge: chat-completion send functions and usage reporting."""

from chatmem.providers.llm import (
    MOCK_ENV_VAR,
    SendFn,
    UnknownProviderError,
    completion_text,
    litellm_model_name,
    make_send_fn,
)
from chatmem.providers.usage import extract_token_usage

__all__ = [
    "MOCK_ENV_VAR",
    "SendFn",
    "UnknownProviderError",
    "completion_text",
    "extract_token_usage",
    "litellm_model_name",
    "make_send_fn",
]
