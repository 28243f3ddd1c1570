"""Chat-completion send functions for the supported providers, backed by litellm."""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog

from chatmem.models.config import ProviderConfig

SendFn = Callable[[list[dict[str, str]], float, str], Awaitable[dict[str, Any]]]
"""``async (messages, temperature, model_id) -> {"choices": [...], "usage"?: {...}}``."""

MOCK_ENV_VAR = "CHATMEM_MOCK_LLM"

_LITELLM_PREFIXES: dict[str, str] = {
    "deepseek": "deepseek",
    "huggingface": "huggingface",
}

_logger = structlog.get_logger("chatmem.providers")


class UnknownProviderError(ValueError):
    """Raised when a provider name has no send function."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"Unknown provider {provider!r}; expected one of {sorted(_LITELLM_PREFIXES)}"
        )
        self.provider = provider


def litellm_model_name(provider: str, model_id: str) -> str:
    """
    Return the litellm routing string for *model_id* on *provider*.

    ``("deepseek", "deepseek-chat")`` → ``"deepseek/deepseek-chat"``.
    Model ids that already carry the provider prefix are returned unchanged.
    """
    try:
        prefix = _LITELLM_PREFIXES[provider]
    except KeyError as exc:
        raise UnknownProviderError(provider) from exc
    if model_id.startswith(f"{prefix}/"):
        return model_id
    return f"{prefix}/{model_id}"


def completion_text(response: Mapping[str, Any] | None) -> str:
    """Return ``choices[0].message.content`` from a normalized response, or ``""``."""
    if not response:
        return ""
    choices = response.get("choices") or []
    if not choices:
        return ""
    message = choices[0].get("message") or {}
    return message.get("content") or ""


def _normalize(response: Any) -> dict[str, Any]:
    """Convert a litellm ``ModelResponse`` into the plain dict shape callers expect."""
    choices = []
    for choice in getattr(response, "choices", None) or []:
        message = getattr(choice, "message", None)
        choices.append(
            {
                "message": {
                    "role": getattr(message, "role", "assistant") or "assistant",
                    "content": getattr(message, "content", "") or "",
                },
                "finish_reason": getattr(choice, "finish_reason", None),
            }
        )
    normalized: dict[str, Any] = {"choices": choices}
    usage = getattr(response, "usage", None)
    if usage:
        normalized["usage"] = {
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
            "total_tokens": getattr(usage, "total_tokens", 0) or 0,
        }
    return normalized


def _mock_response(messages: list[dict[str, str]]) -> dict[str, Any]:
    last_user = next(
        (m.get("content", "") for m in reversed(messages) if m.get("role") == "user"),
        "",
    )
    return {
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "content": f"(mock reply to: {last_user[:100]})",
                },
                "finish_reason": "stop",
            }
        ]
    }


def make_send_fn(provider: str, config: ProviderConfig | None = None) -> SendFn:
    """
    Build a ``SendFn`` that routes chat completions to *provider* via litellm.

    API keys are read by litellm from ``DEEPSEEK_API_KEY`` /
    ``HUGGINGFACE_API_KEY``. With ``CHATMEM_MOCK_LLM=1`` no request is made and
    a canned reply echoing the last user message is returned.

    Args:
        provider: ``"deepseek"`` or ``"huggingface"``.
        config: Provider settings (api base overrides, timeout, default model).

    Raises:
        UnknownProviderError: For any other provider name.
    """
    if provider not in _LITELLM_PREFIXES:
        raise UnknownProviderError(provider)
    cfg = config or ProviderConfig()

    async def _send(
        messages: list[dict[str, str]],
        temperature: float,
        model_id: str,
    ) -> dict[str, Any]:
        if os.environ.get(MOCK_ENV_VAR) == "1":
            return _mock_response(messages)

        import litellm

        call_kwargs: dict[str, Any] = {
            "model": litellm_model_name(provider, model_id or cfg.model_for(provider)),
            "messages": messages,
            "temperature": temperature,
            "timeout": cfg.timeout,
        }
        api_base = cfg.api_base_for(provider)
        if api_base:
            call_kwargs["api_base"] = api_base

        _logger.debug(
            "provider_request",
            provider=provider,
            model=call_kwargs["model"],
            messages=len(messages),
        )
        response = await litellm.acompletion(**call_kwargs)
        return _normalize(response)

    return _send
