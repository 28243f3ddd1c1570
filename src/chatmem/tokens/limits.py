"""Static context-window table with fuzzy and family fallback lookup."""

from __future__ import annotations

import math

DEFAULT_CONTEXT_LIMIT = 64_000

LTM_BUDGET_MULTIPLIER = 1.5
"""Each LTM page may hold this many model context windows worth of tokens."""

# Lookup falls through this table in declaration order; it is a priority list.
MODEL_CONTEXT_LIMITS: dict[str, int] = {
    # DeepSeek
    "deepseek-chat": 64_000,
    "deepseek-reasoner": 64_000,
    "deepseek-chat-reasoner": 64_000,
    "deepseek-ai/DeepSeek-V3-0324": 128_000,
    "deepseek-ai/DeepSeek-V2-Lite": 64_000,
    "deepseek-ai/DeepSeek-R1": 64_000,
    # Qwen
    "Qwen/Qwen2.5-72B-Instruct": 128_000,
    "Qwen/Qwen2.5-32B-Instruct": 128_000,
    "Qwen/Qwen2.5-14B-Instruct": 128_000,
    "Qwen/Qwen2.5-7B-Instruct": 128_000,
    "Qwen/Qwen2.5-3B-Instruct": 128_000,
    # Llama
    "meta-llama/Llama-3.1-8B-Instruct": 128_000,
    "meta-llama/Llama-3.1-70B-Instruct": 128_000,
    "meta-llama/Llama-3.2-3B-Instruct": 128_000,
    "meta-llama/Llama-2-7b-chat-hf": 4_096,
    # Gemma
    "google/gemma-2-2b-it": 8_192,
    "google/gemma-2-9b-it": 8_192,
    # Mistral
    "mistralai/Mistral-7B-Instruct-v0.2": 32_768,
    "mistralai/Mixtral-8x7B-Instruct-v0.1": 32_768,
    # GLM
    "zai-org/GLM-4.7-Flash:novita": 128_000,
}

_FAMILY_LIMITS: tuple[tuple[tuple[str, ...], int], ...] = (
    (("deepseek",), 64_000),
    (("qwen", "Qwen"), 128_000),
    (("llama", "Llama"), 128_000),
    (("gemma", "Gemma"), 8_192),
    (("mistral", "Mistral"), 32_768),
)


def context_limit_for(model_id: str | None) -> int:
    """
    Return the context window size, in tokens, for *model_id*.

    Resolution order:
    1. Empty or missing model → ``DEFAULT_CONTEXT_LIMIT``.
    2. Exact key in ``MODEL_CONTEXT_LIMITS``.
    3. First key (declaration order) that contains the model id or is
       contained in it.
    4. Provider family by substring (deepseek, qwen, llama, gemma, mistral).
    5. ``DEFAULT_CONTEXT_LIMIT``.
    """
    if not model_id:
        return DEFAULT_CONTEXT_LIMIT

    if model_id in MODEL_CONTEXT_LIMITS:
        return MODEL_CONTEXT_LIMITS[model_id]

    for key, limit in MODEL_CONTEXT_LIMITS.items():
        if key in model_id or model_id in key:
            return limit

    for needles, limit in _FAMILY_LIMITS:
        if any(needle in model_id for needle in needles):
            return limit

    return DEFAULT_CONTEXT_LIMIT


def ltm_page_budget(model_id: str | None) -> int:
    """Token budget for one LTM page: the model's context limit scaled by 1.5."""
    return math.floor(context_limit_for(model_id) * LTM_BUDGET_MULTIPLIER)
