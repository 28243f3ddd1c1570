"""Token usage reporting for chat completions."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from chatmem.models.message import TokenUsageReport
from chatmem.tokens.estimator import TokenEstimator
from chatmem.tokens.limits import context_limit_for


def extract_token_usage(
    response: Mapping[str, Any],
    messages: Sequence[Mapping[str, Any]],
    ai_response: str,
    model_id: str | None,
    estimator: TokenEstimator | None = None,
) -> TokenUsageReport:
    """
    Report token usage for one completion.

    Uses the provider's ``usage`` block when present. Otherwise the prompt is
    estimated from ``messages`` (rendered as ``role: content`` lines) and the
    completion from ``ai_response``, and the report is flagged ``estimated``.

    ``context_usage_percent`` is ``total / context_limit * 100``, capped at 100
    and rounded to one decimal.
    """
    max_context = context_limit_for(model_id)
    usage = response.get("usage")

    if isinstance(usage, Mapping):
        prompt = usage.get("prompt_tokens") or 0
        completion = usage.get("completion_tokens") or 0
        total = usage.get("total_tokens") or 0
        estimated = False
    else:
        est = estimator or TokenEstimator()
        prompt = est.estimate_messages(messages, model_id)
        completion = est.estimate(ai_response, model_id)
        total = prompt + completion
        estimated = True

    percent = min(total / max_context * 100, 100.0)
    return TokenUsageReport(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total,
        estimated=estimated,
        max_context_tokens=max_context,
        context_usage_percent=round(percent, 1),
    )
