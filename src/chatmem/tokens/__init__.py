"""Token counting and context-window budgets."""

from chatmem.tokens.estimator import TokenEstimator
from chatmem.tokens.limits import (
    DEFAULT_CONTEXT_LIMIT,
    MODEL_CONTEXT_LIMITS,
    context_limit_for,
    ltm_page_budget,
)

__all__ = [
    "DEFAULT_CONTEXT_LIMIT",
    "MODEL_CONTEXT_LIMITS",
    "TokenEstimator",
    "context_limit_for",
    "ltm_page_budget",
]
