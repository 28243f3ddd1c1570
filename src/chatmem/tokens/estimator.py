"""Per-model token estimation with a script-aware character heuristic fallback."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from typing import Any

import structlog

_CJK_RE = re.compile(r"[\u4e00-\u9fff]")
_CYRILLIC_RE = re.compile(r"[а-яА-ЯёЁ]")

CJK_TOKENS_PER_CHAR = 0.6
CYRILLIC_TOKENS_PER_CHAR = 0.4
DEFAULT_TOKENS_PER_CHAR = 0.3


class TokenEstimator:
    """
    Token counting keyed by model id, with graceful fallback.

    Priority order:
    1. tiktoken, when ``tiktoken.encoding_for_model(model_id)`` knows the model.
    2. A character heuristic for everything else: CJK text counts 0.6 tokens
       per character, Cyrillic 0.4, anything else 0.3, rounded up.

    ``estimate()`` never raises. Tokenizer failures of any kind are logged and
    answered with the heuristic.

    Encoder objects are cached per model id; a model tiktoken does not know is
    remembered too, so the lookup is not retried on every call.
    """

    def __init__(self) -> None:
        self._encoder_cache: dict[str, Any] = {}
        self._unknown_models: set[str] = set()
        self._force_heuristic: bool = False
        """Set to True in tests to skip tiktoken entirely."""
        self._logger = structlog.get_logger("chatmem.tokens")

    def estimate(self, text: object, model_id: str | None = None) -> int:
        """
        Estimate the token count of *text* for *model_id*.

        Args:
            text: The text to estimate. Non-string input counts as 0.
            model_id: Model identifier used to pick an exact tokenizer.

        Returns:
            Token count, 0 for empty or non-string input.
        """
        if not isinstance(text, str) or not text:
            return 0
        if self._force_heuristic or not model_id or model_id in self._unknown_models:
            return self.heuristic(text)

        try:
            encoder = self._encoder_for(model_id)
        except KeyError:
            self._unknown_models.add(model_id)
            self._logger.debug("tokenizer_unknown_model", model=model_id)
            return self.heuristic(text)
        except Exception as exc:
            self._logger.warning("tokenizer_load_failed", model=model_id, error=str(exc))
            return self.heuristic(text)

        try:
            return len(encoder.encode(text, disallowed_special=()))
        except Exception as exc:
            self._logger.warning("tokenizer_encode_failed", model=model_id, error=str(exc))
            return self.heuristic(text)

    def estimate_messages(
        self,
        messages: Iterable[Mapping[str, Any]],
        model_id: str | None = None,
    ) -> int:
        """Estimate a chat transcript rendered as ``role: content`` lines."""
        transcript = "\n".join(
            f"{msg.get('role', '')}: {msg.get('content', '')}" for msg in messages
        )
        return self.estimate(transcript, model_id)

    @staticmethod
    def heuristic(text: str) -> int:
        """Character-based estimate: ``ceil(len(text) * tokens_per_char)``."""
        if not text:
            return 0
        if _CJK_RE.search(text):
            multiplier = CJK_TOKENS_PER_CHAR
        elif _CYRILLIC_RE.search(text):
            multiplier = CYRILLIC_TOKENS_PER_CHAR
        else:
            multiplier = DEFAULT_TOKENS_PER_CHAR
        return math.ceil(len(text) * multiplier)

    def _encoder_for(self, model_id: str) -> Any:
        """Return the cached tiktoken encoder for *model_id*. Raises KeyError if unknown."""
        if model_id not in self._encoder_cache:
            import tiktoken

            self._encoder_cache[model_id] = tiktoken.encoding_for_model(model_id)
        return self._encoder_cache[model_id]
