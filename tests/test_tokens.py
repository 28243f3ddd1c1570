"""Tests for TokenEstimator and the context-window table."""

from __future__ import annotations

import math

import pytest

from chatmem.tokens.estimator import TokenEstimator
from chatmem.tokens.limits import (
    DEFAULT_CONTEXT_LIMIT,
    context_limit_for,
    ltm_page_budget,
)


class TestHeuristic:
    def test_empty_and_non_string(self, estimator):
        assert estimator.estimate("") == 0
        assert estimator.estimate(None) == 0  # type: ignore[arg-type]
        assert estimator.estimate(42) == 0  # type: ignore[arg-type]

    def test_latin_text(self, estimator):
        text = "hello world, how are you?"
        assert estimator.estimate(text, "deepseek-chat") == math.ceil(len(text) * 0.3)

    def test_cyrillic_text(self, estimator):
        text = "привет, как дела"
        assert estimator.estimate(text, "deepseek-chat") == math.ceil(len(text) * 0.4)

    def test_cjk_wins_over_cyrillic(self, estimator):
        """Any CJK character selects the CJK rate for the whole string."""
        text = "привет 你好"
        assert estimator.estimate(text) == math.ceil(len(text) * 0.6)

    def test_rounds_up(self, estimator):
        assert estimator.estimate("a") == 1
        assert estimator.estimate("abcd") == 2  # 1.2 → 2

    def test_never_negative(self, estimator):
        for text in ["x", "  ", "\n", "ё", "字"]:
            assert estimator.estimate(text) >= 0


class TestTokenizerFallback:
    def test_no_model_uses_heuristic(self):
        est = TokenEstimator()
        assert est.estimate("abcdefghij") == math.ceil(10 * 0.3)

    def test_unknown_model_is_remembered(self, monkeypatch):
        est = TokenEstimator()
        lookups: list[str] = []

        def _unknown(model_id: str):
            lookups.append(model_id)
            raise KeyError(model_id)

        monkeypatch.setattr(est, "_encoder_for", _unknown)
        assert est.estimate("abcdefghij", "deepseek-chat") == math.ceil(10 * 0.3)
        assert est.estimate("abcdefghij", "deepseek-chat") == math.ceil(10 * 0.3)
        assert lookups == ["deepseek-chat"]

    def test_loader_failure_falls_back(self, monkeypatch):
        est = TokenEstimator()

        def _broken(model_id: str):
            raise RuntimeError("no network")

        monkeypatch.setattr(est, "_encoder_for", _broken)
        assert est.estimate("abcdefghij", "gpt-4o") == math.ceil(10 * 0.3)

    def test_encoder_used_when_available(self, monkeypatch):
        est = TokenEstimator()

        class _Encoder:
            def encode(self, text, disallowed_special=()):
                return text.split()

        monkeypatch.setattr(est, "_encoder_for", lambda model_id: _Encoder())
        assert est.estimate("one two three", "gpt-4o") == 3

    def test_estimate_messages_renders_role_lines(self, estimator):
        messages = [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]
        expected = estimator.estimate("user: hi\nassistant: hello")
        assert estimator.estimate_messages(messages) == expected


class TestContextLimits:
    @pytest.mark.parametrize(
        ("model_id", "expected"),
        [
            ("deepseek-chat", 64_000),
            ("deepseek-ai/DeepSeek-V3-0324", 128_000),
            ("Qwen/Qwen2.5-7B-Instruct", 128_000),
            ("google/gemma-2-9b-it", 8_192),
            ("meta-llama/Llama-2-7b-chat-hf", 4_096),
            ("mistralai/Mixtral-8x7B-Instruct-v0.1", 32_768),
        ],
    )
    def test_exact_match(self, model_id, expected):
        assert context_limit_for(model_id) == expected

    def test_missing_model_uses_default(self):
        assert context_limit_for(None) == DEFAULT_CONTEXT_LIMIT
        assert context_limit_for("") == DEFAULT_CONTEXT_LIMIT

    def test_substring_match(self):
        """A table key contained in the id resolves to that key's limit."""
        assert context_limit_for("deepseek-chat-v2") == 64_000

    def test_family_match(self):
        assert context_limit_for("unknown-llama-variant") == 128_000
        assert context_limit_for("my-gemma-finetune") == 8_192

    def test_unrelated_model_uses_default(self):
        assert context_limit_for("totally-new-model") == DEFAULT_CONTEXT_LIMIT

    def test_page_budget(self):
        assert ltm_page_budget("deepseek-chat") == 96_000
        assert ltm_page_budget("meta-llama/Llama-2-7b-chat-hf") == 6_144
        assert ltm_page_budget(None) == 96_000
