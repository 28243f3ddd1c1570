"""Tests for provider send functions and token usage reporting."""

from __future__ import annotations

import sys
import types
from types import SimpleNamespace

import pytest

from chatmem.models.config import ProviderConfig
from chatmem.providers.llm import (
    MOCK_ENV_VAR,
    UnknownProviderError,
    completion_text,
    litellm_model_name,
    make_send_fn,
)
from chatmem.providers.usage import extract_token_usage


@pytest.fixture
def fake_litellm(monkeypatch):
    """Install a stand-in ``litellm`` module recording acompletion() calls."""
    calls: list[dict] = []

    async def acompletion(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(
            choices=[
                SimpleNamespace(
                    message=SimpleNamespace(role="assistant", content="[1]"),
                    finish_reason="stop",
                )
            ],
            usage=SimpleNamespace(prompt_tokens=40, completion_tokens=2, total_tokens=42),
        )

    module = types.ModuleType("litellm")
    module.acompletion = acompletion  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, "litellm", module)
    monkeypatch.delenv(MOCK_ENV_VAR, raising=False)
    return calls


class TestModelRouting:
    def test_prefix_added(self):
        assert litellm_model_name("deepseek", "deepseek-chat") == "deepseek/deepseek-chat"
        assert (
            litellm_model_name("huggingface", "Qwen/Qwen2.5-7B-Instruct")
            == "huggingface/Qwen/Qwen2.5-7B-Instruct"
        )

    def test_existing_prefix_kept(self):
        assert litellm_model_name("deepseek", "deepseek/deepseek-chat") == "deepseek/deepseek-chat"

    def test_unknown_provider(self):
        with pytest.raises(UnknownProviderError):
            make_send_fn("openrouter")
        with pytest.raises(ValueError):
            litellm_model_name("openrouter", "x")


class TestSendFn:
    async def test_mock_mode_makes_no_call(self, monkeypatch, fake_litellm):
        monkeypatch.setenv(MOCK_ENV_VAR, "1")
        send = make_send_fn("deepseek")
        response = await send([{"role": "user", "content": "hello"}], 0.7, "deepseek-chat")
        assert completion_text(response) == "(mock reply to: hello)"
        assert fake_litellm == []

    async def test_routes_through_litellm(self, fake_litellm):
        cfg = ProviderConfig(deepseek_api_base="http://localhost:9000", timeout=5)
        send = make_send_fn("deepseek", cfg)
        messages = [{"role": "user", "content": "hi"}]
        response = await send(messages, 0.3, "deepseek-chat")

        [call] = fake_litellm
        assert call["model"] == "deepseek/deepseek-chat"
        assert call["messages"] == messages
        assert call["temperature"] == 0.3
        assert call["timeout"] == 5
        assert call["api_base"] == "http://localhost:9000"
        assert response == {
            "choices": [
                {"message": {"role": "assistant", "content": "[1]"}, "finish_reason": "stop"}
            ],
            "usage": {"prompt_tokens": 40, "completion_tokens": 2, "total_tokens": 42},
        }

    async def test_default_model_when_missing(self, fake_litellm):
        send = make_send_fn("huggingface")
        await send([{"role": "user", "content": "hi"}], 0.3, "")
        assert fake_litellm[0]["model"] == "huggingface/Qwen/Qwen2.5-7B-Instruct"
        assert "api_base" not in fake_litellm[0]

    async def test_errors_propagate(self, monkeypatch):
        async def acompletion(**kwargs):
            raise ConnectionError("unreachable")

        module = types.ModuleType("litellm")
        module.acompletion = acompletion  # type: ignore[attr-defined]
        monkeypatch.setitem(sys.modules, "litellm", module)
        monkeypatch.delenv(MOCK_ENV_VAR, raising=False)

        send = make_send_fn("deepseek")
        with pytest.raises(ConnectionError):
            await send([{"role": "user", "content": "hi"}], 0.3, "deepseek-chat")


class TestCompletionText:
    @pytest.mark.parametrize(
        "response",
        [None, {}, {"choices": []}, {"choices": [{}]}, {"choices": [{"message": {}}]}],
    )
    def test_missing_shape_is_empty(self, response):
        assert completion_text(response) == ""

    def test_content(self):
        assert completion_text({"choices": [{"message": {"content": "hi"}}]}) == "hi"


class TestTokenUsage:
    def test_provider_usage_is_used(self):
        response = {"usage": {"prompt_tokens": 1_000, "completion_tokens": 280, "total_tokens": 1_280}}
        report = extract_token_usage(response, [], "ignored", "deepseek-chat")
        assert report.estimated is False
        assert report.total_tokens == 1_280
        assert report.max_context_tokens == 64_000
        assert report.context_usage_percent == 2.0

    def test_estimated_without_usage(self, estimator):
        messages = [{"role": "user", "content": "hello there"}]
        report = extract_token_usage({}, messages, "general kenobi", "deepseek-chat", estimator)
        assert report.estimated is True
        assert report.prompt_tokens == estimator.estimate("user: hello there")
        assert report.completion_tokens == estimator.estimate("general kenobi")
        assert report.total_tokens == report.prompt_tokens + report.completion_tokens

    def test_percent_capped(self):
        response = {"usage": {"prompt_tokens": 9_000, "completion_tokens": 0, "total_tokens": 9_000}}
        report = extract_token_usage(response, [], "", "google/gemma-2-2b-it")
        assert report.context_usage_percent == 100.0
