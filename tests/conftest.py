"""Shared fixtures for chatmem tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio

from chatmem.events.bus import ChatMemEvent, EventBus
from chatmem.models.config import ChatMemConfig, StoreConfig
from chatmem.store.messages import MessageStore
from chatmem.store.pool import StorePool
from chatmem.tokens.estimator import TokenEstimator


@pytest.fixture
def config(tmp_path):
    """ChatMemConfig with a temp database path."""
    return ChatMemConfig(store=StoreConfig(db_path=str(tmp_path / "test.db")))


@pytest_asyncio.fixture
async def pool(config):
    """StorePool for the test database. Closed after each test."""
    p = StorePool()
    yield p
    await p.close_all()


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ChatMemEvent, dict[str, Any]]] = []

    def _collect(event: ChatMemEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest_asyncio.fixture
async def store(config, pool, event_bus):
    """Initialized MessageStore backed by a temp SQLite database (pool-managed)."""
    s = MessageStore(config.store, pool=pool, event_bus=event_bus)
    await s.ensure_ready()
    yield s
    await s.close()  # no-op for pool-managed conn; pool fixture closes the connection


@pytest_asyncio.fixture
async def no_fts_store(tmp_path):
    """MessageStore with the FTS5 index disabled and a private connection."""
    s = MessageStore(StoreConfig(db_path=str(tmp_path / "plain.db"), enable_fts=False))
    await s.ensure_ready()
    yield s
    await s.close()


@pytest.fixture
def estimator():
    """TokenEstimator using heuristic only (no tiktoken required in tests)."""
    e = TokenEstimator()
    e._force_heuristic = True
    return e


def judge_reply(text: str) -> dict[str, Any]:
    """A provider response dict carrying *text* as the assistant message."""
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


class FakeJudge:
    """
    Scripted ``SendFn``.

    Each call pops the next entry of *replies*: a string is returned as the
    completion text, an exception instance is raised, and a callable receives
    the request messages and returns the text. When the script runs out the
    last entry is repeated. Every request is recorded in ``calls``.
    """

    def __init__(self, *replies: str | Exception | Callable[[list[dict[str, str]]], str]) -> None:
        self._replies = list(replies) or ["[]"]
        self.calls: list[tuple[list[dict[str, str]], float, str]] = []

    async def __call__(
        self,
        messages: list[dict[str, str]],
        temperature: float,
        model_id: str,
    ) -> dict[str, Any]:
        self.calls.append((messages, temperature, model_id))
        reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(messages)
        return judge_reply(reply)


@pytest.fixture
def fake_judge():
    """Factory for FakeJudge instances."""
    return FakeJudge


async def seed(
    store: MessageStore,
    *entries: tuple[str, str, int | None],
    timestamp: str | None = None,
) -> list[int]:
    """Save ``(role, content, token_count)`` entries in order and return their ids."""
    ids = []
    for role, content, tokens in entries:
        result = await store.save_message(role, content, token_count=tokens, timestamp=timestamp)
        assert result.success, result.error
        ids.append(result.id)
    return ids
