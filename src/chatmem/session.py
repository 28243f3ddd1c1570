"""MemorySession, the main entry point for chatmem."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any

import structlog

from chatmem.events.bus import ChatMemEvent, EventBus
from chatmem.ltm.markers import (
    find_search_request,
    is_summarization_message,
    last_user_content,
    looks_like_message_ids,
    strip_search_markers,
)
from chatmem.ltm.relevance import RelevanceFilter
from chatmem.ltm.retrieval import LTMRetriever
from chatmem.models.config import ChatMemConfig
from chatmem.models.message import (
    Message,
    RetrievalResult,
    SaveResult,
    SearchResolution,
)
from chatmem.providers.llm import SendFn, completion_text
from chatmem.providers.usage import extract_token_usage
from chatmem.store.messages import MessageStore
from chatmem.store.pool import StorePool
from chatmem.tokens.estimator import TokenEstimator


class MemorySession:
    """
    Long-term memory for one chat proxy.

    Wraps a ``MessageStore``, a ``TokenEstimator`` and an ``LTMRetriever``
    sharing one ``EventBus``. Every stored message carries its token count, so
    history can later be paged back in chunks sized to the active model.

    Example::

        async with MemorySession.open() as memory:
            await memory.remember("user", "I live in Lisbon.", "deepseek-chat")
            result = await memory.recall(
                "Where do I live?", "deepseek-chat", "deepseek", make_send_fn("deepseek")
            )

    A proxy that lets the model ask for history with ``**ltm_search**(query)``
    hands each reply to :meth:`resolve_search`, which retrieves, re-asks the
    model with the extended context and persists the final answer.
    """

    def __init__(
        self,
        config: ChatMemConfig,
        store: MessageStore,
        retriever: LTMRetriever,
        token_estimator: TokenEstimator,
        event_bus: EventBus,
    ) -> None:
        self._config = config
        self._store = store
        self._retriever = retriever
        self._estimator = token_estimator
        self._event_bus = event_bus
        self._logger = structlog.get_logger("chatmem.session")

    @classmethod
    async def create(
        cls,
        config: ChatMemConfig | None = None,
        pool: StorePool | None = None,
    ) -> MemorySession:
        """
        Create a session and open its store.

        Args:
            config: chatmem configuration. Defaults to ``ChatMemConfig()``.
            pool: Optional shared connection pool. The caller owns it and is
                responsible for ``pool.close_all()`` at shutdown.

        Raises:
            StoreNotReadyError: If the database cannot be initialized.
        """
        cfg = config or ChatMemConfig()
        event_bus = EventBus()
        store = MessageStore(cfg.store, pool=pool, event_bus=event_bus)
        await store.ensure_ready()

        relevance_filter = RelevanceFilter(cfg.retrieval, event_bus=event_bus)
        retriever = LTMRetriever(store, relevance_filter, event_bus=event_bus)
        session = cls(
            config=cfg,
            store=store,
            retriever=retriever,
            token_estimator=TokenEstimator(),
            event_bus=event_bus,
        )
        session._logger.info(
            "memory_session_created",
            db_path=cfg.store.db_path,
            fts=store.fts_available,
        )
        return session

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        config: ChatMemConfig | None = None,
        pool: StorePool | None = None,
    ) -> AsyncGenerator[MemorySession, None]:
        """
        Create a session and close it when the ``async with`` block exits.

        Parameters are identical to :meth:`create`.
        """
        session = await cls.create(config=config, pool=pool)
        try:
            yield session
        finally:
            await session.close()

    # ── Writing ────────────────────────────────────────────────────────────────

    async def remember(
        self,
        role: str,
        content: str,
        model_id: str | None,
        session_id: str | None = None,
        is_summarization: bool = False,
    ) -> SaveResult:
        """
        Persist one message with its token estimate for *model_id*.

        Summarization turns are skipped (``success=False, skipped=True``).
        """
        token_count = self._estimator.estimate(content, model_id)
        return await self._store.save_message(
            role,
            content,
            session_id=session_id,
            is_summarization=is_summarization,
            token_count=token_count,
        )

    # ── Retrieval ──────────────────────────────────────────────────────────────

    async def recall(
        self,
        user_query: str,
        model_id: str,
        provider: str,
        send_fn: SendFn,
        *,
        offset_tokens: int = 0,
        keyword_query: str | None = None,
    ) -> RetrievalResult:
        """Run the page-and-classify loop for *user_query*. See ``LTMRetriever.retrieve``."""
        return await self._retriever.retrieve(
            user_query,
            model_id,
            provider,
            send_fn,
            offset_tokens=offset_tokens,
            keyword_query=keyword_query,
        )

    @staticmethod
    def extend_context(
        messages: Sequence[Mapping[str, Any]],
        ltm_messages: Sequence[Message],
        system_prompt: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        Build a request of system prompt, then LTM history, then the conversation.

        A leading ``system`` entry already in *messages* is used when
        *system_prompt* is not given and is not repeated after the history.
        """
        conversation = [dict(m) for m in messages]
        system: dict[str, Any] | None = None
        if conversation and conversation[0].get("role") == "system":
            system = conversation.pop(0)
        if system_prompt is not None:
            system = {"role": "system", "content": system_prompt}

        extended: list[dict[str, Any]] = []
        if system is not None:
            extended.append(system)
        extended.extend(m.as_chat() for m in ltm_messages)
        extended.extend(conversation)
        return extended

    async def resolve_search(
        self,
        ai_response: str,
        messages: Sequence[Mapping[str, Any]],
        model_id: str,
        provider: str,
        send_fn: SendFn,
        *,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        raw_response: Mapping[str, Any] | None = None,
    ) -> SearchResolution:
        """
        Answer a model's ``**ltm_search**(query)`` request.

        When *ai_response* carries no marker, nothing happens and
        ``triggered`` is False. Otherwise:

        1. The history is searched for the conversation's last user message
           (the marker query is used when there is none).
        2. If anything relevant was found, the model is asked again with
           ``extend_context(messages, relevant, system_prompt)``.
        3. Markers are stripped from the final reply, which is saved as an
           ``assistant`` message unless the turn is a summarization.

        Args:
            ai_response: Text of the model reply that may contain a marker.
            messages: The conversation that produced *ai_response*.
            model_id: Active chat model.
            provider: Provider name, for logging.
            send_fn: Chat-completion call for both the judge and the retry.
            system_prompt: System prompt for the retry request.
            temperature: Sampling temperature for the retry request.
            raw_response: The provider response behind *ai_response*, used
                for usage reporting when no retry happens.

        Returns:
            ``SearchResolution`` with the final text, the retrieval result and
            token usage of the last request.
        """
        query = find_search_request(ai_response)
        if query is None:
            return SearchResolution(
                triggered=False,
                response_text=ai_response,
                messages=[dict(m) for m in messages],
                raw_response=dict(raw_response) if raw_response is not None else None,
            )

        last_user = last_user_content(messages)
        if looks_like_message_ids(query) and last_user:
            self._logger.info("ltm_search_query_replaced", marker_query=query)
            query = last_user
        user_query = last_user or query
        log = self._logger.bind(model=model_id, provider=provider, query=query)
        log.info("ltm_search_requested")

        retrieval = await self.recall(user_query, model_id, provider, send_fn)

        request = [dict(m) for m in messages]
        response: Mapping[str, Any] = raw_response or {}
        text = ai_response
        if retrieval.relevant_messages:
            request = self.extend_context(messages, retrieval.relevant_messages, system_prompt)
            log.info(
                "ltm_context_extended",
                ltm_messages=len(retrieval.relevant_messages),
                total_messages=len(request),
            )
            response = await send_fn(request, temperature, model_id)
            text = completion_text(response) or ai_response
        else:
            log.info("ltm_search_empty")

        text = strip_search_markers(text)
        usage = extract_token_usage(response, request, text, model_id, self._estimator)

        saved_id: int | None = None
        user_message = _last_user_message(messages)
        if text and not is_summarization_message(user_message, text):
            saved = await self.remember("assistant", text, model_id)
            if saved.success:
                saved_id = saved.id
        elif text:
            log.info("summarization_reply_skipped")
            self._event_bus.publish(
                ChatMemEvent.MESSAGE_SKIPPED,
                {"role": "assistant", "reason": "summarization"},
            )

        return SearchResolution(
            triggered=True,
            query=query,
            response_text=text,
            retrieval=retrieval,
            messages=request,
            raw_response=dict(response),
            usage=usage,
            saved_id=saved_id,
        )

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Release the store connection."""
        await self._store.close()
        self._logger.info("memory_session_closed")

    async def __aenter__(self) -> MemorySession:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def config(self) -> ChatMemConfig:
        return self._config

    @property
    def store(self) -> MessageStore:
        """The underlying message store, for direct queries."""
        return self._store

    @property
    def event_bus(self) -> EventBus:
        """The event bus for this session. Subscribe to monitor events."""
        return self._event_bus

    def subscribe(self, event: ChatMemEvent, handler: Any) -> None:
        """Convenience wrapper for ``session.event_bus.subscribe()``."""
        self._event_bus.subscribe(event, handler)


def _last_user_message(messages: Sequence[Mapping[str, Any]]) -> Mapping[str, Any] | None:
    for msg in reversed(messages):
        if msg.get("role") == "user":
            return msg
    return None
