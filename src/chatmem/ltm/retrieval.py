"""Iterative page-and-classify retrieval over long-term memory.

The loop is a small state machine run once per user query::

    FETCHING ──empty page──────────────────────────────► DONE
        │
        └─page─► CLASSIFYING ──≥ SUFFICIENT_RELEVANT───► DONE
                     │
                     ├─ offset += page, batch += 1
                     ├─ batch ≥ MAX_BATCHES ───────────► DONE
                     ├─ page.has_more is False ────────► DONE
                     └─► FETCHING

Both bounds are the only limit on judge spend per query and are fixed.
"""

from __future__ import annotations

from enum import StrEnum

import structlog

from chatmem.events.bus import ChatMemEvent, EventBus
from chatmem.ltm.relevance import RelevanceFilter
from chatmem.models.message import LTMPage, Message, RetrievalResult
from chatmem.providers.llm import SendFn
from chatmem.store.messages import MessageStore
from chatmem.tokens.limits import ltm_page_budget

MAX_BATCHES = 10
SUFFICIENT_RELEVANT = 10


class RetrievalState(StrEnum):
    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    DONE = "done"


class LTMRetriever:
    """
    Gathers history relevant to a query, one token-budgeted page at a time.

    Pages are fetched and judged strictly in sequence: each fetch starts at
    the offset the previous page ended on. A failing judge call degrades that
    batch to "everything relevant" and the loop carries on.

    Example::

        retriever = LTMRetriever(store)
        result = await retriever.retrieve(
            "what's my cat called?", "deepseek-chat", "deepseek", send_fn
        )
        if result.found:
            context = [m.as_chat() for m in result.relevant_messages]
    """

    def __init__(
        self,
        store: MessageStore,
        relevance_filter: RelevanceFilter | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._filter = relevance_filter or RelevanceFilter(event_bus=event_bus)
        self._event_bus = event_bus
        self._logger = structlog.get_logger("chatmem.ltm.retrieval")

    async def retrieve(
        self,
        user_query: str,
        model_id: str,
        provider: str,
        send_fn: SendFn,
        *,
        offset_tokens: int = 0,
        keyword_query: str | None = None,
    ) -> RetrievalResult:
        """
        Run the retrieval loop for *user_query*.

        Args:
            user_query: Question the judge scores candidates against.
            model_id: Active chat model; sizes the page budget and is the judge model.
            provider: Provider name, for logging.
            send_fn: Chat-completion call used as the judge.
            offset_tokens: Cumulative token position to start from.
            keyword_query: When set, only messages containing every word of it
                are paged (case-sensitive).

        Returns:
            ``RetrievalResult`` with the accumulated relevant messages, the
            final offset, the last page's ``has_more`` and whether any page
            was found.
        """
        budget = ltm_page_budget(model_id)
        log = self._logger.bind(model=model_id, provider=provider, budget=budget)

        relevant: list[Message] = []
        offset = offset_tokens
        batches = 0
        found = False
        has_more = False
        page: LTMPage | None = None
        state = RetrievalState.FETCHING

        while state is not RetrievalState.DONE:
            if state is RetrievalState.FETCHING:
                page = await self._fetch(budget, offset, keyword_query)
                if not page.success or not page.messages:
                    if not page.success:
                        log.warning("ltm_page_failed", offset_tokens=offset, error=page.error)
                    has_more = False
                    state = RetrievalState.DONE
                    continue
                found = True
                has_more = page.has_more
                log.debug(
                    "ltm_page_fetched",
                    batch=batches + 1,
                    offset_tokens=offset,
                    count=len(page.messages),
                )
                state = RetrievalState.CLASSIFYING

            elif state is RetrievalState.CLASSIFYING:
                assert page is not None
                batch_relevant = await self._filter.classify(
                    page.messages, user_query, send_fn, model_id
                )
                relevant.extend(batch_relevant)
                log.info(
                    "ltm_batch_classified",
                    batch=batches + 1,
                    candidates=len(page.messages),
                    relevant=len(batch_relevant),
                    total_relevant=len(relevant),
                )
                if self._event_bus is not None:
                    self._event_bus.publish(
                        ChatMemEvent.LTM_BATCH_CLASSIFIED,
                        {
                            "batch": batches + 1,
                            "offset_tokens": offset,
                            "candidates": len(page.messages),
                            "relevant": len(batch_relevant),
                        },
                    )

                if len(relevant) >= SUFFICIENT_RELEVANT:
                    state = RetrievalState.DONE
                    continue

                offset = page.total_tokens
                batches += 1
                if batches >= MAX_BATCHES or not page.has_more:
                    state = RetrievalState.DONE
                else:
                    state = RetrievalState.FETCHING

        result = RetrievalResult(
            relevant_messages=relevant,
            total_tokens=offset,
            has_more=has_more,
            found=found,
            batches=batches,
        )
        log.info(
            "ltm_retrieval_completed",
            found=found,
            relevant=len(relevant),
            batches=batches,
            total_tokens=offset,
            has_more=has_more,
        )
        if self._event_bus is not None:
            self._event_bus.publish(
                ChatMemEvent.LTM_RETRIEVAL_COMPLETED,
                {
                    "found": found,
                    "relevant": len(relevant),
                    "batches": batches,
                    "total_tokens": offset,
                    "has_more": has_more,
                },
            )
        return result

    async def _fetch(
        self,
        budget: int,
        offset: int,
        keyword_query: str | None,
    ) -> LTMPage:
        if keyword_query is not None:
            return await self._store.search_lt_messages_by_tokens(keyword_query, budget, offset)
        return await self._store.get_lt_messages_by_tokens(budget, offset)
