"""LLM-judged relevance filtering of LTM candidate messages."""

from __future__ import annotations

import re
from collections.abc import Sequence

import structlog
from jinja2 import Template

from chatmem.events.bus import ChatMemEvent, EventBus
from chatmem.models.config import RetrievalConfig
from chatmem.models.message import Message
from chatmem.providers.llm import SendFn, completion_text

JUDGE_SYSTEM_PROMPT = (
    "You help find relevant messages in a conversation history. "
    "Reply only with a list of message numbers in the form [0, 1, 2], "
    "or [] if nothing is relevant."
)

_JUDGE_PROMPT = Template(
    """You are helping to find messages from the conversation history that are relevant to the user's question.

USER QUESTION: "{{ user_query }}"

MESSAGES FROM THE HISTORY (numbered 0 to {{ last_index }}):

{{ listing }}

TASK: Examine each message and decide which ones contain information relevant to answering "{{ user_query }}".

A message is relevant when it:
- directly answers the question
- holds context needed to understand the question
- holds related information that helps give a complete answer

ANSWER FORMAT: return ONLY the numbers of the relevant messages, like [0, 3, 5, 7]
If no message is relevant, return []

Do not add any explanation, only the list of numbers in square brackets."""
)

_ENTRY_SEPARATOR = "\n\n---\n\n"

_BRACKET_LIST_RE = re.compile(r"\[([\d\s,]*)\]", re.ASCII)
_LEADING_INT_RE = re.compile(r"\d+", re.ASCII)
_BARE_INT_RE = re.compile(r"\b(\d+)\b", re.ASCII)


def parse_relevant_indices(text: str, count: int) -> list[int]:
    """
    Parse a judge reply into candidate indices in ``[0, count)``.

    1. The first bracket group made only of digits, spaces and commas is split
       on commas; each piece contributes its leading integer if in range.
    2. If that yields nothing, every bare integer in the whole reply is
       considered instead, keeping in-range values in first-seen order
       without duplicates.

    A reply with no usable integer gives ``[]``.
    """
    indices: list[int] = []

    match = _BRACKET_LIST_RE.search(text)
    if match and match.group(1).strip():
        for piece in match.group(1).split(","):
            number = _LEADING_INT_RE.match(piece.strip())
            if number is None:
                continue
            idx = int(number.group())
            if 0 <= idx < count:
                indices.append(idx)

    if not indices:
        seen: set[int] = set()
        for number in _BARE_INT_RE.finditer(text):
            idx = int(number.group(1))
            if 0 <= idx < count and idx not in seen:
                seen.add(idx)
                indices.append(idx)

    return indices


class RelevanceFilter:
    """
    Asks the chat model which messages of a page matter for a query.

    One judge call per ``classify()``. The call never mutates the store, and
    a failing call degrades to fail-open: all candidates are returned.
    """

    def __init__(
        self,
        config: RetrievalConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config or RetrievalConfig()
        self._event_bus = event_bus
        self._logger = structlog.get_logger("chatmem.ltm.relevance")

    def render_listing(self, candidates: Sequence[Message]) -> str:
        """Number each candidate as ``[i] role: content``, truncating long content."""
        limit = self._config.snippet_chars
        entries = []
        for idx, msg in enumerate(candidates):
            content = msg.content
            if len(content) > limit:
                content = content[:limit] + "..."
            entries.append(f"[{idx}] {msg.role}: {content}")
        return _ENTRY_SEPARATOR.join(entries)

    def build_request(
        self,
        candidates: Sequence[Message],
        user_query: str,
    ) -> list[dict[str, str]]:
        """Return the system + user messages of the judge micro-request."""
        prompt = _JUDGE_PROMPT.render(
            user_query=user_query,
            last_index=len(candidates) - 1,
            listing=self.render_listing(candidates),
        )
        return [
            {"role": "system", "content": JUDGE_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    async def classify(
        self,
        candidates: Sequence[Message],
        user_query: str,
        send_fn: SendFn,
        model_id: str,
    ) -> list[Message]:
        """
        Return the candidates the judge marks relevant, in candidate order.

        Args:
            candidates: One LTM page, in chronological order.
            user_query: The question the history is searched for.
            send_fn: Chat-completion call used as the judge.
            model_id: Model passed to ``send_fn``.

        Returns:
            A subset of *candidates* (each at most once, original order). All
            candidates when the judge call raises.
        """
        if not candidates:
            return []

        request = self.build_request(candidates, user_query)
        try:
            response = await send_fn(request, self._config.judge_temperature, model_id)
            reply = completion_text(response)
        except Exception as exc:
            self._logger.warning(
                "relevance_judge_failed",
                candidates=len(candidates),
                error=str(exc),
            )
            if self._event_bus is not None:
                self._event_bus.publish(
                    ChatMemEvent.LTM_RELEVANCE_FALLBACK,
                    {"candidates": len(candidates), "error": str(exc)},
                )
            return list(candidates)

        chosen = set(parse_relevant_indices(reply, len(candidates)))
        self._logger.debug(
            "relevance_judged",
            reply=reply[:200],
            candidates=len(candidates),
            relevant=sorted(chosen),
        )
        return [msg for idx, msg in enumerate(candidates) if idx in chosen]
