"""Text markers in chat traffic: LTM search requests and summarization turns."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

LTM_SEARCH_RE = re.compile(r"\*\*ltm_search\*\*\(([^)]+)\)")
SEARCH_RE = re.compile(r"\*\*search\*\*\(([^)]+)\)")

_IDS_ONLY_RE = re.compile(r"^\d+[\s,]*\d*$")

_SUMMARY_REQUEST_KEYWORDS = (
    "суммар",
    "кратк",
    "краткое резюме",
    "summarize",
    "summary",
)
_SUMMARY_RESPONSE_KEYWORDS = (
    "краткая суммаризация",
    "суммаризация контекста",
    "краткое резюме",
    "summary of",
    "context summary",
)


def find_search_request(text: str) -> str | None:
    """
    Return the query of the first ``**ltm_search**(...)`` marker in *text*.

    ``**search**(...)`` is accepted when no ``ltm_search`` marker is present.
    Quotes are stripped from the query. Returns None when there is no marker.
    """
    match = LTM_SEARCH_RE.search(text) or SEARCH_RE.search(text)
    if match is None:
        return None
    return re.sub(r"['\"]", "", match.group(1).strip())


def strip_search_markers(text: str) -> str:
    """Remove the first marker of each kind and surrounding whitespace."""
    return SEARCH_RE.sub("", LTM_SEARCH_RE.sub("", text, count=1), count=1).strip()


def looks_like_message_ids(query: str) -> bool:
    """True when a marker query is just message ids (``"12"``, ``"3, 4"``)."""
    return bool(_IDS_ONLY_RE.match(query))


def last_user_content(messages: Sequence[Mapping[str, Any]]) -> str | None:
    """Content of the last ``user`` message, or None."""
    for msg in reversed(messages):
        if msg.get("role") == "user":
            return msg.get("content")
    return None


def is_summarization_message(
    user_message: Mapping[str, Any] | None,
    assistant_response: str | None = None,
) -> bool:
    """
    Decide whether a turn is a context summarization.

    A turn counts when the user message carries a truthy ``isSummarization``
    / ``is_summarization`` flag, when the user text asks for a summary, or
    when the assistant reply reads like one. Keyword matching is
    case-insensitive and covers Russian and English phrasing.
    """
    if user_message:
        flag = user_message.get("is_summarization", user_message.get("isSummarization"))
        if flag is True or flag == 1:
            return True
        content = str(user_message.get("content") or "").lower()
        if any(keyword in content for keyword in _SUMMARY_REQUEST_KEYWORDS):
            return True

    if assistant_response:
        reply = assistant_response.lower()
        if any(keyword in reply for keyword in _SUMMARY_RESPONSE_KEYWORDS):
            return True

    return False
