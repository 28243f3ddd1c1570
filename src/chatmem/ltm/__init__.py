"""Long-term memory retrieval: relevance judging and the paging loop."""

from chatmem.ltm.markers import (
    find_search_request,
    is_summarization_message,
    strip_search_markers,
)
from chatmem.ltm.relevance import RelevanceFilter, parse_relevant_indices
from chatmem.ltm.retrieval import MAX_BATCHES, SUFFICIENT_RELEVANT, LTMRetriever

__all__ = [
    "LTMRetriever",
    "MAX_BATCHES",
    "RelevanceFilter",
    "SUFFICIENT_RELEVANT",
    "find_search_request",
    "is_summarization_message",
    "parse_relevant_indices",
    "strip_search_markers",
]
