"""Conversation state: result cache, routing between cache and new searches, sessions."""

from .cache import (
    block_records, cache_results, store_result, active_results, merge_results,
    merge_active_results, has_cached_results
)
from .router import ConversationRouter, heuristic_decision, guided_query
from .session import ConversationSession

__all__ = [
    "block_records",
    "cache_results",
    "store_result",
    "active_results",
    "merge_results",
    "merge_active_results",
    "has_cached_results",
    "ConversationRouter",
    "heuristic_decision",
    "guided_query",
    "ConversationSession"
]
