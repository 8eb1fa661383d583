"""Data models for askgraph."""

from .graph import RoamBlock, RoamPage, Block, Page, DNP_UID_PATTERN
from .search import (
    SearchCondition, ConditionGroup, SearchTerm, SearchItem, SearchList,
    Filter, ChildMatch, MatchResult, Period, QueryInterpretation,
    AlternativeSearchList, SemanticVariations, Preselection, RoutingDecision
)
from .conversation import (
    ResultCacheEntry, StoredResult, ConversationTurn, ConversationState,
    ContinuationToken
)
from .llm import ParsedResponse, RawResponse, LLMResponse

__all__ = [
    "RoamBlock",
    "RoamPage",
    "Block",
    "Page",
    "DNP_UID_PATTERN",
    "SearchCondition",
    "ConditionGroup",
    "SearchTerm",
    "SearchItem",
    "SearchList",
    "Filter",
    "ChildMatch",
    "MatchResult",
    "Period",
    "QueryInterpretation",
    "AlternativeSearchList",
    "SemanticVariations",
    "Preselection",
    "RoutingDecision",
    "ResultCacheEntry",
    "StoredResult",
    "ConversationTurn",
    "ConversationState",
    "ContinuationToken",
    "ParsedResponse",
    "RawResponse",
    "LLMResponse"
]
