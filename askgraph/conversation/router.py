"""
Conversation routing for askgraph.

Per turn, decide whether the request can be answered from cached results or
needs a new search. The request analyzer LLM decides when available; regex
heuristics decide otherwise. Private mode never looks at cached content.
"""

import logging
import re
from typing import Optional, Union

from ..agents import AgentRunner
from ..cancellation import CancelToken
from ..config import ConfigManager, config as default_config
from ..errors import CacheInsufficientCondition, InterpretationError, LLMError
from ..models import ConversationState, RoutingDecision
from .cache import has_cached_results, render_cached_results, summarize_cache


USE_CACHE = "use_cache"
NEED_NEW_SEARCH = "need_new_search"

INSUFFICIENT_CACHE_PREFIX = "INSUFFICIENT_CACHE:"
HYBRID_PREFIX = "HYBRID:"

SIMPLE_FOLLOW_UP_PATTERNS = [
    re.compile(r"^(show|give|get|display)\s+(me\s+)?(more|additional|extra|full)"),
    re.compile(r"^(more|additional|extra|full|complete)\s+(details|info|information|results)"),
    re.compile(r"^(expand|elaborate|explain)\s+(on\s+)?(this|that|these|those)"),
    re.compile(r"^(what|tell me|show me)\s+(about|more about|details about)"),
    re.compile(r"^(also|and)\s+"),
    re.compile(r"^(how about|what about)"),
    re.compile(r"^(can you|could you)\s+(show|find|get|give)"),
]

CACHE_SUITABLE_PATTERNS = [
    re.compile(r"\b(more|additional|extra|other|related|similar)\b"),
    re.compile(r"\b(also|and|plus|furthermore)\b"),
    re.compile(r"\b(expand|elaborate|details|comprehensive)\b"),
    re.compile(r"\b(what about|how about)\b"),
]

COMPLEX_ANALYSIS_PATTERNS = [
    re.compile(r"\b(most|least|top|bottom|highest|lowest|best|worst)\b"),
    re.compile(r"\b(count|number of|how many|combien)\b"),
    re.compile(r"\b(analy[sz]e|analy[sz]is|examine|compare|contrast)\b"),
    re.compile(r"\b(rank|order|sort|classify)\b"),
    re.compile(r"\b(mentioned|referenced|cited|linked).*\b(most|count)\b"),
    re.compile(r"\b(or|and not|but not)\b.*\b(or|and not|but not)\b"),
    re.compile(r"\[\[.*?\]\].*\b(or|and)\b.*\[\[.*?\]\]"),
]


def heuristic_decision(state: ConversationState, user_query: str) -> RoutingDecision:
    """
    Route with regex patterns only.

    Follow-ups reuse the cache; cache-suitable requests too unless they call
    for a complex analysis, which needs a fresh search.
    """
    query = user_query.lower().strip()
    cached = has_cached_results(state)
    if not cached or not state.conversation_history:
        return RoutingDecision(decision=NEED_NEW_SEARCH, reformulatedQuery=user_query)

    if any(pattern.search(query) for pattern in SIMPLE_FOLLOW_UP_PATTERNS):
        return RoutingDecision(decision=USE_CACHE, reformulatedQuery=user_query)

    needs_analysis = any(pattern.search(query) for pattern in COMPLEX_ANALYSIS_PATTERNS)
    if not needs_analysis and any(pattern.search(query) for pattern in CACHE_SUITABLE_PATTERNS):
        return RoutingDecision(decision=USE_CACHE, reformulatedQuery=user_query)

    return RoutingDecision(decision=NEED_NEW_SEARCH, reformulatedQuery=user_query)


def guided_query(condition: CacheInsufficientCondition, user_query: str) -> str:
    """Request for a fresh search, with the cache findings as guidance first."""
    if not condition.guidance:
        return user_query
    return f"{condition.guidance}\n\n{user_query}"


class ConversationRouter:
    """
    Decides between cached results and a new search for each turn.
    """

    def __init__(self, runner: Optional[AgentRunner] = None,
                 config_manager: Optional[ConfigManager] = None,
                 use_llm: Optional[bool] = None):
        """
        Initialize the router.

        Args:
            runner: LLM collaborators (heuristics only when None)
            config_manager: Configuration (defaults to the global one)
            use_llm: Override of 'conversation.llm_routing'
        """
        self.runner = runner
        self.config = config_manager or default_config
        self.use_llm = self.config.get("conversation.llm_routing", True) if use_llm is None else use_llm

    def analyze(self, state: ConversationState, user_query: str,
                cancel_token: Optional[CancelToken] = None) -> RoutingDecision:
        """
        Route one turn.

        The cache is only considered in conversation mode with at least one
        cached result, and never in private mode.
        """
        if not state.is_conversation_mode or not has_cached_results(state):
            return RoutingDecision(decision=NEED_NEW_SEARCH, reformulatedQuery=user_query)
        if state.private_mode:
            logging.info("Private mode: new search without looking at cached results")
            return RoutingDecision(decision=NEED_NEW_SEARCH, reformulatedQuery=user_query)

        if self.use_llm and self.runner is not None:
            history = "\n".join(
                f"{turn.role}: {turn.content}" for turn in state.conversation_history[-self.config.max_history:]
            )
            try:
                decision = self.runner.analyze_request(
                    user_query,
                    history=history or "No previous conversation",
                    cached_results=summarize_cache(state, self.config.max_cached_results),
                    cancel_token=cancel_token
                )
                logging.info(f"Request analyzer: {decision.decision}")
                return decision
            except (InterpretationError, LLMError) as e:
                logging.warning(f"Request analyzer unavailable, using heuristics: {e}")

        decision = heuristic_decision(state, user_query)
        logging.info(f"Heuristic routing: {decision.decision}")
        return decision

    def process_cache(self, state: ConversationState, user_query: str,
                      cancel_token: Optional[CancelToken] = None) -> Union[str, CacheInsufficientCondition]:
        """
        Answer from the cache, or signal that a fresh search is needed.

        Returns:
            The answer text, or a CacheInsufficientCondition carrying the
            processor's findings as guidance
        """
        if state.private_mode or self.runner is None:
            return CacheInsufficientCondition()

        reply = self.runner.process_cache(
            user_query,
            cached_results=render_cached_results(state, limit=self.config.max_cached_results),
            cancel_token=cancel_token
        ).strip()

        if reply.startswith(INSUFFICIENT_CACHE_PREFIX) or reply.startswith(HYBRID_PREFIX):
            logging.info(f"Cache insufficient: {reply[:200]}")
            findings = [] if reply.startswith(INSUFFICIENT_CACHE_PREFIX) else [reply[len(HYBRID_PREFIX):].strip()]
            return CacheInsufficientCondition(guidance=reply, partial_findings=findings)
        if not reply:
            return CacheInsufficientCondition()
        return reply
