"""
Conversation sessions for askgraph.

A session owns the conversation state for the duration of each turn: it
routes the turn, reuses cached results or runs a new search, and remembers
the results for the next turns.
"""

import logging
import threading
from typing import Optional

from ..cancellation import CancelToken
from ..config import ConfigManager, config as default_config
from ..errors import CacheInsufficientCondition, ResumptionInProgressError
from ..models import ContinuationToken, ConversationState, ConversationTurn
from ..orchestration import DEEPER, MORE, SearchAgent, SearchOutcome
from .cache import GRAPH_SEARCH, block_records, cache_results, store_result
from .router import USE_CACHE, ConversationRouter, guided_query


class ConversationSession:
    """
    Multi-turn search over one graph.
    """

    def __init__(self, agent: SearchAgent, router: Optional[ConversationRouter] = None,
                 config_manager: Optional[ConfigManager] = None,
                 state: Optional[ConversationState] = None,
                 private_mode: bool = False):
        self.agent = agent
        self.config = config_manager or default_config
        self.router = router or ConversationRouter(agent.runner, self.config)
        self.state = state or ConversationState(private_mode=private_mode)
        self.last_result_id: Optional[str] = None
        self._resume_lock = threading.Lock()

    def ask(self, user_query: str, search_only: bool = False,
            cancel_token: Optional[CancelToken] = None) -> SearchOutcome:
        """Run one conversation turn."""
        decision = self.router.analyze(self.state, user_query, cancel_token)
        self._add_turn("user", user_query)
        query = decision.reformulatedQuery or user_query
        replaces = None

        if decision.decision == USE_CACHE:
            answer = self.router.process_cache(self.state, query, cancel_token)
            if not isinstance(answer, CacheInsufficientCondition):
                self._add_turn("assistant", answer)
                return SearchOutcome(status="completed", stringified_result_to_display=answer)
            logging.info("Falling back to a new search")
            query = guided_query(answer, query)
            replaces = self.last_result_id

        outcome = self.agent.run(
            query,
            search_only=search_only,
            cancel_token=cancel_token,
            conversation_id=self.state.conversation_id
        )
        self._remember(outcome, query, replaces=replaces)
        return outcome

    def resume(self, token: ContinuationToken, decision: str,
               retry_instruction: Optional[str] = None,
               cancel_token: Optional[CancelToken] = None) -> SearchOutcome:
        """
        Resume a paused search of this conversation.

        Raises:
            ResumptionInProgressError: If another resumption is running
            UserChoiceTimeoutError: If the token expired
        """
        if token.conversation_id and token.conversation_id != self.state.conversation_id:
            raise ValueError(f"Token {token.token_id} belongs to another conversation")

        with self._resume_lock:
            if self.state.resumption_in_progress:
                raise ResumptionInProgressError(
                    f"A search of conversation {self.state.conversation_id} is already being resumed"
                )
            self.state.resumption_in_progress = True

        try:
            outcome = self.agent.resume(token, decision, retry_instruction, cancel_token)
            if decision == DEEPER:
                self.state.expansion_level += 1
            if decision != MORE:
                # the broadened or retried search stands for the paused one
                self._remember(outcome, token.state.get("user_query", ""),
                               replaces=self._result_of_request(token.state.get("request_id")))
            else:
                self._add_turn("assistant", outcome.stringified_result_to_display)
            return outcome
        finally:
            self.state.resumption_in_progress = False

    def _remember(self, outcome: SearchOutcome, query: str, replaces: Optional[str] = None):
        final_blocks = outcome.state.get("filtered_blocks") or []
        all_blocks = outcome.state.get("matching_blocks") or []
        if outcome.status == "completed" and final_blocks:
            cache_id = cache_results(self.state, block_records(all_blocks), query,
                                     can_expand=outcome.continuation is not None)
            self.last_result_id = store_result(
                self.state,
                block_records(final_blocks),
                purpose="replacement" if replaces else "final",
                replaces_result_id=replaces,
                tool_name=GRAPH_SEARCH,
                metadata={"query": query, "request_id": outcome.state.get("request_id")}
            )
            self.state.cached_full_results[cache_id].result_id = self.last_result_id
            self.state.has_limited_results = len(final_blocks) < len(all_blocks)
        self._add_turn("assistant", outcome.stringified_result_to_display)

    def _result_of_request(self, request_id: Optional[str]) -> Optional[str]:
        """Id of the result set stored for a search request, if any."""
        for result_id, result in self.state.result_store.items():
            if request_id and result.metadata.get("request_id") == request_id:
                return result_id
        return None

    def _add_turn(self, role: str, content: str):
        self.state.conversation_history.append(ConversationTurn(role=role, content=content or ""))
        overflow = len(self.state.conversation_history) - self.config.max_history
        if overflow > 0:
            del self.state.conversation_history[:overflow]
