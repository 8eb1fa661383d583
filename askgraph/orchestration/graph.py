"""
Search graph for askgraph.

The state machine of a search request, built with langgraph: interpretation
of the request, filter compilation, graph queries, ordering, optional
preselection and post-processing, and output. SearchAgent runs it and turns
the final state into a SearchOutcome, with a continuation token when the
search can be paged through or broadened.
"""

import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, Optional

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, StateGraph

from ..agents import AgentRunner
from ..cancellation import CANCELLED_MESSAGE, CancelToken
from ..config import ConfigManager, config as default_config
from ..database import GraphStore
from ..errors import (
    CancellationError, EmptyResultCondition, LLMError, QueryExecutionError
)
from ..models import ContinuationToken
from ..query import GraphQueryEngine
from . import nodes, routers
from .context import RequestContext
from .continuation import (
    DEEPER, MORE, RETRY, check_token, deeper_depth, expansion_options, make_token
)
from .state import (
    CHECKER, LIMIT_AND_ORDER, LOAD_MODEL, NL_QUERY_INTERPRETER,
    NL_QUESTION_INTERPRETER, OUTPUT, POST_PROCESSING, PRESELECTION_FILTER,
    QUERY_RUNNER, SEARCHLIST_CONVERTER, SearchState, restore_state
)


def build_search_graph(ctx: RequestContext):
    """Compile the search graph with every node bound to one request."""
    graph = StateGraph(SearchState)
    graph.add_node(LOAD_MODEL, partial(nodes.load_model, ctx=ctx))
    graph.add_node(NL_QUERY_INTERPRETER, partial(nodes.nl_query_interpreter, ctx=ctx))
    graph.add_node(NL_QUESTION_INTERPRETER, partial(nodes.nl_question_interpreter, ctx=ctx))
    graph.add_node(SEARCHLIST_CONVERTER, partial(nodes.searchlist_converter, ctx=ctx))
    graph.add_node(CHECKER, partial(nodes.checker, ctx=ctx))
    graph.add_node(QUERY_RUNNER, partial(nodes.query_runner, ctx=ctx))
    graph.add_node(LIMIT_AND_ORDER, partial(nodes.limit_and_order, ctx=ctx))
    graph.add_node(PRESELECTION_FILTER, partial(nodes.preselection_filter, ctx=ctx))
    graph.add_node(POST_PROCESSING, partial(nodes.post_processing, ctx=ctx))
    graph.add_node(OUTPUT, partial(nodes.output, ctx=ctx))

    graph.set_entry_point(LOAD_MODEL)
    graph.add_conditional_edges(
        LOAD_MODEL,
        partial(routers.turn_router, ctx=ctx),
        [NL_QUERY_INTERPRETER, QUERY_RUNNER, LIMIT_AND_ORDER, PRESELECTION_FILTER,
         POST_PROCESSING, OUTPUT]
    )
    graph.add_edge(NL_QUERY_INTERPRETER, CHECKER)
    graph.add_edge(NL_QUESTION_INTERPRETER, CHECKER)
    graph.add_edge(SEARCHLIST_CONVERTER, CHECKER)
    graph.add_conditional_edges(
        CHECKER,
        partial(routers.after_check_router, ctx=ctx),
        [NL_QUERY_INTERPRETER, NL_QUESTION_INTERPRETER, SEARCHLIST_CONVERTER,
         QUERY_RUNNER, OUTPUT, END]
    )
    graph.add_conditional_edges(QUERY_RUNNER, routers.alternative_query, [QUERY_RUNNER, LIMIT_AND_ORDER])
    process_or_display = partial(routers.process_or_display, ctx=ctx)
    display_targets = [PRESELECTION_FILTER, POST_PROCESSING, OUTPUT, END]
    graph.add_conditional_edges(LIMIT_AND_ORDER, process_or_display, display_targets)
    graph.add_conditional_edges(PRESELECTION_FILTER, process_or_display, display_targets)
    graph.add_conditional_edges(POST_PROCESSING, routers.after_post_processing, [POST_PROCESSING, OUTPUT, END])
    graph.add_edge(OUTPUT, END)

    return graph.compile()


@dataclass
class SearchOutcome:
    """
    Result of a search request, as handed to the display layer.

    status is one of "completed", "empty", "error" or "cancelled".
    """
    status: str
    stringified_result_to_display: str = ""
    target_uid: Optional[str] = None
    shift_display: Optional[int] = None
    nb_of_results_displayed: int = 0
    display_header: Optional[str] = None
    error: Optional[str] = None
    empty: Optional[EmptyResultCondition] = None
    continuation: Optional[ContinuationToken] = None
    state: Dict[str, Any] = field(default_factory=dict)
    duration: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.status == "empty"


class SearchAgent:
    """
    Runs search requests over a graph store.
    """

    def __init__(self, store: GraphStore, runner: AgentRunner,
                 config_manager: Optional[ConfigManager] = None,
                 engine: Optional[GraphQueryEngine] = None,
                 rng=None):
        """
        Initialize the search agent.

        Args:
            store: Graph store to search
            runner: LLM collaborators
            config_manager: Configuration (defaults to the global one)
            engine: Graph query engine (defaults to one built from config)
            rng: Random generator used for random picks
        """
        self.store = store
        self.runner = runner
        self.config = config_manager or default_config
        self.engine = engine or GraphQueryEngine.from_config(store, self.config)
        self.rng = rng
        self.recursion_limit = self.config.get("search.recursion_limit", 50)

    def _context(self, cancel_token: Optional[CancelToken], search_only: bool) -> RequestContext:
        ctx = RequestContext(
            store=self.store,
            engine=self.engine,
            runner=self.runner,
            config=self.config,
            cancel_token=cancel_token or CancelToken(),
            search_only=search_only
        )
        if self.rng is not None:
            ctx.rng = self.rng
        return ctx

    def run(
        self,
        user_query: str,
        search_only: bool = False,
        root_uid: Optional[str] = None,
        retry_instruction: Optional[str] = None,
        previous_state: Optional[SearchState] = None,
        options: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancelToken] = None,
        conversation_id: Optional[str] = None
    ) -> SearchOutcome:
        """
        Run one search request.

        Args:
            user_query: Request in natural language or in the symbolic query language
            search_only: Only list matching blocks, never post-process them
            root_uid: Block the request was written in, excluded from results
            retry_instruction: User hint for a better interpretation
            previous_state: State of a previous turn, to reuse its blocks
            options: State fields forced for this request
            cancel_token: Cancellation flag of the request
            conversation_id: Conversation the continuation tokens belong to
        """
        state: SearchState = {
            "user_query": user_query,
            "root_uid": root_uid,
            "retry_instruction": retry_instruction,
            "is_post_processing_needed": False if search_only else None,
            "matching_blocks": [],
            "error_in_node": None
        }
        state.update(previous_state or {})
        state["user_query"] = user_query
        state.update(options or {})
        return self._invoke(state, self._context(cancel_token, search_only), conversation_id)

    def pick_again(self, previous_state: SearchState,
                   cancel_token: Optional[CancelToken] = None) -> SearchOutcome:
        """New random pick among the blocks of a previous random search."""
        return self.run(previous_state.get("user_query", ""), previous_state=previous_state,
                        cancel_token=cancel_token)

    def resume(
        self,
        token: ContinuationToken,
        decision: str,
        retry_instruction: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None
    ) -> SearchOutcome:
        """
        Resume a paused search with the user's decision.

        Args:
            token: Token returned by a previous run
            decision: "more" for a pagination token; "deeper" or "retry" for an expansion token
            retry_instruction: Hint for a "retry" decision

        Raises:
            UserChoiceTimeoutError: If the token expired
            ValueError: If the decision is not one of the token options
        """
        check_token(token, self.config.user_choice_timeout)
        if decision not in token.options:
            raise ValueError(f"Unknown decision '{decision}', expected one of {token.options}")

        state = restore_state(token.state)
        search_only = state.get("is_post_processing_needed") is False
        if decision == MORE:
            state["stringified_result_to_display"] = None
        elif decision == DEEPER:
            state.update({
                "depth_limitation": deeper_depth(state.get("depth_limitation")),
                "remaining_query_filters": list(state.get("filters") or []),
                "matching_blocks": [],
                "filtered_blocks": None,
                "stringified_result_to_display": None,
                "shift_display": None
            })
            logging.info(f"Broadening search to depth {state['depth_limitation']}")
        elif decision == RETRY:
            state = {
                "user_query": state["user_query"],
                "root_uid": state.get("root_uid"),
                "retry_instruction": retry_instruction or state["user_query"],
                "is_post_processing_needed": False if search_only else None,
                "matching_blocks": [],
                "error_in_node": None
            }
        return self._invoke(state, self._context(cancel_token, search_only), token.conversation_id)

    def _invoke(self, state: SearchState, ctx: RequestContext,
                conversation_id: Optional[str]) -> SearchOutcome:
        begin = time.perf_counter()
        graph = build_search_graph(ctx)
        try:
            final = graph.invoke(state, config={"recursion_limit": self.recursion_limit})
        except CancellationError:
            return SearchOutcome(status="cancelled", stringified_result_to_display=CANCELLED_MESSAGE,
                                 state=state, duration=time.perf_counter() - begin)
        except (QueryExecutionError, LLMError, GraphRecursionError) as e:
            logging.error(f"Search request {ctx.request_id} failed: {e}")
            return SearchOutcome(status="error", error=str(e),
                                 stringified_result_to_display=f"Search failed: {e}",
                                 state=state, duration=time.perf_counter() - begin)

        outcome = self._outcome(final, conversation_id)
        outcome.duration = time.perf_counter() - begin
        logging.info(f"Search request {ctx.request_id}: {outcome.status} in {outcome.duration:.2f}s")
        return outcome

    def _outcome(self, final: SearchState, conversation_id: Optional[str]) -> SearchOutcome:
        if final.get("fatal_error"):
            return SearchOutcome(
                status="error",
                error=final["fatal_error"],
                stringified_result_to_display=f"Search failed: {final['fatal_error']}",
                state=final
            )

        outcome = SearchOutcome(
            status="completed",
            stringified_result_to_display=final.get("stringified_result_to_display") or "",
            target_uid=final.get("target_uid"),
            shift_display=final.get("shift_display"),
            nb_of_results_displayed=final.get("nb_of_results_displayed", 0),
            display_header=final.get("display_header"),
            state=final
        )
        if not final.get("filtered_blocks"):
            no_query = bool(final.get("no_query"))
            outcome.status = "empty"
            outcome.empty = EmptyResultCondition(no_query=no_query)
            if not no_query:
                outcome.continuation = make_token("expansion", final, expansion_options(final),
                                                  conversation_id)
        elif final.get("shift_display") is not None:
            outcome.continuation = make_token("pagination", final, [MORE], conversation_id)
        return outcome
