"""
Conditional edges of the search graph.
"""

from langgraph.graph import END

from ..query import needs_preselection
from .context import RequestContext
from .state import (
    LIMIT_AND_ORDER, NL_QUERY_INTERPRETER, NL_QUESTION_INTERPRETER, OUTPUT,
    POST_PROCESSING, PRESELECTION_FILTER, QUERY_RUNNER, SEARCHLIST_CONVERTER,
    SearchState
)


_INTERPRETERS = (NL_QUERY_INTERPRETER, NL_QUESTION_INTERPRETER, SEARCHLIST_CONVERTER)


def _post_processing_step(state: SearchState, ctx: RequestContext) -> str:
    count = len(state.get("filtered_blocks") or [])
    if needs_preselection(count, state.get("nb_of_results"), ctx.preselection_cap, ctx.preselection_factor):
        return PRESELECTION_FILTER
    return POST_PROCESSING


def turn_router(state: SearchState, ctx: RequestContext) -> str:
    """Skip ahead when a previous turn already computed the blocks."""
    filtered = state.get("filtered_blocks")
    if filtered:
        if state.get("is_post_processing_needed"):
            return _post_processing_step(state, ctx)
        if state.get("is_random"):
            return LIMIT_AND_ORDER
        if state.get("shift_display"):
            return OUTPUT
    if filtered is None and state.get("remaining_query_filters"):
        return QUERY_RUNNER
    return NL_QUERY_INTERPRETER


def after_check_router(state: SearchState, ctx: RequestContext) -> str:
    if state.get("fatal_error"):
        return END
    if state.get("error_in_node") in _INTERPRETERS:
        return state["error_in_node"]

    producer = state.get("llm_response_node")
    if producer == NL_QUERY_INTERPRETER:
        if state.get("is_inference_needed") and len(state.get("search_lists") or []) < 2:
            return NL_QUESTION_INTERPRETER
        return SEARCHLIST_CONVERTER
    if producer == NL_QUESTION_INTERPRETER:
        return SEARCHLIST_CONVERTER
    if state.get("remaining_query_filters"):
        return QUERY_RUNNER
    return OUTPUT


def alternative_query(state: SearchState) -> str:
    if state.get("remaining_query_filters"):
        return QUERY_RUNNER
    return LIMIT_AND_ORDER


def process_or_display(state: SearchState, ctx: RequestContext) -> str:
    if state.get("fatal_error"):
        return END
    if state.get("error_in_node") == PRESELECTION_FILTER:
        return PRESELECTION_FILTER
    if state.get("is_post_processing_needed") and state.get("filtered_blocks"):
        return _post_processing_step(state, ctx)
    return OUTPUT


def after_post_processing(state: SearchState) -> str:
    if state.get("fatal_error"):
        return END
    if state.get("error_in_node") == POST_PROCESSING:
        return POST_PROCESSING
    return OUTPUT
