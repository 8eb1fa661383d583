"""
Nodes of the search graph.

Each node takes the current state and the request context and returns a
patch. LLM-calling nodes record their own name in 'error_in_node' when they
fail: the graph re-enters the node once, and a second consecutive failure at
the same node sets 'fatal_error'.
"""

import logging
import time
from datetime import date
from typing import Dict, List, Optional

import duckdb

from ..agents import resolve_structured
from ..errors import InterpretationError, QueryExecutionError
from ..models import MatchResult, Preselection, QueryInterpretation, AlternativeSearchList
from ..models.graph import DNP_UID_REGEX
from ..query import compile_search_lists, parse_search_list, preselection_threshold
from ..query.engine import merge_unique
from ..query.ranking import exclude_uids, limit_and_order as order_and_limit
from .context import RequestContext
from .formatting import render_page, render_post_processing_blocks, render_preselection_blocks
from .routers import turn_router
from .state import (
    NL_QUERY_INTERPRETER, NL_QUESTION_INTERPRETER, POST_PROCESSING,
    PRESELECTION_FILTER, SEARCHLIST_CONVERTER, SearchState
)


def failure_patch(state: SearchState, node: str, error) -> SearchState:
    """One retry per node: a repeated failure at the same node is fatal."""
    if state.get("error_in_node") == node:
        logging.error(f"{node} failed twice in a row: {error}")
        return {"error_in_node": node, "fatal_error": f"{node} failed: {error}"}
    logging.warning(f"{node} failed, retrying once: {error}")
    return {"error_in_node": node, "fatal_error": None}


def _current_date(ctx: RequestContext, root_uid: Optional[str]) -> str:
    """Date of the daily note holding the root block, or today."""
    if root_uid:
        page_uid = ctx.store.get_page_uid_of_block(root_uid) or root_uid
        if DNP_UID_REGEX.match(page_uid):
            month, day, year = page_uid.split("-")
            return f"{year}/{month}/{day}"
    return date.today().strftime("%Y/%m/%d")


def fresh_turn() -> SearchState:
    """Patch clearing the blocks and filters a previous turn left in the state."""
    return {
        "search_lists": [],
        "filters": [],
        "remaining_query_filters": [],
        "matching_blocks": [],
        "filtered_blocks": None,
        "stringified_result_to_display": None,
        "shift_display": None,
        "no_query": False
    }


def load_model(state: SearchState, ctx: RequestContext) -> SearchState:
    logging.info(f"Search request {ctx.request_id} with model {ctx.runner.model}")
    patch: SearchState = {
        "request_id": ctx.request_id,
        "model": ctx.runner.model,
        "current_date": state.get("current_date") or _current_date(ctx, state.get("root_uid")),
        "fatal_error": None
    }
    if turn_router(state, ctx) == NL_QUERY_INTERPRETER:
        patch.update(fresh_turn())
    return patch


def nl_query_interpreter(state: SearchState, ctx: RequestContext) -> SearchState:
    try:
        reply = ctx.runner.interpret_query(
            state["user_query"],
            state.get("current_date") or date.today().strftime("%Y/%m/%d"),
            retry_instruction=state.get("retry_instruction"),
            search_only=state.get("is_post_processing_needed") is False,
            cancel_token=ctx.cancel_token,
            request_id=ctx.request_id
        )
        interpretation = resolve_structured(reply, QueryInterpretation, NL_QUERY_INTERPRETER)
    except InterpretationError as e:
        return {"llm_response": None, "llm_response_node": NL_QUERY_INTERPRETER,
                **failure_patch(state, NL_QUERY_INTERPRETER, e)}

    logging.info(f"Search list: {interpretation.searchList}")
    return {"llm_response": interpretation, "llm_response_node": NL_QUERY_INTERPRETER}


def nl_question_interpreter(state: SearchState, ctx: RequestContext) -> SearchState:
    try:
        reply = ctx.runner.interpret_question(
            state["user_query"],
            state["search_lists"][0],
            retry_instruction=state.get("retry_instruction"),
            cancel_token=ctx.cancel_token,
            request_id=ctx.request_id
        )
        alternative = resolve_structured(reply, AlternativeSearchList, NL_QUESTION_INTERPRETER)
    except InterpretationError as e:
        return {"llm_response": None, "llm_response_node": NL_QUESTION_INTERPRETER,
                **failure_patch(state, NL_QUESTION_INTERPRETER, e)}

    logging.info(f"Alternative search list: {alternative.alternativeSearchList}")
    return {"llm_response": alternative, "llm_response_node": NL_QUESTION_INTERPRETER}


def searchlist_converter(state: SearchState, ctx: RequestContext) -> SearchState:
    try:
        filters = compile_search_lists(
            state.get("search_lists") or [],
            expander=ctx.runner.semantic_expander(ctx.cancel_token, ctx.request_id),
            user_query=state.get("user_query", ""),
            case_sensitive=bool(state.get("is_case_sensitive")
                                or ctx.config.get("search.case_sensitive", False))
        )
    except InterpretationError as e:
        return {"llm_response": None, "llm_response_node": SEARCHLIST_CONVERTER,
                **failure_patch(state, SEARCHLIST_CONVERTER, e)}

    for index, filter_set in enumerate(filters):
        logging.info(f"Filters of list {index}: {[f.regex_string for f in filter_set]}")
    return {"llm_response": filters, "llm_response_node": SEARCHLIST_CONVERTER}


def checker(state: SearchState, ctx: RequestContext) -> SearchState:
    """
    Copy the output of the interpreter that just ran into state fields.

    A search list that does not parse sends the request back to its producer;
    a valid one clears the pending retry of that producer.
    """
    patch: SearchState = {"llm_response": None}
    response = state.get("llm_response")
    node = state.get("llm_response_node")
    if response is None:
        return patch

    if node == NL_QUERY_INTERPRETER:
        try:
            search_list = parse_search_list(response.searchList)
            if response.alternativeList:
                parse_search_list(response.alternativeList)
        except InterpretationError as e:
            patch.update(failure_patch(state, NL_QUERY_INTERPRETER, e))
            return patch

        search_lists = [response.searchList]
        if response.alternativeList:
            search_lists.append(response.alternativeList)
        depth = response.depthLimitation
        if depth is None:
            depth = search_list.depth_hint
        patch.update({
            "search_lists": search_lists,
            "children_only": search_list.children_only,
            "is_post_processing_needed": (
                False if state.get("is_post_processing_needed") is False
                else bool(response.isPostProcessingNeeded)
            ),
            "nb_of_results": response.nbOfResults or (1 if response.isRandom else None),
            "is_random": bool(response.isRandom),
            "is_inference_needed": bool(response.isInferenceNeeded),
            "is_case_sensitive": bool(response.isCaseSensitive),
            "depth_limitation": depth,
            "pages_limitation": response.pagesLimitation or None,
            "period": response.period
        })

    elif node == NL_QUESTION_INTERPRETER:
        search_lists = list(state.get("search_lists") or [])
        alternative = (response.alternativeSearchList or "").strip()
        if alternative and alternative not in search_lists:
            try:
                parse_search_list(alternative)
            except InterpretationError as e:
                patch.update(failure_patch(state, NL_QUESTION_INTERPRETER, e))
                return patch
            search_lists.append(alternative)
        patch["search_lists"] = search_lists

    elif node == SEARCHLIST_CONVERTER:
        patch.update({
            "filters": response,
            "remaining_query_filters": list(response),
            "no_query": not response
        })

    patch["error_in_node"] = None
    return patch


def query_runner(state: SearchState, ctx: RequestContext) -> SearchState:
    """Run the next remaining filter array and merge its matches."""
    remaining = list(state.get("remaining_query_filters") or [])
    filters = remaining.pop(0)
    matches = ctx.engine.run(
        filters,
        depth_limitation=state.get("depth_limitation"),
        pages_limitation=state.get("pages_limitation"),
        exclude_uid=state.get("root_uid"),
        children_only=state.get("children_only", False),
        cancel_token=ctx.cancel_token
    )
    merged: Dict[str, MatchResult] = {}
    merge_unique(merged, state.get("matching_blocks") or [])
    merge_unique(merged, matches)
    return {"remaining_query_filters": remaining, "matching_blocks": list(merged.values())}


def limit_and_order(state: SearchState, ctx: RequestContext) -> SearchState:
    blocks: List[MatchResult] = list(state.get("matching_blocks") or [])
    root_uid = state.get("root_uid")
    if root_uid:
        try:
            root_path = ctx.store.get_ancestor_uids(root_uid)
        except duckdb.Error as e:
            raise QueryExecutionError(f"Query failed at root path: {e}") from e
        blocks = exclude_uids(blocks, [root_uid] + root_path)

    is_random = state.get("is_random", False)
    in_period, selected = order_and_limit(
        blocks,
        period=state.get("period"),
        nb_of_results=state.get("nb_of_results"),
        is_post_processing_needed=bool(state.get("is_post_processing_needed")),
        is_random=is_random,
        overfetch=ctx.overfetch,
        max_results=ctx.max_results,
        rng=ctx.rng
    )
    return {
        # a new random pick draws again from every block in the period
        "matching_blocks": in_period if is_random else blocks,
        "filtered_blocks": selected,
        "stringified_result_to_display": None,
        "shift_display": None
    }


def preselection_filter(state: SearchState, ctx: RequestContext) -> SearchState:
    blocks = state.get("filtered_blocks") or []
    max_number = preselection_threshold(state.get("nb_of_results"), ctx.preselection_cap,
                                        ctx.preselection_factor)
    rendered = render_preselection_blocks(
        ctx.store, blocks,
        word_limit=ctx.config.get("search.preselection_word_limit", 100)
    )
    try:
        reply = ctx.runner.preselect(
            state["user_query"], rendered, max_number,
            retry_instruction=state.get("retry_instruction"),
            cancel_token=ctx.cancel_token,
            request_id=ctx.request_id
        )
        relevant = resolve_structured(reply, Preselection, PRESELECTION_FILTER).relevantUids
    except InterpretationError as e:
        return failure_patch(state, PRESELECTION_FILTER, e)

    relevant_uids = {uid.strip("() ") for uid in relevant}
    preselected = [block for block in blocks if block.uid in relevant_uids][:max_number]
    logging.info(f"Preselection kept {len(preselected)} of {len(blocks)} blocks")
    return {"filtered_blocks": preselected, "error_in_node": None}


def post_processing(state: SearchState, ctx: RequestContext) -> SearchState:
    blocks = state.get("filtered_blocks") or []
    begin = time.perf_counter()
    rendered = render_post_processing_blocks(
        ctx.store, blocks,
        path_depth=ctx.config.get("search.path_depth", 6),
        path_word_limit=ctx.config.get("search.path_word_limit", 30),
        word_limit=ctx.config.get("search.post_processing_word_limit", 1000)
    )
    answer = ctx.runner.post_process(
        state["user_query"], rendered,
        retry_instruction=state.get("retry_instruction"),
        cancel_token=ctx.cancel_token,
        request_id=ctx.request_id
    )
    if not answer.strip():
        return failure_patch(state, POST_PROCESSING, "empty answer")
    logging.info(f"Post-processing of {len(blocks)} blocks in {time.perf_counter() - begin:.2f}s")
    return {"stringified_result_to_display": answer, "error_in_node": None}


def output(state: SearchState, ctx: RequestContext) -> SearchState:
    """
    Emit the answer, or one page of block references.

    'shift_display' carries the offset of the next page; it is None once every
    block has been shown, and always None for random picks.
    """
    blocks = state.get("filtered_blocks") or []
    answer = state.get("stringified_result_to_display")
    if answer:
        return {
            "target_uid": state.get("root_uid"),
            "stringified_result_to_display": answer.strip(),
            "nb_of_results_displayed": len(blocks),
            "shift_display": None,
            "display_header": None
        }

    nb_to_display = state.get("nb_of_results") or ctx.config.default_display_count
    text, displayed, next_shift, header = render_page(blocks, state.get("shift_display"), nb_to_display)
    if state.get("is_random"):
        next_shift = None
        header = None
    logging.info(f"Displaying {displayed} of {len(blocks)} blocks")
    return {
        "target_uid": state.get("root_uid"),
        "stringified_result_to_display": text,
        "nb_of_results_displayed": displayed,
        "shift_display": next_shift,
        "display_header": header
    }
