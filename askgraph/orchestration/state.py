"""
State of one search request as it flows through the search graph.

Nodes never mutate the state they receive: each one returns a patch that the
graph merges. The state can be serialized into a continuation token and
restored to resume a paused search.
"""

from typing import Any, Dict, List, Optional, TypedDict

from ..models import Filter, MatchResult, Period


# Node names
LOAD_MODEL = "loadModel"
NL_QUERY_INTERPRETER = "nl-query-interpreter"
NL_QUESTION_INTERPRETER = "nl-question-interpreter"
SEARCHLIST_CONVERTER = "searchlist-converter"
CHECKER = "checker"
QUERY_RUNNER = "queryRunner"
LIMIT_AND_ORDER = "limitAndOrder"
PRESELECTION_FILTER = "preselection-filter"
POST_PROCESSING = "post-processing"
OUTPUT = "output"


class SearchState(TypedDict, total=False):
    request_id: str
    model: str
    root_uid: Optional[str]
    target_uid: Optional[str]
    user_query: str
    retry_instruction: Optional[str]
    current_date: str

    # interpreter output, waiting for the checker
    llm_response: Any
    llm_response_node: Optional[str]

    search_lists: List[str]
    is_post_processing_needed: Optional[bool]
    is_inference_needed: bool
    nb_of_results: Optional[int]
    is_random: bool
    depth_limitation: Optional[int]
    pages_limitation: Optional[str]
    period: Optional[Period]
    children_only: bool
    is_case_sensitive: bool

    filters: List[List[Filter]]
    remaining_query_filters: List[List[Filter]]
    no_query: bool

    matching_blocks: List[MatchResult]
    filtered_blocks: Optional[List[MatchResult]]

    stringified_result_to_display: Optional[str]
    shift_display: Optional[int]
    nb_of_results_displayed: int
    display_header: Optional[str]

    error_in_node: Optional[str]
    fatal_error: Optional[str]


def _dump_filters(filter_sets):
    return [[f.model_dump() for f in filters] for filters in filter_sets or []]


def _load_filters(filter_sets):
    return [[Filter.model_validate(f) for f in filters] for filters in filter_sets or []]


def _dump_blocks(blocks):
    return None if blocks is None else [block.model_dump() for block in blocks]


def _load_blocks(blocks):
    return None if blocks is None else [MatchResult.model_validate(block) for block in blocks]


def serialize_state(state: SearchState) -> Dict[str, Any]:
    """Plain-JSON copy of a search state, without pending LLM output."""
    data: Dict[str, Any] = {
        key: value for key, value in state.items()
        if key not in ("llm_response", "llm_response_node")
    }
    for key in ("filters", "remaining_query_filters"):
        if key in data:
            data[key] = _dump_filters(data[key])
    for key in ("matching_blocks", "filtered_blocks"):
        if key in data:
            data[key] = _dump_blocks(data[key])
    if data.get("period") is not None:
        data["period"] = data["period"].model_dump()
    return data


def restore_state(data: Dict[str, Any]) -> SearchState:
    """Inverse of serialize_state."""
    state: Dict[str, Any] = dict(data)
    for key in ("filters", "remaining_query_filters"):
        if key in state:
            state[key] = _load_filters(state[key])
    for key in ("matching_blocks", "filtered_blocks"):
        if key in state:
            state[key] = _load_blocks(state[key])
    if state.get("period") is not None:
        state["period"] = Period.model_validate(state["period"])
    return SearchState(**state)
