"""Search state machine: from a natural language request to displayed results."""

from .graph import SearchAgent, SearchOutcome, build_search_graph
from .context import RequestContext
from .continuation import LineReader, await_user_choice, stdin_reader, MORE, DEEPER, RETRY
from .state import SearchState, serialize_state, restore_state

__all__ = [
    "SearchAgent",
    "SearchOutcome",
    "build_search_graph",
    "RequestContext",
    "LineReader",
    "await_user_choice",
    "stdin_reader",
    "MORE",
    "DEEPER",
    "RETRY",
    "SearchState",
    "serialize_state",
    "restore_state"
]
