"""
askgraph: natural language search over a Roam Research graph.

Interprets a request into a symbolic search list, compiles it into regex
filters, runs them over the block hierarchy, and ranks, narrows or
post-processes the matching blocks with a local LLM.
"""

__version__ = "0.1.0"
__author__ = "askgraph Project"

# Import main components
from .database import GraphStore
from .models import Filter, MatchResult, SearchList
from .agents import AgentRunner
from .importers import BaseImporter, SampleImporter, RoamJSONImporter, RoamEDNImporter
from .query import GraphQueryEngine, parse_search_list, compile_search_list
from .orchestration import SearchAgent, SearchOutcome
from .conversation import ConversationSession

__all__ = [
    "GraphStore",
    "Filter",
    "MatchResult",
    "SearchList",
    "AgentRunner",
    "BaseImporter",
    "SampleImporter",
    "RoamJSONImporter",
    "RoamEDNImporter",
    "GraphQueryEngine",
    "parse_search_list",
    "compile_search_list",
    "SearchAgent",
    "SearchOutcome",
    "ConversationSession"
]
