"""Symbolic query language, filter compilation, graph querying and ranking."""

from .language import parse_search_list, to_condition_group, tokenize
from .compiler import compile_search_list, compile_search_lists, has_executable_filters
from .engine import GraphQueryEngine
from .ranking import limit_and_order, needs_preselection, preselection_threshold

__all__ = [
    "parse_search_list",
    "to_condition_group",
    "tokenize",
    "compile_search_list",
    "compile_search_lists",
    "has_executable_filters",
    "GraphQueryEngine",
    "limit_and_order",
    "needs_preselection",
    "preselection_threshold"
]
