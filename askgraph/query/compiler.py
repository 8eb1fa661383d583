"""
Filter compiler for askgraph.

Turns a parsed search list into an ordered list of filters, one per item,
each holding a regex (OR-joined alternatives), an exclusion flag and a
hierarchy role. Compilation is pure: the only external input is the optional
semantic expander called for terms marked with '~'.
"""

import logging
import re
from typing import Callable, List, Optional, Sequence

from ..models import Filter, SearchItem, SearchList, SearchTerm
from .language import MATCH_ALL, parse_search_list


# (term, user request) -> semantic variations in the request's language
Expander = Callable[[str, str], List[str]]

CASE_INSENSITIVE = "(?i)"

_METACHARS = set("\\.^$|?*+()[]{}")
_ROAM_REFERENCE = re.compile(r"^(#?\[\[.*\]\]|\(\(.*\)\))$")
_WORD_WILDCARD = re.compile(r"(?<=\w)(?<!\\\w)\*")


def escape_regex(text: str) -> str:
    """Escape regex metacharacters, RE2 compatible (spaces stay as they are)."""
    return "".join("\\" + char if char in _METACHARS else char for char in text)


def _expand_wildcards(text: str) -> str:
    if text == "*":
        return MATCH_ALL
    # 'practi*' matches 'practice', 'practise', ...
    return _WORD_WILDCARD.sub(r"\\w*", text)


def compile_term(term: SearchTerm) -> str:
    """
    Regex source of one alternative, without case flag.
    """
    if term.quoted:
        return f"\\b{escape_regex(term.text)}\\b"
    if _ROAM_REFERENCE.match(term.text):
        return escape_regex(term.text)
    if term.wildcard or term.text == "*":
        return _expand_wildcards(term.text)
    return term.text


def compile_item(
    item: SearchItem,
    expander: Optional[Expander] = None,
    user_query: str = "",
    case_sensitive: bool = False
) -> Optional[Filter]:
    """
    Compile one search item into a filter.

    Returns:
        The filter, or None when the item compiles to an empty regex
    """
    insensitive_parts: List[str] = []
    exact_parts: List[str] = []
    for term in item.terms:
        source = compile_term(term)
        if not source:
            continue
        if term.quoted:
            exact_parts.append(source)
        else:
            insensitive_parts.append(source)
        if term.semantic and expander:
            variations = [v.strip() for v in expander(term.text, user_query) if v and v.strip()]
            for variation in variations:
                escaped = escape_regex(variation)
                if escaped not in insensitive_parts and escaped != source:
                    insensitive_parts.append(escaped)
            logging.info(f"Semantic expansion of '{term.text}': {variations}")

    if not insensitive_parts and not exact_parts:
        return None

    if case_sensitive or not insensitive_parts:
        regex = "|".join(insensitive_parts + exact_parts)
    elif not exact_parts:
        regex = CASE_INSENSITIVE + "|".join(insensitive_parts)
    else:
        # Quoted alternatives keep their case next to insensitive ones
        regex = "|".join([f"(?i:{part})" for part in insensitive_parts] + exact_parts)

    return Filter(
        regex_string=regex,
        is_to_exclude=item.negate,
        is_top_block_filter=item.is_top_block
    )


def compile_search_list(
    search_list: SearchList,
    expander: Optional[Expander] = None,
    user_query: str = "",
    case_sensitive: bool = False
) -> List[Filter]:
    """
    Compile a search list into its ordered filters.

    Items compiling to an empty regex are dropped. The result may hold no
    inclusion filter at all, see has_executable_filters.
    """
    filters = []
    for item in search_list.items:
        compiled = compile_item(item, expander, user_query, case_sensitive)
        if compiled is None:
            logging.warning(f"Dropping search item with empty regex in '{search_list.raw}'")
            continue
        filters.append(compiled)
    return filters


def compile_search_lists(
    raw_lists: Sequence[str],
    expander: Optional[Expander] = None,
    user_query: str = "",
    case_sensitive: bool = False,
    max_items: Optional[int] = None
) -> List[List[Filter]]:
    """
    Parse and compile a primary search list and its optional alternative.

    Filter arrays with no inclusion filter are left out.
    """
    filter_sets = []
    for raw in raw_lists:
        if not raw or not raw.strip():
            continue
        search_list = parse_search_list(raw) if max_items is None else parse_search_list(raw, max_items)
        filters = compile_search_list(search_list, expander, user_query, case_sensitive)
        if has_executable_filters(filters):
            filter_sets.append(filters)
        else:
            logging.warning(f"Search list '{raw}' has no executable filter")
    return filter_sets


def has_executable_filters(filters: Sequence[Filter]) -> bool:
    return any(not f.is_to_exclude for f in filters)
