"""
Symbolic query language for askgraph.

A search list is the text form produced by the natural-language interpreter
(or typed directly by the user):

    recipes + sugar|vanilla -pastries
    books > [[to read]]
    #important|#urgent < budget

Operators:
    ' + ', '&' or whitespace   AND between items
    '|'                        OR between alternatives of one item
    leading '-'                NOT, at most one excluded item
    ' > '                      parent side on the left, descendant side on the right
    ' < '                      child side on the left, ancestor side on the right
    trailing '~'               semantic expansion of that term only
    '*'                        wildcard
    "quoted text"              exact, case sensitive match
    leading '\\'               term to ignore

The hierarchy operator may carry a depth hint, as in 'A >(1) B'.
"""

import logging
import re
from typing import List, Optional, Tuple

from ..errors import FilterCompilationError
from ..models import (
    SearchList, SearchItem, SearchTerm, SearchCondition, ConditionGroup
)


MATCH_ALL = ".*"
MAX_SEARCH_ITEMS = 4

_OPENING = "[({"
_CLOSING = "])}"
_HIERARCHY_TOKEN = re.compile(r"^([<>])(?:\((\d)\))?$")
_DEPTH_TOKEN = re.compile(r"^\((\d)\)$")
# \beautiful is ignored, \bword\b or \d{3} are regexes
_IGNORED_TERM = re.compile(r"^\\[A-Za-z][\w-]+$")
_REGEX_CHARS = re.compile(r"[\\^$.?*+{}()\[\]]")

STOPWORDS = frozenset("""
a an the and or of to in on at by for with from about into over under
is are was were be been it its this that these those my your our their
all any some me i you we they he she what which who whom where when how
le la les un une des du de d l et ou en au aux avec pour par sur dans
est sont mon ma mes ton ta tes son sa ses ce cet cette ces qui que quoi
""".split())


def _split_top_level(text: str, separators: Optional[str] = None) -> List[str]:
    """
    Split text outside quotes and brackets.

    With separators=None, splits on whitespace; otherwise on any of the
    given characters. Empty parts are dropped.
    """
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    in_quotes = False
    escaped = False
    for char in text:
        if escaped:
            escaped = False
            current.append(char)
            continue
        if char == "\\":
            escaped = True
        elif char == '"':
            in_quotes = not in_quotes
        elif not in_quotes:
            if char in _OPENING:
                depth += 1
            elif char in _CLOSING and depth > 0:
                depth -= 1
        is_separator = char.isspace() if separators is None else char in separators
        if is_separator and depth == 0 and not in_quotes:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return [part for part in parts if part.strip()]


def _merge_disjunctions(chunks: List[str]) -> List[str]:
    """Glue chunks around '|' back together: 'a | b' and 'a |b' become 'a|b'."""
    items: List[str] = []
    join_next = False
    for chunk in chunks:
        if chunk == "|":
            if items:
                join_next = True
            continue
        if items and (join_next or chunk.startswith("|") or items[-1].endswith("|")):
            items[-1] = items[-1].rstrip("|") + "|" + chunk.lstrip("|")
        else:
            items.append(chunk)
        join_next = False
    return [item.strip("|") for item in items if item.strip("|")]


def tokenize(text: str) -> List[str]:
    """
    Split a search list side into raw item strings.
    """
    chunks = [chunk for chunk in _split_top_level(text) if chunk not in ("+", "&")]
    return _merge_disjunctions(chunks)


def _split_hierarchy(raw: str) -> Tuple[str, Optional[str], str, Optional[int]]:
    """
    Find the hierarchy operator, if any.

    Returns:
        (left text, operator, right text, depth hint)
    """
    chunks = _split_top_level(raw)
    positions = [i for i, chunk in enumerate(chunks) if _HIERARCHY_TOKEN.match(chunk)]
    if not positions:
        return raw, None, "", None
    if len(positions) > 1:
        raise FilterCompilationError(f"Only one hierarchy operator is allowed: '{raw}'")

    index = positions[0]
    match = _HIERARCHY_TOKEN.match(chunks[index])
    operator = match.group(1)
    depth_hint = int(match.group(2)) if match.group(2) else None
    right_start = index + 1
    if depth_hint is None and right_start < len(chunks) and _DEPTH_TOKEN.match(chunks[right_start]):
        depth_hint = int(_DEPTH_TOKEN.match(chunks[right_start]).group(1))
        right_start += 1

    left = " ".join(chunks[:index])
    right = " ".join(chunks[right_start:])
    if not left.strip() or not right.strip():
        raise FilterCompilationError(f"Hierarchy operator '{operator}' needs conditions on both sides: '{raw}'")
    return left, operator, right, depth_hint


def _parse_term(text: str) -> Optional[SearchTerm]:
    semantic = False
    if text.endswith("~"):
        semantic = True
        text = text[:-1]
    quoted = len(text) >= 2 and text.startswith('"') and text.endswith('"')
    if quoted:
        text = text[1:-1]
    if not text:
        return None
    wildcard = not quoted and "*" in text and text != MATCH_ALL
    return SearchTerm(text=text, quoted=quoted, semantic=semantic, wildcard=wildcard)


def parse_item(text: str, is_top_block: bool = False) -> Optional[SearchItem]:
    """
    Parse one item: optional leading '-', alternatives separated by '|'.

    Returns None for ignored items ('\\term') and items made only of stopwords.
    """
    negate = False
    if text.startswith("-") and len(text) > 1:
        negate = True
        text = text[1:]
    if _IGNORED_TERM.match(text):
        logging.info(f"Ignoring search term '{text[1:]}'")
        return None

    terms = []
    for alternative in _split_top_level(text, "|"):
        term = _parse_term(alternative.strip())
        if term:
            terms.append(term)
    if not terms:
        return None
    if all(not t.quoted and t.text.lower() in STOPWORDS for t in terms):
        logging.info(f"Dropping stopword item '{text}'")
        return None
    return SearchItem(terms=terms, negate=negate, is_top_block=is_top_block and not negate)


def _parse_side(text: str, is_top_block: bool) -> List[SearchItem]:
    items = []
    for chunk in tokenize(text):
        item = parse_item(chunk, is_top_block)
        if item:
            items.append(item)
    return items


def _is_match_all(item: SearchItem) -> bool:
    return any(term.text == MATCH_ALL for term in item.terms)


def parse_search_list(raw: str, max_items: int = MAX_SEARCH_ITEMS) -> SearchList:
    """
    Parse a symbolic search list.

    Args:
        raw: The search list text
        max_items: Maximum number of conjunctive items

    Returns:
        The parsed SearchList, possibly with no items when every term was dropped

    Raises:
        FilterCompilationError: On malformed input (two hierarchy operators,
            two negations, misplaced '.*', too many items)
    """
    raw = (raw or "").strip()
    left, operator, right, depth_hint = _split_hierarchy(raw)

    if operator == ">":
        parent_items = _parse_side(left, True)
        child_items = _parse_side(right, False)
        items = parent_items + child_items
    elif operator == "<":
        child_items = _parse_side(left, False)
        parent_items = _parse_side(right, True)
        items = child_items + parent_items
    else:
        parent_items = []
        child_items = _parse_side(left, False)
        items = child_items

    if sum(1 for item in items if item.negate) > 1:
        raise FilterCompilationError(f"Only one excluded item is allowed: '{raw}'")

    if any(_is_match_all(item) for item in parent_items):
        raise FilterCompilationError(f"'{MATCH_ALL}' cannot be used on the parent side: '{raw}'")
    for side in (parent_items, child_items):
        if any(_is_match_all(item) for item in side) and len(side) > 1:
            raise FilterCompilationError(
                f"'{MATCH_ALL}' cannot be combined with another condition on the same side: '{raw}'"
            )
        for item in side:
            if _is_match_all(item) and len(item.terms) > 1:
                raise FilterCompilationError(
                    f"'{MATCH_ALL}' cannot be combined with another condition on the same side: '{raw}'"
                )

    if max_items and len(items) > max_items:
        raise FilterCompilationError(
            f"Too many conjunctive items ({len(items)} > {max_items}) in '{raw}'"
        )

    return SearchList(raw=raw, items=items, hierarchy=operator, depth_hint=depth_hint)


def _condition_for(term: SearchTerm, negate: bool) -> SearchCondition:
    text = term.text
    if text.startswith("((") and text.endswith("))"):
        condition_type = "block_ref"
    elif text.startswith("[[") or text.startswith("#"):
        condition_type = "page_ref"
    elif not term.quoted and (term.wildcard or _REGEX_CHARS.search(text)):
        condition_type = "regex"
    else:
        condition_type = "text"

    if term.quoted:
        match_type = "exact"
    elif condition_type == "regex":
        match_type = "regex"
    else:
        match_type = "contains"
    return SearchCondition(
        text=text,
        type=condition_type,
        match_type=match_type,
        negate=negate,
        semantic_expansion=term.semantic or None
    )


def to_condition_group(search_list: SearchList) -> ConditionGroup:
    """
    Structured view of a search list: an AND group of items, each item being a
    single condition or an OR group of its alternatives.
    """
    conditions = []
    for item in search_list.items:
        item_conditions = [_condition_for(term, item.negate) for term in item.terms]
        if len(item_conditions) == 1:
            conditions.append(item_conditions[0])
        else:
            conditions.append(ConditionGroup(conditions=item_conditions, combination="OR"))
    return ConditionGroup(conditions=conditions, combination="AND")
