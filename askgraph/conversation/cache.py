"""
Result cache and result store of a conversation.

Full result sets of earlier turns are cached so a follow-up turn can reuse
them. Result sets of the store carry a lifecycle: a replacement supersedes its
target, a completion promotes its target to a final result. Nothing is ever
deleted; superseded sets are kept for audit and skipped when building answers.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..models import ConversationState, MatchResult, ResultCacheEntry, StoredResult


GRAPH_SEARCH = "graph_search"


def block_records(blocks: Iterable[MatchResult]) -> List[Dict[str, Any]]:
    """Plain records of matching blocks, as kept in the cache."""
    return [
        {
            "uid": block.uid,
            "content": block.content,
            "pageTitle": block.page_title,
            "editTime": block.edit_time
        }
        for block in blocks
    ]


def has_cached_results(state: ConversationState) -> bool:
    return bool(state.cached_full_results) or any(
        result.status == "active" for result in state.result_store.values()
    )


def cache_results(
    state: ConversationState,
    records: List[Dict[str, Any]],
    user_query: str,
    tool_name: str = GRAPH_SEARCH,
    can_expand: bool = False
) -> str:
    """
    Keep the full results of a search step.

    Returns:
        The cache id of the entry
    """
    entry = ResultCacheEntry(
        tool_name=tool_name,
        full_results=records,
        user_query=user_query,
        can_expand=can_expand
    )
    cache_id = entry.cache_id
    # two entries of the same tool in the same millisecond
    while cache_id in state.cached_full_results:
        entry.timestamp += 1
        cache_id = entry.cache_id
    state.cached_full_results[cache_id] = entry
    logging.info(f"Cached {len(records)} results as {cache_id}")
    return cache_id


def recent_cache_entries(state: ConversationState, limit: Optional[int] = None) -> List[ResultCacheEntry]:
    entries = sorted(state.cached_full_results.values(), key=lambda e: e.timestamp, reverse=True)
    return entries[:limit] if limit else entries


def store_result(
    state: ConversationState,
    data: List[Dict[str, Any]],
    purpose: str = "final",
    replaces_result_id: Optional[str] = None,
    completes_result_id: Optional[str] = None,
    tool_name: str = GRAPH_SEARCH,
    metadata: Optional[Dict[str, Any]] = None
) -> str:
    """
    Add a result set to the store and apply its lifecycle.

    Returns:
        The id of the new result set
    """
    result_id = f"result_{state.next_result_id}"
    state.next_result_id += 1
    state.result_store[result_id] = StoredResult(
        data=data,
        purpose=purpose,
        replaces_result_id=replaces_result_id,
        completes_result_id=completes_result_id,
        tool_name=tool_name,
        metadata=metadata or {}
    )

    if purpose == "replacement" and replaces_result_id:
        target = state.result_store.get(replaces_result_id)
        if target:
            target.status = "superseded"
            logging.info(f"{replaces_result_id} superseded by {result_id}")
        else:
            logging.warning(f"{result_id} replaces unknown result {replaces_result_id}")

    if purpose == "completion" and completes_result_id:
        target = state.result_store.get(completes_result_id)
        if target:
            target.purpose = "final"
            logging.info(f"{completes_result_id} completed by {result_id}")
        else:
            logging.warning(f"{result_id} completes unknown result {completes_result_id}")

    return result_id


def active_results(state: ConversationState) -> Dict[str, StoredResult]:
    return {
        result_id: result for result_id, result in state.result_store.items()
        if result.status == "active"
    }


def merge_results(result_sets: Dict[str, Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """
    Combine result sets, deduplicated by 'uid' (or 'pageUid').

    The first occurrence of an item is kept, tagged with the id of the set it
    came from in 'source_result_id'.
    """
    merged: Dict[str, Dict[str, Any]] = {}
    for result_id, items in result_sets.items():
        for item in items:
            key = item.get("uid") or item.get("pageUid")
            if not key or key in merged:
                continue
            merged[key] = {**item, "source_result_id": result_id}
    return list(merged.values())


def merge_active_results(state: ConversationState) -> List[Dict[str, Any]]:
    """Active result sets of the store, then cached entries of active results, merged."""
    active = active_results(state)
    sets: Dict[str, Sequence[Dict[str, Any]]] = {
        result_id: result.data for result_id, result in active.items()
    }
    for entry in recent_cache_entries(state):
        if entry.result_id and entry.result_id not in active:
            continue
        sets.setdefault(entry.cache_id, entry.full_results)
    return merge_results(sets)


def summarize_cache(state: ConversationState, limit: Optional[int] = None) -> str:
    """One line per cache entry, for the request analyzer."""
    lines = [
        f"{entry.cache_id}: {len(entry.full_results)} {entry.tool_name} results for '{entry.user_query}'"
        for entry in recent_cache_entries(state, limit)
    ]
    return "\n".join(lines) if lines else "No cached results available"


def render_cached_results(state: ConversationState, word_limit: int = 50, limit: Optional[int] = None) -> str:
    """Summary followed by the merged cached blocks, for the cache processor."""
    lines = [summarize_cache(state, limit), ""]
    for item in merge_active_results(state):
        words = str(item.get("content", "")).split()
        content = " ".join(words[:word_limit]) + ("..." if len(words) > word_limit else "")
        lines.append(f"- (({item.get('uid') or item.get('pageUid')})) in [[{item.get('pageTitle', '')}]]: {content}")
    return "\n".join(lines).strip()
