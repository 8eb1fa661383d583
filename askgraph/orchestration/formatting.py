"""
Text renderings of matching blocks.

Blocks are rendered for the preselection and post-processing collaborators,
and as embed references for the display layer. Block references use the
'{{[[embed-path]]: ((uid))}}' syntax and page references '[[Page Name]]'.
"""

from typing import List, Optional, Sequence, Tuple

from ..database import GraphStore
from ..models import MatchResult


NO_MATCHING_BLOCKS = "No matching blocks"


def embed_reference(uid: str) -> str:
    return "{{[[embed-path]]: ((" + uid + "))}}"


def page_reference(title: str) -> str:
    return f"[[{title}]]"


def slice_by_word_limit(text: Optional[str], limit: int) -> str:
    """Keep the first `limit` words of a text, marking the cut with '...'."""
    if not text:
        return ""
    words = text.split()
    if len(words) <= limit:
        return text
    return " ".join(words[:limit]) + "..."


def render_preselection_blocks(
    store: GraphStore,
    blocks: Sequence[MatchResult],
    word_limit: int = 100,
    parent_word_limit: int = 20
) -> str:
    """
    Numbered candidates with their direct parent, content, and matching
    children (or the first child when none matched).
    """
    rendered = []
    for index, block in enumerate(blocks):
        path = store.get_path(block.uid)
        direct_parent = slice_by_word_limit(path[-1][1], parent_word_limit) if path and path[-1][1] else None
        text = f"{index}) Block (({block.uid})) in page {page_reference(block.page_title)}"
        if direct_parent:
            text += f'. Direct parent is: "{direct_parent}"'
        text += f"\nContent:\n{slice_by_word_limit(block.content, word_limit)}\n"

        if block.child_matching_content:
            for child in block.child_matching_content:
                if child.content not in text:
                    text += f"  - {slice_by_word_limit(child.content, word_limit)}\n"
        else:
            first_child = store.get_first_child_content(block.uid)
            if first_child:
                text += f" - {slice_by_word_limit(first_child, word_limit)}"
        rendered.append(text)
    return "\n\n".join(rendered).strip()


def render_post_processing_blocks(
    store: GraphStore,
    blocks: Sequence[MatchResult],
    path_depth: int = 6,
    path_word_limit: int = 30,
    word_limit: int = 1000,
    child_levels: int = 3
) -> str:
    """
    Numbered selected blocks with their ancestor path, content and children
    up to three levels, each block truncated to a word limit.
    """
    rendered = []
    for index, block in enumerate(blocks):
        path = store.get_formatted_path(block.uid, path_depth, path_word_limit)
        text = f"{index}) Block (({block.uid})) in page {page_reference(block.page_title)}"
        if path:
            text += f'. Parent blocks: "{path}"'
        text += f"\nContent:\n{block.content}"
        text += store.get_flattened_content(block.uid, child_levels, with_dash=True) + "\n"
        text = slice_by_word_limit(text, word_limit)
        for child in block.child_matching_content:
            if child.content not in text:
                text += f"  - {child.content}\n"
        rendered.append(text)
    return "\n\n".join(rendered).strip()


def render_page(
    blocks: Sequence[MatchResult],
    shift: Optional[int],
    nb_to_display: int
) -> Tuple[str, int, Optional[int], Optional[str]]:
    """
    One page of embed references.

    Returns:
        (text, number of blocks displayed, next shift or None when every block
        has been shown, "Results N to M" header or None for a single page)
    """
    if not blocks:
        return NO_MATCHING_BLOCKS, 0, None, None

    start = shift or 0
    page: List[MatchResult] = list(blocks[start:start + nb_to_display])
    text = "\n".join(f"- {embed_reference(block.uid)}" for block in page)
    next_shift: Optional[int] = start + nb_to_display
    if next_shift >= len(blocks):
        next_shift = None

    header = None
    if start or next_shift is not None:
        header = f"Results {start + 1} to {start + len(page)}"
    return text, len(page), next_shift, header
