"""
Tree traversal rules for the graph store.

Each rule is a distinct CTE shape producing the relation
``tree(root_uid, uid, depth)`` from a preceding ``roots(uid)`` relation.
Depth limitation is obtained by choosing a rule, never by truncating the
output of the unbounded one.
"""

from enum import Enum
from typing import Optional


class TraversalRule(Enum):
    DIRECT_CHILDREN = "direct_children"
    TWO_LEVELS = "two_levels"
    DESCENDANTS = "descendants"


_DIRECT_CHILDREN_CTE = """
    tree AS (
        SELECT r.uid AS root_uid, c.uid AS uid, 1 AS depth
        FROM roots r
        JOIN blocks c ON c.parent_uid = r.uid
    )"""

# Cumulative: direct children and grandchildren
_TWO_LEVELS_CTE = """
    tree AS (
        SELECT r.uid AS root_uid, c.uid AS uid, 1 AS depth
        FROM roots r
        JOIN blocks c ON c.parent_uid = r.uid
        UNION ALL
        SELECT r.uid AS root_uid, g.uid AS uid, 2 AS depth
        FROM roots r
        JOIN blocks c ON c.parent_uid = r.uid
        JOIN blocks g ON g.parent_uid = c.uid
    )"""

_DESCENDANTS_CTE = """
    tree(root_uid, uid, depth) AS (
        SELECT r.uid, c.uid, 1
        FROM roots r
        JOIN blocks c ON c.parent_uid = r.uid
        UNION ALL
        SELECT t.root_uid, c.uid, t.depth + 1
        FROM tree t
        JOIN blocks c ON c.parent_uid = t.uid
    )"""

_RULE_CTES = {
    TraversalRule.DIRECT_CHILDREN: _DIRECT_CHILDREN_CTE,
    TraversalRule.TWO_LEVELS: _TWO_LEVELS_CTE,
    TraversalRule.DESCENDANTS: _DESCENDANTS_CTE,
}


def rule_cte(rule: TraversalRule) -> str:
    """Return the ``tree`` CTE text for a traversal rule."""
    return _RULE_CTES[rule]


def rule_for_depth(depth_limitation: Optional[int]) -> Optional[TraversalRule]:
    """
    Map a depth limitation to its traversal rule.

    0 means the block itself only (no traversal), 1 direct children,
    2 two levels, and None an unbounded descendant search.
    """
    if depth_limitation is None:
        return TraversalRule.DESCENDANTS
    if depth_limitation <= 0:
        return None
    if depth_limitation == 1:
        return TraversalRule.DIRECT_CHILDREN
    if depth_limitation == 2:
        return TraversalRule.TWO_LEVELS
    return TraversalRule.DESCENDANTS
