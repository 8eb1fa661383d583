"""Graph storage on DuckDB."""

from .manager import GraphStore
from .traversal import TraversalRule, rule_for_depth

__all__ = ["GraphStore", "TraversalRule", "rule_for_depth"]
