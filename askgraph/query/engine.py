"""
Graph query engine for askgraph.

Given one compiled filter array, finds the blocks satisfying it across the
block hierarchy:

1. fast path: every inclusion filter on the block itself, in one query;
2. per filter: blocks matching that filter, minus already found blocks and
   parents of a matching child, then a search of the remaining filters in
   their subtree, selected by the depth limitation;
3. sibling fallback: a parent whose distinct children each match one of the
   two filters;
4. union of every branch, deduplicated by uid, without the excluded root
   block and its ancestors.

The engine keeps no state between runs. Running it twice with the same
inputs over an unchanged store yields the same results.
"""

import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

import duckdb

from ..cancellation import CancelToken, check_cancelled
from ..config import ConfigManager
from ..database import GraphStore, TraversalRule, rule_for_depth
from ..errors import QueryExecutionError
from ..models import ChildMatch, Filter, MatchResult


def _from_row(row: Sequence) -> MatchResult:
    children = [
        ChildMatch(uid=row[i], content=row[i + 1])
        for i in range(4, len(row) - 1, 2)
    ]
    return MatchResult(
        uid=row[0],
        content=row[1],
        edit_time=row[2] or 0,
        page_title=row[3],
        child_matching_content=children
    )


def merge_unique(target: Dict[str, MatchResult], matches: Sequence[MatchResult]) -> int:
    """Add matches not yet present, keeping the first occurrence of each uid."""
    added = 0
    for match in matches:
        if match.uid not in target:
            target[match.uid] = match
            added += 1
    return added


class GraphQueryEngine:
    """
    Runs compiled filters against a GraphStore.
    """

    def __init__(
        self,
        store: GraphStore,
        sibling_max_filters: int = 3,
        sibling_candidate_cap: int = 50,
        child_samples_per_filter: int = 3
    ):
        self.store = store
        self.sibling_max_filters = sibling_max_filters
        self.sibling_candidate_cap = sibling_candidate_cap
        self.child_samples_per_filter = child_samples_per_filter

    @classmethod
    def from_config(cls, store: GraphStore, config: ConfigManager) -> "GraphQueryEngine":
        return cls(
            store,
            sibling_max_filters=config.sibling_max_filters,
            sibling_candidate_cap=config.sibling_candidate_cap,
            child_samples_per_filter=config.child_samples_per_filter
        )

    def run(
        self,
        filters: Sequence[Filter],
        depth_limitation: Optional[int] = None,
        pages_limitation: Optional[str] = None,
        exclude_uid: Optional[str] = None,
        children_only: bool = False,
        cancel_token: Optional[CancelToken] = None
    ) -> List[MatchResult]:
        """
        Execute one filter array.

        Args:
            filters: Compiled filters, at most one of them an exclusion
            depth_limitation: 0 same block, 1 direct children, 2 two levels,
                None unbounded
            pages_limitation: None, "dnp" or a regex on page titles
            exclude_uid: Block to omit from results, with its ancestors
            children_only: 'child < parent' query, returns the child side blocks
            cancel_token: Checked around every store query

        Returns:
            Matching blocks, unique by uid

        Raises:
            QueryExecutionError: When a store query fails for a filter step
            CancellationError: When the request was cancelled
        """
        begin = time.perf_counter()

        # Parent side filters first
        ordered = sorted(filters, key=lambda f: not (f.is_top_block_filter and not f.is_to_exclude))
        parent_count = sum(1 for f in ordered if f.is_top_block_filter and not f.is_to_exclude)
        directed = parent_count > 0
        children_only = children_only and directed

        exclude_regex = next((f.regex_string for f in ordered if f.is_to_exclude), None)
        include = [f.regex_string for f in ordered if not f.is_to_exclude]
        if not include:
            logging.warning("No inclusion filter to run")
            return []

        rule = rule_for_depth(depth_limitation)
        if directed and rule is None:
            # a hierarchy condition needs at least one level
            rule = TraversalRule.DIRECT_CHILDREN

        results: Dict[str, MatchResult] = {}
        matched_uids = set()

        if len(include) > 1 and not directed:
            rows = self._query("fast path", cancel_token, self.store.blocks_matching,
                               include, exclude_regex, pages_limitation)
            fast_matches = [_from_row(row) for row in rows if row[0] != exclude_uid]
            merge_unique(results, fast_matches)
            matched_uids.update(m.uid for m in fast_matches)
            logging.info(f"Fast path: {len(fast_matches)} blocks match all {len(include)} filters")

        for index, regex in enumerate(include):
            if directed and index > 0:
                break
            anchor = include[:parent_count] if directed else [regex]
            others = include[parent_count:] if directed else include[:index] + include[index + 1:]

            rows = self._query(f"filter {index}", cancel_token, self.store.blocks_matching,
                               anchor, exclude_regex, pages_limitation)
            if not rows:
                continue
            row_by_uid = {row[0]: row for row in rows}
            candidates = self._subsume_parents(
                [uid for uid in row_by_uid if uid not in matched_uids and uid != exclude_uid],
                list(row_by_uid),
                cancel_token
            )

            if children_only:
                branch_rows = self._query(f"filter {index} descendants", cancel_token,
                                          self.store.descendants_matching_all,
                                          candidates, others, rule, exclude_regex, pages_limitation)
                branch = [_from_row(row) for row in branch_rows]
            elif others:
                branch = []
                if rule is not None:
                    branch = self._tree_matches(candidates, row_by_uid, others, rule,
                                                exclude_regex, directed, cancel_token)
            else:
                branch = [_from_row(row_by_uid[uid]) for uid in candidates]

            added = merge_unique(results, branch)
            logging.info(f"Filter {index} '{regex}': {len(rows)} blocks, {added} new matches")

            if (not directed and others and rule is not None
                    and len(include) < self.sibling_max_filters):
                branch_uids = {m.uid for m in branch}
                potential = [uid for uid in row_by_uid if uid not in branch_uids]
                potential = potential[:self.sibling_candidate_cap]
                sibling_rows = self._query(f"filter {index} siblings", cancel_token,
                                           self.store.parents_with_matching_siblings,
                                           potential, include, exclude_regex, pages_limitation)
                siblings: Dict[str, MatchResult] = {}
                merge_unique(siblings, [_from_row(row) for row in sibling_rows])
                merge_unique(results, list(siblings.values()))
                branch.extend(siblings.values())
                if siblings:
                    logging.info(f"Filter {index}: {len(siblings)} parents with matching siblings")

            matched_uids.update(m.uid for m in branch)

        if exclude_uid:
            excluded = {exclude_uid}
            excluded.update(self._query("root path", cancel_token,
                                        self.store.get_ancestor_uids, exclude_uid))
            for uid in excluded:
                results.pop(uid, None)

        logging.info(f"Graph query: {len(results)} blocks in {time.perf_counter() - begin:.2f}s")
        return list(results.values())

    def _query(self, step: str, cancel_token: Optional[CancelToken], method, *args):
        check_cancelled(cancel_token, f"before {step} query")
        try:
            result = method(*args)
        except duckdb.Error as e:
            logging.error(f"Graph query failed at {step}: {e}")
            raise QueryExecutionError(f"Query failed at {step}: {e}") from e
        check_cancelled(cancel_token, f"after {step} query")
        return result

    def _subsume_parents(
        self,
        candidates: List[str],
        all_matching: List[str],
        cancel_token: Optional[CancelToken]
    ) -> List[str]:
        """Drop candidates whose direct child matches the same filter."""
        parents = self._query("parent lookup", cancel_token, self.store.get_parent_uids, all_matching)
        candidate_set = set(candidates)
        to_ignore = {parent for parent in parents.values() if parent in candidate_set}
        if to_ignore:
            logging.debug(f"Ignoring {len(to_ignore)} parents of matching children")
        return [uid for uid in candidates if uid not in to_ignore]

    def _tree_matches(
        self,
        candidates: List[str],
        row_by_uid: Dict[str, Tuple],
        others: List[str],
        rule: TraversalRule,
        exclude_regex: Optional[str],
        strict: bool,
        cancel_token: Optional[CancelToken]
    ) -> List[MatchResult]:
        """
        Candidates for which every other filter is matched by the block itself
        or by a descendant within the traversal rule.

        With strict=True (parent > child queries), only descendants count.
        """
        remaining = list(candidates)
        samples: Dict[str, List[ChildMatch]] = {uid: [] for uid in remaining}
        for i, other in enumerate(others):
            if not remaining:
                break
            hits = self._query(f"tree {i}", cancel_token, self.store.descendants_matching,
                               remaining, other, rule, exclude_regex, self.child_samples_per_filter)
            own = set()
            if not strict:
                own = self._query(f"own {i}", cancel_token, self.store.uids_matching, remaining, other)
            kept = []
            for uid in remaining:
                if uid in hits:
                    seen = {child.uid for child in samples[uid]}
                    samples[uid].extend(
                        ChildMatch(uid=child_uid, content=content)
                        for child_uid, content in hits[uid] if child_uid not in seen
                    )
                    kept.append(uid)
                elif uid in own:
                    kept.append(uid)
            remaining = kept

        matches = []
        for uid in remaining:
            match = _from_row(row_by_uid[uid])
            match.child_matching_content = samples[uid]
            matches.append(match)
        return matches
