"""
Ranking, limiting and preselection thresholds for askgraph.

Matching blocks are filtered by period, sorted from the most recent edit to
the oldest, then truncated to a results cap (or randomly sampled).
"""

import logging
import random
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from ..models import MatchResult, Period


DAY = timedelta(hours=24)


def parse_period_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a period boundary written yyyy/mm/dd (yyyy-mm-dd is accepted too).

    Returns:
        Local midnight of that day, or None if the value is empty or invalid
    """
    if not value:
        return None
    for fmt in ("%Y/%m/%d", "%Y-%m-%d"):
        try:
            return datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    logging.warning(f"Ignoring invalid period date '{value}'")
    return None


def _to_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def filter_by_period(blocks: Sequence[MatchResult], period: Optional[Period]) -> List[MatchResult]:
    """
    Keep blocks edited within the period, both boundary days included.

    The end boundary is the end of the end day: end date + 24h, exclusive.
    """
    if not period:
        return list(blocks)
    begin = parse_period_date(period.begin)
    end = parse_period_date(period.end)
    begin_ms = _to_ms(begin) if begin else None
    end_ms = _to_ms(end + DAY) if end else None
    return [
        block for block in blocks
        if (begin_ms is None or block.edit_time >= begin_ms)
        and (end_ms is None or block.edit_time < end_ms)
    ]


def sort_by_recency(blocks: Iterable[MatchResult]) -> List[MatchResult]:
    return sorted(blocks, key=lambda block: block.edit_time, reverse=True)


def exclude_uids(blocks: Iterable[MatchResult], uids: Iterable[str]) -> List[MatchResult]:
    excluded = set(uids)
    return [block for block in blocks if block.uid not in excluded]


def results_cap(
    nb_of_results: Optional[int],
    is_post_processing_needed: bool,
    overfetch: int = 5,
    max_results: int = 100
) -> int:
    """
    Number of blocks kept after ordering.

    The requested count is multiplied by the over-fetch factor when a
    post-processing step will reduce the set further. Never above max_results.
    """
    if not nb_of_results:
        return max_results
    requested = nb_of_results * (overfetch if is_post_processing_needed else 1)
    return min(requested, max_results)


def preselection_threshold(nb_of_results: Optional[int], cap: int = 20, factor: int = 3) -> int:
    """Candidate count above which preselection runs before post-processing."""
    if nb_of_results:
        return min(cap, nb_of_results * factor)
    return cap


def needs_preselection(count: int, nb_of_results: Optional[int], cap: int = 20, factor: int = 3) -> bool:
    return count > preselection_threshold(nb_of_results, cap, factor)


def limit_and_order(
    blocks: Sequence[MatchResult],
    period: Optional[Period] = None,
    nb_of_results: Optional[int] = None,
    is_post_processing_needed: bool = False,
    is_random: bool = False,
    overfetch: int = 5,
    max_results: int = 100,
    rng: Optional[random.Random] = None
) -> Tuple[List[MatchResult], List[MatchResult]]:
    """
    Filter by period, sort by recency, then truncate or sample.

    Returns:
        (all blocks in the period sorted by recency, selected blocks). The full
        list lets a later turn draw a new random sample without querying again.
    """
    in_period = sort_by_recency(filter_by_period(blocks, period))
    cap = results_cap(nb_of_results, is_post_processing_needed, overfetch, max_results)

    if is_random:
        rng = rng or random.Random()
        selected = rng.sample(in_period, min(cap, len(in_period)))
    else:
        selected = in_period[:cap]
    logging.info(f"Kept {len(selected)} of {len(blocks)} blocks (period and cap {cap})")
    return in_period, selected
