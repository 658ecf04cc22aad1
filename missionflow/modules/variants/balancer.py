"""
Greedy branch selection for A/B campaign variants.

The balancer looks at the live participant count of every candidate branch
(the base campaign first, then its active variants) and picks the smallest.
Ties go to the earliest branch in iteration order, so two empty branches
fill base-first and then alternate.
"""

from __future__ import annotations

from typing import Iterable, Tuple


def choose_branch(counts: Iterable[Tuple[str, int]]) -> str:
    """
    Return the campaign id with the lowest participant count.

    Args:
        counts: (campaign_id, participant_count) pairs in iteration order

    Raises:
        ValueError: If no branch is given
    """
    best_id = None
    best_count = 0
    for campaign_id, count in counts:
        if best_id is None or count < best_count:
            best_id, best_count = campaign_id, count

    if best_id is None:
        raise ValueError("choose_branch requires at least one branch")
    return best_id
