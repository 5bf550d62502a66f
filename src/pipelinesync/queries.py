"""Catalogue of bug queries evaluated on every batch update."""

from __future__ import annotations

from itertools import product

from pipelinesync.constants import BUG_AREA_PATHS, BUG_PRIORITIES
from pipelinesync.models import BugQuery, BugState


def generate_bug_queries() -> frozenset[BugQuery]:
    """Build the fixed set of bug queries.

    One query per combination of area path, priority, and state group.
    Pure and deterministic: repeated calls return equal sets.
    """
    return frozenset(
        BugQuery(area_path=area_path, priority=priority, state=state)
        for area_path, priority, state in product(BUG_AREA_PATHS, BUG_PRIORITIES, BugState)
    )
