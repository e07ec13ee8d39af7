"""Partitioning of FIX tag streams into per-leg groups."""

from __future__ import annotations

from typing import List, Sequence

from .lexer import FixTag
from .tags import LEG_SYMBOL, NO_SIDES


def extract_leg_groups(
    tags: Sequence[FixTag],
    leg_start_tag: int = LEG_SYMBOL,
    stop_tag: int = NO_SIDES,
) -> List[List[FixTag]]:
    """Split ``tags`` into leg groups in message order.

    Each occurrence of ``leg_start_tag`` opens a new group that includes the
    start tag itself.  Once ``stop_tag`` is seen the remainder of the message
    (parties and sides) is abandoned.  A group holding nothing beyond its
    start marker is dropped.
    """
    groups: List[List[FixTag]] = []
    current: List[FixTag] = []
    in_leg = False

    for item in tags:
        if item.tag == stop_tag:
            break
        if item.tag == leg_start_tag:
            if len(current) > 1:
                groups.append(current)
            current = [item]
            in_leg = True
            continue
        if in_leg:
            current.append(item)

    if len(current) > 1:
        groups.append(current)
    return groups
