"""
Party and side extraction
=========================

Walks the PARTIES and SIDES repeating groups of a FIX trade capture report
to work out which side belongs to the firm and who the counterparty and
trader are.

Sides
-----

The SIDES block starts at ``NoSides`` (552).  Each ``Side`` (54) opens a
side; a ``PartyID`` (448) inside it followed by ``PartyRole=1`` (Customer)
marks the side as ours when the id equals the firm's own party id.  The
side code of our side is the *baseline direction*.

When no side can be attributed to the firm, the first ``Side`` tag in the
message is used instead.  That path is reported through
``BaselineDirection.is_fallback`` so callers can log it and attach a
warning to every trade, since a wrong guess flips every leg.

Parties
-------

``PartyID`` opens a party block; ``PartyRole`` and ``PartySubID`` attach to
the most recently opened party.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .lexer import FixTag, get_tag_value
from .tags import (
    NO_SIDES,
    PARTY_ID,
    PARTY_ROLE,
    PARTY_ROLE_CUSTOMER,
    PARTY_ROLE_EXECUTING_FIRM,
    PARTY_ROLE_TRADER,
    PARTY_SUB_ID,
    SIDE,
)

logger = logging.getLogger(__name__)

FIX_SIDE_TO_DIRECTION = {"1": "Buy", "2": "Sell"}


@dataclass
class SideInfo:
    side: str
    is_own_side: bool = False


@dataclass
class PartyInfo:
    party_id: str
    party_role: Optional[int] = None
    sub_id: Optional[str] = None


@dataclass
class BaselineDirection:
    """Direction of the firm's own side.

    ``raw_side`` is the FIX side code the direction came from and
    ``is_fallback`` is set when no own side was found and the first side
    tag in the message was used.
    """

    direction: str
    raw_side: Optional[str]
    is_fallback: bool


def extract_sides(tags: Sequence[FixTag], own_party_id: str) -> List[SideInfo]:
    sides: List[SideInfo] = []
    current: Optional[SideInfo] = None
    inside_sides = False
    last_party_id: Optional[str] = None

    for item in tags:
        if item.tag == NO_SIDES:
            inside_sides = True
            continue
        if not inside_sides:
            continue
        if item.tag == SIDE:
            if current is not None:
                sides.append(current)
            current = SideInfo(side=item.value)
            last_party_id = None
            continue
        if current is None:
            continue
        if item.tag == PARTY_ID:
            last_party_id = item.value
        elif item.tag == PARTY_ROLE:
            if (
                item.value == str(PARTY_ROLE_CUSTOMER)
                and last_party_id
                and own_party_id
                and last_party_id.upper() == own_party_id.upper()
            ):
                current.is_own_side = True

    if current is not None:
        sides.append(current)
    return sides


def extract_parties(tags: Sequence[FixTag]) -> List[PartyInfo]:
    parties: List[PartyInfo] = []
    current: Optional[PartyInfo] = None

    for item in tags:
        if item.tag == PARTY_ID:
            if current is not None:
                parties.append(current)
            current = PartyInfo(party_id=item.value)
        elif item.tag == PARTY_ROLE and current is not None:
            try:
                current.party_role = int(item.value)
            except ValueError:
                continue
        elif item.tag == PARTY_SUB_ID and current is not None:
            current.sub_id = item.value

    if current is not None:
        parties.append(current)
    return parties


def resolve_baseline_direction(
    tags: Sequence[FixTag], own_party_id: str
) -> BaselineDirection:
    """Return the firm's baseline direction, falling back to the first side."""
    for side in extract_sides(tags, own_party_id):
        if side.is_own_side:
            return BaselineDirection(
                direction=FIX_SIDE_TO_DIRECTION.get(side.side, ""),
                raw_side=side.side,
                is_fallback=False,
            )

    raw_side = get_tag_value(tags, SIDE)
    logger.warning(
        "No side attributed to own party %s; falling back to first Side tag %r",
        own_party_id,
        raw_side,
    )
    return BaselineDirection(
        direction=FIX_SIDE_TO_DIRECTION.get(raw_side or "", ""),
        raw_side=raw_side,
        is_fallback=True,
    )


def flip_direction(direction: str) -> str:
    if direction == "Buy":
        return "Sell"
    if direction == "Sell":
        return "Buy"
    return direction


def resolve_leg_direction(baseline: str, leg_side: Optional[str]) -> str:
    """Apply a leg side code to the baseline.

    ``B`` keeps the baseline, ``C`` and ``S`` flip it and anything else is
    treated as baseline.
    """
    code = (leg_side or "").strip().upper()
    if code in ("C", "S"):
        return flip_direction(baseline)
    return baseline


def resolve_counterparty_id(
    parties: Sequence[PartyInfo], own_party_id: str
) -> Optional[str]:
    """Last Customer party that is not us, else the last Executing Firm."""
    own = (own_party_id or "").upper()
    customer = None
    executing = None
    for party in parties:
        if party.party_role == PARTY_ROLE_CUSTOMER and party.party_id.upper() != own:
            customer = party.party_id
        elif party.party_role == PARTY_ROLE_EXECUTING_FIRM:
            executing = party.party_id
    return customer or executing


def resolve_trader_code(parties: Sequence[PartyInfo]) -> Optional[str]:
    for party in parties:
        if party.party_role == PARTY_ROLE_TRADER:
            return party.sub_id or party.party_id
    return None
