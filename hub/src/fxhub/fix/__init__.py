"""FIX lexing, leg grouping and party/side extraction."""

from .groups import extract_leg_groups
from .lexer import FixTag, get_tag_value, get_tag_values, parse_fix_tags
from .parties import (
    BaselineDirection,
    PartyInfo,
    SideInfo,
    extract_parties,
    extract_sides,
    resolve_baseline_direction,
    resolve_counterparty_id,
    resolve_leg_direction,
    resolve_trader_code,
)

__all__ = [
    "BaselineDirection",
    "FixTag",
    "PartyInfo",
    "SideInfo",
    "extract_leg_groups",
    "extract_parties",
    "extract_sides",
    "get_tag_value",
    "get_tag_values",
    "parse_fix_tags",
    "resolve_baseline_direction",
    "resolve_counterparty_id",
    "resolve_leg_direction",
    "resolve_trader_code",
]
