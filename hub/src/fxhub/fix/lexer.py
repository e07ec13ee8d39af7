"""
FIX tag lexer
=============

Splits a raw FIX message into an ordered list of ``(tag, value)`` pairs.
Drop-copy messages reach the hub through different gateways, so the
delimiter is not fixed: the lexer looks for SOH first, then ``|`` and
finally falls back to a single space.

Repeating groups reuse tag numbers, so duplicates are preserved in their
original order.  Fields with a non-numeric tag or an empty value are
dropped.  Unparseable input yields an empty list, which callers must
treat as a hard failure.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, NamedTuple, Optional

from .tags import SOH


class FixTag(NamedTuple):
    tag: int
    value: str


def detect_delimiter(raw: str) -> str:
    if SOH in raw:
        return SOH
    if "|" in raw:
        return "|"
    return " "


def parse_fix_tags(raw: Optional[str]) -> List[FixTag]:
    """Lex ``raw`` into ordered ``FixTag`` pairs."""
    if not raw or not raw.strip():
        return []
    delimiter = detect_delimiter(raw)
    tags: List[FixTag] = []
    for field in raw.split(delimiter):
        if not field:
            continue
        tag_text, sep, value = field.partition("=")
        if not sep:
            continue
        tag_text = tag_text.strip()
        value = value.strip()
        if not tag_text or not value:
            continue
        try:
            tag = int(tag_text)
        except ValueError:
            continue
        tags.append(FixTag(tag, value))
    return tags


def get_tag_value(tags: Iterable[FixTag], tag: int) -> Optional[str]:
    """Return the first value for ``tag`` or ``None``."""
    for item in tags:
        if item.tag == tag:
            return item.value
    return None


def get_tag_values(tags: Iterable[FixTag], tag: int) -> List[str]:
    return [item.value for item in tags if item.tag == tag]


def parse_fix_decimal(value: Optional[str]) -> Optional[Decimal]:
    if not value:
        return None
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        return None


def parse_fix_date(value: Optional[str]) -> Optional[dt.date]:
    """Parse a FIX ``LocalMktDate`` (``YYYYMMDD``)."""
    if not value:
        return None
    try:
        return dt.datetime.strptime(value.strip(), "%Y%m%d").date()
    except ValueError:
        return None


def parse_fix_timestamp(value: Optional[str]) -> Optional[dt.datetime]:
    """Parse a FIX ``UTCTimestamp`` with or without milliseconds."""
    if not value:
        return None
    for fmt in ("%Y%m%d-%H:%M:%S.%f", "%Y%m%d-%H:%M:%S"):
        try:
            parsed = dt.datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
        return parsed.replace(tzinfo=dt.timezone.utc)
    return None
