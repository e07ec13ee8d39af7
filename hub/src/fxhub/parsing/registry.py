"""
Parser registry
===============

Dispatch over the closed set of supported venues.  Each ``Venue`` member
owns exactly one parser instance.  A message is routed by its
``(source_type, venue_code, msg_type)`` key; the resolution is cached per
key so the parser list is only scanned the first time a key is seen.

Parsers that also recognise messages by content (NatWest notifications
from a generic mailbox) are consulted only when no key matches.  Content
matches are not cached because they depend on the payload.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from ..config import FirmIdentity
from ..currency import CurrencyConvention
from ..lookups import LookupRepository
from ..models import MessageIn
from .barclays import BarclaysSpotConfirmationParser
from .base import InboundMessageParser
from .jpm import JpmSpotConfirmationParser
from .natwest import NatWestSpotConfirmationParser
from .tullett import TullettOptionConfirmationParser
from .volbroker_fix import VolbrokerFixAeParser

logger = logging.getLogger(__name__)

DispatchKey = Tuple[str, str, str]


class Venue(str, Enum):
    BARCLAYS = "BARCLAYS"
    TULLETT = "TULLETT"
    NATWEST = "NATWEST"
    VOLBROKER_FIX = "VOLBROKER_FIX"
    JPM = "JPM"


PARSER_TYPES = {
    Venue.BARCLAYS: BarclaysSpotConfirmationParser,
    Venue.TULLETT: TullettOptionConfirmationParser,
    Venue.NATWEST: NatWestSpotConfirmationParser,
    Venue.VOLBROKER_FIX: VolbrokerFixAeParser,
    Venue.JPM: JpmSpotConfirmationParser,
}


def dispatch_key(message: MessageIn) -> DispatchKey:
    return (
        message.source_type.value,
        (message.source_venue_code or "").upper(),
        (message.fix_msg_type or "").upper(),
    )


class ParserRegistry:
    """Resolve the parser for a message from an explicit registration table."""

    def __init__(self, parsers: Dict[Venue, InboundMessageParser]) -> None:
        self._parsers = dict(parsers)
        self._cache: Dict[DispatchKey, Optional[Venue]] = {}
        self._lock = threading.Lock()

    @classmethod
    def default(
        cls,
        lookups: LookupRepository,
        convention: Optional[CurrencyConvention] = None,
        firm: Optional[FirmIdentity] = None,
        venues: Optional[Iterable[Venue]] = None,
    ) -> "ParserRegistry":
        selected = list(venues) if venues is not None else list(Venue)
        return cls(
            {venue: PARSER_TYPES[venue](lookups, convention, firm) for venue in selected}
        )

    @property
    def venues(self) -> List[Venue]:
        return list(self._parsers)

    def parser_for(self, venue: Venue) -> InboundMessageParser:
        return self._parsers[venue]

    def resolve_key(self, key: DispatchKey) -> Optional[Venue]:
        with self._lock:
            if key in self._cache:
                return self._cache[key]
        source_type, venue_code, msg_type = key
        found = None
        for venue, parser in self._parsers.items():
            if parser.handles(source_type, venue_code, msg_type or None):
                found = venue
                break
        with self._lock:
            self._cache[key] = found
        return found

    def resolve(self, message: MessageIn) -> Optional[InboundMessageParser]:
        venue = self.resolve_key(dispatch_key(message))
        if venue is not None:
            return self._parsers[venue]
        for venue, parser in self._parsers.items():
            matches_content = getattr(parser, "matches_content", None)
            if matches_content is not None and matches_content(message):
                logger.info(
                    "Message %s routed to %s by content", message.message_in_id, venue.value
                )
                return parser
        return None
