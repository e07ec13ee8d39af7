"""Venue parsers that normalize inbound confirmations into trades."""

from .barclays import BarclaysSpotConfirmationParser
from .base import (
    InboundMessageParser,
    LookupResolver,
    ParsedTradeResult,
    ParseResult,
)
from .jpm import JpmSpotConfirmationParser
from .natwest import NatWestSpotConfirmationParser
from .registry import ParserRegistry, Venue
from .tullett import TullettOptionConfirmationParser
from .volbroker_fix import VolbrokerFixAeParser

__all__ = [
    "BarclaysSpotConfirmationParser",
    "InboundMessageParser",
    "JpmSpotConfirmationParser",
    "LookupResolver",
    "NatWestSpotConfirmationParser",
    "ParseResult",
    "ParsedTradeResult",
    "ParserRegistry",
    "TullettOptionConfirmationParser",
    "Venue",
    "VolbrokerFixAeParser",
]
