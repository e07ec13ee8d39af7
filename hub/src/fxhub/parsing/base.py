"""
Parser contract and shared helpers
==================================

Every inbound parser turns one ``MessageIn`` into zero or more canonical
trades.  The result is a ``ParseResult`` that is either *failed* with a
reason or *ok* with one ``ParsedTradeResult`` per trade leg.

Parsers only fail for structural problems: an empty payload, a header
that cannot be read, no legs, an unsupported product or a trader that
cannot be routed at all.  Missing reference data never aborts a parse.
``LookupResolver`` substitutes a fallback value and records a ``WARNING``
workflow event describing the missing mapping, so the trade still reaches
storage and can be corrected by hand.
"""

from __future__ import annotations

import datetime as dt
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import ClassVar, List, Optional, Tuple

from ..config import FirmIdentity
from ..currency import CurrencyConvention
from ..lookups import LookupRepository
from ..models import (
    MessageIn,
    SourceType,
    TraderRoutingInfo,
    Trade,
    TradeSystemLink,
    TradeWorkflowEvent,
)
from ..workflow import warning_event

OPTION_LEG = "O"
HEDGE_LEG = "H"


@dataclass
class ParsedTradeResult:
    trade: Trade
    system_links: List[TradeSystemLink] = field(default_factory=list)
    workflow_events: List[TradeWorkflowEvent] = field(default_factory=list)


@dataclass
class ParseResult:
    trades: List[ParsedTradeResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, trades: List[ParsedTradeResult]) -> "ParseResult":
        return cls(trades=list(trades))

    @classmethod
    def failed(cls, reason: str) -> "ParseResult":
        return cls(error=reason or "Unknown parse failure")


class LookupResolver:
    """Resolve reference data for one message, recording misses as warnings."""

    def __init__(
        self,
        lookups: LookupRepository,
        source_type: str,
        venue_code: str,
        initiator: str,
    ) -> None:
        self.lookups = lookups
        self.source_type = source_type
        self.venue_code = venue_code
        self.initiator = initiator

    def trader(self, trader_code: Optional[str]) -> Optional[TraderRoutingInfo]:
        if not trader_code:
            return None
        return self.lookups.get_trader_routing_info(self.venue_code, trader_code)

    def counterparty(
        self, external_name: str, fallback: str, events: List[TradeWorkflowEvent]
    ) -> str:
        code = self.lookups.resolve_counterparty_code(
            self.source_type, self.venue_code, external_name
        )
        if code:
            return code
        events.append(
            warning_event(
                f"No counterparty mapping for '{external_name}' at {self.venue_code}; "
                f"using '{fallback}'",
                self.initiator,
                field_name="CounterpartyCode",
                old_value=external_name,
                new_value=fallback,
            )
        )
        return fallback

    def portfolio_mx3(
        self, currency_pair: str, product_type: str, events: List[TradeWorkflowEvent]
    ) -> str:
        code = self.lookups.get_portfolio_code("MX3", currency_pair, product_type)
        if code:
            return code
        events.append(
            warning_event(
                f"No MX3 portfolio mapping for {currency_pair} ({product_type})",
                self.initiator,
                field_name="PortfolioMx3",
                old_value=currency_pair,
                new_value="",
            )
        )
        return ""

    def calypso_book(self, trader_id: str, events: List[TradeWorkflowEvent]) -> str:
        if not trader_id:
            return ""
        book = self.lookups.get_calypso_book_by_trader_id(trader_id)
        if book:
            return book
        events.append(
            warning_event(
                f"No Calypso book mapping for trader {trader_id}",
                self.initiator,
                field_name="CalypsoBook",
                old_value=trader_id,
                new_value="",
            )
        )
        return ""

    def expiry_cut(
        self, currency_pair: str, fallback: str, events: List[TradeWorkflowEvent]
    ) -> str:
        cut = self.lookups.get_expiry_cut_by_currency_pair(currency_pair)
        if cut:
            return cut
        events.append(
            warning_event(
                f"No expiry cut mapping for {currency_pair}",
                self.initiator,
                field_name="Cut",
                old_value=currency_pair,
                new_value=fallback,
            )
        )
        return fallback

    def broker(
        self, external_code: str, fallback: str, events: List[TradeWorkflowEvent]
    ) -> str:
        code = self.lookups.get_broker_mapping(self.venue_code, external_code)
        if code:
            return code
        events.append(
            warning_event(
                f"No broker mapping for '{external_code}' at {self.venue_code}; "
                f"using '{fallback}'",
                self.initiator,
                field_name="BrokerCode",
                old_value=external_code,
                new_value=fallback,
            )
        )
        return fallback


class InboundMessageParser(ABC):
    """Base class for venue parsers.

    Subclasses declare the ``(source_type, venue_codes, msg_types)`` they
    handle; the registry uses the same declaration for dispatch.
    """

    name: ClassVar[str] = "Parser"
    source_type: ClassVar[SourceType] = SourceType.EMAIL
    venue_codes: ClassVar[Tuple[str, ...]] = ()
    msg_types: ClassVar[Optional[Tuple[str, ...]]] = None

    def __init__(
        self,
        lookups: LookupRepository,
        convention: Optional[CurrencyConvention] = None,
        firm: Optional[FirmIdentity] = None,
    ) -> None:
        self.lookups = lookups
        self.convention = convention or CurrencyConvention()
        self.firm = firm or FirmIdentity(party_id="", lei="", name="")

    def handles(self, source_type: str, venue_code: str, msg_type: Optional[str]) -> bool:
        if (source_type or "").upper() != self.source_type.value:
            return False
        if (venue_code or "").upper() not in self.venue_codes:
            return False
        if self.msg_types is not None and (msg_type or "").upper() not in self.msg_types:
            return False
        return True

    def can_parse(self, message: MessageIn) -> bool:
        return self.handles(
            message.source_type.value, message.source_venue_code, message.fix_msg_type
        )

    def parse(self, message: MessageIn) -> ParseResult:
        if not message.raw_payload or not message.raw_payload.strip():
            return ParseResult.failed("Empty payload")
        return self.parse_payload(message)

    @abstractmethod
    def parse_payload(self, message: MessageIn) -> ParseResult: ...

    def resolver(self, message: MessageIn) -> LookupResolver:
        return LookupResolver(
            self.lookups,
            message.source_type.value,
            message.source_venue_code,
            self.name,
        )


def search(pattern: str, text: str, flags: int = 0) -> Optional[str]:
    """Return the first group of ``pattern`` in ``text``, stripped."""
    match = re.search(pattern, text, flags)
    if not match:
        return None
    value = match.group(1).strip()
    return value or None


def parse_amount(value: Optional[str]) -> Optional[Decimal]:
    if not value:
        return None
    cleaned = "".join(value.replace(",", "").split())
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def parse_date(value: Optional[str], *formats: str) -> Optional[dt.date]:
    if not value:
        return None
    text = " ".join(value.split())
    for fmt in formats:
        try:
            return dt.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def combine_utc(day: dt.date, time_text: Optional[str]) -> Optional[dt.datetime]:
    """Combine a date with an ``HH:MM:SS`` string as a UTC timestamp."""
    if not time_text:
        return None
    try:
        clock = dt.datetime.strptime(time_text.strip(), "%H:%M:%S").time()
    except ValueError:
        return None
    return dt.datetime.combine(day, clock, tzinfo=dt.timezone.utc)


def leg_trade_id(reference: str, leg_kind: str, number: int) -> str:
    return f"{reference}-{leg_kind}{number}"


def fallback_execution_time(message: MessageIn) -> dt.datetime:
    return message.source_timestamp or message.received_utc
