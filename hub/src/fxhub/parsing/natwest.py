"""
NatWest Markets spot deal notification parser.

NatWest sends HTML deal notifications.  The body is flattened to plain
text (tags replaced by spaces, entities unescaped, whitespace collapsed)
before the label/value pairs are matched.

Notifications sometimes arrive through a generic mailbox without a venue
code, so the parser also claims any email carrying NatWest's notification
markers.
"""

from __future__ import annotations

import datetime as dt
import html
import logging
import re
from decimal import Decimal
from typing import Optional, Tuple

from ..models import MessageIn, ProductType, SourceType, Trade
from ..workflow import normalized_event, warning_event
from .base import (
    InboundMessageParser,
    ParsedTradeResult,
    ParseResult,
    parse_amount,
    parse_date,
    search,
)

logger = logging.getLogger(__name__)

MIC = "XOFF"
COUNTERPARTY_NAME = "NatWest"
CONTENT_MARKERS = ("NatWest Deal Notification", "natwest.com/markets")

_S = re.DOTALL | re.IGNORECASE
_TAG = re.compile(r"<[^>]+>")
_WS = re.compile(r"\s+")


def strip_html(markup: str) -> str:
    text = _TAG.sub(" ", markup)
    text = html.unescape(text)
    return _WS.sub(" ", text).strip()


def parse_execution_time(value: Optional[str]) -> Optional[dt.datetime]:
    if not value:
        return None
    try:
        parsed = dt.datetime.strptime(" ".join(value.split()), "%d/%m/%Y %H:%M:%S")
    except ValueError:
        return None
    return parsed.replace(tzinfo=dt.timezone.utc)


def find_amount(text: str, currency: str) -> Optional[Decimal]:
    """Find the amount written next to ``currency`` (before or after it)."""
    ccy = re.escape(currency)
    value = search(r"([\d][\d,.]*)\s*" + ccy + r"\b", text, _S)
    if value is None:
        value = search(r"\b" + ccy + r"\s*([\d][\d,.]*)", text, _S)
    return parse_amount(value)


class NatWestSpotConfirmationParser(InboundMessageParser):
    name = "NatWestSpotConfirmationParser"
    source_type = SourceType.EMAIL
    venue_codes = ("NATWEST",)

    def can_parse(self, message: MessageIn) -> bool:
        if super().can_parse(message):
            return True
        return self.matches_content(message)

    def matches_content(self, message: MessageIn) -> bool:
        if message.source_type != SourceType.EMAIL:
            return False
        payload = message.raw_payload or ""
        return any(marker.lower() in payload.lower() for marker in CONTENT_MARKERS)

    def parse_payload(self, message: MessageIn) -> ParseResult:
        text = strip_html(message.raw_payload)
        reference = search(r"Trade Reference\s+([A-Z0-9]+)", text, _S)
        if not reference:
            return ParseResult.failed("Could not extract Trade Reference from NatWest email")

        pair_match = re.search(r"\b([A-Z]{3})/([A-Z]{3})\s+Spot", text)
        if not pair_match:
            return ParseResult.failed("Could not extract currency pair from NatWest email")
        base, quote = pair_match.group(1), pair_match.group(2)
        currency_pair = base + quote

        direction, direction_ccy = self._direction(text)
        if direction and direction_ccy == quote:
            direction = "Sell" if direction == "Buy" else "Buy"

        notional_text = search(
            r"Notional Amount\s+(.*?)(?=Spot Rate|Settlement Date|Trade Date|$)", text, _S
        ) or ""
        notional = find_amount(notional_text, base)
        if notional is None:
            return ParseResult.failed(f"Could not read {base} notional from NatWest email")

        trader_code = search(r"Trader\s+([\w.]+)", text, _S)
        if not trader_code:
            return ParseResult.failed("No trader found in NatWest email")

        resolver = self.resolver(message)
        events = []
        routing = resolver.trader(trader_code)
        if routing is None:
            events.append(
                warning_event(
                    f"No trader mapping for NatWest trader '{trader_code}'; raw code kept",
                    self.name,
                    field_name="TraderId",
                    old_value=trader_code,
                    new_value=trader_code,
                )
            )
            trader_id, inv_id, reporting_entity_id = trader_code, "", ""
        else:
            trader_id = routing.internal_user_id
            inv_id = routing.inv_id
            reporting_entity_id = routing.reporting_entity_id

        trade_date = parse_date(
            search(r"Trade Date\s+([\d]{1,2}-[A-Za-z]{3}-\d{4})", text, _S), "%d-%b-%Y"
        ) or message.received_utc.date()
        settlement_date = parse_date(
            search(r"Settlement Date\s+([\d]{1,2}-[A-Za-z]{3}-\d{4})", text, _S), "%d-%b-%Y"
        )
        spot_rate = parse_amount(search(r"Spot Rate\s+([\d.]+)", text, _S))
        execution_time = parse_execution_time(
            search(r"Time of execution\s+([\d/\s:]+?)\s*\(GMT\)", text, _S)
        ) or message.received_utc

        product_type = ProductType.SPOT
        trade = Trade(
            trade_id=reference,
            product_type=product_type,
            source_type=message.source_type,
            source_venue_code=message.source_venue_code,
            message_in_id=message.message_in_id,
            counterparty_code=resolver.counterparty(
                COUNTERPARTY_NAME, message.source_venue_code, events
            ),
            trader_id=trader_id,
            inv_id=inv_id,
            reporting_entity_id=reporting_entity_id,
            currency_pair=currency_pair,
            mic=MIC,
            trade_date=trade_date,
            execution_time_utc=execution_time,
            buy_sell=direction,
            notional=notional,
            notional_currency=base,
            settlement_date=settlement_date or trade_date,
            spot_rate=spot_rate,
            hedge_rate=spot_rate,
            hedge_type="Spot",
            portfolio_mx3=resolver.portfolio_mx3(currency_pair, product_type.value, events),
            calypso_book=resolver.calypso_book(trader_id, events),
        )
        events.insert(0, normalized_event("Spot normalized", self.name))
        return ParseResult.ok([ParsedTradeResult(trade=trade, workflow_events=events)])

    @staticmethod
    def _direction(text: str) -> Tuple[str, str]:
        match = re.search(r"Buy/Sell\s+Counterparty\s+(Sells|Buys)\s+(\w{3})", text, _S)
        if not match:
            return "", ""
        verb = match.group(1).lower()
        return ("Sell" if verb == "sells" else "Buy"), match.group(2).upper()
