"""JPMorgan spot confirmation parser."""

from __future__ import annotations

import datetime as dt
import html
import re
from decimal import Decimal
from typing import Optional, Tuple

from ..models import MessageIn, ProductType, SourceType, Trade
from ..workflow import normalized_event
from .base import (
    InboundMessageParser,
    ParsedTradeResult,
    ParseResult,
    fallback_execution_time,
    parse_amount,
    parse_date,
    search,
)

MIC = "XOFF"
COUNTERPARTY_NAME = "JPM"

_S = re.DOTALL | re.IGNORECASE
_SPAN = re.compile(r'<span lang="EN-GB">(.*?)</span>', _S)
_OFFSET = re.compile(r"\s+GMT([+-])(\d{2}):(\d{2})\s*$")


def extract_text(payload: str) -> str:
    """Pull the visible lines out of JPM's HTML layout; plain text passes through."""
    spans = _SPAN.findall(payload)
    if not spans:
        return payload
    return "\n".join(html.unescape(span) for span in spans)


def parse_trade_time(value: Optional[str]) -> Optional[dt.datetime]:
    """Parse ``15-Jan-2025 10:15:30 GMT+01:00`` into UTC."""
    if not value:
        return None
    offset = dt.timedelta(0)
    match = _OFFSET.search(value)
    if match:
        sign = 1 if match.group(1) == "+" else -1
        offset = sign * dt.timedelta(hours=int(match.group(2)), minutes=int(match.group(3)))
        value = value[: match.start()]
    try:
        local = dt.datetime.strptime(value.strip(), "%d-%b-%Y %H:%M:%S")
    except ValueError:
        return None
    return (local - offset).replace(tzinfo=dt.timezone.utc)


def parse_amount_line(line: Optional[str]) -> Tuple[str, Optional[Decimal]]:
    match = re.match(r"\s*([A-Z]{3})\s+([\d,.]+)", line or "")
    if not match:
        return "", None
    return match.group(1), parse_amount(match.group(2))


class JpmSpotConfirmationParser(InboundMessageParser):
    name = "JpmSpotConfirmationParser"
    source_type = SourceType.EMAIL
    venue_codes = ("JPM",)

    def parse_payload(self, message: MessageIn) -> ParseResult:
        text = extract_text(message.raw_payload)
        trade_id = search(r"Trade ID:\s+(\S+)", text, _S)
        if not trade_id:
            return ParseResult.failed("JPM confirmation missing Trade ID")
        trade_type = (search(r"Trade Type:\s+(\w+)", text, _S) or "").upper()
        if trade_type != "SPOT":
            return ParseResult.failed(
                f"Unsupported trade type: {trade_type or '<none>'}. Only SPOT is supported."
            )
        pair = (search(r"Currency Pair:\s+([\w/]+)", text, _S) or "").replace("/", "").upper()
        if len(pair) != 6:
            return ParseResult.failed("JPM confirmation missing currency pair")

        buy_ccy, buy_amount = parse_amount_line(
            search(r"^\s*BUY:\s+([^\r\n]+)", text, re.MULTILINE)
        )
        sell_ccy, sell_amount = parse_amount_line(
            search(r"^\s*SELL:\s+([^\r\n]+)", text, re.MULTILINE)
        )
        if pair[:3] == buy_ccy:
            buy_sell, notional, notional_ccy = "Buy", buy_amount, buy_ccy
        else:
            buy_sell, notional, notional_ccy = "Sell", sell_amount, sell_ccy
        if notional is None:
            return ParseResult.failed("JPM confirmation missing BUY/SELL amounts")

        owner = search(r"Customer Owner:\s+(\w+)", text, _S) or search(
            r"Customer User:\s+(\w+)", text, _S
        )
        resolver = self.resolver(message)
        routing = resolver.trader(owner)
        if routing is None:
            return ParseResult.failed(f"Trader routing not found for JPM trader: {owner}")

        trade_date = parse_date(
            search(r"Trade Date:\s+([\d\-A-Z]+)", text, _S), "%d-%b-%Y"
        ) or message.received_utc.date()
        spot_rate = parse_amount(search(r"Spot Rate:\s+([\d.]+)", text, _S)) or parse_amount(
            search(r"All In Rate:\s+([\d.]+)", text, _S)
        )

        events = []
        product_type = ProductType.SPOT
        trade = Trade(
            trade_id=trade_id,
            product_type=product_type,
            source_type=message.source_type,
            source_venue_code=message.source_venue_code,
            message_in_id=message.message_in_id,
            counterparty_code=resolver.counterparty(
                COUNTERPARTY_NAME, message.source_venue_code, events
            ),
            trader_id=routing.internal_user_id,
            inv_id=routing.inv_id,
            reporting_entity_id=routing.reporting_entity_id,
            currency_pair=pair,
            mic=MIC,
            trade_date=trade_date,
            execution_time_utc=parse_trade_time(search(r"Trade Time:\s+([^\r\n]+)", text, _S))
            or fallback_execution_time(message),
            buy_sell=buy_sell,
            notional=notional,
            notional_currency=notional_ccy,
            settlement_date=parse_date(
                search(r"Value Date:\s+([\d\-A-Z]+)", text, _S), "%d-%b-%Y"
            ),
            spot_rate=spot_rate,
            hedge_rate=spot_rate,
            hedge_type="Spot",
            portfolio_mx3=resolver.portfolio_mx3(pair, product_type.value, events),
            calypso_book=resolver.calypso_book(routing.internal_user_id, events),
        )
        events.insert(0, normalized_event("Spot normalized", self.name))
        return ParseResult.ok([ParsedTradeResult(trade=trade, workflow_events=events)])
