"""
Barclays BARX spot/NDF confirmation parser.

BARX tickets are plain ``Label:   value`` text.  Spot tickets carry a
``Time Bucket`` of ``SP``; a ``Fixing Date`` marks the ticket as an NDF.
Any other bucket is rejected as unsupported.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal

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

logger = logging.getLogger(__name__)

MIC = "XOFF"
COUNTERPARTY_NAME = "BARX"

_S = re.DOTALL | re.IGNORECASE


def _date(text: str, label: str):
    return parse_date(search(label + r":\s+(\d{8})", text, _S), "%Y%m%d")


class BarclaysSpotConfirmationParser(InboundMessageParser):
    name = "BarclaysSpotConfirmationParser"
    source_type = SourceType.EMAIL
    venue_codes = ("BARX",)

    def parse_payload(self, message: MessageIn) -> ParseResult:
        text = message.raw_payload
        trade_id = search(r"BARX Trade Id:\s+(\d+)", text, _S)
        trade_date = _date(text, "Trade Date")
        if not trade_id or trade_date is None:
            return ParseResult.failed("BARX ticket missing trade id or trade date")

        fixing_date = _date(text, "Fixing Date")
        is_ndf = fixing_date is not None
        if is_ndf:
            product_type = ProductType.NDF
        else:
            bucket = (search(r"Time Bucket:\s+(\w+)", text, _S) or "").upper()
            if bucket != "SP":
                return ParseResult.failed(
                    f"Unsupported BARX time bucket '{bucket}'; only SPOT and NDF are supported"
                )
            product_type = ProductType.SPOT

        buy_ccy = search(r"Client Buys Ccy:\s+(\w+)", text, _S)
        sell_ccy = search(r"Client Sells Ccy:\s+(\w+)", text, _S)
        buy_amount = parse_amount(search(r"Client Buys Amount:\s+([\d,.]+)", text, _S))
        sell_amount = parse_amount(search(r"Client Sells Amount:\s+([\d,.]+)", text, _S))
        if not buy_ccy or not sell_ccy or buy_amount is None or sell_amount is None:
            return ParseResult.failed("BARX ticket missing currencies or amounts")

        username = search(r"Username:\s+([^\r\n]+)", text, _S)
        resolver = self.resolver(message)
        routing = resolver.trader(username)
        if routing is None:
            return ParseResult.failed(f"Trader routing not found for BARX trader: {username}")

        leg = self.convention.normalize_bought_sold(buy_ccy, buy_amount, sell_ccy, sell_amount)
        spot_rate = parse_amount(search(r"Spot Rate:\s+([\d.]+)", text, _S))
        forward_points = parse_amount(search(r"Forward Points:\s+([-\d.]+)", text, _S))
        all_in = parse_amount(search(r"^\s*Rate:\s+([\d.]+)", text, re.MULTILINE))
        hedge_rate = all_in if all_in and all_in > 0 else spot_rate

        events = []
        fields = dict(
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
            currency_pair=leg.currency_pair,
            mic=MIC,
            trade_date=trade_date,
            execution_time_utc=fallback_execution_time(message),
            buy_sell=leg.buy_sell,
            notional=leg.notional or Decimal("0"),
            notional_currency=leg.notional_currency,
            settlement_date=_date(text, "Value Date"),
            is_non_deliverable=is_ndf,
            spot_rate=spot_rate,
            swap_points=forward_points,
            hedge_rate=hedge_rate,
            hedge_type="NDF" if is_ndf else "Spot",
            portfolio_mx3=resolver.portfolio_mx3(leg.currency_pair, product_type.value, events),
            calypso_book=resolver.calypso_book(routing.internal_user_id, events),
        )
        if is_ndf:
            fields.update(
                fixing_date=fixing_date,
                fixing_source=search(r"Fixing Source:\s+([^\r\n]+)", text, _S) or "",
                settlement_currency=sell_ccy.upper(),
            )

        trade = Trade(**fields)
        label = "NDF" if is_ndf else "Spot"
        events.insert(0, normalized_event(f"{label} normalized", self.name))
        return ParseResult.ok([ParsedTradeResult(trade=trade, workflow_events=events)])
