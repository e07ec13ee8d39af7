"""
Tullett Prebon option confirmation parser
=========================================

Tullett (TPICAP) confirms option strategies by email.  One email holds a
header, one block per option (``Option N``) each preceded by its seller and
buyer, and optionally a ``Confirmation of Hedge Details`` section with the
delta hedge.  Every option and the hedge become separate trades with ids
``{ref}-O1``, ``{ref}-O2``, ..., ``{ref}-H1`` where ``ref`` is the broker
trade reference (or the RTN when no reference is given).

Options
-------

The firm is the buyer when the buyer LEI is the firm's LEI, or when no LEI
is given and the buyer name contains the firm's name.  ``Call on`` and
``Put on`` carry the two currencies; the pair is ordered with
``CurrencyConvention`` and the flag is expressed relative to the base
currency.  The notional is the base-currency amount.

Hedge
-----

``You have bought`` / ``You have sold`` are normalized into pair, direction
and notional.  A value date at most two days after trade date is a spot
hedge, anything later a forward.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from ..models import MessageIn, ProductType, SourceType, Trade, TraderRoutingInfo
from ..workflow import normalized_event
from .base import (
    HEDGE_LEG,
    OPTION_LEG,
    InboundMessageParser,
    LookupResolver,
    ParsedTradeResult,
    ParseResult,
    combine_utc,
    fallback_execution_time,
    leg_trade_id,
    parse_amount,
    parse_date,
    search,
)

logger = logging.getLogger(__name__)

MIC = "TPIR"
BROKER_CODE = "TULLETT"
DEFAULT_CUT = "USNY"
SPOT_MAX_DAYS = 2

_I = re.IGNORECASE
_SECTION = re.DOTALL | re.IGNORECASE
_LINE = r"([^\r\n]+)"
_DAY = r"(\d{1,2}\s+[A-Za-z]{3}\s+\d{4})"

OPTION_BLOCK = re.compile(
    r"Seller\s*:\s*([^\r\n]+).*?Seller LEI\s*:\s*([A-Z0-9]*)"
    r".*?Buyer\s*:\s*([^\r\n]+).*?Buyer LEI\s*:\s*([A-Z0-9]*)"
    r".*?Option\s+(\d+)\s*\n(.*?)(?=Seller\s*:|Confirmation of Hedge|BROKERAGE|$)",
    _SECTION,
)
HEDGE_BLOCK = re.compile(
    r"Confirmation of Hedge Details\s*\n(.*?)(?=BROKERAGE|Thanks and Regards|$)",
    _SECTION,
)
AMOUNT = re.compile(r"([A-Z]{3})\s*([\d,.]+)")


@dataclass
class TullettHeader:
    trader: str
    trade_date: dt.date
    execution_time: dt.datetime
    reference: str
    rtn: str
    strategy: str


@dataclass
class TullettOption:
    number: str
    seller_name: str
    seller_lei: str
    buyer_name: str
    buyer_lei: str
    uti: str
    isin: str
    expiry_date: Optional[dt.date]
    delivery_date: Optional[dt.date]
    call_on: str
    put_on: str
    strike: Optional[Decimal]
    spot_rate: Optional[Decimal]
    swap_points: Optional[Decimal]
    premium: Optional[Decimal]
    premium_currency: str
    premium_date: Optional[dt.date]


@dataclass
class TullettHedge:
    uti: str
    isin: str
    sold_currency: str
    sold_amount: Decimal
    bought_currency: str
    bought_amount: Decimal
    counterparty_name: str
    hedge_rate: Optional[Decimal]
    value_date: Optional[dt.date]


def _normalize_body(payload: str) -> str:
    return payload.replace("\r\n", "\n").replace("\r", "\n")


def parse_option_section(match: "re.Match[str]") -> TullettOption:
    section = match.group(6)
    premium = re.search(r"Premium amount\s*:\s*([A-Z]{3})\s*([\d,.]+)", section, _I)
    return TullettOption(
        number=match.group(5),
        seller_name=match.group(1).strip(),
        seller_lei=match.group(2).strip(),
        buyer_name=match.group(3).strip(),
        buyer_lei=match.group(4).strip(),
        uti=search(r"UTI\s*:\s*([A-Z0-9]+)", section, _I) or "",
        isin=search(r"ISIN\s*:\s*([A-Z0-9]+)", section, _I) or "",
        expiry_date=parse_date(search(r"Expiry details\s*:\s*" + _DAY, section, _I), "%d %b %Y"),
        delivery_date=parse_date(search(r"Delivery date\s*:\s*" + _DAY, section, _I), "%d %b %Y"),
        call_on=search(r"Call on\s*:\s*" + _LINE, section, _I) or "",
        put_on=search(r"Put on\s*:\s*" + _LINE, section, _I) or "",
        strike=parse_amount(search(r"Strike price\s*:\s*([\d,.]+)", section, _I)),
        spot_rate=parse_amount(search(r"Spot Rate\s*:\s*([\d,.]+)", section, _I)),
        swap_points=parse_amount(search(r"Swap Points\s*:\s*(-?[\d,.]+)", section, _I)),
        premium=parse_amount(premium.group(2)) if premium else None,
        premium_currency=premium.group(1).upper() if premium else "",
        premium_date=parse_date(
            search(r"Premium value date\s*:\s*" + _DAY, section, _I), "%d %b %Y"
        ),
    )


def parse_hedge_section(section: str) -> Optional[TullettHedge]:
    sold = re.search(r"You have sold\s*:\s*([A-Z]{3})\s*([\d,.]+)", section, _I)
    bought = re.search(r"You have bought\s*:\s*([A-Z]{3})\s*([\d,.]+)", section, _I)
    if not sold or not bought:
        return None
    return TullettHedge(
        uti=search(r"UTI\s*:\s*([A-Z0-9]+)", section, _I) or "",
        isin=search(r"ISIN\s*:\s*([A-Z0-9]+)", section, _I) or "",
        sold_currency=sold.group(1).upper(),
        sold_amount=parse_amount(sold.group(2)) or Decimal("0"),
        bought_currency=bought.group(1).upper(),
        bought_amount=parse_amount(bought.group(2)) or Decimal("0"),
        counterparty_name=search(r"Counterparty\s*:\s*" + _LINE, section, _I) or "",
        hedge_rate=parse_amount(search(r"Hedge rate\s*:\s*([\d,.]+)", section, _I)),
        value_date=parse_date(search(r"Value date\s*:\s*" + _DAY, section, _I), "%d %b %Y"),
    )


class TullettOptionConfirmationParser(InboundMessageParser):
    name = "TullettOptionConfirmationParser"
    source_type = SourceType.EMAIL
    venue_codes = ("TULLETT",)

    def parse_payload(self, message: MessageIn) -> ParseResult:
        body = _normalize_body(message.raw_payload)
        header = self._parse_header(body, message)
        if header is None:
            return ParseResult.failed("Tullett header missing trade date or trade reference")

        resolver = self.resolver(message)
        routing = resolver.trader(header.trader)
        if routing is None:
            return ParseResult.failed(
                f"No trader routing for Tullett trader '{header.trader or ''}'"
            )

        results: List[ParsedTradeResult] = []
        option_count = 0
        for match in OPTION_BLOCK.finditer(body):
            option = parse_option_section(match)
            built = self._build_option(
                option, header, routing, resolver, message, option_count + 1
            )
            if built is not None:
                option_count += 1
                results.append(built)

        hedge_match = HEDGE_BLOCK.search(body)
        if hedge_match:
            hedge = parse_hedge_section(hedge_match.group(1))
            if hedge is not None:
                results.append(self._build_hedge(hedge, header, routing, resolver, message, 1))

        if not results:
            return ParseResult.failed("No option or hedge legs found in Tullett confirmation")
        return ParseResult.ok(results)

    def _parse_header(self, body: str, message: MessageIn) -> Optional[TullettHeader]:
        trade_date = parse_date(
            search(r"Trade Date\s*:\s*(\d{1,2}-[A-Za-z]{3}-\d{4})", body, _I), "%d-%b-%Y"
        )
        reference = search(r"Broker Trade Reference\s*:\s*" + _LINE, body, _I)
        rtn = search(r"RTN\s*:\s*(\d+)", body, _I) or ""
        if trade_date is None or not (reference or rtn):
            return None
        execution_time = combine_utc(
            trade_date, search(r"Execution Time\s*:\s*(\d{1,2}:\d{2}:\d{2})", body, _I)
        ) or fallback_execution_time(message)
        return TullettHeader(
            trader=search(r"Trader\s*:\s*" + _LINE, body, _I) or "",
            trade_date=trade_date,
            execution_time=execution_time,
            reference=reference or rtn,
            rtn=rtn,
            strategy=search(r"Strategy \d+\s*:\s*" + _LINE, body, _I) or "",
        )

    def _is_firm(self, name: str, lei: str) -> bool:
        if lei:
            return lei.upper() == self.firm.lei.upper()
        return bool(self.firm.name) and self.firm.name.upper() in name.upper()

    def _build_option(
        self,
        option: TullettOption,
        header: TullettHeader,
        routing: TraderRoutingInfo,
        resolver: LookupResolver,
        message: MessageIn,
        number: int,
    ) -> Optional[ParsedTradeResult]:
        is_buyer = self._is_firm(option.buyer_name, option.buyer_lei)
        is_seller = self._is_firm(option.seller_name, option.seller_lei)
        if not is_buyer and not is_seller:
            logger.warning(
                "Tullett option %s in %s has neither side on the firm; skipped",
                option.number,
                header.reference,
            )
            return None

        call_on = AMOUNT.search(option.call_on)
        put_on = AMOUNT.search(option.put_on)
        if not call_on or not put_on:
            logger.warning(
                "Tullett option %s in %s lacks call/put amounts; skipped",
                option.number,
                header.reference,
            )
            return None

        call_ccy = call_on.group(1)
        put_ccy = put_on.group(1)
        pair = self.convention.normalize_pair(call_ccy, put_ccy)
        base_is_call = pair[:3] == call_ccy
        if base_is_call:
            notional, notional_ccy = parse_amount(call_on.group(2)), call_ccy
        else:
            notional, notional_ccy = parse_amount(put_on.group(2)), put_ccy

        events = []
        counterparty_name = option.seller_name if is_buyer else option.buyer_name
        product_type = ProductType.OPTION_VANILLA
        trade = Trade(
            trade_id=leg_trade_id(header.reference, OPTION_LEG, number),
            product_type=product_type,
            source_type=message.source_type,
            source_venue_code=message.source_venue_code,
            message_in_id=message.message_in_id,
            counterparty_code=resolver.counterparty(counterparty_name, BROKER_CODE, events),
            broker_code=BROKER_CODE,
            trader_id=routing.internal_user_id,
            inv_id=routing.inv_id,
            reporting_entity_id=routing.reporting_entity_id,
            currency_pair=pair,
            mic=MIC,
            isin=option.isin,
            trade_date=header.trade_date,
            execution_time_utc=header.execution_time,
            buy_sell="Buy" if is_buyer else "Sell",
            notional=notional or Decimal("0"),
            notional_currency=notional_ccy,
            settlement_date=option.delivery_date,
            uti=option.uti,
            tvtic=header.rtn,
            spot_rate=option.spot_rate,
            swap_points=option.swap_points,
            call_put="Call" if base_is_call else "Put",
            strike=option.strike,
            expiry_date=option.expiry_date,
            cut=resolver.expiry_cut(pair, DEFAULT_CUT, events),
            premium=option.premium,
            premium_currency=option.premium_currency or put_ccy,
            premium_date=option.premium_date,
            portfolio_mx3=resolver.portfolio_mx3(pair, product_type.value, events),
        )
        events.insert(0, normalized_event(self._describe(header, trade), self.name))
        return ParsedTradeResult(trade=trade, workflow_events=events)

    def _build_hedge(
        self,
        hedge: TullettHedge,
        header: TullettHeader,
        routing: TraderRoutingInfo,
        resolver: LookupResolver,
        message: MessageIn,
        number: int,
    ) -> ParsedTradeResult:
        leg = self.convention.normalize_bought_sold(
            hedge.bought_currency, hedge.bought_amount, hedge.sold_currency, hedge.sold_amount
        )
        value_date = hedge.value_date or header.trade_date
        if (value_date - header.trade_date).days <= SPOT_MAX_DAYS:
            product_type, hedge_type = ProductType.SPOT, "SPOT"
        else:
            product_type, hedge_type = ProductType.FWD, "FWD"

        events = []
        counterparty_name = hedge.counterparty_name or BROKER_CODE
        trade = Trade(
            trade_id=leg_trade_id(header.reference, HEDGE_LEG, number),
            product_type=product_type,
            source_type=message.source_type,
            source_venue_code=message.source_venue_code,
            message_in_id=message.message_in_id,
            counterparty_code=resolver.counterparty(counterparty_name, BROKER_CODE, events),
            broker_code=BROKER_CODE,
            trader_id=routing.internal_user_id,
            inv_id=routing.inv_id,
            reporting_entity_id=routing.reporting_entity_id,
            currency_pair=leg.currency_pair,
            mic=MIC,
            isin=hedge.isin,
            trade_date=header.trade_date,
            execution_time_utc=header.execution_time,
            buy_sell=leg.buy_sell,
            notional=leg.notional,
            notional_currency=leg.notional_currency,
            settlement_date=value_date,
            uti=hedge.uti,
            tvtic=header.rtn,
            hedge_rate=hedge.hedge_rate,
            hedge_type=hedge_type,
            portfolio_mx3=resolver.portfolio_mx3(leg.currency_pair, product_type.value, events),
            calypso_book=resolver.calypso_book(routing.internal_user_id, events),
        )
        events.insert(0, normalized_event(self._describe(header, trade), self.name))
        return ParsedTradeResult(trade=trade, workflow_events=events)

    @staticmethod
    def _describe(header: TullettHeader, trade: Trade) -> str:
        text = f"Confirmation normalized: {trade.trade_id} {trade.currency_pair}"
        if header.strategy:
            text += f" ({header.strategy})"
        return text
