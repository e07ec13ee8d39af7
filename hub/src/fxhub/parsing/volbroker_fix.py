"""
Volbroker FIX trade capture parser
==================================

Parses Volbroker ``AE`` (TradeCaptureReport) drop-copies.  One report can
carry several legs, typically an option and its forward hedge, and each leg
becomes its own trade.

Header
------

* ``55`` currency pair (``/`` removed), ``30`` MIC.
* ``818``, else ``571``, else ``17`` – venue trade key used for trade ids.
* ``75`` trade date and ``60`` execution time, falling back to the message
  timestamps.
* ``194`` / ``195`` – spot rate and forward points copied onto hedge legs.
* ``1903`` – UTI namespace prefix (max 20 chars).

Direction
---------

The firm's own side in the SIDES block gives the baseline direction.  Leg
side ``B`` keeps it, ``C``/``S`` flips it.  When no own side is found the
first ``Side`` tag is used and every trade gets a ``WARNING`` event.

Legs
----

``609=OPT`` legs are vanilla options, ``609=FWD`` legs are forward hedges.
Leg notionals (``687``) are quoted in millions.  A ``688=USI`` qualifier
marks the following ``689`` as the leg TVTIC.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from ..fix import (
    FixTag,
    extract_leg_groups,
    extract_parties,
    get_tag_value,
    parse_fix_tags,
    resolve_baseline_direction,
    resolve_counterparty_id,
    resolve_leg_direction,
    resolve_trader_code,
)
from ..fix import tags as T
from ..fix.lexer import parse_fix_date, parse_fix_decimal, parse_fix_timestamp
from ..models import MessageIn, ProductType, SourceType, Trade
from ..workflow import normalized_event, warning_event
from .base import (
    HEDGE_LEG,
    OPTION_LEG,
    InboundMessageParser,
    ParsedTradeResult,
    ParseResult,
    fallback_execution_time,
    leg_trade_id,
)

logger = logging.getLogger(__name__)

NOTIONAL_MULTIPLIER = Decimal("1000000")
MAX_UTI_PREFIX = 20


@dataclass
class FixLeg:
    security_type: str = ""
    side: str = ""
    tenor: str = ""
    call_put: str = ""
    strike_currency: str = ""
    strike: str = ""
    expiry: str = ""
    venue_cut: str = ""
    notional: str = ""
    notional_currency: str = ""
    premium: str = ""
    isin: str = ""
    leg_uti: str = ""
    settlement_date: str = ""
    hedge_rate: str = ""
    tvtic: str = ""


_LEG_FIELDS: Dict[int, str] = {
    T.LEG_SECURITY_TYPE: "security_type",
    T.LEG_SIDE: "side",
    T.LEG_TENOR: "tenor",
    T.LEG_CALL_PUT: "call_put",
    T.LEG_STRIKE_CURRENCY: "strike_currency",
    T.LEG_STRIKE: "strike",
    T.LEG_MATURITY_DATE: "expiry",
    T.LEG_CUT: "venue_cut",
    T.LEG_QTY: "notional",
    T.LEG_CURRENCY: "notional_currency",
    T.LEG_PREMIUM: "premium",
    T.LEG_ISIN: "isin",
    T.LEG_UTI: "leg_uti",
    T.LEG_SETTL_DATE: "settlement_date",
    T.LEG_LAST_PX: "hedge_rate",
}


def parse_leg(group: Sequence[FixTag]) -> FixLeg:
    leg = FixLeg()
    pending_qualifier: Optional[str] = None
    for item in group:
        attr = _LEG_FIELDS.get(item.tag)
        if attr is not None:
            setattr(leg, attr, item.value)
        elif item.tag == T.LEG_ID_QUALIFIER:
            pending_qualifier = item.value
        elif item.tag == T.LEG_ID_VALUE:
            if pending_qualifier == T.TVTIC_QUALIFIER:
                leg.tvtic = item.value
            pending_qualifier = None
    return leg


def product_type_for_leg(leg: FixLeg) -> ProductType:
    security_type = leg.security_type.strip().upper()
    if security_type == "FWD":
        return ProductType.FWD
    if security_type == "SPOT":
        return ProductType.SPOT
    return ProductType.OPTION_VANILLA


class VolbrokerFixAeParser(InboundMessageParser):
    name = "VolbrokerFixAeParser"
    source_type = SourceType.FIX
    venue_codes = ("VOLBROKER",)
    msg_types = ("AE",)

    def parse_payload(self, message: MessageIn) -> ParseResult:
        tags = parse_fix_tags(message.raw_payload)
        if not tags:
            return ParseResult.failed("No FIX tags found in payload")

        symbol = get_tag_value(tags, T.SYMBOL)
        if not symbol:
            return ParseResult.failed("Missing Symbol (55) in AE message")
        currency_pair = symbol.replace("/", "").strip().upper()
        trade_key = (
            get_tag_value(tags, T.SECONDARY_TRADE_REPORT_ID)
            or get_tag_value(tags, T.TRADE_REPORT_ID)
            or get_tag_value(tags, T.EXEC_ID)
            or "UNKNOWN"
        )
        mic = get_tag_value(tags, T.LAST_MKT) or ""
        trade_date = parse_fix_date(get_tag_value(tags, T.TRADE_DATE)) or message.received_utc.date()
        exec_time = parse_fix_timestamp(
            get_tag_value(tags, T.TRANSACT_TIME)
        ) or fallback_execution_time(message)
        spot_rate = parse_fix_decimal(get_tag_value(tags, T.LAST_SPOT_RATE))
        forward_points = parse_fix_decimal(get_tag_value(tags, T.LAST_FORWARD_POINTS))
        uti_prefix = (get_tag_value(tags, T.UTI_PREFIX) or "")[:MAX_UTI_PREFIX]

        baseline = resolve_baseline_direction(tags, self.firm.party_id)

        parties = extract_parties(tags)
        external_counterparty = resolve_counterparty_id(parties, self.firm.party_id)
        trader_code = resolve_trader_code(parties)
        if not trader_code:
            return ParseResult.failed("No trader party (role 122) in AE message")

        legs = [parse_leg(group) for group in extract_leg_groups(tags)]
        if not legs:
            return ParseResult.failed("No legs found in AE message")

        resolver = self.resolver(message)
        routing = resolver.trader(trader_code)

        results: List[ParsedTradeResult] = []
        counters = {OPTION_LEG: 0, HEDGE_LEG: 0}
        for leg in legs:
            events = []
            product_type = product_type_for_leg(leg)
            kind = OPTION_LEG if product_type.is_option else HEDGE_LEG
            counters[kind] += 1

            if baseline.is_fallback:
                events.append(
                    warning_event(
                        "Own side not found in SIDES block; direction taken from first "
                        f"Side tag '{baseline.raw_side or ''}'",
                        self.name,
                        field_name="BuySell",
                        new_value=baseline.direction,
                    )
                )

            if routing is None:
                events.append(
                    warning_event(
                        f"No trader mapping for venue '{message.source_venue_code}' and "
                        f"trader code '{trader_code}'",
                        self.name,
                        field_name="TraderId",
                        old_value=trader_code,
                        new_value="",
                    )
                )
                trader_id = inv_id = reporting_entity_id = ""
            else:
                trader_id = routing.internal_user_id
                inv_id = routing.inv_id
                reporting_entity_id = routing.reporting_entity_id

            if external_counterparty:
                counterparty = resolver.counterparty(
                    external_counterparty, external_counterparty, events
                )
            else:
                counterparty = ""
            broker = resolver.broker(
                message.source_venue_code, message.source_venue_code, events
            )
            portfolio = resolver.portfolio_mx3(currency_pair, product_type.value, events)

            notional = parse_fix_decimal(leg.notional) or Decimal("0")
            settlement_date = parse_fix_date(leg.settlement_date) or trade_date
            if leg.tvtic and uti_prefix:
                uti = uti_prefix + leg.tvtic
            else:
                uti = leg.leg_uti

            fields = dict(
                trade_id=leg_trade_id(trade_key, kind, counters[kind]),
                product_type=product_type,
                source_type=message.source_type,
                source_venue_code=message.source_venue_code,
                message_in_id=message.message_in_id,
                counterparty_code=counterparty,
                broker_code=broker,
                trader_id=trader_id,
                inv_id=inv_id,
                reporting_entity_id=reporting_entity_id,
                currency_pair=currency_pair,
                mic=mic,
                isin=leg.isin,
                trade_date=trade_date,
                execution_time_utc=exec_time,
                buy_sell=resolve_leg_direction(baseline.direction, leg.side),
                notional=notional * NOTIONAL_MULTIPLIER,
                notional_currency=leg.notional_currency,
                settlement_date=settlement_date,
                uti=uti,
                tvtic=leg.tvtic,
                portfolio_mx3=portfolio,
            )

            if product_type.is_option:
                mapping = self.convention.map_call_put_to_base(
                    leg.call_put, currency_pair, leg.strike_currency
                )
                if mapping.is_ambiguous:
                    events.append(
                        warning_event(
                            f"Strike currency '{leg.strike_currency}' does not match "
                            f"{currency_pair}; call/put passed through unchanged",
                            self.name,
                            field_name="CallPut",
                            old_value=leg.call_put,
                            new_value=mapping.call_put,
                        )
                    )
                fields.update(
                    call_put=mapping.call_put,
                    cut=resolver.expiry_cut(currency_pair, "", events),
                    strike=parse_fix_decimal(leg.strike),
                    expiry_date=parse_fix_date(leg.expiry) or trade_date,
                    premium=parse_fix_decimal(leg.premium),
                    premium_currency=leg.notional_currency,
                    premium_date=settlement_date,
                )
            else:
                is_forward = product_type == ProductType.FWD
                fields.update(
                    hedge_type="Forward" if is_forward else "Spot",
                    hedge_rate=parse_fix_decimal(leg.hedge_rate),
                    spot_rate=spot_rate,
                    swap_points=forward_points if is_forward else None,
                    calypso_book=resolver.calypso_book(trader_id, events),
                )

            trade = Trade(**fields)
            events.insert(
                0,
                normalized_event(
                    f"Volbroker AE leg {trade.trade_id} normalized", self.name
                ),
            )
            results.append(ParsedTradeResult(trade=trade, workflow_events=events))

        return ParseResult.ok(results)
