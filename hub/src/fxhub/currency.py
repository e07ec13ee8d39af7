"""
Currency conventions
====================

``CurrencyConvention`` decides which of two currencies is the base of a
pair using a priority ranking over the majors.  Higher in the ranking wins;
currencies missing from the ranking sit below every ranked currency and
ties between them are broken alphabetically so the result never depends on
argument order.

The convention is also where amount selection lives.  When a confirmation
states "bought X of A, sold Y of B" the two amounts can disagree because one
of them is a rounded conversion:

* if both currencies are ranked, the base-currency amount is the notional;
* otherwise the larger raw amount wins, since a rounding artefact of an FX
  conversion tends to be the smaller, derived figure.

Keep this rule here so it can be revisited without touching parser control
flow.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Sequence, Tuple

DEFAULT_PRIORITY: Tuple[str, ...] = (
    "EUR",
    "GBP",
    "AUD",
    "NZD",
    "USD",
    "CAD",
    "CHF",
    "JPY",
    "NOK",
    "SEK",
    "DKK",
)


@dataclass(frozen=True)
class NormalizedLeg:
    currency_pair: str
    buy_sell: str
    notional: Decimal
    notional_currency: str


@dataclass(frozen=True)
class CallPutMapping:
    call_put: str
    is_ambiguous: bool


class CurrencyConvention:
    """Immutable currency priority table."""

    def __init__(self, priority: Sequence[str] = DEFAULT_PRIORITY) -> None:
        self._rank: Dict[str, int] = {
            ccy.upper(): index for index, ccy in enumerate(priority)
        }

    def is_ranked(self, ccy: str) -> bool:
        return ccy.upper() in self._rank

    def _sort_key(self, ccy: str) -> Tuple[int, str]:
        code = ccy.upper()
        return (self._rank.get(code, len(self._rank)), code)

    def determine_base(self, ccy_a: str, ccy_b: str) -> str:
        """Return the base currency of the two; symmetric in its arguments."""
        return min(ccy_a.upper(), ccy_b.upper(), key=self._sort_key)

    def normalize_pair(self, ccy_a: str, ccy_b: str) -> str:
        base = self.determine_base(ccy_a, ccy_b)
        quote = ccy_b.upper() if base == ccy_a.upper() else ccy_a.upper()
        return base + quote

    def normalize_bought_sold(
        self,
        bought_ccy: str,
        bought_amount: Decimal,
        sold_ccy: str,
        sold_amount: Decimal,
    ) -> NormalizedLeg:
        """Turn a bought/sold statement into pair, direction and notional.

        Direction is always expressed against the base currency.
        """
        bought = bought_ccy.upper()
        sold = sold_ccy.upper()
        pair = self.normalize_pair(bought, sold)
        base = pair[:3]
        buy_sell = "Buy" if bought == base else "Sell"

        if self.is_ranked(bought) and self.is_ranked(sold):
            if bought == base:
                notional, notional_ccy = bought_amount, bought
            else:
                notional, notional_ccy = sold_amount, sold
        elif bought_amount >= sold_amount:
            notional, notional_ccy = bought_amount, bought
        else:
            notional, notional_ccy = sold_amount, sold

        return NormalizedLeg(
            currency_pair=pair,
            buy_sell=buy_sell,
            notional=notional,
            notional_currency=notional_ccy,
        )

    @staticmethod
    def map_call_put_to_base(
        call_put: Optional[str],
        currency_pair: Optional[str],
        strike_currency: Optional[str],
    ) -> CallPutMapping:
        """Express a call/put flag relative to the base currency.

        A strike quoted in the base currency passes through; a strike quoted
        in the quote currency inverts Call and Put.  Anything else passes
        through and is flagged ambiguous.
        """
        raw = (call_put or "").strip().upper()
        if not raw:
            return CallPutMapping("", False)
        if raw in ("C", "CALL"):
            as_is, inverted = "Call", "Put"
        elif raw in ("P", "PUT"):
            as_is, inverted = "Put", "Call"
        else:
            return CallPutMapping(call_put.strip(), True)

        pair = (currency_pair or "").replace("/", "").strip().upper()
        strike_ccy = (strike_currency or "").strip().upper()
        if len(pair) != 6 or not strike_ccy:
            return CallPutMapping(as_is, True)
        if strike_ccy == pair[:3]:
            return CallPutMapping(as_is, False)
        if strike_ccy == pair[3:]:
            return CallPutMapping(inverted, False)
        return CallPutMapping(as_is, True)
