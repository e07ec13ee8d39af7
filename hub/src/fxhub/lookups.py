"""
Reference-data lookups
======================

Parsers resolve trader routing, counterparties, portfolios, books, cuts
and brokers through a ``LookupRepository``.  Every method returns ``None``
on a miss; callers substitute a fallback value and record a warning.

``InMemoryLookupRepository`` holds immutable snapshots of the reference
tables.  It is what parsers run against in production too: the database
store loads a snapshot with ``DatabaseStpRepository.load_lookups()`` so the
parsers stay synchronous and free of I/O.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from .models import TraderRoutingInfo


class LookupRepository(ABC):
    @abstractmethod
    def resolve_counterparty_code(
        self, source_type: str, venue_code: str, external_name: str
    ) -> Optional[str]: ...

    @abstractmethod
    def get_trader_routing_info(
        self, venue_code: str, trader_code: str
    ) -> Optional[TraderRoutingInfo]: ...

    @abstractmethod
    def get_portfolio_code(
        self, system_code: str, currency_pair: str, product_type: Optional[str]
    ) -> Optional[str]: ...

    @abstractmethod
    def get_calypso_book_by_trader_id(self, trader_id: str) -> Optional[str]: ...

    @abstractmethod
    def get_expiry_cut_by_currency_pair(self, currency_pair: str) -> Optional[str]: ...

    @abstractmethod
    def get_broker_mapping(
        self, venue_code: str, external_broker_code: str
    ) -> Optional[str]: ...


@dataclass(frozen=True)
class CounterpartyRule:
    external_name: str
    counterparty_code: str
    source_type: Optional[str] = None
    venue_code: Optional[str] = None
    priority: int = 100


@dataclass(frozen=True)
class PortfolioRule:
    system_code: str
    currency_pair: str
    portfolio_code: str
    product_type: Optional[str] = None


def _key(value: Optional[str]) -> str:
    return (value or "").strip().upper()


class InMemoryLookupRepository(LookupRepository):
    """Lookup tables held in memory.

    Matching mirrors the SQL rules: counterparty rules with a null source
    type or venue match any value and lower ``priority`` wins; portfolio
    rules with a specific product type win over product-agnostic ones.
    """

    def __init__(
        self,
        counterparties: Iterable[CounterpartyRule] = (),
        traders: Optional[Dict[Tuple[str, str], TraderRoutingInfo]] = None,
        portfolios: Iterable[PortfolioRule] = (),
        calypso_books: Optional[Dict[str, str]] = None,
        expiry_cuts: Optional[Dict[str, str]] = None,
        brokers: Optional[Dict[Tuple[str, str], str]] = None,
    ) -> None:
        self._counterparties = tuple(sorted(counterparties, key=lambda r: r.priority))
        self._traders = {
            (_key(venue), _key(code)): info for (venue, code), info in (traders or {}).items()
        }
        self._portfolios = tuple(portfolios)
        self._calypso_books = {_key(k): v for k, v in (calypso_books or {}).items()}
        self._expiry_cuts = {_key(k): v for k, v in (expiry_cuts or {}).items()}
        self._brokers = {
            (_key(venue), _key(code)): value for (venue, code), value in (brokers or {}).items()
        }

    def resolve_counterparty_code(
        self, source_type: str, venue_code: str, external_name: str
    ) -> Optional[str]:
        name = _key(external_name)
        if not name:
            return None
        for rule in self._counterparties:
            if _key(rule.external_name) != name:
                continue
            if rule.source_type and _key(rule.source_type) != _key(source_type):
                continue
            if rule.venue_code and _key(rule.venue_code) != _key(venue_code):
                continue
            return rule.counterparty_code
        return None

    def get_trader_routing_info(
        self, venue_code: str, trader_code: str
    ) -> Optional[TraderRoutingInfo]:
        if not venue_code or not trader_code:
            return None
        return self._traders.get((_key(venue_code), _key(trader_code)))

    def get_portfolio_code(
        self, system_code: str, currency_pair: str, product_type: Optional[str]
    ) -> Optional[str]:
        if not system_code or not currency_pair:
            return None
        fallback = None
        for rule in self._portfolios:
            if _key(rule.system_code) != _key(system_code):
                continue
            if _key(rule.currency_pair) != _key(currency_pair):
                continue
            if rule.product_type is None:
                fallback = fallback or rule.portfolio_code
            elif product_type is None or _key(rule.product_type) == _key(product_type):
                return rule.portfolio_code
        return fallback

    def get_calypso_book_by_trader_id(self, trader_id: str) -> Optional[str]:
        return self._calypso_books.get(_key(trader_id))

    def get_expiry_cut_by_currency_pair(self, currency_pair: str) -> Optional[str]:
        return self._expiry_cuts.get(_key(currency_pair))

    def get_broker_mapping(
        self, venue_code: str, external_broker_code: str
    ) -> Optional[str]:
        return self._brokers.get((_key(venue_code), _key(external_broker_code)))
