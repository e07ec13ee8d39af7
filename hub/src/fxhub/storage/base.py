"""
Persistence port
================

``StpRepository`` is the asynchronous storage interface used by the
orchestrator, the reconcilers, the ingest services and the leader
election.  Two implementations ship with the hub:

* ``InMemoryStpRepository`` – process-local dictionaries guarded by an
  asyncio lock.  Used by tests and dry runs.
* ``DatabaseStpRepository`` – SQLAlchemy async engine with classical
  ``Table`` definitions.

Writes are individually atomic; the orchestrator does not wrap a trade,
its links and its events in one transaction.
"""

from __future__ import annotations

import datetime as dt
from abc import ABC, abstractmethod
from typing import Collection, List, Optional

from ..models import (
    MessageIn,
    PendingTradeSystemLink,
    SystemCode,
    Trade,
    TradeSystemLink,
    TradeSystemStatus,
    TradeWorkflowEvent,
)


class StpRepository(ABC):
    # Messages
    @abstractmethod
    async def insert_message(self, message: MessageIn) -> int: ...

    @abstractmethod
    async def get_message(self, message_in_id: int) -> Optional[MessageIn]: ...

    @abstractmethod
    async def find_message_by_hash(self, payload_hash: str) -> Optional[MessageIn]: ...

    @abstractmethod
    async def get_unparsed_messages(self, limit: int) -> List[MessageIn]:
        """Return unparsed messages without a stored parse error, oldest first."""

    @abstractmethod
    async def update_parse_state(
        self,
        message_in_id: int,
        parsed: bool,
        parse_error: Optional[str],
        parsed_utc: Optional[dt.datetime],
    ) -> None: ...

    # Trades
    @abstractmethod
    async def insert_trade(self, trade: Trade) -> int: ...

    @abstractmethod
    async def get_trade(self, stp_trade_id: int) -> Optional[Trade]: ...

    @abstractmethod
    async def get_trades_for_message(self, message_in_id: int) -> List[Trade]: ...

    # Links
    @abstractmethod
    async def insert_trade_system_link(self, link: TradeSystemLink) -> int: ...

    @abstractmethod
    async def get_trade_system_links(self, stp_trade_id: int) -> List[TradeSystemLink]: ...

    @abstractmethod
    async def get_trade_system_link(
        self, stp_trade_id: int, system_code: SystemCode
    ) -> Optional[TradeSystemLink]: ...

    @abstractmethod
    async def get_pending_trade_system_links(
        self, system_code: SystemCode
    ) -> List[PendingTradeSystemLink]: ...

    @abstractmethod
    async def update_trade_system_link_status(
        self,
        stp_trade_id: int,
        system_code: SystemCode,
        status: TradeSystemStatus,
        external_trade_id: Optional[str] = None,
        last_error: Optional[str] = None,
        booked_by: Optional[str] = None,
        from_statuses: Optional[Collection[TradeSystemStatus]] = None,
    ) -> bool:
        """Update the active link.

        With ``from_statuses`` the write only happens while the link is in
        one of those statuses, checked in the same step as the write.
        Returns ``False`` when no link exists or the guard did not match.
        """

    # Events
    @abstractmethod
    async def insert_trade_workflow_event(self, event: TradeWorkflowEvent) -> int: ...

    @abstractmethod
    async def get_trade_workflow_events(self, stp_trade_id: int) -> List[TradeWorkflowEvent]: ...

    # Leader lease
    @abstractmethod
    async def try_acquire_lease(
        self, name: str, owner: str, ttl_seconds: float, now: dt.datetime
    ) -> bool:
        """Take or renew the named lease if it is free, expired or already ours."""

    @abstractmethod
    async def release_lease(self, name: str, owner: str) -> None: ...


def apply_status(
    link: TradeSystemLink,
    status: TradeSystemStatus,
    external_trade_id: Optional[str],
    last_error: Optional[str],
    booked_by: Optional[str],
    now: dt.datetime,
) -> TradeSystemLink:
    """Return a copy of ``link`` moved to ``status``."""
    changes = {
        "status": status,
        "last_updated_utc": now,
        "last_error": last_error,
    }
    if external_trade_id:
        changes["external_trade_id"] = external_trade_id
    if booked_by:
        changes["booked_by"] = booked_by
    if status == TradeSystemStatus.BOOKED:
        changes["first_booked_utc"] = link.first_booked_utc or now
        changes["last_booked_utc"] = now
    return link.model_copy(update=changes)
