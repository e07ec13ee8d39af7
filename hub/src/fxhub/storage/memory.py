"""
In-memory implementation of the persistence port.

All state lives in dictionaries guarded by a single asyncio lock so the
store can be shared by the orchestrator, the reconcilers and the election
loop inside one event loop.  Models are copied on the way in and out so
callers never hold references into the store.
"""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Collection, Dict, List, Optional, Tuple

from ..errors import DuplicateLinkError, DuplicateTradeError
from ..models import (
    MessageIn,
    PendingTradeSystemLink,
    SystemCode,
    Trade,
    TradeSystemLink,
    TradeSystemStatus,
    TradeWorkflowEvent,
    utc_now,
)
from .base import StpRepository, apply_status


class InMemoryStpRepository(StpRepository):
    def __init__(self) -> None:
        self._messages: Dict[int, MessageIn] = {}
        self._trades: Dict[int, Trade] = {}
        self._links: Dict[int, TradeSystemLink] = {}
        self._events: Dict[int, TradeWorkflowEvent] = {}
        self._leases: Dict[str, Tuple[str, dt.datetime]] = {}
        self._ids = {"message": 0, "trade": 0, "link": 0, "event": 0}
        self._lock = asyncio.Lock()

    def _next_id(self, kind: str) -> int:
        self._ids[kind] += 1
        return self._ids[kind]

    async def insert_message(self, message: MessageIn) -> int:
        async with self._lock:
            message_id = self._next_id("message")
            self._messages[message_id] = message.model_copy(update={"message_in_id": message_id})
            return message_id

    async def get_message(self, message_in_id: int) -> Optional[MessageIn]:
        async with self._lock:
            message = self._messages.get(message_in_id)
            return message.model_copy() if message else None

    async def find_message_by_hash(self, payload_hash: str) -> Optional[MessageIn]:
        async with self._lock:
            for message in self._messages.values():
                if message.raw_payload_hash == payload_hash:
                    return message.model_copy()
            return None

    async def get_unparsed_messages(self, limit: int) -> List[MessageIn]:
        async with self._lock:
            pending = [
                m.model_copy()
                for _, m in sorted(self._messages.items())
                if not m.parsed_flag and m.parse_error is None
            ]
            return pending[:limit]

    async def update_parse_state(
        self,
        message_in_id: int,
        parsed: bool,
        parse_error: Optional[str],
        parsed_utc: Optional[dt.datetime],
    ) -> None:
        async with self._lock:
            message = self._messages.get(message_in_id)
            if message is None:
                return
            self._messages[message_in_id] = message.model_copy(
                update={
                    "parsed_flag": parsed,
                    "parse_error": parse_error,
                    "parsed_utc": parsed_utc,
                }
            )

    async def insert_trade(self, trade: Trade) -> int:
        async with self._lock:
            if any(t.trade_id == trade.trade_id for t in self._trades.values()):
                raise DuplicateTradeError(f"Trade id {trade.trade_id} already exists")
            stp_trade_id = self._next_id("trade")
            self._trades[stp_trade_id] = trade.model_copy(update={"stp_trade_id": stp_trade_id})
            return stp_trade_id

    async def get_trade(self, stp_trade_id: int) -> Optional[Trade]:
        async with self._lock:
            trade = self._trades.get(stp_trade_id)
            return trade.model_copy() if trade else None

    async def get_trades_for_message(self, message_in_id: int) -> List[Trade]:
        async with self._lock:
            return [
                t.model_copy()
                for _, t in sorted(self._trades.items())
                if t.message_in_id == message_in_id
            ]

    def _active_link(
        self, stp_trade_id: int, system_code: SystemCode
    ) -> Optional[Tuple[int, TradeSystemLink]]:
        for link_id, link in self._links.items():
            if (
                link.stp_trade_id == stp_trade_id
                and link.system_code == system_code
                and not link.is_deleted
            ):
                return link_id, link
        return None

    async def insert_trade_system_link(self, link: TradeSystemLink) -> int:
        async with self._lock:
            if self._active_link(link.stp_trade_id, link.system_code) is not None:
                raise DuplicateLinkError(
                    f"Trade {link.stp_trade_id} already has an active "
                    f"{link.system_code.value} link"
                )
            link_id = self._next_id("link")
            self._links[link_id] = link.model_copy(update={"link_id": link_id})
            return link_id

    async def get_trade_system_links(self, stp_trade_id: int) -> List[TradeSystemLink]:
        async with self._lock:
            return [
                link.model_copy()
                for _, link in sorted(self._links.items())
                if link.stp_trade_id == stp_trade_id and not link.is_deleted
            ]

    async def get_trade_system_link(
        self, stp_trade_id: int, system_code: SystemCode
    ) -> Optional[TradeSystemLink]:
        async with self._lock:
            found = self._active_link(stp_trade_id, system_code)
            return found[1].model_copy() if found else None

    async def get_pending_trade_system_links(
        self, system_code: SystemCode
    ) -> List[PendingTradeSystemLink]:
        async with self._lock:
            pending = []
            for _, link in sorted(self._links.items()):
                if (
                    link.system_code != system_code
                    or link.status != TradeSystemStatus.PENDING
                    or link.is_deleted
                ):
                    continue
                trade = self._trades.get(link.stp_trade_id)
                if trade is None or trade.is_deleted:
                    continue
                pending.append(
                    PendingTradeSystemLink(
                        stp_trade_id=trade.stp_trade_id,
                        trade_id=trade.trade_id,
                        product_type=trade.product_type.value,
                        system_code=system_code,
                    )
                )
            return pending

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
        async with self._lock:
            found = self._active_link(stp_trade_id, system_code)
            if found is None:
                return False
            link_id, link = found
            if from_statuses is not None and link.status not in from_statuses:
                return False
            self._links[link_id] = apply_status(
                link, status, external_trade_id, last_error, booked_by, utc_now()
            )
            return True

    async def insert_trade_workflow_event(self, event: TradeWorkflowEvent) -> int:
        async with self._lock:
            event_id = self._next_id("event")
            self._events[event_id] = event.model_copy(update={"event_id": event_id})
            return event_id

    async def get_trade_workflow_events(self, stp_trade_id: int) -> List[TradeWorkflowEvent]:
        async with self._lock:
            return [
                e.model_copy()
                for _, e in sorted(self._events.items())
                if e.stp_trade_id == stp_trade_id
            ]

    async def try_acquire_lease(
        self, name: str, owner: str, ttl_seconds: float, now: dt.datetime
    ) -> bool:
        async with self._lock:
            current = self._leases.get(name)
            if current is not None:
                holder, expires = current
                if holder != owner and expires > now:
                    return False
            self._leases[name] = (owner, now + dt.timedelta(seconds=ttl_seconds))
            return True

    async def release_lease(self, name: str, owner: str) -> None:
        async with self._lock:
            current = self._leases.get(name)
            if current is not None and current[0] == owner:
                del self._leases[name]
