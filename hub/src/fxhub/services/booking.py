"""Manual booking commands on trade system links."""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import UnknownTradeError
from ..models import SystemCode, TradeSystemLink, TradeSystemStatus, TradeWorkflowEvent
from ..storage.base import StpRepository
from ..workflow import BOOKING_REQUESTED_SUFFIX, LINK_CANCELLED

logger = logging.getLogger(__name__)

BOOKABLE_STATUSES = (TradeSystemStatus.NEW, TradeSystemStatus.ERROR)
CANCELLABLE_STATUSES = tuple(s for s in TradeSystemStatus if s != TradeSystemStatus.CANCELLED)


def booking_requested_event_type(system_code: SystemCode) -> str:
    """``MX3`` -> ``Mx3BookingRequested``, ``VOLBROKER_STP`` -> ``VolbrokerStpBookingRequested``."""
    prefix = "".join(part.capitalize() for part in system_code.value.split("_"))
    return f"{prefix}{BOOKING_REQUESTED_SUFFIX}"


class BookingService:
    def __init__(self, repository: StpRepository) -> None:
        self.repository = repository

    async def _link(self, stp_trade_id: int, system_code: SystemCode) -> TradeSystemLink:
        if await self.repository.get_trade(stp_trade_id) is None:
            raise UnknownTradeError(f"Trade {stp_trade_id} not found")
        link = await self.repository.get_trade_system_link(stp_trade_id, system_code)
        if link is None:
            raise UnknownTradeError(f"Trade {stp_trade_id} has no {system_code.value} link")
        return link

    async def request_booking(
        self,
        stp_trade_id: int,
        system_code: SystemCode,
        user: str,
        details: Optional[str] = None,
    ) -> bool:
        """Move a NEW or ERROR link to PENDING.

        Returns ``False`` without changes when the link is in any other
        status.  The response reconciler for the system takes it from here.
        """
        link = await self._link(stp_trade_id, system_code)
        if link.status not in BOOKABLE_STATUSES:
            logger.info(
                "Trade %s %s link is %s; booking not requested",
                stp_trade_id,
                system_code.value,
                link.status.value,
            )
            return False
        changed = await self.repository.update_trade_system_link_status(
            stp_trade_id,
            system_code,
            TradeSystemStatus.PENDING,
            booked_by=user,
            from_statuses=BOOKABLE_STATUSES,
        )
        if not changed:
            return False
        await self.repository.insert_trade_workflow_event(
            TradeWorkflowEvent(
                stp_trade_id=stp_trade_id,
                system_code=system_code.value,
                event_type=booking_requested_event_type(system_code),
                description=details or f"Booking requested by {user}",
                field_name="Status",
                old_value=link.status.value,
                new_value=TradeSystemStatus.PENDING.value,
                initiator_id=user,
            )
        )
        return True

    async def cancel_link(
        self,
        stp_trade_id: int,
        system_code: SystemCode,
        user: str,
        reason: Optional[str] = None,
    ) -> bool:
        link = await self._link(stp_trade_id, system_code)
        if link.status == TradeSystemStatus.CANCELLED:
            return False
        changed = await self.repository.update_trade_system_link_status(
            stp_trade_id,
            system_code,
            TradeSystemStatus.CANCELLED,
            last_error=reason,
            from_statuses=CANCELLABLE_STATUSES,
        )
        if not changed:
            return False
        await self.repository.insert_trade_workflow_event(
            TradeWorkflowEvent(
                stp_trade_id=stp_trade_id,
                system_code=system_code.value,
                event_type=LINK_CANCELLED,
                description=reason or f"Cancelled by {user}",
                field_name="Status",
                old_value=link.status.value,
                new_value=TradeSystemStatus.CANCELLED.value,
                initiator_id=user,
            )
        )
        return True
