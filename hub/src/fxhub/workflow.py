"""Workflow event types and small factories for building events."""

from __future__ import annotations

from typing import Optional

from .models import TradeWorkflowEvent

MESSAGE_IN_RECEIVED = "MessageInReceived"
TRADE_NORMALIZED = "TradeNormalized"
WARNING = "WARNING"
BOOKING_CONFIRMED = "BookingConfirmed"
BOOKING_REJECTED = "BookingRejected"
BOOKING_REQUESTED_SUFFIX = "BookingRequested"
LINK_CANCELLED = "LinkCancelled"


def warning_event(
    description: str,
    initiator: str,
    field_name: Optional[str] = None,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    system_code: Optional[str] = None,
) -> TradeWorkflowEvent:
    return TradeWorkflowEvent(
        event_type=WARNING,
        description=description,
        field_name=field_name,
        old_value=old_value,
        new_value=new_value,
        system_code=system_code,
        initiator_id=initiator,
    )


def normalized_event(description: str, initiator: str) -> TradeWorkflowEvent:
    return TradeWorkflowEvent(
        event_type=TRADE_NORMALIZED,
        description=description,
        initiator_id=initiator,
    )
