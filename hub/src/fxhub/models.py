"""
Domain models for the FX trade hub using Pydantic.

These models describe the raw inbound messages, the canonical trade legs
derived from them, the per-system booking links and the append-only
workflow events.  Enum values match the persisted column values so rows
can be written and read without translation.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class SourceType(str, Enum):
    EMAIL = "EMAIL"
    FIX = "FIX"
    FILE = "FILE"


class ProductType(str, Enum):
    SPOT = "SPOT"
    FWD = "FWD"
    SWAP = "SWAP"
    NDF = "NDF"
    OPTION_VANILLA = "OPTION_VANILLA"
    OPTION_NDO = "OPTION_NDO"

    @property
    def is_option(self) -> bool:
        return self in (ProductType.OPTION_VANILLA, ProductType.OPTION_NDO)

    @property
    def is_linear(self) -> bool:
        return self in (ProductType.SPOT, ProductType.FWD, ProductType.NDF)


class SystemCode(str, Enum):
    MX3 = "MX3"
    CALYPSO = "CALYPSO"
    VOLBROKER_STP = "VOLBROKER_STP"
    RTNS = "RTNS"


class TradeSystemStatus(str, Enum):
    NEW = "NEW"
    PENDING = "PENDING"
    BOOKED = "BOOKED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"
    READY_TO_ACK = "READY_TO_ACK"
    ACK_SENT = "ACK_SENT"
    ACK_ERROR = "ACK_ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (
            TradeSystemStatus.BOOKED,
            TradeSystemStatus.ERROR,
            TradeSystemStatus.CANCELLED,
        )


OPEN_STATUSES = tuple(status for status in TradeSystemStatus if not status.is_terminal)


class StpMode(str, Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"


class MessageIn(BaseModel):
    """One raw inbound message as received from an ingest channel."""

    message_in_id: Optional[int] = None
    source_type: SourceType
    source_venue_code: str
    raw_payload: str = ""
    received_utc: dt.datetime = Field(default_factory=utc_now)
    source_timestamp: Optional[dt.datetime] = None
    session_key: Optional[str] = None
    is_admin: bool = False
    parsed_flag: bool = False
    parsed_utc: Optional[dt.datetime] = None
    parse_error: Optional[str] = None
    email_subject: Optional[str] = None
    email_from: Optional[str] = None
    email_to: Optional[str] = None
    fix_msg_type: Optional[str] = None
    fix_seq_num: Optional[int] = None
    source_message_key: Optional[str] = None
    raw_payload_hash: Optional[str] = None


# Field groups owned by a single family of product types.  A trade of any
# other product type must leave them blank.
OPTION_FIELDS = (
    "call_put",
    "strike",
    "expiry_date",
    "cut",
    "premium",
    "premium_currency",
    "premium_date",
)
HEDGE_FIELDS = ("hedge_type", "hedge_rate")
NDF_FIELDS = ("fixing_date", "fixing_source", "settlement_currency")

_ALLOWED_GROUPS = {
    ProductType.SPOT: (HEDGE_FIELDS,),
    ProductType.FWD: (HEDGE_FIELDS,),
    ProductType.SWAP: (HEDGE_FIELDS,),
    ProductType.NDF: (HEDGE_FIELDS, NDF_FIELDS),
    ProductType.OPTION_VANILLA: (OPTION_FIELDS,),
    ProductType.OPTION_NDO: (OPTION_FIELDS, NDF_FIELDS),
}


class Trade(BaseModel):
    """One canonical leg of a confirmed FX deal."""

    stp_trade_id: Optional[int] = None
    trade_id: str
    product_type: ProductType
    source_type: SourceType
    source_venue_code: str
    message_in_id: Optional[int] = None

    counterparty_code: str = ""
    broker_code: str = ""
    trader_id: str = ""
    inv_id: str = ""
    reporting_entity_id: str = ""

    currency_pair: str = ""
    mic: str = ""
    isin: str = ""
    trade_date: dt.date
    execution_time_utc: dt.datetime
    buy_sell: str = ""
    notional: Decimal = Decimal("0")
    notional_currency: str = ""
    settlement_date: Optional[dt.date] = None
    near_settlement_date: Optional[dt.date] = None

    is_non_deliverable: bool = False
    fixing_date: Optional[dt.date] = None
    fixing_source: str = ""
    settlement_currency: str = ""

    uti: str = ""
    tvtic: str = ""
    margin: Optional[Decimal] = None

    hedge_rate: Optional[Decimal] = None
    spot_rate: Optional[Decimal] = None
    swap_points: Optional[Decimal] = None
    hedge_type: str = ""

    call_put: str = ""
    strike: Optional[Decimal] = None
    expiry_date: Optional[dt.date] = None
    cut: str = ""
    premium: Optional[Decimal] = None
    premium_currency: str = ""
    premium_date: Optional[dt.date] = None

    portfolio_mx3: str = ""
    calypso_book: str = ""
    is_deleted: bool = False
    last_updated_utc: dt.datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_product_fields(self) -> "Trade":
        allowed = set()
        for group in _ALLOWED_GROUPS[self.product_type]:
            allowed.update(group)
        for name in OPTION_FIELDS + HEDGE_FIELDS + NDF_FIELDS:
            if name in allowed:
                continue
            value = getattr(self, name)
            if value not in (None, ""):
                raise ValueError(
                    f"{name} is not valid for product type {self.product_type.value}"
                )
        return self


class TradeSystemLink(BaseModel):
    """Booking status of one trade against one downstream system."""

    link_id: Optional[int] = None
    stp_trade_id: Optional[int] = None
    system_code: SystemCode
    status: TradeSystemStatus = TradeSystemStatus.NEW
    external_trade_id: Optional[str] = None
    error_code: Optional[str] = None
    last_error: Optional[str] = None
    portfolio_code: Optional[str] = None
    book_flag: Optional[bool] = None
    stp_mode: StpMode = StpMode.MANUAL
    imported_by: str = "STP"
    booked_by: Optional[str] = None
    first_booked_utc: Optional[dt.datetime] = None
    last_booked_utc: Optional[dt.datetime] = None
    stp_flag: Optional[bool] = None
    created_utc: dt.datetime = Field(default_factory=utc_now)
    last_updated_utc: dt.datetime = Field(default_factory=utc_now)
    is_deleted: bool = False


class TradeWorkflowEvent(BaseModel):
    """Append-only audit record attached to a trade."""

    event_id: Optional[int] = None
    stp_trade_id: Optional[int] = None
    system_code: Optional[str] = None
    event_type: str
    description: str = ""
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    event_time_utc: dt.datetime = Field(default_factory=utc_now)
    initiator_id: str = "STP"


class PendingTradeSystemLink(BaseModel):
    """A pending link joined with the trade fields needed to name files."""

    stp_trade_id: int
    trade_id: str
    product_type: str
    system_code: SystemCode


class TraderRoutingInfo(BaseModel):
    internal_user_id: str
    inv_id: str = ""
    reporting_entity_id: str = ""
