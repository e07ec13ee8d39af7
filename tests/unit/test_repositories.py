"""Behaviour shared by the in-memory and SQLAlchemy repositories.

The database variant runs against a throwaway SQLite file through
``aiosqlite``.
"""

import datetime as dt
from decimal import Decimal

import pytest
from sqlalchemy import insert

from fxhub.errors import DuplicateLinkError, DuplicateTradeError
from fxhub.models import (
    OPEN_STATUSES,
    MessageIn,
    ProductType,
    SourceType,
    SystemCode,
    Trade,
    TradeSystemLink,
    TradeSystemStatus,
    TradeWorkflowEvent,
)
from fxhub.storage import database
from fxhub.storage.database import DatabaseStpRepository
from fxhub.storage.memory import InMemoryStpRepository

NOW = dt.datetime(2026, 1, 15, 10, 0, tzinfo=dt.timezone.utc)


async def make_repository(kind, tmp_path):
    if kind == "memory":
        return InMemoryStpRepository()
    repo = DatabaseStpRepository.from_uri(f"sqlite+aiosqlite:///{tmp_path / 'stp.db'}")
    await repo.init_db()
    return repo


async def close(repo):
    if isinstance(repo, DatabaseStpRepository):
        await repo.close()


def _message(payload="payload", digest="abc"):
    return MessageIn(
        source_type=SourceType.EMAIL,
        source_venue_code="JPM",
        raw_payload=payload,
        raw_payload_hash=digest,
        received_utc=NOW,
    )


def _trade(trade_id="JPM-1", **fields):
    return Trade(
        trade_id=trade_id,
        product_type=ProductType.SPOT,
        source_type=SourceType.EMAIL,
        source_venue_code="JPM",
        trade_date=dt.date(2026, 1, 15),
        execution_time_utc=NOW,
        currency_pair="EURUSD",
        buy_sell="Buy",
        notional=Decimal("1000000"),
        notional_currency="EUR",
        hedge_type="Spot",
        **fields,
    )


KINDS = ["memory", "database"]


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", KINDS)
async def test_message_lifecycle(kind, tmp_path):
    repo = await make_repository(kind, tmp_path)
    try:
        first = await repo.insert_message(_message(digest="h1"))
        second = await repo.insert_message(_message(payload="other", digest="h2"))
        assert second > first

        found = await repo.find_message_by_hash("h2")
        assert found.message_in_id == second
        assert await repo.find_message_by_hash("missing") is None

        pending = await repo.get_unparsed_messages(10)
        assert [m.message_in_id for m in pending] == [first, second]

        await repo.update_parse_state(first, False, "broken", NOW)
        await repo.update_parse_state(second, True, None, NOW)
        assert await repo.get_unparsed_messages(10) == []

        stored = await repo.get_message(first)
        assert stored.parse_error == "broken"
        assert stored.received_utc == NOW
        assert stored.source_type == SourceType.EMAIL
        assert await repo.get_message(999) is None
    finally:
        await close(repo)


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", KINDS)
async def test_trade_round_trip_and_duplicate_id(kind, tmp_path):
    repo = await make_repository(kind, tmp_path)
    try:
        message_id = await repo.insert_message(_message())
        stp_id = await repo.insert_trade(_trade(message_in_id=message_id))
        trade = await repo.get_trade(stp_id)
        assert trade.stp_trade_id == stp_id
        assert trade.trade_id == "JPM-1"
        assert trade.notional == Decimal("1000000")
        assert trade.product_type == ProductType.SPOT
        assert trade.execution_time_utc == NOW
        assert [t.stp_trade_id for t in await repo.get_trades_for_message(message_id)] == [stp_id]

        with pytest.raises(DuplicateTradeError):
            await repo.insert_trade(_trade())
    finally:
        await close(repo)


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", KINDS)
async def test_links_status_and_pending(kind, tmp_path):
    repo = await make_repository(kind, tmp_path)
    try:
        stp_id = await repo.insert_trade(_trade())
        await repo.insert_trade_system_link(
            TradeSystemLink(stp_trade_id=stp_id, system_code=SystemCode.MX3)
        )
        with pytest.raises(DuplicateLinkError):
            await repo.insert_trade_system_link(
                TradeSystemLink(stp_trade_id=stp_id, system_code=SystemCode.MX3)
            )
        assert await repo.get_pending_trade_system_links(SystemCode.MX3) == []

        assert await repo.update_trade_system_link_status(
            stp_id, SystemCode.MX3, TradeSystemStatus.PENDING, booked_by="alice"
        )
        pending = await repo.get_pending_trade_system_links(SystemCode.MX3)
        assert [(p.stp_trade_id, p.trade_id, p.product_type) for p in pending] == [
            (stp_id, "JPM-1", "SPOT")
        ]
        assert await repo.get_pending_trade_system_links(SystemCode.CALYPSO) == []

        await repo.update_trade_system_link_status(
            stp_id, SystemCode.MX3, TradeSystemStatus.BOOKED, external_trade_id="MX-1"
        )
        link = await repo.get_trade_system_link(stp_id, SystemCode.MX3)
        assert link.status == TradeSystemStatus.BOOKED
        assert link.external_trade_id == "MX-1"
        assert link.booked_by == "alice"
        assert link.first_booked_utc is not None
        assert link.last_error is None

        assert not await repo.update_trade_system_link_status(
            stp_id, SystemCode.CALYPSO, TradeSystemStatus.BOOKED
        )
        assert await repo.get_trade_system_link(stp_id, SystemCode.CALYPSO) is None
    finally:
        await close(repo)


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", KINDS)
async def test_guarded_status_update_leaves_terminal_link_alone(kind, tmp_path):
    repo = await make_repository(kind, tmp_path)
    try:
        stp_id = await repo.insert_trade(_trade())
        await repo.insert_trade_system_link(
            TradeSystemLink(
                stp_trade_id=stp_id,
                system_code=SystemCode.CALYPSO,
                status=TradeSystemStatus.PENDING,
            )
        )
        assert await repo.update_trade_system_link_status(
            stp_id,
            SystemCode.CALYPSO,
            TradeSystemStatus.BOOKED,
            external_trade_id="CAL-1",
            from_statuses=OPEN_STATUSES,
        )
        booked = await repo.get_trade_system_link(stp_id, SystemCode.CALYPSO)

        assert not await repo.update_trade_system_link_status(
            stp_id,
            SystemCode.CALYPSO,
            TradeSystemStatus.ERROR,
            last_error="late rejection",
            from_statuses=OPEN_STATUSES,
        )
        assert await repo.get_trade_system_link(stp_id, SystemCode.CALYPSO) == booked
        assert booked.status == TradeSystemStatus.BOOKED
        assert booked.last_error is None
    finally:
        await close(repo)


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", KINDS)
async def test_events_are_returned_in_insert_order(kind, tmp_path):
    repo = await make_repository(kind, tmp_path)
    try:
        stp_id = await repo.insert_trade(_trade())
        for event_type in ("MessageInReceived", "TradeNormalized", "WARNING"):
            await repo.insert_trade_workflow_event(
                TradeWorkflowEvent(stp_trade_id=stp_id, event_type=event_type)
            )
        events = await repo.get_trade_workflow_events(stp_id)
        assert [e.event_type for e in events] == ["MessageInReceived", "TradeNormalized", "WARNING"]
        assert all(e.event_id for e in events)
    finally:
        await close(repo)


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", KINDS)
async def test_lease_is_exclusive_until_expiry(kind, tmp_path):
    repo = await make_repository(kind, tmp_path)
    try:
        assert await repo.try_acquire_lease("lease", "a", 30, NOW)
        assert not await repo.try_acquire_lease("lease", "b", 30, NOW + dt.timedelta(seconds=10))
        assert await repo.try_acquire_lease("lease", "a", 30, NOW + dt.timedelta(seconds=10))
        assert await repo.try_acquire_lease("lease", "b", 30, NOW + dt.timedelta(seconds=60))
        await repo.release_lease("lease", "a")
        assert not await repo.try_acquire_lease("lease", "a", 30, NOW + dt.timedelta(seconds=61))
        await repo.release_lease("lease", "b")
        assert await repo.try_acquire_lease("lease", "a", 30, NOW + dt.timedelta(seconds=62))
    finally:
        await close(repo)


@pytest.mark.asyncio
async def test_database_lookup_snapshot(tmp_path):
    repo = await make_repository("database", tmp_path)
    try:
        async with repo.engine.begin() as conn:
            await conn.execute(
                insert(database.counterparty_name_pattern_table).values(
                    pattern="BARX", counterparty_code="CP_BARX", priority=10, is_active=True
                )
            )
            await conn.execute(
                insert(database.venue_trader_mapping_table).values(
                    source_venue_code="BARX",
                    venue_trader_code="jdoe",
                    internal_user_id="u.jdoe",
                    is_active=True,
                )
            )
            await conn.execute(
                insert(database.ccy_pair_portfolio_rule_table).values(
                    system_code="MX3",
                    currency_pair="EURUSD",
                    portfolio_code="FX_EURUSD",
                    is_active=True,
                )
            )
            await conn.execute(
                insert(database.calypso_book_user_table).values(
                    trader_id="u.jdoe", calypso_book="BOOK1", is_active=False
                )
            )
        lookups = await repo.load_lookups()
        assert lookups.resolve_counterparty_code("EMAIL", "BARX", "barx") == "CP_BARX"
        assert lookups.get_trader_routing_info("BARX", "JDOE").internal_user_id == "u.jdoe"
        assert lookups.get_portfolio_code("MX3", "EURUSD", "SPOT") == "FX_EURUSD"
        assert lookups.get_calypso_book_by_trader_id("u.jdoe") is None
    finally:
        await close(repo)
