"""Tests for the MX3 and Calypso response file reconcilers."""

import asyncio
import datetime as dt
import os

import pytest

from fxhub.models import (
    ProductType,
    SourceType,
    SystemCode,
    Trade,
    TradeSystemLink,
    TradeSystemStatus,
)
from fxhub.reconciliation import CalypsoResponseReconciler, Mx3ResponseReconciler
from fxhub.reconciliation.reconciler import (
    APPLIED,
    BUSY,
    SKIPPED_TERMINAL,
    SKIPPED_UNKNOWN_TRADE,
    UNPARSEABLE,
    archive_destination,
)
from fxhub.storage.database import DatabaseStpRepository
from fxhub.storage.memory import InMemoryStpRepository
from fxhub.workflow import BOOKING_CONFIRMED, BOOKING_REJECTED
from tests.helpers.payloads import calypso_ack_xml, mx3_detail_xml, mx3_status_xml


async def _pending_trade(repo, trade_id, product, system):
    stp_id = await repo.insert_trade(
        Trade(
            trade_id=trade_id,
            product_type=product,
            source_type=SourceType.EMAIL,
            source_venue_code="JPM",
            trade_date=dt.date(2026, 1, 15),
            execution_time_utc=dt.datetime(2026, 1, 15, tzinfo=dt.timezone.utc),
        )
    )
    await repo.insert_trade_system_link(
        TradeSystemLink(
            stp_trade_id=stp_id, system_code=system, status=TradeSystemStatus.PENDING
        )
    )
    return stp_id


def _folders(tmp_path):
    responses = tmp_path / "responses"
    archive = tmp_path / "archive"
    responses.mkdir()
    return responses, archive


def _mx3(repo, responses, archive=None):
    return Mx3ResponseReconciler(
        repo, str(responses), str(archive) if archive else None, settle_delay=0
    )


def _calypso(repo, responses, archive=None):
    return CalypsoResponseReconciler(
        repo, str(responses), str(archive) if archive else None, settle_delay=0
    )


def test_archive_destination_suffixes_taken_names(tmp_path):
    now = dt.datetime(2026, 1, 15, 10, 0, 0, 1, tzinfo=dt.timezone.utc)
    assert archive_destination(str(tmp_path), "a.xml", now) == str(tmp_path / "a.xml")
    (tmp_path / "a.xml").write_text("x")
    assert archive_destination(str(tmp_path), "a.xml", now) == str(
        tmp_path / "a_20260115100000000001.xml"
    )


@pytest.mark.asyncio
async def test_mx3_startup_books_pending_link_and_archives(tmp_path):
    repo = InMemoryStpRepository()
    responses, archive = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "VB123-O1", ProductType.OPTION_VANILLA, SystemCode.MX3)
    name = f"{stp_id}_VB123-O1_evs_ans_ok.20260115101530_2.xml"
    (responses / name).write_text(mx3_status_xml("OK"))

    summary = await _mx3(repo, responses, archive).startup_reconciliation()

    assert summary.processed == 1
    assert summary.outcomes == {APPLIED: 1}
    link = await repo.get_trade_system_link(stp_id, SystemCode.MX3)
    assert link.status == TradeSystemStatus.BOOKED
    assert link.external_trade_id == "MX-778899"
    assert link.booked_by == "MX3_WATCHER"
    events = await repo.get_trade_workflow_events(stp_id)
    assert [e.event_type for e in events] == [BOOKING_CONFIRMED]
    assert events[0].system_code == "MX3"
    assert events[0].initiator_id == "MX3_WATCHER"
    assert events[0].description == "MX3 Trade ID: MX-778899, Contract ID: CT-4455"
    assert os.listdir(responses) == []
    assert os.listdir(archive) == [name]


@pytest.mark.asyncio
async def test_mx3_error_sets_last_error(tmp_path):
    repo = InMemoryStpRepository()
    responses, archive = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "VB123-O1", ProductType.OPTION_VANILLA, SystemCode.MX3)
    base = f"{stp_id}_VB123-O1_evs_ans_err.20260115101530"
    (responses / f"{base}_2.xml").write_text(mx3_status_xml("ERROR"))
    (responses / f"{base}_3.xml").write_text(mx3_detail_xml([("Error", "Portfolio closed")]))

    outcome = await _mx3(repo, responses, archive).process_response_file(
        str(responses / f"{base}_2.xml")
    )

    assert outcome == APPLIED
    link = await repo.get_trade_system_link(stp_id, SystemCode.MX3)
    assert link.status == TradeSystemStatus.ERROR
    assert link.last_error == "Portfolio closed"
    events = await repo.get_trade_workflow_events(stp_id)
    assert events[0].event_type == BOOKING_REJECTED
    assert events[0].description == "Errors: Portfolio closed"
    assert sorted(os.listdir(archive)) == [f"{base}_2.xml", f"{base}_3.xml"]


@pytest.mark.asyncio
async def test_same_file_twice_leaves_terminal_link_unchanged(tmp_path):
    repo = InMemoryStpRepository()
    responses, _ = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "VB123-O1", ProductType.OPTION_VANILLA, SystemCode.MX3)
    path = str(responses / f"{stp_id}_VB123-O1_evs_ans_ok.1_2.xml")
    with open(path, "w") as handle:
        handle.write(mx3_status_xml("OK"))

    assert await _mx3(repo, responses).process_response_file(path) == APPLIED
    link = await repo.get_trade_system_link(stp_id, SystemCode.MX3)
    events = await repo.get_trade_workflow_events(stp_id)

    # A second instance has its own in-flight guard, so only the terminal check applies.
    assert await _mx3(repo, responses).process_response_file(path) == SKIPPED_TERMINAL
    assert await repo.get_trade_system_link(stp_id, SystemCode.MX3) == link
    assert len(await repo.get_trade_workflow_events(stp_id)) == len(events)


@pytest.mark.asyncio
async def test_in_flight_file_is_reported_busy(tmp_path):
    repo = InMemoryStpRepository()
    responses, _ = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "VB123-O1", ProductType.OPTION_VANILLA, SystemCode.MX3)
    path = str(responses / f"{stp_id}_VB123-O1_evs_ans_ok.1_2.xml")
    with open(path, "w") as handle:
        handle.write(mx3_status_xml("OK"))

    reconciler = _mx3(repo, responses)
    assert await reconciler.process_response_file(path) == APPLIED
    assert await reconciler.process_response_file(path) == BUSY


@pytest.mark.asyncio
async def test_missing_response_leaves_link_pending(tmp_path):
    repo = InMemoryStpRepository()
    responses, _ = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "VB123-O1", ProductType.OPTION_VANILLA, SystemCode.MX3)

    summary = await _mx3(repo, responses).startup_reconciliation()

    assert summary.processed == 0
    assert summary.waiting == 1
    link = await repo.get_trade_system_link(stp_id, SystemCode.MX3)
    assert link.status == TradeSystemStatus.PENDING
    assert link.last_error is None
    assert await repo.get_trade_workflow_events(stp_id) == []


@pytest.mark.asyncio
async def test_missing_response_folder_is_skipped(tmp_path):
    repo = InMemoryStpRepository()
    await _pending_trade(repo, "VB123-O1", ProductType.OPTION_VANILLA, SystemCode.MX3)
    summary = await _mx3(repo, tmp_path / "absent").startup_reconciliation()
    assert summary.processed == 0
    assert summary.waiting == 0


@pytest.mark.asyncio
async def test_mx3_startup_prefers_ok_answer(tmp_path):
    repo = InMemoryStpRepository()
    responses, _ = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "VB123-O1", ProductType.OPTION_VANILLA, SystemCode.MX3)
    (responses / f"{stp_id}_VB123-O1_evs_ans_err.1_2.xml").write_text(mx3_status_xml("ERROR"))
    (responses / f"{stp_id}_VB123-O1_evs_ans_ok.1_2.xml").write_text(mx3_status_xml("OK"))

    await _mx3(repo, responses).startup_reconciliation()

    link = await repo.get_trade_system_link(stp_id, SystemCode.MX3)
    assert link.status == TradeSystemStatus.BOOKED


@pytest.mark.asyncio
async def test_unknown_trade_is_skipped_and_archived(tmp_path):
    repo = InMemoryStpRepository()
    responses, archive = _folders(tmp_path)
    path = responses / "99_GONE_evs_ans_ok.1_2.xml"
    path.write_text(mx3_status_xml("OK"))

    outcome = await _mx3(repo, responses, archive).process_response_file(str(path))

    assert outcome == SKIPPED_UNKNOWN_TRADE
    assert os.listdir(archive) == [path.name]


@pytest.mark.asyncio
async def test_unparseable_file_stays_and_can_be_retried(tmp_path):
    repo = InMemoryStpRepository()
    responses, archive = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "VB123-O1", ProductType.OPTION_VANILLA, SystemCode.MX3)
    path = responses / f"{stp_id}_VB123-O1_evs_ans_ok.1_2.xml"
    path.write_text("<MxML")
    reconciler = _mx3(repo, responses, archive)

    assert await reconciler.process_response_file(str(path)) == UNPARSEABLE
    assert path.exists()

    path.write_text(mx3_status_xml("OK"))
    assert await reconciler.on_file_created(str(path)) == APPLIED


@pytest.mark.asyncio
async def test_calypso_startup_books_spot(tmp_path):
    repo = InMemoryStpRepository()
    responses, archive = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "JPM-1", ProductType.SPOT, SystemCode.CALYPSO)
    (responses / f"{stp_id}_FX_SPOT_JPM-1_result.xml").write_text(calypso_ack_xml())

    summary = await _calypso(repo, responses, archive).startup_reconciliation()

    assert summary.outcomes == {APPLIED: 1}
    link = await repo.get_trade_system_link(stp_id, SystemCode.CALYPSO)
    assert link.status == TradeSystemStatus.BOOKED
    assert link.external_trade_id == "CAL-5566"
    events = await repo.get_trade_workflow_events(stp_id)
    assert events[0].description == "Calypso Trade ID: CAL-5566"
    assert events[0].initiator_id == "CALYPSO_WATCHER"


@pytest.mark.asyncio
async def test_calypso_legacy_forward_name_and_rejection(tmp_path):
    repo = InMemoryStpRepository()
    responses, _ = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "TP1-H1", ProductType.FWD, SystemCode.CALYPSO)
    (responses / f"FX_FWD_{stp_id}_TP1-H1_result.xml").write_text(
        calypso_ack_xml(rejected=1, errors=["Book missing"])
    )

    await _calypso(repo, responses).startup_reconciliation()

    link = await repo.get_trade_system_link(stp_id, SystemCode.CALYPSO)
    assert link.status == TradeSystemStatus.ERROR
    assert link.last_error == "Book missing"


@pytest.mark.asyncio
async def test_reconciler_only_touches_its_own_system(tmp_path):
    repo = InMemoryStpRepository()
    responses, _ = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "JPM-1", ProductType.SPOT, SystemCode.CALYPSO)
    path = responses / f"{stp_id}_JPM-1_evs_ans_ok.1_2.xml"
    path.write_text(mx3_status_xml("OK"))

    assert await _mx3(repo, responses).process_response_file(str(path)) == SKIPPED_UNKNOWN_TRADE
    link = await repo.get_trade_system_link(stp_id, SystemCode.CALYPSO)
    assert link.status == TradeSystemStatus.PENDING


async def _repository(kind, tmp_path):
    if kind == "memory":
        return InMemoryStpRepository()
    repo = DatabaseStpRepository.from_uri(f"sqlite+aiosqlite:///{tmp_path / 'stp.db'}")
    await repo.init_db()
    return repo


class StaleLinkRepository(InMemoryStpRepository):
    """Hands out links as they were before another writer settled them."""

    async def get_trade_system_link(self, stp_trade_id, system_code):
        link = await super().get_trade_system_link(stp_trade_id, system_code)
        if link is None:
            return None
        return link.model_copy(update={"status": TradeSystemStatus.PENDING})


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["memory", "database"])
async def test_related_files_processed_together_settle_the_link_once(kind, tmp_path):
    repo = await _repository(kind, tmp_path)
    try:
        responses, archive = _folders(tmp_path)
        stp_id = await _pending_trade(repo, "JPM-1", ProductType.SPOT, SystemCode.CALYPSO)
        booked = responses / f"{stp_id}_FX_SPOT_JPM-1_result.xml"
        rejected = responses / f"FX_SPOT_{stp_id}_JPM-1_result.xml"
        booked.write_text(calypso_ack_xml())
        rejected.write_text(calypso_ack_xml(rejected=1, errors=["Book missing"]))
        reconciler = _calypso(repo, responses, archive)

        outcomes = await asyncio.gather(
            reconciler.process_response_file(str(booked)),
            reconciler.process_response_file(str(rejected)),
        )

        assert sorted(outcomes) == [APPLIED, SKIPPED_TERMINAL]
        events = await repo.get_trade_workflow_events(stp_id)
        assert len(events) == 1
        link = await repo.get_trade_system_link(stp_id, SystemCode.CALYPSO)
        if events[0].event_type == BOOKING_CONFIRMED:
            assert link.status == TradeSystemStatus.BOOKED
            assert link.last_error is None
        else:
            assert events[0].event_type == BOOKING_REJECTED
            assert link.status == TradeSystemStatus.ERROR
        assert os.listdir(responses) == []
    finally:
        if isinstance(repo, DatabaseStpRepository):
            await repo.close()


@pytest.mark.asyncio
async def test_link_settled_after_the_read_is_not_overwritten(tmp_path):
    repo = StaleLinkRepository()
    responses, _ = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "JPM-1", ProductType.SPOT, SystemCode.CALYPSO)
    await repo.update_trade_system_link_status(
        stp_id, SystemCode.CALYPSO, TradeSystemStatus.BOOKED, external_trade_id="CAL-1"
    )
    path = responses / f"{stp_id}_FX_SPOT_JPM-1_result.xml"
    path.write_text(calypso_ack_xml(rejected=1, errors=["Book missing"]))

    outcome = await _calypso(repo, responses).process_response_file(str(path))

    assert outcome == SKIPPED_TERMINAL
    assert await repo.get_trade_workflow_events(stp_id) == []
    links = await repo.get_trade_system_links(stp_id)
    assert [(link.status, link.external_trade_id, link.last_error) for link in links] == [
        (TradeSystemStatus.BOOKED, "CAL-1", None)
    ]


async def _wait_for_status(repo, stp_id, system, status, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        link = await repo.get_trade_system_link(stp_id, system)
        if link.status == status:
            return link
        await asyncio.sleep(0.05)
    return await repo.get_trade_system_link(stp_id, system)


@pytest.mark.asyncio
async def test_watcher_books_file_dropped_after_start(tmp_path):
    repo = InMemoryStpRepository()
    responses, archive = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "JPM-1", ProductType.SPOT, SystemCode.CALYPSO)
    reconciler = CalypsoResponseReconciler(
        repo, str(responses), str(archive), settle_delay=0.05
    )

    await reconciler.start()
    try:
        # Only the watcher can pick the file up once the startup scan is done.
        await reconciler._startup_task
        partial = responses / "upload.part"
        partial.write_text(calypso_ack_xml())
        os.replace(partial, responses / f"{stp_id}_FX_SPOT_JPM-1_result.xml")

        link = await _wait_for_status(
            repo, stp_id, SystemCode.CALYPSO, TradeSystemStatus.BOOKED
        )
    finally:
        await reconciler.stop()

    assert link.status == TradeSystemStatus.BOOKED
    assert link.external_trade_id == "CAL-5566"
    events = await repo.get_trade_workflow_events(stp_id)
    assert [e.event_type for e in events] == [BOOKING_CONFIRMED]
    assert os.listdir(archive) == [f"{stp_id}_FX_SPOT_JPM-1_result.xml"]


@pytest.mark.asyncio
async def test_mx3_startup_archives_detail_file_left_behind(tmp_path):
    repo = InMemoryStpRepository()
    responses, archive = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "VB123-O1", ProductType.OPTION_VANILLA, SystemCode.MX3)
    base = f"{stp_id}_VB123-O1_evs_ans_ok.20260115101530"
    (responses / f"{base}_2.xml").write_text(mx3_status_xml("OK"))
    reconciler = _mx3(repo, responses, archive)
    assert await reconciler.process_response_file(str(responses / f"{base}_2.xml")) == APPLIED

    # The detail file lands after its status file was archived.
    (responses / f"{base}_3.xml").write_text(mx3_detail_xml([("Warning", "Late detail")]))
    summary = await reconciler.startup_reconciliation()

    assert summary.orphaned == 1
    assert os.listdir(responses) == []
    assert sorted(os.listdir(archive)) == [f"{base}_2.xml", f"{base}_3.xml"]
    link = await repo.get_trade_system_link(stp_id, SystemCode.MX3)
    assert link.status == TradeSystemStatus.BOOKED


@pytest.mark.asyncio
async def test_mx3_detail_file_for_pending_link_is_kept(tmp_path):
    repo = InMemoryStpRepository()
    responses, archive = _folders(tmp_path)
    stp_id = await _pending_trade(repo, "VB123-O1", ProductType.OPTION_VANILLA, SystemCode.MX3)
    detail = responses / f"{stp_id}_VB123-O1_evs_ans_err.1_3.xml"
    detail.write_text(mx3_detail_xml([("Error", "Portfolio closed")]))

    summary = await _mx3(repo, responses, archive).startup_reconciliation()

    assert summary.waiting == 1
    assert summary.orphaned == 0
    assert detail.exists()


@pytest.mark.asyncio
async def test_mx3_orphaned_detail_file_stays_without_archive_folder(tmp_path):
    repo = InMemoryStpRepository()
    responses, _ = _folders(tmp_path)
    detail = responses / "99_GONE_evs_ans_ok.1_3.xml"
    detail.write_text(mx3_detail_xml([("Warning", "Late detail")]))

    reconciler = _mx3(repo, responses)
    assert reconciler.orphaned_detail_files([detail.name], set()) == [str(detail)]
    summary = await reconciler.startup_reconciliation()

    assert summary.orphaned == 0
    assert detail.exists()
