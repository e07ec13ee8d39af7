"""Tests for lease based leader election."""

import asyncio
import datetime as dt

import pytest

from fxhub.services.election import LEASE_NAME, LeaderElection
from fxhub.storage.memory import InMemoryStpRepository

T0 = dt.datetime(2026, 1, 15, 10, 0, tzinfo=dt.timezone.utc)


class FailingRepository(InMemoryStpRepository):
    async def try_acquire_lease(self, name, owner, ttl_seconds, now):
        raise ConnectionError("database unavailable")


@pytest.mark.asyncio
async def test_single_leader_and_takeover_after_ttl():
    repo = InMemoryStpRepository()
    changes = []

    async def record(leader):
        changes.append(leader)

    first = LeaderElection(repo, "a", interval=10, on_change=record)
    second = LeaderElection(repo, "b", interval=10)
    assert first.ttl == 30

    assert await first.elect_once(T0)
    assert not await second.elect_once(T0 + dt.timedelta(seconds=5))
    assert await first.elect_once(T0 + dt.timedelta(seconds=10))
    assert changes == [True]

    # "a" stops renewing; "b" takes over once the lease has expired.
    assert await second.elect_once(T0 + dt.timedelta(seconds=41))
    assert not await first.elect_once(T0 + dt.timedelta(seconds=42))
    assert changes == [True, False]


@pytest.mark.asyncio
async def test_resign_releases_lease():
    repo = InMemoryStpRepository()
    first = LeaderElection(repo, "a", interval=10)
    second = LeaderElection(repo, "b", interval=10)
    await first.elect_once(T0)
    await first.resign()
    assert not first.is_leader
    assert await second.elect_once(T0 + dt.timedelta(seconds=1))


@pytest.mark.asyncio
async def test_store_failure_steps_down():
    election = LeaderElection(FailingRepository(), "a", interval=10)
    election._is_leader = True
    assert not await election.elect_once(T0)
    assert not election.is_leader


@pytest.mark.asyncio
async def test_run_until_stopped():
    repo = InMemoryStpRepository()
    changes = []

    async def record(leader):
        changes.append(leader)

    stop = asyncio.Event()
    election = LeaderElection(repo, "a", interval=0.01, on_change=record)
    task = asyncio.create_task(election.run(stop))
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(task, timeout=1)
    assert changes == [True, False]


@pytest.mark.asyncio
async def test_failed_start_hands_back_the_lease():
    repo = InMemoryStpRepository()
    calls = []

    async def broken_start(leader):
        calls.append(leader)
        if leader:
            raise OSError("response folder unreachable")

    first = LeaderElection(repo, "a", interval=10, on_change=broken_start)
    second = LeaderElection(repo, "b", interval=10)

    assert not await first.elect_once(T0)
    assert not first.is_leader
    assert calls == [True, False]
    assert await second.elect_once(T0 + dt.timedelta(seconds=1))


@pytest.mark.asyncio
async def test_failed_start_is_retried_on_next_tick():
    repo = InMemoryStpRepository()
    calls = []
    failures = [OSError("response folder unreachable")]

    async def flaky_start(leader):
        calls.append(leader)
        if leader and failures:
            raise failures.pop()

    election = LeaderElection(repo, "a", interval=10, on_change=flaky_start)
    assert not await election.elect_once(T0)
    assert await election.elect_once(T0 + dt.timedelta(seconds=10))
    assert election.is_leader
    assert calls == [True, False, True]


@pytest.mark.asyncio
async def test_run_survives_a_handler_that_keeps_failing():
    repo = InMemoryStpRepository()
    attempts = []

    async def broken(leader):
        attempts.append(leader)
        raise RuntimeError("cannot start reconcilers")

    stop = asyncio.Event()
    election = LeaderElection(repo, "a", interval=0.01, on_change=broken)
    task = asyncio.create_task(election.run(stop))
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(task, timeout=1)

    assert not election.is_leader
    assert attempts.count(True) >= 2
    assert await repo.try_acquire_lease(LEASE_NAME, "b", 30, T0)
