"""
Leader election
===============

Only one hub instance may run the response reconcilers.  Instances
compete for a named lease in the shared store; the holder renews it every
``interval`` seconds and loses it if it stops renewing for ``ttl``
seconds.  ``on_change`` is awaited whenever this instance gains or loses
leadership, which is where ``hub_main`` starts and stops the reconcilers.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Awaitable, Callable, Optional

from ..models import utc_now
from ..storage.base import StpRepository

logger = logging.getLogger(__name__)

LEASE_NAME = "fxhub-reconciler"

LeadershipCallback = Callable[[bool], Awaitable[None]]


class LeaderElection:
    def __init__(
        self,
        repository: StpRepository,
        owner: str,
        interval: float = 12.0,
        ttl: Optional[float] = None,
        lease_name: str = LEASE_NAME,
        on_change: Optional[LeadershipCallback] = None,
    ) -> None:
        self.repository = repository
        self.owner = owner
        self.interval = interval
        self.ttl = ttl if ttl is not None else interval * 3
        self.lease_name = lease_name
        self.on_change = on_change
        self._is_leader = False

    @property
    def is_leader(self) -> bool:
        return self._is_leader

    async def elect_once(self, now: Optional[dt.datetime] = None) -> bool:
        try:
            acquired = await self.repository.try_acquire_lease(
                self.lease_name, self.owner, self.ttl, now or utc_now()
            )
        except Exception:
            logger.exception("Lease renewal failed; stepping down")
            acquired = False
        await self._set_leader(acquired)
        return self._is_leader

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        stop = stop or asyncio.Event()
        while not stop.is_set():
            await self.elect_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
        await self.resign()

    async def resign(self) -> None:
        if self._is_leader:
            await self._release()
        await self._set_leader(False)

    async def _release(self) -> None:
        try:
            await self.repository.release_lease(self.lease_name, self.owner)
        except Exception:
            logger.exception("Could not release lease %s", self.lease_name)

    async def _set_leader(self, leader: bool) -> None:
        if leader == self._is_leader:
            return
        self._is_leader = leader
        logger.info("Instance %s is %s", self.owner, "leader" if leader else "follower")
        if self.on_change is None:
            return
        try:
            await self.on_change(leader)
        except Exception:
            logger.exception("Leadership change handler failed (leader=%s)", leader)
            if not leader:
                return
            # Undo the partial start and let the next tick try again.
            self._is_leader = False
            await self._release()
            try:
                await self.on_change(False)
            except Exception:
                logger.exception("Leadership rollback handler failed")
