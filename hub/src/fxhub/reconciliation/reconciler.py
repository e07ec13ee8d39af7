"""
Response file reconciler
========================

Moves ``TradeSystemLink`` rows from ``PENDING`` to ``BOOKED`` or ``ERROR``
by reading the acknowledgement files a booking system drops in its
response folder.  Two paths feed the same ``process_response_file``
routine:

* ``startup_reconciliation`` looks up every pending link for the system,
  derives the filename the system would answer with and processes the
  files that are already there.  Links without a file are logged as
  waiting.  Leftover files the watcher will never report are then
  handed to ``sweep_leftovers``.
* a watchdog observer reports new files matching ``watch_pattern``; each
  is processed after a fixed settle delay so the writer can finish.

An ``ExpiringKeySet`` keeps the two paths from handling the same file at
the same time.  The key is released when processing fails so a later
notification retries.

Processing is idempotent: a link that is already terminal is left alone
and no event is written.  Files for unknown trades or terminal links are
still archived so they do not come back on the next startup.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import os
import shutil
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Set

from .. import metrics
from ..errors import ResponseParseError
from ..models import (
    OPEN_STATUSES,
    PendingTradeSystemLink,
    SystemCode,
    TradeSystemStatus,
    TradeWorkflowEvent,
)
from ..storage.base import StpRepository
from ..workflow import BOOKING_CONFIRMED, BOOKING_REJECTED
from .dedup import ExpiringKeySet
from .responses import ResponseResult
from .watcher import FolderWatcher

logger = logging.getLogger(__name__)

APPLIED = "applied"
SKIPPED_TERMINAL = "skipped_terminal"
SKIPPED_UNKNOWN_TRADE = "skipped_unknown_trade"
UNPARSEABLE = "unparseable"
BUSY = "busy"
FAILED = "failed"


@dataclass
class ReconciliationSummary:
    processed: int = 0
    waiting: int = 0
    orphaned: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)


def archive_destination(archive_folder: str, filename: str, now: dt.datetime) -> str:
    """Return the archive path for ``filename``, suffixed with a timestamp if taken."""
    target = os.path.join(archive_folder, filename)
    if not os.path.exists(target):
        return target
    stem, ext = os.path.splitext(filename)
    return os.path.join(archive_folder, f"{stem}_{now:%Y%m%d%H%M%S%f}{ext}")


def archive_files(archive_folder: Optional[str], files: List[str]) -> List[str]:
    """Move ``files`` into ``archive_folder``; returns the new paths."""
    if not archive_folder:
        return []
    os.makedirs(archive_folder, exist_ok=True)
    moved = []
    for path in files:
        if not os.path.exists(path):
            continue
        target = archive_destination(
            archive_folder, os.path.basename(path), dt.datetime.now(dt.timezone.utc)
        )
        shutil.move(path, target)
        moved.append(target)
    return moved


class ResponseFileReconciler(ABC):
    """Common state machine for file-based booking acknowledgements."""

    system_code: ClassVar[SystemCode]
    watch_pattern: ClassVar[str]
    initiator: ClassVar[str]
    default_settle_delay: ClassVar[float] = 0.5

    def __init__(
        self,
        repository: StpRepository,
        response_folder: str,
        archive_folder: Optional[str] = None,
        settle_delay: Optional[float] = None,
        dedup: Optional[ExpiringKeySet] = None,
    ) -> None:
        self.repository = repository
        self.response_folder = response_folder
        self.archive_folder = archive_folder
        self.settle_delay = self.default_settle_delay if settle_delay is None else settle_delay
        self.dedup = dedup or ExpiringKeySet(ttl=300.0)
        self._watcher: Optional[FolderWatcher] = None
        self._startup_task: Optional[asyncio.Task] = None

    @abstractmethod
    def match_pending(
        self, link: PendingTradeSystemLink, names: Dict[str, str]
    ) -> Optional[str]:
        """Return the response filename for ``link`` from ``names`` (lowercased → actual)."""

    @abstractmethod
    def parse_response(self, path: str) -> ResponseResult: ...

    @abstractmethod
    def describe(self, result: ResponseResult) -> str: ...

    def dedup_key(self, path: str) -> str:
        return os.path.basename(path).lower()

    async def sweep_leftovers(self, names: List[str], pending_ids: Set[int]) -> int:
        """Handle files the watcher never reports; returns how many were archived."""
        return 0

    async def startup_reconciliation(self) -> ReconciliationSummary:
        summary = ReconciliationSummary()
        if not os.path.isdir(self.response_folder):
            logger.warning(
                "%s response folder %s does not exist; skipping startup reconciliation",
                self.system_code.value,
                self.response_folder,
            )
            return summary

        pending = await self.repository.get_pending_trade_system_links(self.system_code)
        names = await asyncio.to_thread(os.listdir, self.response_folder)
        index = {name.lower(): name for name in names}
        outcomes: Counter = Counter()
        for link in pending:
            filename = self.match_pending(link, index)
            if filename is None:
                summary.waiting += 1
                logger.info(
                    "%s link for trade %s (%s) still waiting for a response",
                    self.system_code.value,
                    link.stp_trade_id,
                    link.trade_id,
                )
                continue
            outcome = await self.process_response_file(
                os.path.join(self.response_folder, filename)
            )
            outcomes[outcome] += 1
            summary.processed += 1
        summary.outcomes = dict(outcomes)
        remaining = await asyncio.to_thread(os.listdir, self.response_folder)
        still_pending = await self.repository.get_pending_trade_system_links(self.system_code)
        summary.orphaned = await self.sweep_leftovers(
            remaining, {link.stp_trade_id for link in still_pending}
        )
        logger.info(
            "%s startup reconciliation: %d processed, %d waiting, %d orphaned",
            self.system_code.value,
            summary.processed,
            summary.waiting,
            summary.orphaned,
        )
        return summary

    async def process_response_file(self, path: str) -> str:
        key = self.dedup_key(path)
        if not self.dedup.try_add(key):
            logger.debug("%s already in progress", key)
            return BUSY

        try:
            result = await asyncio.to_thread(self.parse_response, path)
        except ResponseParseError as exc:
            logger.warning("Cannot interpret %s: %s", path, exc)
            self.dedup.discard(key)
            return self._count(UNPARSEABLE)
        except OSError as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            self.dedup.discard(key)
            return self._count(FAILED)

        try:
            outcome = await self._apply(result)
        except Exception:
            logger.exception("Failed to apply response %s", path)
            self.dedup.discard(key)
            return self._count(FAILED)

        try:
            await asyncio.to_thread(archive_files, self.archive_folder, result.files or [path])
        except OSError:
            logger.exception("Failed to archive %s", path)
        return self._count(outcome)

    async def on_file_created(self, path: str) -> str:
        if self.settle_delay:
            await asyncio.sleep(self.settle_delay)
        return await self.process_response_file(path)

    async def start(self) -> None:
        """Watch the response folder and run the startup scan in the background."""
        if self._watcher is not None:
            return
        self._watcher = FolderWatcher(
            self.response_folder, self.watch_pattern, self.on_file_created
        )
        self._watcher.start(asyncio.get_running_loop())
        self._startup_task = asyncio.create_task(self.startup_reconciliation())

    async def stop(self) -> None:
        if self._startup_task is not None:
            await asyncio.gather(self._startup_task, return_exceptions=True)
            self._startup_task = None
        if self._watcher is not None:
            await asyncio.to_thread(self._watcher.stop)
            self._watcher = None

    async def _apply(self, result: ResponseResult) -> str:
        stp_trade_id = result.stp_trade_id
        trade = await self.repository.get_trade(stp_trade_id)
        if trade is None:
            logger.warning(
                "%s response for unknown trade %s", self.system_code.value, stp_trade_id
            )
            return SKIPPED_UNKNOWN_TRADE
        link = await self.repository.get_trade_system_link(stp_trade_id, self.system_code)
        if link is None:
            logger.warning(
                "Trade %s has no %s link; ignoring response", stp_trade_id, self.system_code.value
            )
            return SKIPPED_UNKNOWN_TRADE
        if link.status.is_terminal:
            logger.info(
                "%s link for trade %s already %s; ignoring response",
                self.system_code.value,
                stp_trade_id,
                link.status.value,
            )
            return SKIPPED_TERMINAL

        if result.is_success:
            changed = await self.repository.update_trade_system_link_status(
                stp_trade_id,
                self.system_code,
                TradeSystemStatus.BOOKED,
                external_trade_id=result.system_trade_id,
                booked_by=self.initiator,
                from_statuses=OPEN_STATUSES,
            )
        else:
            changed = await self.repository.update_trade_system_link_status(
                stp_trade_id,
                self.system_code,
                TradeSystemStatus.ERROR,
                last_error=result.error_message,
                from_statuses=OPEN_STATUSES,
            )
        if not changed:
            logger.info(
                "%s link for trade %s turned terminal while applying the response; ignoring it",
                self.system_code.value,
                stp_trade_id,
            )
            return SKIPPED_TERMINAL
        await self.repository.insert_trade_workflow_event(
            TradeWorkflowEvent(
                stp_trade_id=stp_trade_id,
                system_code=self.system_code.value,
                event_type=BOOKING_CONFIRMED if result.is_success else BOOKING_REJECTED,
                description=self.describe(result),
                initiator_id=self.initiator,
            )
        )
        logger.info(
            "%s link for trade %s -> %s",
            self.system_code.value,
            stp_trade_id,
            "BOOKED" if result.is_success else "ERROR",
        )
        return APPLIED

    def _count(self, outcome: str) -> str:
        metrics.RESPONSE_FILES.labels(system=self.system_code.value, outcome=outcome).inc()
        return outcome
