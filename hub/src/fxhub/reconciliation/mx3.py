"""MX3 acknowledgement reconciler."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Dict, List, Optional, Set

from ..errors import ResponseParseError
from ..models import PendingTradeSystemLink, SystemCode
from .reconciler import ResponseFileReconciler, archive_files
from .responses import (
    MX3_ANSWER_MARKER,
    MX3_DETAIL_SUFFIX,
    MX3_OK_MARKER,
    MX3_STATUS_SUFFIX,
    ResponseResult,
    mx3_base_name,
    mx3_export_base,
    mx3_stp_trade_id,
    parse_mx3_response,
)

logger = logging.getLogger(__name__)


class Mx3ResponseReconciler(ResponseFileReconciler):
    system_code = SystemCode.MX3
    watch_pattern = "*_2.xml"
    initiator = "MX3_WATCHER"
    default_settle_delay = 0.5

    def match_pending(
        self, link: PendingTradeSystemLink, names: Dict[str, str]
    ) -> Optional[str]:
        prefix = f"{mx3_export_base(link.stp_trade_id, link.trade_id)}{MX3_ANSWER_MARKER}".lower()
        candidates = sorted(
            lowered
            for lowered in names
            if lowered.startswith(prefix) and lowered.endswith(MX3_STATUS_SUFFIX)
        )
        if not candidates:
            return None
        preferred = [c for c in candidates if MX3_OK_MARKER in c]
        return names[(preferred or candidates)[0]]

    def parse_response(self, path: str) -> ResponseResult:
        return parse_mx3_response(os.path.dirname(path) or self.response_folder, path)

    def dedup_key(self, path: str) -> str:
        # One key per file set so the _2 notifications of one export do not race.
        try:
            return mx3_base_name(path).lower()
        except ResponseParseError:
            return super().dedup_key(path)

    def describe(self, result: ResponseResult) -> str:
        if result.is_success:
            text = f"MX3 Trade ID: {result.system_trade_id}, Contract ID: {result.contract_id}"
            if result.error_message:
                text += f"; Warnings: {result.error_message}"
            return text
        return f"Errors: {result.error_message}"

    def orphaned_detail_files(self, names: List[str], pending_ids: Set[int]) -> List[str]:
        """Return the ``_3`` files whose ``_2`` status file is gone and whose link is not pending.

        The watcher only reports ``_2`` files, so a detail file written after its
        status file was processed would otherwise stay in the folder forever.
        """
        present = {name.lower() for name in names}
        orphans = []
        for name in sorted(names):
            lowered = name.lower()
            if MX3_ANSWER_MARKER not in lowered or not lowered.endswith(MX3_DETAIL_SUFFIX):
                continue
            if lowered[: -len(MX3_DETAIL_SUFFIX)] + MX3_STATUS_SUFFIX in present:
                continue
            try:
                stp_trade_id: Optional[int] = mx3_stp_trade_id(name)
            except ResponseParseError:
                stp_trade_id = None
            if stp_trade_id in pending_ids:
                logger.info("MX3 detail file %s is waiting for its status file", name)
                continue
            orphans.append(os.path.join(self.response_folder, name))
        return orphans

    async def sweep_leftovers(self, names: List[str], pending_ids: Set[int]) -> int:
        orphans = self.orphaned_detail_files(names, pending_ids)
        if not orphans:
            return 0
        if not self.archive_folder:
            for path in orphans:
                logger.warning("Orphaned MX3 detail file %s left in place; no archive folder", path)
            return 0
        try:
            moved = await asyncio.to_thread(archive_files, self.archive_folder, orphans)
        except OSError:
            logger.exception("Failed to archive orphaned MX3 detail files")
            return 0
        for path in orphans:
            logger.warning("Archived orphaned MX3 detail file %s", path)
        return len(moved)
