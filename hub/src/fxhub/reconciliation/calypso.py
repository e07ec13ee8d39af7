"""Calypso acknowledgement reconciler."""

from __future__ import annotations

from typing import Dict, Optional

from ..models import PendingTradeSystemLink, SystemCode
from .reconciler import ResponseFileReconciler
from .responses import (
    CALYPSO_SUFFIX,
    ResponseResult,
    calypso_expected_names,
    calypso_type_prefixes,
    parse_calypso_response,
)


class CalypsoResponseReconciler(ResponseFileReconciler):
    system_code = SystemCode.CALYPSO
    watch_pattern = "*_result.xml"
    initiator = "CALYPSO_WATCHER"
    default_settle_delay = 1.0

    def match_pending(
        self, link: PendingTradeSystemLink, names: Dict[str, str]
    ) -> Optional[str]:
        expected = calypso_expected_names(link.stp_trade_id, link.trade_id, link.product_type)
        # Older exports put the product prefix first.
        expected += [
            f"{prefix}{link.stp_trade_id}_{link.trade_id}{CALYPSO_SUFFIX}"
            for prefix in calypso_type_prefixes(link.product_type)
        ]
        for name in expected:
            actual = names.get(name.lower())
            if actual is not None:
                return actual
        return None

    def parse_response(self, path: str) -> ResponseResult:
        return parse_calypso_response(path)

    def describe(self, result: ResponseResult) -> str:
        if result.is_success:
            return f"Calypso Trade ID: {result.system_trade_id}"
        return f"Errors: {result.error_message}"
