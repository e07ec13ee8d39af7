"""File-based booking reconciliation for MX3 and Calypso."""

from .calypso import CalypsoResponseReconciler
from .dedup import ExpiringKeySet
from .mx3 import Mx3ResponseReconciler
from .reconciler import ReconciliationSummary, ResponseFileReconciler
from .responses import ResponseResult

__all__ = [
    "CalypsoResponseReconciler",
    "ExpiringKeySet",
    "Mx3ResponseReconciler",
    "ReconciliationSummary",
    "ResponseFileReconciler",
    "ResponseResult",
]
