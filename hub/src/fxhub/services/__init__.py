"""Long-running hub services."""

from .booking import BookingService
from .election import LeaderElection
from .ingest import FileInboxService, MessageInService
from .orchestrator import ParseOrchestrator, build_default_links

__all__ = [
    "BookingService",
    "FileInboxService",
    "LeaderElection",
    "MessageInService",
    "ParseOrchestrator",
    "build_default_links",
]
