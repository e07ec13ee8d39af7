"""
Entry point for the FX trade hub.

Builds the components from ``HubSettings`` and runs them concurrently:

* the parse orchestrator's pending-message sweep;
* the e-mail inbox watcher (when ``FXHUB_INBOX_FOLDER`` is set);
* the leader election loop, which starts the MX3 and Calypso response
  reconcilers while this instance holds the lease and stops them when it
  loses it.

The process exits when any long-running task fails; the failure is logged
and the remaining tasks are cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Tuple

from .config import HubSettings
from .lookups import InMemoryLookupRepository, LookupRepository
from .metrics import start_metrics_server
from .parsing.registry import ParserRegistry
from .reconciliation import (
    CalypsoResponseReconciler,
    ExpiringKeySet,
    Mx3ResponseReconciler,
    ResponseFileReconciler,
)
from .services import FileInboxService, LeaderElection, MessageInService, ParseOrchestrator
from .storage.base import StpRepository
from .storage.memory import InMemoryStpRepository

logger = logging.getLogger(__name__)


async def build_storage(settings: HubSettings) -> Tuple[StpRepository, LookupRepository]:
    if not settings.database_uri:
        logger.warning("FXHUB_DATABASE_URI not set; using the in-memory store")
        return InMemoryStpRepository(), InMemoryLookupRepository()
    from .storage.database import DatabaseStpRepository

    repository = DatabaseStpRepository.from_uri(settings.database_uri)
    await repository.init_db()
    lookups = await repository.load_lookups()
    return repository, lookups


def build_reconcilers(
    settings: HubSettings, repository: StpRepository
) -> List[ResponseFileReconciler]:
    reconcilers: List[ResponseFileReconciler] = []
    if settings.mx3_response_folder:
        reconcilers.append(
            Mx3ResponseReconciler(
                repository,
                settings.mx3_response_folder,
                settings.mx3_archive_folder,
                settings.mx3_settle_delay_ms / 1000.0,
                ExpiringKeySet(settings.dedup_ttl_seconds),
            )
        )
    if settings.calypso_response_folder:
        reconcilers.append(
            CalypsoResponseReconciler(
                repository,
                settings.calypso_response_folder,
                settings.calypso_archive_folder,
                settings.calypso_settle_delay_ms / 1000.0,
                ExpiringKeySet(settings.dedup_ttl_seconds),
            )
        )
    return reconcilers


async def main() -> None:
    """Run all hub tasks concurrently and wait for them to finish."""
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    settings = HubSettings.from_env()
    start_metrics_server(settings.prometheus_port)

    repository, lookups = await build_storage(settings)
    registry = ParserRegistry.default(lookups, settings.convention(), settings.firm())
    orchestrator = ParseOrchestrator(repository, registry)
    reconcilers = build_reconcilers(settings, repository)

    async def on_leadership(leader: bool) -> None:
        for reconciler in reconcilers:
            if leader:
                await reconciler.start()
            else:
                await reconciler.stop()

    election = LeaderElection(
        repository,
        settings.instance_id,
        interval=settings.election_interval,
        on_change=on_leadership,
    )

    tasks = [
        asyncio.create_task(orchestrator.run(settings.poll_interval)),
        asyncio.create_task(election.run()),
    ]
    inbox = None
    if settings.inbox_folder:
        inbox = FileInboxService(
            MessageInService(repository),
            settings.inbox_folder,
            settings.inbox_archive_folder,
            ExpiringKeySet(settings.dedup_ttl_seconds),
        )
    logger.info("FX hub %s started", settings.instance_id)

    try:
        if inbox is not None:
            try:
                await inbox.start()
            except OSError:
                logger.exception("Inbox watcher for %s failed to start", settings.inbox_folder)
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc:
                logger.exception("Hub task raised an exception", exc_info=exc)
    finally:
        if inbox is not None:
            await inbox.stop()
        await on_leadership(False)
    logger.info("FX hub exiting")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
