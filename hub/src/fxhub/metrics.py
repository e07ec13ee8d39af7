"""
Prometheus metrics
==================

Counters are defined once at import time and shared by every component
in the process.  The HTTP endpoint is started by ``hub_main`` through
``start_metrics_server``.

Metrics
-------

* ``fxhub_messages_parsed_total{parser=...}`` – messages turned into trades.
* ``fxhub_messages_failed_total{parser=...}`` – messages left with a parse
  error (``parser="none"`` when no parser matched).
* ``fxhub_trades_created_total{product=...}`` – trade legs persisted.
* ``fxhub_response_files_total{system=...,outcome=...}`` – response files
  handled by the reconcilers, by outcome.
* ``fxhub_inbound_messages_total{source=...,duplicate=...}`` – messages
  offered to the ingest service.
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, start_http_server

logger = logging.getLogger(__name__)

MESSAGES_PARSED = Counter(
    "fxhub_messages_parsed_total",
    "Inbound messages parsed into trades",
    labelnames=["parser"],
)
MESSAGES_FAILED = Counter(
    "fxhub_messages_failed_total",
    "Inbound messages that failed to parse",
    labelnames=["parser"],
)
TRADES_CREATED = Counter(
    "fxhub_trades_created_total",
    "Trade legs persisted",
    labelnames=["product"],
)
RESPONSE_FILES = Counter(
    "fxhub_response_files_total",
    "Booking response files handled",
    labelnames=["system", "outcome"],
)
INBOUND_MESSAGES = Counter(
    "fxhub_inbound_messages_total",
    "Raw messages offered to the ingest service",
    labelnames=["source", "duplicate"],
)


def start_metrics_server(port: int) -> None:
    try:
        start_http_server(port)
    except Exception as exc:
        # Already bound by another component in this process
        logger.debug("Prometheus server likely already running: %s", exc)
