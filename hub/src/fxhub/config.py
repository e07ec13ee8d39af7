"""
Hub configuration
=================

Settings are read from environment variables into a validated
``HubSettings`` model.  Components receive the values they need at
construction time; nothing reads the environment after startup.

Configuration
-------------

* ``FXHUB_DATABASE_URI`` – SQLAlchemy async URI.  When unset the hub runs
  against the in-memory store.
* ``FXHUB_MX3_RESPONSE_FOLDER`` / ``FXHUB_MX3_ARCHIVE_FOLDER`` – MX3 drop
  and archive folders.
* ``FXHUB_CALYPSO_RESPONSE_FOLDER`` / ``FXHUB_CALYPSO_ARCHIVE_FOLDER`` –
  Calypso drop and archive folders.
* ``FXHUB_MX3_SETTLE_DELAY_MS`` (default 500) and
  ``FXHUB_CALYPSO_SETTLE_DELAY_MS`` (default 1000) – wait before reading a
  freshly created response file.
* ``FXHUB_DEDUP_TTL_SECONDS`` – how long a processed filename stays in the
  in-flight guard.
* ``FXHUB_OWN_PARTY_ID``, ``FXHUB_OWN_LEI``, ``FXHUB_OWN_NAME`` – the
  firm's identity as it appears in FIX parties and broker confirmations.
* ``FXHUB_CURRENCY_PRIORITY`` – comma separated currency ranking.
* ``FXHUB_INBOX_FOLDER`` – folder of email drops picked up by the inbox.
* ``FXHUB_INBOX_ARCHIVE_FOLDER`` – where processed email drops are moved.
* ``FXHUB_POLL_INTERVAL`` – seconds between pending-message sweeps.
* ``FXHUB_ELECTION_INTERVAL`` – seconds between leader lease renewals.
* ``FXHUB_INSTANCE_ID`` – identity used for the leader lease.
* ``PROMETHEUS_PORT`` – metrics endpoint port.
"""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from .currency import DEFAULT_PRIORITY, CurrencyConvention


@dataclass(frozen=True)
class FirmIdentity:
    party_id: str
    lei: str
    name: str


def _default_instance_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class HubSettings(BaseModel):
    database_uri: Optional[str] = None
    mx3_response_folder: Optional[str] = None
    mx3_archive_folder: Optional[str] = None
    calypso_response_folder: Optional[str] = None
    calypso_archive_folder: Optional[str] = None
    mx3_settle_delay_ms: int = Field(500, ge=0)
    calypso_settle_delay_ms: int = Field(1000, ge=0)
    dedup_ttl_seconds: float = Field(300.0, gt=0)
    own_party_id: str = "SWEDSTK"
    own_lei: str = "M312WZV08Y7LYUC71685"
    own_name: str = "SWEDBANK"
    currency_priority: Tuple[str, ...] = DEFAULT_PRIORITY
    inbox_folder: Optional[str] = None
    inbox_archive_folder: Optional[str] = None
    poll_interval: float = Field(5.0, gt=0)
    election_interval: float = Field(12.0, gt=0)
    instance_id: str = Field(default_factory=_default_instance_id)
    prometheus_port: int = 9108

    @field_validator("currency_priority", mode="before")
    @classmethod
    def _split_priority(cls, value):
        if isinstance(value, str):
            return tuple(part.strip().upper() for part in value.split(",") if part.strip())
        return value

    @classmethod
    def from_env(cls) -> "HubSettings":
        env = os.environ
        values = {
            "database_uri": env.get("FXHUB_DATABASE_URI"),
            "mx3_response_folder": env.get("FXHUB_MX3_RESPONSE_FOLDER"),
            "mx3_archive_folder": env.get("FXHUB_MX3_ARCHIVE_FOLDER"),
            "calypso_response_folder": env.get("FXHUB_CALYPSO_RESPONSE_FOLDER"),
            "calypso_archive_folder": env.get("FXHUB_CALYPSO_ARCHIVE_FOLDER"),
            "mx3_settle_delay_ms": env.get("FXHUB_MX3_SETTLE_DELAY_MS"),
            "calypso_settle_delay_ms": env.get("FXHUB_CALYPSO_SETTLE_DELAY_MS"),
            "dedup_ttl_seconds": env.get("FXHUB_DEDUP_TTL_SECONDS"),
            "own_party_id": env.get("FXHUB_OWN_PARTY_ID"),
            "own_lei": env.get("FXHUB_OWN_LEI"),
            "own_name": env.get("FXHUB_OWN_NAME"),
            "currency_priority": env.get("FXHUB_CURRENCY_PRIORITY"),
            "inbox_folder": env.get("FXHUB_INBOX_FOLDER"),
            "inbox_archive_folder": env.get("FXHUB_INBOX_ARCHIVE_FOLDER"),
            "poll_interval": env.get("FXHUB_POLL_INTERVAL"),
            "election_interval": env.get("FXHUB_ELECTION_INTERVAL"),
            "instance_id": env.get("FXHUB_INSTANCE_ID"),
            "prometheus_port": env.get("PROMETHEUS_PORT"),
        }
        return cls(**{key: value for key, value in values.items() if value})

    def firm(self) -> FirmIdentity:
        return FirmIdentity(party_id=self.own_party_id, lei=self.own_lei, name=self.own_name)

    def convention(self) -> CurrencyConvention:
        return CurrencyConvention(self.currency_priority)
