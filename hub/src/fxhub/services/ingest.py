"""
Message ingest
==============

``MessageInService`` is the single way raw messages enter storage.  It
hashes the payload (SHA-256, lowercase hex) and refuses to store the same
payload twice, returning the id of the earlier copy instead.

``FileInboxService`` reads the text drops an e-mail forwarding rule writes
to a shared folder::

    From: confirmations@broker.example
    Subject: Trade confirmation 12345
    Received: 2026-01-08T10:54:39+00:00
    To: fx-backoffice@bank.example

    ---BODY---
    <html>...</html>

Header lines before ``---BODY---`` are optional and case-insensitive.  The
venue is detected from the sender address or the subject; unknown senders
are stored with venue ``UNKNOWN`` so content-based dispatch can still pick
them up.  Processed files are moved to an archive folder.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import hashlib
import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from .. import metrics
from ..models import MessageIn, SourceType
from ..reconciliation.dedup import ExpiringKeySet
from ..reconciliation.reconciler import archive_files
from ..reconciliation.watcher import FolderWatcher, matches_pattern
from ..storage.base import StpRepository

logger = logging.getLogger(__name__)

BODY_MARKER = "---BODY---"
UNKNOWN_VENUE = "UNKNOWN"
INBOX_PATTERN = "*.txt"

# (venue code, sender fragments, subject fragments); first match wins.
VENUE_RULES = (
    ("JPM", ("jpmorgan", "jpm"), ("jpm trade",)),
    ("BARX", ("barclays", "barx"), ("barx", "barclays")),
    ("TULLETT", ("tullett", "tpicap"), ("tullett",)),
    ("NATWEST", ("natwest", "nwm"), ("natwest",)),
)


def payload_hash(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def detect_venue(sender: Optional[str], subject: Optional[str]) -> str:
    sender_text = (sender or "").lower()
    subject_text = (subject or "").lower()
    for venue, senders, subjects in VENUE_RULES:
        if any(fragment in sender_text for fragment in senders):
            return venue
        if any(fragment in subject_text for fragment in subjects):
            return venue
    return UNKNOWN_VENUE


@dataclass
class EmailDrop:
    sender: Optional[str]
    subject: Optional[str]
    recipient: Optional[str]
    received_utc: Optional[dt.datetime]
    body: str


def _parse_received(value: str) -> Optional[dt.datetime]:
    try:
        parsed = dt.datetime.fromisoformat(value.strip())
    except ValueError:
        logger.warning("Unreadable Received header %r", value)
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)


def parse_email_drop(content: str) -> EmailDrop:
    sender = subject = recipient = None
    received = None
    lines = content.splitlines()
    body_start = None
    for index, line in enumerate(lines):
        lowered = line.lower()
        if BODY_MARKER.lower() in lowered:
            body_start = index + 1
            break
        if lowered.startswith("from:"):
            sender = line[5:].strip()
        elif lowered.startswith("subject:"):
            subject = line[8:].strip()
        elif lowered.startswith("received:"):
            received = _parse_received(line[9:])
        elif lowered.startswith("to:"):
            recipient = line[3:].strip()
    body = "\n".join(lines[body_start:]) if body_start is not None else ""
    return EmailDrop(sender, subject, recipient, received, body)


class MessageInService:
    """Store raw inbound messages with payload-hash deduplication."""

    def __init__(self, repository: StpRepository) -> None:
        self.repository = repository

    async def ingest(self, message: MessageIn) -> Tuple[int, bool]:
        """Store ``message``; returns ``(message_in_id, created)``."""
        digest = message.raw_payload_hash or payload_hash(message.raw_payload)
        existing = await self.repository.find_message_by_hash(digest)
        if existing is not None:
            metrics.INBOUND_MESSAGES.labels(
                source=message.source_type.value, duplicate="true"
            ).inc()
            logger.info(
                "Duplicate %s payload from %s; keeping message %s",
                message.source_type.value,
                message.source_venue_code,
                existing.message_in_id,
            )
            return existing.message_in_id, False
        message_id = await self.repository.insert_message(
            message.model_copy(update={"raw_payload_hash": digest})
        )
        metrics.INBOUND_MESSAGES.labels(source=message.source_type.value, duplicate="false").inc()
        logger.info(
            "Stored %s message %s from %s",
            message.source_type.value,
            message_id,
            message.source_venue_code,
        )
        return message_id, True


class FileInboxService:
    """Turn e-mail text drops in ``inbox_folder`` into ``MessageIn`` rows."""

    def __init__(
        self,
        messages: MessageInService,
        inbox_folder: str,
        archive_folder: Optional[str] = None,
        dedup: Optional[ExpiringKeySet] = None,
    ) -> None:
        self.messages = messages
        self.inbox_folder = inbox_folder
        self.archive_folder = archive_folder
        self.dedup = dedup or ExpiringKeySet(ttl=300.0)
        self._watcher: Optional[FolderWatcher] = None

    def build_message(self, drop: EmailDrop) -> MessageIn:
        received = drop.received_utc or dt.datetime.now(dt.timezone.utc)
        return MessageIn(
            source_type=SourceType.EMAIL,
            source_venue_code=detect_venue(drop.sender, drop.subject),
            raw_payload=drop.body,
            received_utc=received,
            source_timestamp=drop.received_utc,
            email_from=drop.sender,
            email_subject=drop.subject,
            email_to=drop.recipient,
        )

    async def process_file(self, path: str) -> Optional[int]:
        """Store one drop; returns the message id, or ``None`` when skipped."""
        key = os.path.basename(path).lower()
        if not self.dedup.try_add(key):
            return None
        try:
            content = await asyncio.to_thread(_read_text, path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read inbox file %s: %s", path, exc)
            self.dedup.discard(key)
            return None

        drop = parse_email_drop(content)
        if not drop.body.strip():
            logger.warning("Inbox file %s has no body; leaving it in place", path)
            return None

        try:
            message_id, _ = await self.messages.ingest(self.build_message(drop))
        except Exception:
            logger.exception("Failed to store inbox file %s", path)
            self.dedup.discard(key)
            return None
        try:
            await asyncio.to_thread(archive_files, self.archive_folder, [path])
        except OSError:
            logger.exception("Failed to archive inbox file %s", path)
        return message_id

    async def scan(self) -> int:
        """Process every drop already in the folder."""
        if not os.path.isdir(self.inbox_folder):
            logger.warning("Inbox folder %s does not exist", self.inbox_folder)
            return 0
        names = sorted(await asyncio.to_thread(os.listdir, self.inbox_folder))
        count = 0
        for name in names:
            if not matches_pattern(name, INBOX_PATTERN):
                continue
            if await self.process_file(os.path.join(self.inbox_folder, name)) is not None:
                count += 1
        return count

    async def start(self) -> None:
        if self._watcher is not None:
            return
        self._watcher = FolderWatcher(self.inbox_folder, INBOX_PATTERN, self.process_file)
        self._watcher.start(asyncio.get_running_loop())
        await self.scan()

    async def stop(self) -> None:
        if self._watcher is not None:
            await asyncio.to_thread(self._watcher.stop)
            self._watcher = None


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8-sig") as handle:
        return handle.read()
