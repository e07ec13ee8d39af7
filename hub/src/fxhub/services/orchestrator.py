"""
Parse orchestrator
==================

Drives stored ``MessageIn`` records through the parser registry and
persists what comes out.  For every trade leg of a successful parse the
orchestrator writes, in order:

1. the ``Trade`` row;
2. a ``MessageInReceived`` workflow event naming the source;
3. the system links supplied by the parser, or the default links for the
   product when the parser supplied none;
4. the parser's own workflow events (normalization notes, warnings).

The message is then marked parsed.  Writes are not wrapped in a single
transaction; a trade whose id already exists is skipped on re-parse so a
partially persisted message can be completed by ``reprocess_message``.

A message that fails to parse keeps ``parsed_flag=False`` and stores the
failure reason.  ``process_pending_messages`` never picks such a message
up again; only an explicit ``process_message`` or ``reprocess_message``
retries it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

from .. import metrics
from ..errors import DuplicateLinkError, DuplicateTradeError, UnknownMessageError
from ..models import (
    MessageIn,
    SourceType,
    StpMode,
    SystemCode,
    Trade,
    TradeSystemLink,
    TradeSystemStatus,
    TradeWorkflowEvent,
    utc_now,
)
from ..parsing.base import ParsedTradeResult, ParseResult
from ..parsing.registry import ParserRegistry
from ..storage.base import StpRepository
from ..workflow import MESSAGE_IN_RECEIVED

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
CALYPSO_STP_VENUES = frozenset({"JPM", "BARX", "NATWEST", "AUTOBAHN"})
VOLBROKER_VENUE = "VOLBROKER"


def build_default_links(trade: Trade) -> List[TradeSystemLink]:
    """Return the downstream links a freshly parsed trade starts with."""
    venue = (trade.source_venue_code or "").upper()
    links = [
        TradeSystemLink(
            system_code=SystemCode.MX3,
            status=TradeSystemStatus.NEW,
            stp_mode=StpMode.MANUAL,
            portfolio_code=trade.portfolio_mx3 or None,
        )
    ]
    if trade.product_type.is_option:
        if venue == VOLBROKER_VENUE:
            links.append(
                TradeSystemLink(
                    system_code=SystemCode.VOLBROKER_STP,
                    status=TradeSystemStatus.NEW,
                    stp_mode=StpMode.AUTO,
                    book_flag=False,
                    external_trade_id=trade.trade_id,
                )
            )
    elif trade.product_type.is_linear:
        stp_flag = venue in CALYPSO_STP_VENUES
        links.append(
            TradeSystemLink(
                system_code=SystemCode.CALYPSO,
                status=TradeSystemStatus.NEW,
                stp_mode=StpMode.AUTO if stp_flag else StpMode.MANUAL,
                portfolio_code=trade.calypso_book or None,
                stp_flag=stp_flag,
            )
        )
    return links


def received_description(message: MessageIn) -> str:
    if message.source_type == SourceType.FIX:
        return (
            f"FIX {message.fix_msg_type or '?'} from {message.source_venue_code}, "
            f"SeqNum={message.fix_seq_num}"
        )
    if message.source_type == SourceType.EMAIL:
        return f"Email from {message.source_venue_code}"
    return f"File from {message.source_venue_code}"


def _unique_by_system(links: Iterable[TradeSystemLink]) -> List[TradeSystemLink]:
    seen = set()
    unique = []
    for link in links:
        if link.system_code in seen:
            continue
        seen.add(link.system_code)
        unique.append(link)
    return unique


class ParseOrchestrator:
    """Parse stored messages and persist the resulting trades."""

    def __init__(
        self,
        repository: StpRepository,
        registry: ParserRegistry,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.batch_size = batch_size

    async def process_message(self, message_in_id: int, force: bool = False) -> bool:
        """Parse one message.

        Returns ``True`` when the message is parsed after the call (including
        the no-op case of an already parsed message) and ``False`` when the
        parse failed and the reason was stored.
        """
        message = await self.repository.get_message(message_in_id)
        if message is None:
            raise UnknownMessageError(f"MessageIn {message_in_id} not found")
        if message.parsed_flag and not force:
            logger.debug("Message %s already parsed", message_in_id)
            return True

        parser = self.registry.resolve(message)
        parser_name = parser.name if parser is not None else "none"
        try:
            if parser is None:
                result = ParseResult.failed(
                    f"No parser for {message.source_type.value}/"
                    f"{message.source_venue_code}/{message.fix_msg_type or '-'}"
                )
            else:
                result = parser.parse(message)
            if result.succeeded and not result.trades:
                result = ParseResult.failed("Parser returned no trades")
            if not result.succeeded:
                await self._fail(message, parser_name, result.error or "")
                return False
            created = await self._persist(message, result.trades)
        except Exception as exc:
            logger.exception("Unexpected error while processing message %s", message_in_id)
            await self._fail(message, parser_name, f"{type(exc).__name__}: {exc}")
            return False

        await self.repository.update_parse_state(message_in_id, True, None, utc_now())
        metrics.MESSAGES_PARSED.labels(parser=parser_name).inc()
        logger.info(
            "Message %s parsed by %s into %d trade(s)", message_in_id, parser_name, created
        )
        return True

    async def reprocess_message(self, message_in_id: int) -> bool:
        """Force a re-parse, clearing any stored parse error first."""
        await self.repository.update_parse_state(message_in_id, False, None, None)
        return await self.process_message(message_in_id, force=True)

    async def process_pending_messages(self, batch_size: Optional[int] = None) -> int:
        """Parse every unparsed message without a stored error; returns the count handled."""
        size = batch_size or self.batch_size
        handled = 0
        while True:
            batch = await self.repository.get_unparsed_messages(size)
            if not batch:
                break
            for message in batch:
                await self.process_message(message.message_in_id)
                handled += 1
            if len(batch) < size:
                break
        if handled:
            logger.info("Processed %d pending message(s)", handled)
        return handled

    async def run(self, poll_interval: float, stop: Optional[asyncio.Event] = None) -> None:
        """Sweep pending messages every ``poll_interval`` seconds until ``stop`` is set."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.process_pending_messages()
            except Exception:
                logger.exception("Pending message sweep failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                continue

    async def _fail(self, message: MessageIn, parser_name: str, reason: str) -> None:
        logger.warning("Message %s failed to parse: %s", message.message_in_id, reason)
        metrics.MESSAGES_FAILED.labels(parser=parser_name).inc()
        await self.repository.update_parse_state(
            message.message_in_id, False, reason, utc_now()
        )

    async def _persist(self, message: MessageIn, bundles: List[ParsedTradeResult]) -> int:
        created = 0
        for bundle in bundles:
            trade = bundle.trade.model_copy(update={"message_in_id": message.message_in_id})
            try:
                stp_trade_id = await self.repository.insert_trade(trade)
            except DuplicateTradeError:
                logger.warning(
                    "Trade %s from message %s already exists; skipping leg",
                    trade.trade_id,
                    message.message_in_id,
                )
                continue
            created += 1
            metrics.TRADES_CREATED.labels(product=trade.product_type.value).inc()

            await self.repository.insert_trade_workflow_event(
                TradeWorkflowEvent(
                    stp_trade_id=stp_trade_id,
                    event_type=MESSAGE_IN_RECEIVED,
                    description=received_description(message),
                )
            )

            links = bundle.system_links or build_default_links(trade)
            for link in _unique_by_system(links):
                try:
                    await self.repository.insert_trade_system_link(
                        link.model_copy(update={"stp_trade_id": stp_trade_id})
                    )
                except DuplicateLinkError:
                    logger.warning(
                        "Trade %s already has a %s link", trade.trade_id, link.system_code.value
                    )

            for event in bundle.workflow_events:
                await self.repository.insert_trade_workflow_event(
                    event.model_copy(update={"stp_trade_id": stp_trade_id})
                )
        return created
