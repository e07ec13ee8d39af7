"""Prometheus counters move when messages and response files are handled."""

import pytest
from prometheus_client import REGISTRY

from fxhub.models import MessageIn, SourceType
from fxhub.parsing.registry import ParserRegistry
from fxhub.services import MessageInService, ParseOrchestrator
from fxhub.storage.memory import InMemoryStpRepository
from tests.helpers.fake_lookups import FIRM, build_lookups
from tests.helpers.payloads import jpm_confirmation, message


def _sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.mark.asyncio
async def test_parse_counters():
    parsed = _sample("fxhub_messages_parsed_total", parser="JpmSpotConfirmationParser")
    failed = _sample("fxhub_messages_failed_total", parser="none")
    spots = _sample("fxhub_trades_created_total", product="SPOT")

    repo = InMemoryStpRepository()
    ingest = MessageInService(repo)
    await ingest.ingest(message(jpm_confirmation(), "JPM"))
    await ingest.ingest(
        MessageIn(source_type=SourceType.EMAIL, source_venue_code="NOBODY", raw_payload="?")
    )
    orchestrator = ParseOrchestrator(repo, ParserRegistry.default(build_lookups(), firm=FIRM))
    assert await orchestrator.process_pending_messages() == 2

    assert _sample("fxhub_messages_parsed_total", parser="JpmSpotConfirmationParser") == parsed + 1
    assert _sample("fxhub_messages_failed_total", parser="none") == failed + 1
    assert _sample("fxhub_trades_created_total", product="SPOT") == spots + 1


@pytest.mark.asyncio
async def test_inbound_duplicate_counter():
    before = _sample("fxhub_inbound_messages_total", source="EMAIL", duplicate="true")
    service = MessageInService(InMemoryStpRepository())
    incoming = MessageIn(source_type=SourceType.EMAIL, source_venue_code="JPM", raw_payload="dup")
    await service.ingest(incoming)
    await service.ingest(incoming)
    assert _sample("fxhub_inbound_messages_total", source="EMAIL", duplicate="true") == before + 1
