"""End-to-end tests: pipeline, request layer and mock chat-completion server.

The mock server runs in-process through httpx.ASGITransport, so every test
exercises the real cache, deduplicator, rate limiter, circuit breaker,
retry handler and recovery manager without opening a socket. Backoff and
recovery sleeps go through a fake clock.
"""

import asyncio
from unittest.mock import MagicMock

import httpx
import pytest

from docsum.mock_servers import create_mock_app
from docsum.models.data_models import JobStatus
from docsum.models.errors import ErrorCategory
from docsum.pipeline.orchestrator import PipelineOrchestrator
from tests.fixtures.fakes import FakeExtractor

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


@pytest.fixture
def e2e_config(live_config):
    """Live configuration with a quota that never throttles these tests."""
    return live_config.model_copy(update={"rate_limit_quota": 50})


@pytest.fixture
def make_orchestrator(e2e_config, clock):
    def build(app, config=None):
        return PipelineOrchestrator(
            config or e2e_config,
            transport=httpx.ASGITransport(app=app),
            extractor=FakeExtractor(),
            sleeper=clock.sleep,
            logger=MagicMock(),
        )

    return build


async def wait_for_status(pipeline, status, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        snapshot = pipeline.snapshot()
        if snapshot is not None and snapshot.status is status:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"pipeline never reached {status.value}")


async def test_live_summary(make_orchestrator, pdf_document):
    app = create_mock_app(api_key="test-key")
    events = []

    async with make_orchestrator(app) as orchestrator:
        snapshot = await orchestrator.run(pdf_document, "MEDIUM", listener=events.append)

    assert snapshot.status is JobStatus.DONE
    assert snapshot.result.is_demo is False
    assert snapshot.result.model == "gpt-4o"
    assert snapshot.result.summary.startswith("Summary (gpt-4o, ")
    assert snapshot.result.document_type == "Business Report"
    assert snapshot.result.usage["total_tokens"] > 0
    assert app.state.calls == 1

    sent = app.state.requests[0]
    assert sent["max_tokens"] == 800
    assert "Page 2 of 3" not in sent["messages"][1]["content"]

    progress = [event.progress for event in events]
    assert progress == sorted(progress)
    assert progress[-1] == 100


async def test_short_tier_uses_economy_model(make_orchestrator, pdf_document):
    app = create_mock_app(api_key="test-key")

    async with make_orchestrator(app) as orchestrator:
        snapshot = await orchestrator.run(pdf_document, "SHORT")

    assert snapshot.result.model == "gpt-4o-mini"
    assert app.state.requests[0]["max_tokens"] == 300


async def test_transient_failure_retried(make_orchestrator, pdf_document, clock):
    app = create_mock_app(api_key="test-key", status_sequence=[503, 200])

    async with make_orchestrator(app) as orchestrator:
        snapshot = await orchestrator.run(pdf_document)

    assert snapshot.status is JobStatus.DONE
    assert app.state.calls == 2
    assert clock.sleeps == [0.5]


async def test_retry_after_honoured(make_orchestrator, pdf_document, clock):
    app = create_mock_app(api_key="test-key", status_sequence=[429, 200], retry_after=3)

    async with make_orchestrator(app) as orchestrator:
        snapshot = await orchestrator.run(pdf_document)

    assert snapshot.status is JobStatus.DONE
    assert clock.sleeps == [3.0]


async def test_bad_credential_fails_without_retry(make_orchestrator, pdf_document, clock):
    app = create_mock_app(api_key="another-key")

    async with make_orchestrator(app) as orchestrator:
        snapshot = await orchestrator.run(pdf_document)
        breaker_state = orchestrator.circuit_breaker.state("http://mock-llm")

    assert snapshot.status is JobStatus.FAILED
    assert snapshot.error.category is ErrorCategory.AUTHENTICATION
    assert snapshot.error.status_code == 401
    assert app.state.calls == 1
    assert clock.sleeps == []
    assert breaker_state.value == "closed"


async def test_persistent_outage_opens_breaker(make_orchestrator, pdf_document, clock):
    app = create_mock_app(api_key="test-key", status_sequence=[503] * 10)

    async with make_orchestrator(app) as orchestrator:
        snapshot = await orchestrator.run(pdf_document)
        breaker_state = orchestrator.circuit_breaker.state("http://mock-llm")
        history = orchestrator.recovery.history()

    assert snapshot.status is JobStatus.FAILED
    assert snapshot.error.category is ErrorCategory.BREAKER_OPEN
    # Three failures open the breaker; later attempts fail fast
    assert app.state.calls == 3
    assert breaker_state.value == "open"
    assert clock.sleeps[:3] == [0.5, 1.0, 2.0]
    # Recovery waits out the breaker cooldown once
    assert clock.sleeps[3] == pytest.approx(15.0, abs=0.5)
    assert [record.category for record in history] == [ErrorCategory.BREAKER_OPEN]


async def test_regenerate_same_tier_served_from_cache(make_orchestrator, pdf_document):
    app = create_mock_app(api_key="test-key")

    async with make_orchestrator(app) as orchestrator:
        pipeline = orchestrator.create_pipeline()
        first = await orchestrator.run(pdf_document, "MEDIUM", pipeline=pipeline)
        again = await pipeline.regenerate("MEDIUM")
        assert app.state.calls == 1

        longer = await pipeline.regenerate("LONG")

    assert again.result.summary == first.result.summary
    assert longer.result.tier == "LONG"
    assert app.state.calls == 2
    assert orchestrator.extractor.calls == 1


async def test_concurrent_identical_jobs_share_one_call(make_orchestrator, pdf_document):
    app = create_mock_app(api_key="test-key", extra_latency_ms=50)

    async with make_orchestrator(app) as orchestrator:
        first, second = await asyncio.gather(
            orchestrator.run(pdf_document, "SHORT"),
            orchestrator.run(pdf_document, "SHORT"),
        )

    assert first.status is JobStatus.DONE
    assert second.status is JobStatus.DONE
    assert first.result.summary == second.result.summary
    assert app.state.calls == 1


async def test_cancel_during_summarization(make_orchestrator, pdf_document):
    app = create_mock_app(api_key="test-key", extra_latency_ms=300)

    async with make_orchestrator(app) as orchestrator:
        pipeline = orchestrator.create_pipeline()
        task = asyncio.create_task(orchestrator.run(pdf_document, pipeline=pipeline))
        await wait_for_status(pipeline, JobStatus.SUMMARIZING)
        while app.state.calls == 0:
            await asyncio.sleep(0.01)

        assert pipeline.cancel("user cancelled")
        snapshot = await task

        assert snapshot.status is JobStatus.CANCELLED
        assert snapshot.result is None
        assert snapshot.has_text
        assert len(orchestrator.cache) == 0

        # The abandoned call left nothing cached, so regenerating calls again
        regenerated = await pipeline.regenerate("MEDIUM")

    assert regenerated.status is JobStatus.DONE
    assert app.state.calls == 2
