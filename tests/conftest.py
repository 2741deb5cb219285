"""Pytest configuration and shared fixtures."""

import random

import pytest

from docsum.models.data_models import SourceDocument
from tests.fixtures.fakes import FakeClock, FakeExtractor
from tests.fixtures.sample_data import make_pdf_bytes


@pytest.fixture(scope="session")
def deterministic_seed():
    """Set a fixed random seed for deterministic test results."""
    random.seed(42)
    return 42


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def no_api_key(monkeypatch):
    """Keep credentials from the environment out of every test."""
    for name in ("OPENAI_API_KEY", "DOCSUM_API_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sample_config():
    """Provide a sample configuration for testing."""
    from docsum.models.config import PipelineConfig

    return PipelineConfig(
        rate_limit_quota=5,
        rate_limit_window=1.0,
        max_retries=3,
        retry_base_delay=0.5,
        retry_max_delay=4.0,
        retry_jitter_max=0.0,
        request_timeout=5.0,
        circuit_breaker_failure_threshold=3,
        circuit_breaker_reset_timeout=15.0,
        worker_pool_size=2,
        total_timeout=30.0,
        log_level="WARNING",
    )


@pytest.fixture
def live_config(sample_config):
    """Sample configuration pointed at the in-process mock server."""
    return sample_config.model_copy(update={
        "api_key": "test-key",
        "api_url": "http://mock-llm/v1/chat/completions",
    })


@pytest.fixture
def pdf_document():
    return SourceDocument(name="report.pdf", content=make_pdf_bytes())


@pytest.fixture
def fake_extractor():
    return FakeExtractor()
