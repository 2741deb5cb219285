"""Unit tests for structured logging."""

import json
import logging

import pytest

from docsum.monitoring.logger import StructuredLogger


@pytest.fixture
def logger():
    structured = StructuredLogger(name="docsum.test", level="DEBUG")
    structured.logger.propagate = True
    return structured


def events(caplog):
    return [json.loads(record.getMessage()) for record in caplog.records if record.name == "docsum.test"]


class TestStructuredLogger:

    def test_log_emits_json_with_event(self, logger, caplog):
        with caplog.at_level(logging.DEBUG, logger="docsum.test"):
            logger.log("pipeline_start", document="report.pdf", size=2048)

        assert events(caplog) == [{"event": "pipeline_start", "document": "report.pdf", "size": 2048}]

    def test_levels_follow_event(self, logger, caplog):
        with caplog.at_level(logging.DEBUG, logger="docsum.test"):
            logger.retry_scheduled(attempt=1, delay=1.23456, category="server")
            logger.job_failed("job1", "summarizing", "server", "down")

        levels = [record.levelno for record in caplog.records if record.name == "docsum.test"]
        assert levels == [logging.WARNING, logging.ERROR]
        assert events(caplog)[0]["delay"] == 1.235

    def test_listener_error_is_warning(self, logger, caplog):
        with caplog.at_level(logging.DEBUG, logger="docsum.test"):
            logger.listener_error("job1", "done", "boom")

        levels = [record.levelno for record in caplog.records if record.name == "docsum.test"]
        assert levels == [logging.WARNING]
        assert events(caplog) == [
            {"event": "listener_error", "job_id": "job1", "status": "done", "error": "boom"}
        ]

    def test_fingerprints_are_shortened(self, logger, caplog):
        with caplog.at_level(logging.DEBUG, logger="docsum.test"):
            logger.cache_hit("a" * 64)

        assert events(caplog)[0]["fingerprint"] == "a" * 12

    def test_circuit_breaker_event(self, logger, caplog):
        with caplog.at_level(logging.DEBUG, logger="docsum.test"):
            logger.circuit_breaker_state("https://api.openai.com", "open")

        assert events(caplog)[0] == {
            "event": "circuit_breaker",
            "source": "https://api.openai.com",
            "cb_state": "open",
        }

    def test_unstructured_mode(self, caplog):
        plain = StructuredLogger(name="docsum.plain", level="INFO", structured=False)
        plain.logger.propagate = True

        with caplog.at_level(logging.INFO, logger="docsum.plain"):
            plain.stage_change("job1", "extracting", 10)

        message = caplog.records[-1].getMessage()
        assert message == "event=stage_change job_id=job1 status=extracting progress=10"

    def test_level_filters_debug(self, caplog):
        quiet = StructuredLogger(name="docsum.quiet", level="WARNING")
        quiet.logger.propagate = True

        with caplog.at_level(logging.DEBUG, logger="docsum.quiet"):
            quiet.logger.setLevel(logging.WARNING)
            quiet.cache_sweep(removed=3, remaining=1)

        assert [r for r in caplog.records if r.name == "docsum.quiet"] == []
