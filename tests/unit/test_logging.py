"""Tests for structured logging helpers."""

import logging

import pytest

from src.core.logging import log_with_user_context


@pytest.mark.unit
class TestLogWithUserContext:
    def test_attaches_user_and_extra_fields(self, caplog):
        logger = logging.getLogger("tests.logging")

        with caplog.at_level(logging.INFO, logger="tests.logging"):
            log_with_user_context(logger, "info", "Verification approved", user_id="12", entry_id="40")

        record = caplog.records[-1]
        assert record.getMessage() == "Verification approved"
        assert record.user_id == "12"
        assert record.entry_id == "40"

    def test_omits_missing_user(self, caplog):
        logger = logging.getLogger("tests.logging")

        with caplog.at_level(logging.WARNING, logger="tests.logging"):
            log_with_user_context(logger, "WARNING", "No reviewer", task_id="3")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert not hasattr(record, "user_id")
        assert record.task_id == "3"
