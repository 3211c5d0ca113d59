"""Tests for loguru setup and stdlib interception."""

from __future__ import annotations

import logging
import sys

import pytest
from loguru import logger

from docdesk.logging_config import InterceptHandler, setup_logging


@pytest.fixture
def captured():
    messages: list[str] = []
    yield messages
    logger.remove()
    logger.add(sys.stderr)
    for name in ("LiteLLM", "httpx"):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True


def test_stdlib_records_reach_loguru(captured):
    setup_logging(level="INFO")
    logger.add(lambda msg: captured.append(msg.record["message"]), level="INFO")

    logging.getLogger("LiteLLM").warning("retrying request")

    assert captured == ["retrying request"]
    assert isinstance(logging.getLogger("httpx").handlers[0], InterceptHandler)
    assert logging.getLogger("httpx").propagate is False


def test_level_filters(captured):
    setup_logging(level="WARNING")
    logger.add(lambda msg: captured.append(msg.record["message"]), level="WARNING")

    logger.info("[test] hidden")
    logger.warning("[test] shown")

    assert captured == ["[test] shown"]
