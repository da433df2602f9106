"""
Stdlib logging routed through loguru.
"""

import logging
import sys

import pytest
from loguru import logger

from utils.logging_config import configure_logging


@pytest.fixture
def restore_logging():
    handlers = logging.root.handlers[:]
    level = logging.root.level
    yield
    logger.remove()
    logger.add(sys.stderr)
    logging.root.handlers = handlers
    logging.root.setLevel(level)


def test_stdlib_records_reach_loguru(restore_logging):
    configure_logging(level="DEBUG")
    messages = []
    logger.add(lambda msg: messages.append(msg.record), level="DEBUG")

    logging.getLogger("RetryController").warning("[%s] Attempt %d failed", "openai", 1)

    assert any(r["message"] == "[openai] Attempt 1 failed" for r in messages)
    assert any(r["level"].name == "WARNING" for r in messages)


def test_log_file_sink(tmp_path, restore_logging):
    log_file = tmp_path / "logs" / "subrelay.log"
    configure_logging(log_file)

    logging.getLogger("GeminiProvider").info("model limits resolved")
    logger.complete()

    assert log_file.exists()
    assert "model limits resolved" in log_file.read_text(encoding="utf-8")
