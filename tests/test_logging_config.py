"""
test_logging_config.py — Tests for storefront/logging_config.py

Verifies Loguru setup, stdlib logging interception (httpx, SQLAlchemy
and uvicorn log through the stdlib), and the production JSON switch.

Called by: pytest
Depends on: storefront/logging_config.py
"""

import logging
import os
from unittest.mock import patch

import pytest
from loguru import logger

from storefront.logging_config import _is_production, setup_logging


@pytest.fixture(autouse=True)
def _clean_loguru():
    logger.remove()
    yield
    logger.remove()


def test_setup_logging_adds_handler():
    assert len(logger._core.handlers) == 0
    with patch.dict(os.environ, {"APP_URL": "http://localhost:8000"}):
        setup_logging()
    assert len(logger._core.handlers) > 0


def test_stdlib_logging_intercepted():
    with patch.dict(os.environ, {"APP_URL": "http://localhost:8000"}):
        setup_logging()

    # setup_logging() removes existing sinks, so capture is added after it
    messages = []
    logger.add(lambda m: messages.append(str(m)), format="{message}")

    logging.getLogger("storefront.test").warning("square said no")

    assert any("square said no" in m for m in messages)


def test_noisy_libraries_quieted():
    with patch.dict(os.environ, {"APP_URL": "http://localhost:8000"}):
        setup_logging()
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_log_level_from_env():
    with patch.dict(os.environ, {"APP_URL": "http://localhost:8000", "LOG_LEVEL": "warning"}):
        setup_logging()

    messages = []
    logger.add(lambda m: messages.append(str(m)), level="WARNING", format="{message}")

    logger.debug("should be filtered")
    logger.warning("should appear")

    assert any("should appear" in m for m in messages)
    assert not any("should be filtered" in m for m in messages)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("http://localhost:8000", False),
        ("http://127.0.0.1:8000", False),
        ("", False),
        ("https://shop.example.com", True),
    ],
)
def test_is_production(url, expected):
    assert _is_production(url) is expected


def test_production_mode_uses_serialize():
    with patch.dict(os.environ, {"APP_URL": "https://shop.example.com"}, clear=False):
        os.environ.pop("LOG_FILE", None)
        with patch("loguru.logger.add") as mock_add:
            setup_logging()
    serialize_calls = [c for c in mock_add.call_args_list if c.kwargs.get("serialize") is True]
    assert len(serialize_calls) == 1


def test_production_file_sink_rotates(tmp_path):
    log_file = str(tmp_path / "storefront.log")
    with patch.dict(os.environ, {"APP_URL": "https://shop.example.com", "LOG_FILE": log_file}):
        with patch("loguru.logger.add") as mock_add:
            setup_logging()
    file_calls = [c for c in mock_add.call_args_list if c.args and c.args[0] == log_file]
    assert len(file_calls) == 1
    assert file_calls[0].kwargs["rotation"] == "50 MB"
    assert file_calls[0].kwargs["retention"] == "7 days"
