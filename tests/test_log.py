"""
Tests for pipewright.log
==========================

What's Being Tested:
    - Level names are validated
    - Console and JSON rendering to stderr
    - Events below the configured level are dropped
"""

import json
import logging

import pytest
import structlog

from pipewright.log import configure_logging


@pytest.fixture(autouse=True)
def _reset_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging("LOUD")

    def test_json_output(self, capsys) -> None:
        configure_logging("INFO", json_format=True)

        structlog.get_logger().info("job_started", job="build")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "job_started"
        assert event["job"] == "build"
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_level_filtering(self, capsys) -> None:
        configure_logging("warning")

        log = structlog.get_logger()
        log.info("hidden_event")
        log.warning("visible_event")

        err = capsys.readouterr().err
        assert "hidden_event" not in err
        assert "visible_event" in err

    def test_numeric_level(self, capsys) -> None:
        configure_logging(logging.DEBUG, json_format=True)
        structlog.get_logger().debug("debug_event")
        assert "debug_event" in capsys.readouterr().err
