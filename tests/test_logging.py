"""Tests for logging setup."""

from __future__ import annotations

import logging

import pytest
from rich.logging import RichHandler

from daytrace.utils.logging import LogContext, get_logger, log_context, set_level, setup_logging


@pytest.fixture(autouse=True)
def restore_package_logger():
    package_logger = logging.getLogger("daytrace")
    saved = (package_logger.level, list(package_logger.handlers), package_logger.propagate)
    yield
    package_logger.setLevel(saved[0])
    package_logger.handlers = saved[1]
    package_logger.propagate = saved[2]


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_rich_handler_attached(self) -> None:
        logger = setup_logging(level="debug")

        assert logger.name == "daytrace"
        assert logger.level == logging.DEBUG
        assert [type(h) for h in logger.handlers] == [RichHandler]
        assert not logger.propagate

    def test_repeated_calls_replace_handlers(self) -> None:
        setup_logging()
        logger = setup_logging(level="WARNING")

        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING

    def test_file_handler(self, tmp_path) -> None:
        log_file = tmp_path / "logs" / "daytrace.log"
        logger = setup_logging(level="INFO", log_file=log_file)

        get_logger("reconciliation").info("window locked")
        for handler in logger.handlers:
            handler.flush()

        assert "window locked" in log_file.read_text(encoding="utf-8")
        assert "daytrace.reconciliation" in log_file.read_text(encoding="utf-8")

    def test_set_level(self) -> None:
        logger = setup_logging(level="INFO")

        set_level("ERROR")

        assert logger.level == logging.ERROR
        assert all(h.level == logging.ERROR for h in logger.handlers)


class TestGetLogger:
    """Tests for get_logger."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("daytrace", "daytrace"),
            ("daytrace.timeline", "daytrace.timeline"),
            ("ingestion", "daytrace.ingestion"),
        ],
    )
    def test_namespaced(self, name, expected) -> None:
        assert get_logger(name).name == expected


class TestLogContext:
    """Tests for LogContext and log_context."""

    def test_label_includes_fields(self) -> None:
        assert LogContext("Window").label == "Window"
        assert LogContext("Window", user="u1", day="2025-03-04").label == "Window (user=u1, day=2025-03-04)"

    def test_logs_start_and_completion(self, caplog) -> None:
        logger = logging.getLogger("test.log_context")

        with caplog.at_level(logging.INFO, logger="test.log_context"):
            with log_context("Reprocessing", logger=logger, user="u1") as ctx:
                pass

        assert "Reprocessing (user=u1)..." in caplog.text
        assert "Reprocessing (user=u1) completed in" in caplog.text
        assert ctx.elapsed >= 0

    def test_logs_failure_and_reraises(self, caplog) -> None:
        logger = logging.getLogger("test.log_context")

        with caplog.at_level(logging.INFO, logger="test.log_context"):
            with pytest.raises(RuntimeError):
                with LogContext("Reprocessing", logger=logger):
                    raise RuntimeError("boom")

        failures = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(failures) == 1
        assert "failed after" in failures[0].getMessage()
        assert "boom" in failures[0].getMessage()
