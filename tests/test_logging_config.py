"""
Tests for logging setup and stage timing.
"""

import logging

import pytest

from callset_refine.logging_config import LOGGER_NAME, StageTimer, setup_logging


class TestStageTimer:
    """Test per-stage timing records."""

    def setup_method(self):
        self.logger = logging.getLogger(f"{LOGGER_NAME}.tests")

    def test_counts_and_logs(self, caplog):
        with caplog.at_level("INFO", logger=LOGGER_NAME):
            with StageTimer(self.logger, "learning pass") as timer:
                timer.tick()
                timer.tick(2)
        assert timer.count == 3
        assert timer.elapsed is not None
        assert "Starting learning pass" in caplog.text
        assert "Completed learning pass: 3 sites" in caplog.text

    def test_failure_logged_and_propagated(self, caplog):
        with caplog.at_level("INFO", logger=LOGGER_NAME):
            with pytest.raises(RuntimeError):
                with StageTimer(self.logger, "decision pass") as timer:
                    timer.tick()
                    raise RuntimeError("boom")
        assert "Failed decision pass after 1 sites" in caplog.text
        assert "boom" in caplog.text


class TestSetupLogging:
    """Test package logger configuration."""

    def test_level_and_handlers(self):
        logger = setup_logging("warning")
        assert logger.name == LOGGER_NAME
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert not logger.propagate

    def test_unknown_level_defaults_to_info(self):
        assert setup_logging("chatty").level == logging.INFO

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "run.log"
        logger = setup_logging("INFO", log_file=log_file)
        logger.info("written to file")
        for handler in logger.handlers:
            handler.flush()
        assert "written to file" in log_file.read_text()

    def test_repeat_setup_replaces_handlers(self):
        setup_logging("INFO")
        logger = setup_logging("DEBUG")
        assert len(logger.handlers) == 1
