"""
Unit tests for logger configuration.
"""

import logging
import os

from video_screener.logging_setup import setup_logging


class TestSetupLogging:

    def test_writes_rotating_log_under_data_dir(self, tmp_path):
        logger = setup_logging("DEBUG", str(tmp_path))

        logger.info("hello from the screener")
        for handler in logger.handlers:
            handler.flush()

        log_file = tmp_path / "worker" / "log.log"
        assert os.path.exists(log_file)
        assert "hello from the screener" in log_file.read_text()
        assert logger.level == logging.DEBUG

    def test_reinitializing_does_not_duplicate_handlers(self, tmp_path):
        setup_logging("INFO", str(tmp_path))
        logger = setup_logging("INFO", str(tmp_path))

        assert len(logger.handlers) == 2

    def test_unknown_level_falls_back_to_info(self, tmp_path):
        assert setup_logging("CHATTY", str(tmp_path)).level == logging.INFO

    def test_http_client_logs_are_quieted(self, tmp_path):
        setup_logging("DEBUG", str(tmp_path))

        assert logging.getLogger("httpx").level == logging.WARNING
