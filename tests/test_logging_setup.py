"""Tests for chatter_quote.logging_setup."""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from chatter_quote.config import LoggingConfig
from chatter_quote.logging_setup import reset_logging, setup_logging


@pytest.fixture(autouse=True)
def _reset():
    reset_logging()
    yield
    reset_logging()
    logging.getLogger("chatter_quote").setLevel(logging.NOTSET)


class TestSetupLogging:
    def test_console_handler(self, make_config):
        setup_logging(make_config())
        logger = logging.getLogger("chatter_quote")
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.StreamHandler)

    def test_verbose_overrides_level(self, make_config):
        setup_logging(make_config(), verbose=True)
        assert logging.getLogger("chatter_quote").level == logging.DEBUG

    def test_daemon_mode_has_timestamps_and_threads(self, make_config):
        setup_logging(make_config(), daemon_mode=True)
        handler = logging.getLogger("chatter_quote").handlers[0]
        assert "%(asctime)s" in handler.formatter._fmt
        assert "%(threadName)" in handler.formatter._fmt

    def test_interactive_console_has_no_timestamps(self, make_config):
        setup_logging(make_config())
        handler = logging.getLogger("chatter_quote").handlers[0]
        assert "%(asctime)s" not in handler.formatter._fmt

    def test_file_lines_always_timestamped(self, make_config, tmp_path):
        log_file = tmp_path / "cq.log"
        setup_logging(make_config(logging=LoggingConfig(output="file", file=str(log_file))))
        logging.getLogger("chatter_quote.engine").info("Scheduled quote 3")
        reset_logging()
        line = log_file.read_text().strip()
        assert line.endswith("chatter_quote.engine: Scheduled quote 3")
        assert "[MainThread" in line

    def test_unknown_level_falls_back_to_info(self, make_config, caplog):
        with caplog.at_level("WARNING", logger="chatter_quote"):
            setup_logging(make_config(logging=LoggingConfig(level="chatty")))
            assert logging.getLogger("chatter_quote").level == logging.INFO
        assert "Unknown log level 'chatty'" in caplog.text

    def test_rotating_file(self, make_config, tmp_path):
        log_file = tmp_path / "logs" / "cq.log"
        config = make_config(logging=LoggingConfig(output="both", file=str(log_file)))
        setup_logging(config)
        handlers = logging.getLogger("chatter_quote").handlers
        assert len(handlers) == 2
        assert any(isinstance(h, RotatingFileHandler) for h in handlers)
        assert log_file.parent.exists()

    def test_plain_file_without_rotation(self, make_config, tmp_path):
        config = make_config(
            logging=LoggingConfig(output="file", file=str(tmp_path / "cq.log"), rotate=False),
        )
        setup_logging(config)
        [handler] = logging.getLogger("chatter_quote").handlers
        assert type(handler) is logging.FileHandler
        handler.close()

    def test_only_initializes_once(self, make_config):
        setup_logging(make_config())
        setup_logging(make_config(), verbose=True)
        logger = logging.getLogger("chatter_quote")
        assert len(logger.handlers) == 1
        assert logger.level == logging.INFO

    def test_quiets_http_libraries(self, make_config):
        setup_logging(make_config())
        assert logging.getLogger("httpx").level == logging.WARNING
