import logging
from logging.handlers import QueueHandler

import pytest

from logs.async_logging import QueuedLogging, create_stream_handler
from logs.logconfig import configure_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_development_logs_debug_to_console(root_logger):
    assert configure_logging("abc123", prod=False) is None

    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert "[RUN_ID: abc123]" in root_logger.handlers[0].formatter._fmt
    assert logging.getLogger("sqlalchemy.pool").level == logging.WARNING


def test_production_logs_through_queue(root_logger, tmp_path):
    log_file = tmp_path / "gateway.log"

    queued = configure_logging("run42", prod=True, log_file=str(log_file))
    try:
        assert queued.is_running()
        assert root_logger.level == logging.INFO
        assert any(isinstance(handler, QueueHandler) for handler in root_logger.handlers)

        logging.getLogger("tcp_server.test").info("Tracker connected")
    finally:
        queued.stop()

    assert not queued.is_running()
    content = log_file.read_text()
    assert "Tracker connected" in content
    assert "[RUN_ID: run42]" in content


def test_queued_logging_delivers_records(tmp_path):
    log_file = tmp_path / "direct.log"
    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))

    queued = QueuedLogging(max_queue_size=10)
    logger = logging.getLogger("queued-test")
    logger.propagate = False
    logger.setLevel(logging.INFO)
    logger.addHandler(queued.start([handler]))
    try:
        logger.warning("Buffer overflow")
    finally:
        queued.stop()
        logger.handlers.clear()

    assert log_file.read_text().strip() == "WARNING Buffer overflow"


def test_stream_handler_uses_formatter():
    formatter = logging.Formatter("%(message)s")
    assert create_stream_handler(formatter).formatter is formatter
