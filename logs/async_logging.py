import logging
import queue
import atexit
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from typing import List, Optional


class QueuedLogging:
    """
    Runs the real log handlers on a listener thread so tracker connections
    never block on disk or console writes.
    """

    def __init__(self, max_queue_size: int = 10000):
        self.log_queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self.queue_listener: Optional[QueueListener] = None
        self.handlers: List[logging.Handler] = []

    def start(self, handlers: List[logging.Handler]) -> QueueHandler:
        """Start the listener and return the handler loggers should use"""
        self.handlers = handlers
        self.queue_listener = QueueListener(self.log_queue, *handlers, respect_handler_level=True)
        self.queue_listener.start()
        atexit.register(self.stop)
        return QueueHandler(self.log_queue)

    def stop(self):
        """Stop the queue listener and flush remaining logs."""
        if self.queue_listener:
            self.queue_listener.stop()
            self.queue_listener = None

        for handler in self.handlers:
            handler.flush()
            handler.close()
        self.handlers = []

    def is_running(self) -> bool:
        return self.queue_listener is not None


def create_rotating_file_handler(filename: str, formatter: logging.Formatter,
                                 max_bytes: int = 5 * 1024 * 1024,
                                 backup_count: int = 10) -> RotatingFileHandler:
    handler = RotatingFileHandler(filename=filename, maxBytes=max_bytes, backupCount=backup_count)
    handler.setFormatter(formatter)
    return handler


def create_stream_handler(formatter: logging.Formatter, stream=None) -> logging.StreamHandler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    return handler
