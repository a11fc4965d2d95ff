import logging
import os
from logging.config import dictConfig
from typing import Optional
from config import settings
from logs.async_logging import QueuedLogging, create_rotating_file_handler, create_stream_handler

LOG_FORMAT = '%(asctime)s %(name)-12s %(levelname)-8s [RUN_ID: {run_id}] %(message)s'


def configure_logging(run_id: str, prod: Optional[bool] = None, log_file: Optional[str] = None) -> Optional[QueuedLogging]:
    """
    Configure root logging for the gateway.

    Development logs DEBUG to the console. Production logs INFO to the console
    and a rotating file, with both handlers behind a queue.

    Returns:
        The running QueuedLogging in production, else None
    """
    prod = settings.PROD if prod is None else prod
    log_file = log_file if log_file is not None else settings.LOG_FILE
    log_level = logging.INFO if prod else logging.DEBUG
    log_format = LOG_FORMAT.format(run_id=run_id)

    if prod:
        formatter = logging.Formatter(log_format)
        handlers = [create_stream_handler(formatter)]
        if log_file:
            os.makedirs(os.path.dirname(log_file) or '.', exist_ok=True)
            handlers.append(create_rotating_file_handler(log_file, formatter))
        for handler in handlers:
            handler.setLevel(log_level)

        queued = QueuedLogging()
        queue_handler = queued.start(handlers)

        dictConfig(dict(
            version=1,
            disable_existing_loggers=False,
            root={'handlers': [], 'level': log_level},
        ))
        logging.getLogger().addHandler(queue_handler)
        return queued

    dictConfig(dict(
        version=1,
        disable_existing_loggers=False,
        formatters={
            'f': {'format': log_format},
        },
        handlers={
            'h': {
                'class': 'logging.StreamHandler',
                'formatter': 'f',
                'level': log_level,
            },
        },
        root={
            'handlers': ['h'],
            'level': log_level,
        },
        loggers={
            # SQL echo is controlled by DATABASE_ECHO, keep the pool quiet
            'sqlalchemy.pool': {'level': logging.WARNING},
        },
    ))
    return None
