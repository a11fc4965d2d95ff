#!/usr/bin/env python3
"""
Run the GPS TCP Server
Usage: python -m tcp_server.run_server [port]
"""
import sys
import asyncio
import logging
import signal
import uuid

from config import settings
from database.db_conf import init_db, test_db_connection
from database.storage import LocationStore
from logs.logconfig import configure_logging
from tcp_server.gps_tcp_server import GPSTrackerTCPServer

logger = logging.getLogger(__name__)


async def main():
    """Run the GPS TCP server until SIGINT/SIGTERM"""
    port = int(sys.argv[1]) if len(sys.argv) > 1 else settings.GPS_TCP_PORT

    queued_logging = configure_logging(uuid.uuid4().hex[:8])

    ok, message = test_db_connection()
    if not ok:
        logger.critical(message)
        raise SystemExit(1)
    init_db()
    logger.info("Database initialized and ready")

    server = GPSTrackerTCPServer(host=settings.GPS_TCP_HOST, port=port, store=LocationStore())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(server.shutdown()))

    try:
        await server.serve_forever()
    finally:
        logger.info("Server shutdown complete")
        if queued_logging:
            queued_logging.stop()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
