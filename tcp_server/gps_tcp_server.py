"""
GPS Tracker TCP Server
Accepts ST-900 / H02 tracker connections and acknowledges every line
"""
import asyncio
import logging
import socket
import threading
import traceback
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, List

from config import settings
from tcp_server.errors import TransportError
from tcp_server.ingestion import DeviceIngestion, ACK_ERROR, GREETING
from tcp_server.protocols import PacketClassifier
from tcp_server.session import Session

logger = logging.getLogger(__name__)

LOCAL_PEERS = ('127.0.0.1', 'localhost', '::1')


class PacketValidator:
    """Reject lines that cannot be tracker output before classification"""

    def __init__(self, max_message_size: int = None):
        self.max_message_size = max_message_size or settings.MAX_MESSAGE_SIZE

    def validate_packet(self, data: str) -> tuple[bool, str]:
        if not data:
            return False, "Empty packet"

        if len(data) > self.max_message_size:
            return False, "Packet too large"

        # Check for control characters (tab allowed)
        for char in data:
            if ord(char) < 32 and char != '\t':
                return False, "Invalid control character"

        return True, "OK"


class ConnectionManager:
    """
    Live connections keyed by connection id.

    Mutated by each connection's own callbacks and by the idle sweep; both go
    through the lock and the sweep works on a copy of the keys.
    """

    def __init__(self, max_connections: int = None):
        self.max_connections = max_connections or settings.MAX_CONNECTIONS
        self._connections: Dict[str, "GPSClientProtocol"] = {}
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._connections)

    def can_connect(self) -> bool:
        return len(self) < self.max_connections

    def add_connection(self, conn: "GPSClientProtocol"):
        with self._lock:
            self._connections[conn.conn_id] = conn

    def remove_connection(self, conn_id: str):
        with self._lock:
            self._connections.pop(conn_id, None)

    def snapshot(self) -> List["GPSClientProtocol"]:
        with self._lock:
            return list(self._connections.values())

    def find_idle(self, timeout: float, now: Optional[datetime] = None) -> List["GPSClientProtocol"]:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            conn_ids = list(self._connections.keys())

        idle = []
        for conn_id in conn_ids:
            with self._lock:
                conn = self._connections.get(conn_id)
            if conn is not None and conn.session.idle_seconds(now) > timeout:
                idle.append(conn)
        return idle


class GPSClientProtocol(asyncio.Protocol):
    """Handle an individual GPS tracker connection"""

    def __init__(self, server: "GPSTrackerTCPServer"):
        self.server = server
        self.transport = None
        self.buffer = b""
        self.peername = None
        self.conn_id = None
        self.session: Optional[Session] = None
        self.ingestion: Optional[DeviceIngestion] = None
        self.lines: asyncio.Queue = asyncio.Queue(maxsize=server.max_queued_lines)
        self.reading_paused = False
        self.worker_task = None

    def connection_made(self, transport):
        """Handle new connection"""
        try:
            self.transport = transport
            self.peername = transport.get_extra_info('peername')
            self.conn_id = f"{self.peername[0]}:{self.peername[1]}" if self.peername else f"conn-{id(self)}"

            if not self.server.conn_manager.can_connect():
                logger.warning(f"Max connections reached, rejecting {self.peername}")
                transport.close()
                return

            self.session = Session(self.conn_id, self.peername)
            self.ingestion = DeviceIngestion(
                self.session,
                self.server.store,
                classifier=self.server.classifier,
                storage_timeout=self.server.storage_timeout,
            )
            self.server.conn_manager.add_connection(self)

            sock = transport.get_extra_info('socket')
            if sock is not None:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

            if self.peername and self.peername[0] not in LOCAL_PEERS:
                logger.info(f"New tracker connected: {self.conn_id} (total: {len(self.server.conn_manager)})")
            else:
                logger.debug(f"Local connection from {self.conn_id}")

            self.worker_task = asyncio.create_task(self._process_lines())

            if self.server.send_greeting:
                transport.write(GREETING.encode('ascii'))

        except Exception as e:
            logger.error(f"Error in connection_made: {e}")
            if transport:
                transport.close()

    def connection_lost(self, exc):
        """Handle connection loss"""
        try:
            if exc:
                logger.warning(f"Transport error for {self.conn_id}: {exc}")
            else:
                logger.info(f"Tracker disconnected: {self.conn_id}")

            if self.worker_task:
                self.worker_task.cancel()

            if self.session:
                self.session.close()
                self.server.conn_manager.remove_connection(self.conn_id)

        except Exception as e:
            logger.error(f"Error in connection_lost: {e}")

    def data_received(self, data):
        """Buffer incoming bytes and queue complete lines"""
        try:
            if self.session is None:
                return
            self.session.touch()

            self.buffer += data
            self._queue_frames()

            if self.lines.full():
                # Complete lines wait in the buffer until the worker catches up
                if not self.reading_paused:
                    self.reading_paused = True
                    self.transport.pause_reading()
                    logger.debug(f"Pausing reads from {self.conn_id}, {self.lines.qsize()} lines queued")
                return

            if len(self.buffer) > self.server.max_buffer_size:
                logger.warning(f"Buffer overflow from {self.conn_id}, closing connection")
                self.transport.close()

        except Exception as e:
            logger.error(f"Error in data_received: {e}")
            self.transport.close()

    def _queue_frames(self):
        """Move complete frames from the buffer into the line queue while it has room"""
        while not self.lines.full():
            frame = self._next_frame()
            if frame is None:
                return
            text = frame.decode('utf-8', errors='ignore').strip()
            if text:
                self.lines.put_nowait(text)

    def _resume_reading(self):
        self._queue_frames()
        if self.lines.full():
            return
        self.reading_paused = False
        if len(self.buffer) > self.server.max_buffer_size:
            logger.warning(f"Buffer overflow from {self.conn_id}, closing connection")
            self.transport.close()
            return
        if self.transport and not self.transport.is_closing():
            self.transport.resume_reading()
            logger.debug(f"Resuming reads from {self.conn_id}")

    def _next_frame(self) -> Optional[bytes]:
        """
        Extract the next complete frame from the buffer.

        Lines end at a newline; *HQ records also end at their '#' marker
        since H02 devices do not always send one.
        """
        candidates = []
        newline = self.buffer.find(b'\n')
        if newline != -1:
            candidates.append((newline, newline + 1, False))
        if self.buffer.lstrip().startswith(b'*'):
            marker = self.buffer.find(b'#')
            if marker != -1:
                candidates.append((marker, marker + 1, True))

        if not candidates:
            return None

        end, consumed, include = min(candidates)
        frame = self.buffer[:consumed] if include else self.buffer[:end]
        self.buffer = self.buffer[consumed:]
        return frame

    async def _process_lines(self):
        """Handle queued lines one at a time so replies keep line order"""
        try:
            while True:
                text = await self.lines.get()
                if self.reading_paused and self.lines.qsize() <= self.lines.maxsize // 2:
                    self._resume_reading()
                await self.process_message(text)
        except asyncio.CancelledError:
            pass
        except TransportError as e:
            logger.warning(f"Dropping connection {self.conn_id}: {e}")
            self.close()

    async def process_message(self, text: str):
        """Process a complete line with error handling"""
        valid, reason = self.server.packet_validator.validate_packet(text)
        if not valid:
            logger.warning(f"Invalid packet from {self.conn_id}: {reason}")
            self.server.stats['errors'] += 1
            self.send(ACK_ERROR)
            return

        logger.debug(f"Raw data from {self.conn_id}: {text[:100]}")
        self.server.stats['messages_received'] += 1

        try:
            result = await self.ingestion.handle_line(text)
        except Exception as e:
            logger.error(f"Error handling data from {self.conn_id}: {e}\n{traceback.format_exc()}")
            self.server.stats['errors'] += 1
            self.send(ACK_ERROR)
            return

        if result.stored:
            self.server.stats['valid_locations'] += 1
        elif result.reply == ACK_ERROR:
            self.server.stats['errors'] += 1

        self.send(result.reply)

    def send(self, reply: str):
        if not self.transport or self.transport.is_closing():
            raise TransportError(f"Connection {self.conn_id} is closed")
        self.transport.write(reply.encode('ascii'))
        logger.debug(f"Sent response to {self.conn_id}: {reply.strip()}")

    def close(self):
        if self.transport and not self.transport.is_closing():
            self.transport.close()


class GPSTrackerTCPServer:
    """TCP server for GPS trackers"""

    def __init__(self, host: str = None, port: int = None, store=None,
                 classifier: Optional[PacketClassifier] = None,
                 connection_timeout: float = None, sweep_interval: float = None,
                 stats_interval: float = None, storage_timeout: float = None,
                 max_connections: int = None, max_buffer_size: int = None,
                 max_queued_lines: int = None, send_greeting: bool = None):
        self.host = host if host is not None else settings.GPS_TCP_HOST
        self.port = port if port is not None else settings.GPS_TCP_PORT
        if store is None:
            from database.storage import LocationStore
            store = LocationStore()
        self.store = store
        self.classifier = classifier or PacketClassifier()
        self.connection_timeout = connection_timeout or settings.CONNECTION_TIMEOUT
        self.sweep_interval = sweep_interval or settings.SWEEP_INTERVAL
        self.stats_interval = stats_interval or settings.STATS_INTERVAL
        self.storage_timeout = storage_timeout or settings.STORAGE_TIMEOUT
        self.max_buffer_size = max_buffer_size or settings.MAX_BUFFER_SIZE
        self.max_queued_lines = max_queued_lines or settings.MAX_QUEUED_LINES
        self.send_greeting = settings.SEND_GREETING if send_greeting is None else send_greeting

        self.server = None
        self.conn_manager = ConnectionManager(max_connections)
        self.packet_validator = PacketValidator()
        self.stats = {
            'start_time': None,
            'messages_received': 0,
            'valid_locations': 0,
            'errors': 0,
            'idle_timeouts': 0,
        }
        self.shutdown_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @property
    def bound_port(self) -> Optional[int]:
        """Port actually listened on (differs from port when port is 0)"""
        if not self.server or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[1]

    async def start(self):
        """Start listening and the background sweep/monitor tasks"""
        self.stats['start_time'] = datetime.now(timezone.utc)

        loop = asyncio.get_running_loop()
        self.server = await loop.create_server(
            lambda: GPSClientProtocol(self),
            self.host,
            self.port,
            reuse_address=True,
        )

        logger.info(f"GPS TCP Server started on {self.host}:{self.bound_port}")
        logger.info(f"Configuration:")
        logger.info(f"  - Decoders: {', '.join(self.classifier.get_supported_protocols())}")
        logger.info(f"  - Max connections: {self.conn_manager.max_connections}")
        logger.info(f"  - Connection timeout: {self.connection_timeout}s")
        logger.info(f"  - Storage timeout: {self.storage_timeout}s")

        self._tasks = [
            asyncio.create_task(self._sweep_loop()),
            asyncio.create_task(self._monitor_server()),
        ]

    async def serve_forever(self):
        await self.start()
        async with self.server:
            await self.shutdown_event.wait()

    async def shutdown(self):
        """Graceful shutdown"""
        logger.info("Shutting down GPS TCP Server...")

        for task in self._tasks:
            task.cancel()
        self._tasks = []

        for conn in self.conn_manager.snapshot():
            conn.close()

        if self.server:
            self.server.close()
            await self.server.wait_closed()

        self.shutdown_event.set()
        logger.info("GPS TCP Server stopped")

    def sweep_idle_sessions(self, now: Optional[datetime] = None) -> int:
        """Close connections idle past the timeout. Returns how many were closed."""
        idle = self.conn_manager.find_idle(self.connection_timeout, now)
        for conn in idle:
            logger.info(f"Client {conn.conn_id} timed out due to inactivity "
                        f"(device: {conn.session.device_id or 'unidentified'})")
            conn.session.mark_idle_timeout()
            conn.server.conn_manager.remove_connection(conn.conn_id)
            conn.close()
        self.stats['idle_timeouts'] += len(idle)
        return len(idle)

    async def _sweep_loop(self):
        try:
            while True:
                await asyncio.sleep(self.sweep_interval)
                self.sweep_idle_sessions()
        except asyncio.CancelledError:
            pass

    async def _monitor_server(self):
        """Log statistics periodically"""
        try:
            while True:
                await asyncio.sleep(self.stats_interval)
                status = self.get_status()
                logger.info(f"Server Stats: {status['active_connections']} clients connected, "
                            f"{status['identified_devices']} identified devices, "
                            f"{status['total_messages']} messages, {status['valid_locations']} stored, "
                            f"{status['errors']} errors")
        except asyncio.CancelledError:
            pass

    def get_status(self) -> Dict[str, Any]:
        """Get detailed server status"""
        start_time = self.stats['start_time']
        uptime = datetime.now(timezone.utc) - start_time if start_time else timedelta(0)
        sessions = [conn.session for conn in self.conn_manager.snapshot()]

        return {
            'running': self.server is not None and self.server.is_serving(),
            'uptime': str(uptime),
            'active_connections': len(sessions),
            'identified_devices': sum(1 for session in sessions if session.is_identified),
            'total_messages': self.stats['messages_received'],
            'valid_locations': self.stats['valid_locations'],
            'errors': self.stats['errors'],
            'idle_timeouts': self.stats['idle_timeouts'],
            'connections': [session.to_dict() for session in sessions],
        }
