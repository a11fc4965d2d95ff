import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tcp_server.gps_tcp_server import GPSTrackerTCPServer, PacketValidator
from tcp_server.protocols import PacketClassifier

HQ_LINE = "*HQ,3072866250,V1,211806,A,3635.1452,N,03702.2586,E,000.00,000,090925,FFFFFBFF#"


async def start_server(store, **kwargs):
    server = GPSTrackerTCPServer(
        host="127.0.0.1",
        port=0,
        store=store,
        classifier=PacketClassifier(strict_timestamps=False),
        connection_timeout=60,
        sweep_interval=3600,
        stats_interval=3600,
        storage_timeout=5,
        **kwargs,
    )
    await server.start()
    return server


async def connect(server):
    reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
    return reader, writer


async def read_reply(reader):
    return await asyncio.wait_for(reader.readline(), timeout=5)


@pytest.mark.parametrize("data,valid", [
    ("", False),
    ("ST900,heartbeat", True),
    ("a\tb", True),
    ("a\x00b", False),
    ("x" * 5000, False),
])
def test_packet_validator(data, valid):
    assert PacketValidator(max_message_size=4096).validate_packet(data)[0] is valid


@pytest.mark.asyncio
async def test_greeting_and_replies_in_order(fake_store):
    server = await start_server(fake_store)
    reader, writer = await connect(server)
    try:
        assert await read_reply(reader) == b"OK\n"

        writer.write(b"ST900,login,ID:8160528336\r\nheartbeat\ngarbage\n")
        writer.write(b"8160528336,35.1234,36.5678,40,0,1700000000\n")
        await writer.drain()

        assert await read_reply(reader) == b"LOAD\n"
        assert await read_reply(reader) == b"OK\n"
        assert await read_reply(reader) == b"ERROR\n"
        assert await read_reply(reader) == b"OK\n"

        assert fake_store.locations[0].device_id == "8160528336"
        status = server.get_status()
        assert status['active_connections'] == 1
        assert status['identified_devices'] == 1
        assert status['valid_locations'] == 1
        assert status['errors'] == 1
    finally:
        writer.close()
        await server.shutdown()


@pytest.mark.asyncio
async def test_greeting_can_be_disabled(fake_store):
    server = await start_server(fake_store, send_greeting=False)
    reader, writer = await connect(server)
    try:
        writer.write(b"ping\n")
        await writer.drain()
        assert await read_reply(reader) == b"OK\n"
    finally:
        writer.close()
        await server.shutdown()


@pytest.mark.asyncio
async def test_hq_record_framed_without_newline(fake_store):
    server = await start_server(fake_store)
    reader, writer = await connect(server)
    try:
        assert await read_reply(reader) == b"OK\n"

        # Split across two writes and no trailing newline
        writer.write(HQ_LINE[:20].encode())
        await writer.drain()
        writer.write(HQ_LINE[20:].encode())
        await writer.drain()

        assert await read_reply(reader) == b"OK\n"
        location = fake_store.locations[0]
        assert location.device_id == "3072866250"
        assert location.timestamp == datetime(2025, 9, 9, 21, 18, 6, tzinfo=timezone.utc)
    finally:
        writer.close()
        await server.shutdown()


@pytest.mark.asyncio
async def test_idle_session_is_swept(fake_store):
    server = await start_server(fake_store)
    reader, writer = await connect(server)
    try:
        assert await read_reply(reader) == b"OK\n"
        writer.write(b"8160528336,login\n")
        await writer.drain()
        assert await read_reply(reader) == b"LOAD\n"

        assert server.sweep_idle_sessions() == 0

        later = datetime.now(timezone.utc) + timedelta(seconds=61)
        assert server.sweep_idle_sessions(now=later) == 1

        assert await asyncio.wait_for(reader.read(), timeout=5) == b""
        assert server.get_status()['active_connections'] == 0
        assert server.stats['idle_timeouts'] == 1
    finally:
        writer.close()
        await server.shutdown()


@pytest.mark.asyncio
async def test_storage_failure_keeps_connection_open():
    from conftest import FakeStore

    server = await start_server(FakeStore(fail=True))
    reader, writer = await connect(server)
    try:
        assert await read_reply(reader) == b"OK\n"

        writer.write(HQ_LINE.encode() + b"\nping\n")
        await writer.drain()

        assert await read_reply(reader) == b"ERROR\n"
        assert await read_reply(reader) == b"OK\n"
    finally:
        writer.close()
        await server.shutdown()


@pytest.mark.asyncio
async def test_connection_limit(fake_store):
    server = await start_server(fake_store, max_connections=1)
    first_reader, first_writer = await connect(server)
    assert await read_reply(first_reader) == b"OK\n"
    second_reader, second_writer = await connect(server)
    try:
        assert await asyncio.wait_for(second_reader.read(), timeout=5) == b""
    finally:
        first_writer.close()
        second_writer.close()
        await server.shutdown()


@pytest.mark.asyncio
async def test_connection_id_is_peer_address(fake_store):
    server = await start_server(fake_store)
    reader, writer = await connect(server)
    try:
        assert await read_reply(reader) == b"OK\n"
        local_host, local_port = writer.get_extra_info('sockname')[:2]

        conn = server.conn_manager.snapshot()[0]
        assert conn.conn_id == f"{local_host}:{local_port}"
        assert conn.session.conn_id == conn.conn_id
    finally:
        writer.close()
        await server.shutdown()


@pytest.mark.asyncio
async def test_slow_storage_bounds_queued_lines():
    from conftest import FakeStore

    store = FakeStore(delay=0.05)
    server = await start_server(store, max_queued_lines=5)
    reader, writer = await connect(server)
    try:
        assert await read_reply(reader) == b"OK\n"
        conn = server.conn_manager.snapshot()[0]

        writer.write(b"8160528336,35.1234,36.5678,40,0,1700000000\n" * 50)
        await writer.drain()
        await asyncio.sleep(0.1)

        assert conn.lines.qsize() <= 5
        assert conn.reading_paused

        for _ in range(50):
            assert await read_reply(reader) == b"OK\n"
        assert len(store.locations) == 50
        assert not conn.reading_paused
    finally:
        writer.close()
        await server.shutdown()


@pytest.mark.asyncio
async def test_burst_of_complete_lines_larger_than_buffer(fake_store):
    server = await start_server(fake_store, max_buffer_size=256)
    reader, writer = await connect(server)
    try:
        assert await read_reply(reader) == b"OK\n"

        writer.write(b"ping\n" * 80)
        await writer.drain()

        for _ in range(80):
            assert await read_reply(reader) == b"OK\n"
    finally:
        writer.close()
        await server.shutdown()


@pytest.mark.asyncio
async def test_oversized_unterminated_line_closes_connection(fake_store):
    server = await start_server(fake_store, max_buffer_size=256)
    reader, writer = await connect(server)
    try:
        assert await read_reply(reader) == b"OK\n"

        writer.write(b"x" * 300)
        await writer.drain()

        assert await asyncio.wait_for(reader.read(), timeout=5) == b""
    finally:
        writer.close()
        await server.shutdown()
