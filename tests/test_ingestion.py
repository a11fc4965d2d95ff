import pytest

from conftest import FakeStore
from tcp_server.ingestion import ACK_ERROR, ACK_LOAD, ACK_OK, DeviceIngestion
from tcp_server.messages import PacketKind
from tcp_server.protocols import PacketClassifier
from tcp_server.session import Session

HQ_LINE = "*HQ,3072866250,V1,211806,A,3635.1452,N,03702.2586,E,000.00,000,090925,FFFFFBFF#"


def make_ingestion(store, timeout=5.0):
    session = Session("10.0.0.1:4000")
    return DeviceIngestion(session, store, PacketClassifier(strict_timestamps=False), storage_timeout=timeout)


@pytest.mark.asyncio
async def test_heartbeat_acknowledged_without_binding(fake_store):
    ingestion = make_ingestion(fake_store)

    result = await ingestion.handle_line("8160528336,heartbeat")

    assert result.reply == ACK_OK
    assert result.kind == PacketKind.HEARTBEAT
    assert not ingestion.session.is_identified
    assert fake_store.locations == []


@pytest.mark.asyncio
async def test_login_binds_identifier(fake_store):
    ingestion = make_ingestion(fake_store)

    result = await ingestion.handle_line("ST900,login,ID:8160528336")

    assert result.reply == ACK_LOAD
    assert ingestion.session.device_id == "8160528336"


@pytest.mark.asyncio
async def test_login_without_identifier_leaves_session_unbound(fake_store):
    ingestion = make_ingestion(fake_store)

    assert (await ingestion.handle_line("login")).reply == ACK_LOAD
    assert not ingestion.session.is_identified


@pytest.mark.asyncio
async def test_location_stored_and_binds_session(fake_store, received_at):
    ingestion = make_ingestion(fake_store)

    result = await ingestion.handle_line(HQ_LINE, received_at)

    assert result.reply == ACK_OK
    assert result.stored
    assert result.record_id == 1
    assert ingestion.session.device_id == "3072866250"
    assert fake_store.locations[0].device_id == "3072866250"


@pytest.mark.asyncio
async def test_unattributed_record_inherits_session_identifier(fake_store):
    ingestion = make_ingestion(fake_store)
    await ingestion.handle_line("8160528336,login")

    result = await ingestion.handle_line(",35.1234,36.5678,40,0,1700000000")

    assert result.reply == ACK_OK
    assert fake_store.locations[0].device_id == "8160528336"


@pytest.mark.asyncio
async def test_unattributed_record_on_unidentified_session_is_refused(fake_store):
    ingestion = make_ingestion(fake_store)

    result = await ingestion.handle_line(",35.1234,36.5678,40,0,1700000000")

    assert result.reply == ACK_ERROR
    assert not result.stored
    assert fake_store.locations == []


@pytest.mark.asyncio
async def test_conflicting_record_identifier_stored_under_session_identifier(fake_store):
    ingestion = make_ingestion(fake_store)
    await ingestion.handle_line("ST900,login,ID:8160528336")

    result = await ingestion.handle_line("9999999999,35.1234,36.5678,40,0,1700000000")

    assert result.reply == ACK_OK
    assert ingestion.session.device_id == "8160528336"
    assert fake_store.locations[0].device_id == "8160528336"


@pytest.mark.asyncio
async def test_storage_failure_replies_error():
    store = FakeStore(fail=True)
    ingestion = make_ingestion(store)

    result = await ingestion.handle_line(HQ_LINE)

    assert result.reply == ACK_ERROR
    assert not result.stored
    # Identity binding does not depend on the write succeeding
    assert ingestion.session.device_id == "3072866250"


@pytest.mark.asyncio
async def test_storage_timeout_replies_error():
    ingestion = make_ingestion(FakeStore(delay=0.5), timeout=0.05)

    result = await ingestion.handle_line(HQ_LINE)

    assert result.reply == ACK_ERROR
    assert not result.stored


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["garbage", "ST900,ID:1,Lat:0,Lon:0", "1,91,0,0,0,1700000000"])
async def test_unrecognized_replies_error(fake_store, text):
    ingestion = make_ingestion(fake_store)

    result = await ingestion.handle_line(text)

    assert result.kind == PacketKind.UNRECOGNIZED
    assert result.reply == ACK_ERROR
    assert fake_store.locations == []


@pytest.mark.asyncio
async def test_every_line_counts_as_activity(fake_store):
    ingestion = make_ingestion(fake_store)

    for line in ("ping", "garbage", HQ_LINE):
        await ingestion.handle_line(line)

    assert ingestion.session.message_count == 3
