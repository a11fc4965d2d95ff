from datetime import timedelta

from tcp_server.session import Session, SessionState


def test_new_session_is_connected_and_unidentified(received_at):
    session = Session("10.0.0.1:4000", now=received_at)

    assert session.state == SessionState.CONNECTED
    assert not session.is_identified
    assert session.is_open
    assert session.idle_seconds(received_at) == 0


def test_identify_binds_once(received_at):
    session = Session("10.0.0.1:4000", now=received_at)

    assert session.identify("8160528336", source="login") == "8160528336"
    assert session.state == SessionState.IDENTIFIED
    assert session.identify("8160528336", source="ST900") == "8160528336"
    assert session.device_id == "8160528336"


def test_conflicting_identifier_keeps_original(received_at, caplog):
    session = Session("10.0.0.1:4000", now=received_at)
    session.identify("8160528336")

    assert session.identify("9999999999", source="positional") == "8160528336"
    assert session.device_id == "8160528336"
    assert "mismatch" in caplog.text


def test_record_message_updates_activity(received_at):
    session = Session("10.0.0.1:4000", now=received_at)
    later = received_at + timedelta(seconds=90)

    session.record_message(later)

    assert session.message_count == 1
    assert session.last_activity == later
    assert session.idle_seconds(later + timedelta(seconds=10)) == 10


def test_idle_timeout_then_close(received_at):
    session = Session("10.0.0.1:4000", now=received_at)
    session.identify("8160528336")

    session.mark_idle_timeout()
    assert session.state == SessionState.IDLE_TIMEOUT
    assert not session.is_open

    session.close()
    assert session.state == SessionState.CLOSED
    # A closed session does not go back to idle_timeout
    session.mark_idle_timeout()
    assert session.state == SessionState.CLOSED


def test_to_dict(received_at):
    session = Session("10.0.0.1:4000", peername=("10.0.0.1", 4000), now=received_at)
    session.identify("8160528336")

    info = session.to_dict()

    assert info['id'] == "10.0.0.1:4000"
    assert info['device_id'] == "8160528336"
    assert info['state'] == "identified"
    assert info['connected_at'] == received_at.isoformat()
