"""
Brief: Tests for mongozone.store.connection.StoreConnection using a fake driver.

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from mongozone.exceptions import AuthError, ConfigError, StoreConnectionError
from mongozone.store.connection import ConnectionState, StoreConnection, parse_port


def _ready_connection(timeout_ms: int = 2000) -> StoreConnection:
    conn = StoreConnection(timeout_ms=timeout_ms)
    conn.connect("h", "27017")
    conn.authenticate("z", "u", "p")
    return conn


@pytest.mark.parametrize("value,expected", [("27017", 27017), (" 53 ", 53), (65535, 65535)])
def test_parse_port_accepts_decimal_ports(value, expected):
    assert parse_port(value) == expected


@pytest.mark.parametrize("value", ["", "abc", "-1", "0", "65536", "27017x", True])
def test_parse_port_rejects_invalid_values(value):
    with pytest.raises(ConfigError):
        parse_port(value)


def test_connect_then_authenticate_reaches_authenticated_state(mongo_server):
    conn = StoreConnection(timeout_ms=1500)
    assert conn.state is ConnectionState.UNCONNECTED

    conn.connect("h", "27017")
    assert conn.state is ConnectionState.CONNECTED

    conn.authenticate("z", "u", "p")
    assert conn.state is ConnectionState.AUTHENTICATED
    assert conn.is_authenticated

    probe, authed = mongo_server.clients
    assert (probe.host, probe.port, probe.username) == ("h", 27017, None)
    assert probe.closed
    assert (authed.username, authed.password, authed.auth_source) == ("u", "p", "z")
    assert authed.kwargs["serverSelectionTimeoutMS"] == 1500
    assert authed.kwargs["socketTimeoutMS"] == 1500


def test_connect_failure_raises_store_connection_error(mongo_server):
    mongo_server.up = False
    conn = StoreConnection()

    with pytest.raises(StoreConnectionError) as excinfo:
        conn.connect("h", 27017)

    assert isinstance(excinfo.value, ConnectionError)
    assert "h:27017" in str(excinfo.value)
    assert conn.state is ConnectionState.FAILED
    assert all(c.closed for c in mongo_server.clients)


def test_authenticate_before_connect_raises_auth_error(mongo_server):
    conn = StoreConnection()
    with pytest.raises(AuthError):
        conn.authenticate("z", "u", "p")
    assert mongo_server.clients == []


def test_bad_credentials_raise_auth_error_without_leaking_password(mongo_server):
    conn = StoreConnection()
    conn.connect("h", "27017")

    with pytest.raises(AuthError) as excinfo:
        conn.authenticate("z", "u", "wrong-password")

    assert "wrong-password" not in str(excinfo.value)
    assert conn.state is ConnectionState.FAILED


def test_ensure_ready_is_a_single_ping_when_healthy(mongo_server):
    conn = _ready_connection()
    clients_before = len(mongo_server.clients)

    conn.ensure_ready()

    assert len(mongo_server.clients) == clients_before


def test_ensure_ready_reconnects_after_drop(mongo_server):
    conn = _ready_connection()
    # Simulate the server dropping the session.
    mongo_server.clients[-1].closed = True

    conn.ensure_ready()

    assert conn.is_authenticated
    assert mongo_server.clients[-1].username == "u"
    assert not mongo_server.clients[-1].closed


def test_ensure_ready_surfaces_reconnect_failure(mongo_server):
    conn = _ready_connection()
    mongo_server.up = False

    with pytest.raises(StoreConnectionError):
        conn.ensure_ready()
    assert conn.state is ConnectionState.FAILED

    # The next call self-heals once the server is back.
    mongo_server.up = True
    conn.ensure_ready()
    assert conn.is_authenticated


def test_ensure_ready_without_parameters_fails(mongo_server):
    with pytest.raises(StoreConnectionError):
        StoreConnection().ensure_ready()


def test_iter_documents_requires_authentication(mongo_server):
    conn = StoreConnection()
    conn.connect("h", "27017")
    with pytest.raises(StoreConnectionError):
        list(conn.iter_documents("z", "c", {}))


def test_iter_documents_passes_filter_and_timeout(mongo_server):
    coll = mongo_server.collection("z", "c")
    coll.insert_many([{"name": "a"}, {"name": "b"}])
    conn = _ready_connection(timeout_ms=750)

    docs = list(conn.iter_documents("z", "c", {"name": "b"}))

    assert docs == [{"name": "b"}]
    assert coll.find_calls == [({"name": "b"}, 750)]
    assert coll.cursors[-1].closed


def test_cursor_failure_marks_connection_failed(mongo_server):
    coll = mongo_server.collection("z", "c")
    coll.insert_many([{"name": "a"}, {"name": "b"}])
    coll.fail_after = 1
    conn = _ready_connection()

    seen = []
    with pytest.raises(StoreConnectionError):
        for doc in conn.iter_documents("z", "c", {}):
            seen.append(doc)

    assert seen == [{"name": "a"}]
    assert conn.state is ConnectionState.FAILED
    assert coll.cursors[-1].closed


def test_close_is_idempotent(mongo_server):
    conn = _ready_connection()
    conn.close()
    conn.close()
    assert conn.state is ConnectionState.UNCONNECTED
    assert all(c.closed for c in mongo_server.clients)
