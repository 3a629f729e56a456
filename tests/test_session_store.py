"""Tests for the in-memory connection store."""

from __future__ import annotations

import pytest

from models.session_models import ConnectionState
from services.realtime.session_store import ConnectionStore


@pytest.fixture
def store() -> ConnectionStore:
    return ConnectionStore()


def test_open_starts_connected(store):
    connection = store.open()
    assert connection.state is ConnectionState.CONNECTED
    assert connection.session is None
    assert store.get(connection.connection_id) is connection
    assert len(store) == 1


def test_get_missing_raises(store):
    with pytest.raises(KeyError):
        store.get("nope")
    assert store.find("nope") is None


def test_bind_generates_session_id(store):
    connection = store.open()
    session = store.bind(connection.connection_id, "alice")
    assert session.session_id
    assert connection.state is ConnectionState.AUTHENTICATED
    assert store.authenticated() == [connection]


def test_bind_keeps_supplied_session_id(store):
    connection = store.open()
    session = store.bind(connection.connection_id, "alice", "resume-me")
    assert session.session_id == "resume-me"


def test_drop_marks_closed(store):
    connection = store.open()
    assert store.drop(connection.connection_id) is connection
    assert connection.state is ConnectionState.CLOSED
    assert store.drop(connection.connection_id) is None
    assert len(store) == 0
