"""Tests for the connection handshake and stream life-cycle against scripted peers."""

import struct

import pytest

from tinysdb import Command, StreamState
from tinysdb.constants import MAX_PAYLOAD, VERSION
from tinysdb.errors import FramingError, OpenRejectedError, StreamStateError


def test_connect_returns_peer_identity(scripted) -> None:
    """The CNXN handshake sends our identity and surfaces the peer's."""

    def script(peer):
        peer.recv()
        peer.send(Command.CNXN, VERSION, MAX_PAYLOAD, b"device::mocktv\x00")

    peer, client = scripted(script)
    assert client.connect("host::") == "device::mocktv"
    peer.join()

    (cnxn,) = peer.received
    assert cnxn.command == Command.CNXN
    assert (cnxn.arg0, cnxn.arg1) == (VERSION, MAX_PAYLOAD)
    assert cnxn.payload == b"host::\x00"
    assert client.peer_version == VERSION
    assert client.peer_max_payload == MAX_PAYLOAD


def test_open_pairs_remote_id_on_later_frames(scripted) -> None:
    """The remote id from the open reply is echoed as arg1 on every later frame."""

    def script(peer):
        opened = peer.recv()
        peer.send(Command.OKAY, 42, opened.arg0)
        peer.recv()  # WRTE
        peer.send(Command.OKAY, 42, 7)
        peer.recv()  # OKAY
        peer.recv()  # CLSE

    peer, client = scripted(script)
    remote_id = client.open("shell:ls", 7)
    assert remote_id == 42
    assert client.stream_state(7) is StreamState.OPEN

    client.write(7, 42, b"input")
    assert client.read_frame().command == Command.OKAY
    client.ack(7, 42)
    client.close(7, 42)
    assert client.stream_state(7) is StreamState.CLOSING
    peer.join()

    opened, write, ack, close = peer.received
    assert opened.command == Command.OPEN
    assert (opened.arg0, opened.payload) == (7, b"shell:ls\x00")
    assert [f.command for f in (write, ack, close)] == [Command.WRTE, Command.OKAY, Command.CLSE]
    assert all((f.arg0, f.arg1) == (7, 42) for f in (write, ack, close))
    assert write.payload == b"input"
    assert ack.payload == b"" and close.payload == b""


def test_open_rejected_sends_nothing_further(scripted) -> None:
    """A non-OKAY answer to OPEN fails the open and no more frames follow."""

    def script(peer):
        opened = peer.recv()
        peer.send(Command.CLSE, 0, opened.arg0)
        peer.recv(timeout=0.3)

    peer, client = scripted(script)
    with pytest.raises(OpenRejectedError):
        client.open("appcmd:runapp:missing:", 5)
    assert client.stream_state(5) is StreamState.CLOSED
    peer.join()

    assert [f.command for f in peer.received] == [Command.OPEN]


def test_failed_open_releases_local_id(scripted) -> None:
    """A malformed reply to OPEN leaves the local id free for another open."""

    def script(peer):
        peer.recv()
        peer.sock.sendall(struct.pack("<6I", Command.OKAY, 42, 2, 0, 0, 0))  # bad magic
        opened = peer.recv()
        peer.send(Command.OKAY, 43, opened.arg0)

    peer, client = scripted(script)
    with pytest.raises(FramingError):
        client.open("shell:ls", 2)
    assert client.stream_state(2) is StreamState.CLOSED

    assert client.open("shell:ls", 2) == 43
    assert client.stream_state(2) is StreamState.OPEN
    peer.join()

    assert [f.command for f in peer.received] == [Command.OPEN, Command.OPEN]


def test_open_oversized_destination(scripted) -> None:
    peer, client = scripted(lambda peer: peer.recv(timeout=0.3))
    with pytest.raises(FramingError):
        client.open("x" * (MAX_PAYLOAD - 1), 1)
    peer.join()
    assert peer.received == []


def test_run_to_close_delivers_and_acknowledges(scripted) -> None:
    """Every WRTE is delivered then acknowledged; CLSE ends the loop."""

    def script(peer):
        opened = peer.recv()
        peer.send(Command.OKAY, 11, opened.arg0)
        peer.send(Command.WRTE, 11, 3, b"Installing...\x00")
        peer.recv()
        peer.send(Command.OKAY, 11, 3)  # stray ack, skipped
        peer.send(Command.STAT, 11, 3)  # unexpected, logged
        peer.send(Command.WRTE, 11, 3, b"done")
        peer.recv()
        peer.send(Command.CLSE, 11, 3)

    seen = []
    peer, client = scripted(script)
    output = client.service("shell:0 appinstall tpk app.tpk", 3, on_text=seen.append)
    peer.join()

    assert output == ["Installing...", "done"]
    assert seen == output
    assert client.stream_state(3) is StreamState.CLOSED
    acks = peer.received[1:]
    assert [(f.command, f.arg0, f.arg1) for f in acks] == [(Command.OKAY, 3, 11)] * 2


def test_stream_state_violations(scripted) -> None:
    def script(peer):
        opened = peer.recv()
        peer.send(Command.OKAY, 9, opened.arg0)
        peer.recv(timeout=0.3)

    peer, client = scripted(script)
    with pytest.raises(StreamStateError):
        client.write(1, 9, b"not open")
    remote_id = client.open("sync:", 1)
    with pytest.raises(StreamStateError):
        client.open("sync:", 1)
    with pytest.raises(StreamStateError):
        client.write(1, remote_id + 1, b"wrong remote id")
    peer.join()

    assert [f.command for f in peer.received] == [Command.OPEN]
