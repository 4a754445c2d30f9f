"""Shared fixtures: a scripted device on a socketpair and a threaded mock daemon."""

import socket
import threading
from collections.abc import Callable

import pytest

from tinysdb import Client, Server
from tinysdb.constants import SYNC_HEADER_SIZE, SyncId
from tinysdb.errors import TransportError
from tinysdb.frames import Frame, recv_frame, send_frame
from tinysdb.sync import SyncHeader


class ScriptedPeer:
    """Device end of a socketpair, driven by a script running in a thread."""

    def __init__(self, script: Callable[["ScriptedPeer"], None]):
        self.client_sock, self.sock = socket.socketpair()
        self.received: list[Frame] = []
        self.error: BaseException | None = None
        self._thread = threading.Thread(target=self._run, args=(script,), daemon=True)

    def _run(self, script: Callable[["ScriptedPeer"], None]) -> None:
        try:
            script(self)
        except Exception as exc:  # reported by join()
            self.error = exc
        finally:
            self.sock.close()

    def start(self) -> "ScriptedPeer":
        self._thread.start()
        return self

    def join(self, timeout: float = 5.0) -> None:
        self._thread.join(timeout)
        assert not self._thread.is_alive(), "scripted peer did not finish"
        if self.error is not None:
            raise self.error

    def recv(self, timeout: float | None = None) -> Frame | None:
        """Next frame from the client, or None on timeout or EOF."""
        self.sock.settimeout(timeout)
        try:
            frame = recv_frame(self.sock, verify_checksum=True)
        except TransportError:
            return None
        self.received.append(frame)
        return frame

    def send(self, command: int, arg0: int = 0, arg1: int = 0, payload: bytes = b"") -> None:
        send_frame(self.sock, Frame(command, arg0, arg1, payload))


@pytest.fixture
def scripted():
    """Factory returning ``(peer, client)`` for a peer script."""
    peers: list[ScriptedPeer] = []

    def factory(script: Callable[[ScriptedPeer], None]) -> tuple[ScriptedPeer, Client]:
        peer = ScriptedPeer(script).start()
        peers.append(peer)
        return peer, Client(peer.client_sock)

    yield factory

    for peer in peers:
        peer.client_sock.close()


@pytest.fixture
def server():
    """Mock daemon on a free port that echoes each command as one line."""
    srv = Server(on_command=lambda destination: [f"ran {destination}"])
    srv.start()
    yield srv
    srv.stop()


def sync_messages(payloads: list[bytes]) -> list[tuple[int, int, bytes]]:
    """Split concatenated WRTE payloads into (id, arg, body) sync messages."""
    buf = b"".join(payloads)
    messages = []
    while buf:
        header = SyncHeader.from_bytes(buf)
        body_len = header.arg if header.id in (SyncId.SEND, SyncId.DATA, SyncId.QUIT) else 0
        messages.append((header.id, header.arg, buf[SYNC_HEADER_SIZE : SYNC_HEADER_SIZE + body_len]))
        buf = buf[SYNC_HEADER_SIZE + body_len :]
    return messages


@pytest.fixture
def parse_sync():
    return sync_messages
