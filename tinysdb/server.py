"""Minimal SDB daemon for tests, demos and benchmarks."""
import itertools
import logging
import socket
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from .constants import MAX_PAYLOAD, SYNC_HEADER_SIZE, SYNC_SERVICE, VERSION, Command, SyncId
from .errors import SdbError
from .frames import Frame, cstring, recv_frame, send_frame
from .sync import SyncHeader, SyncStatus

DEFAULT_BANNER = "device::mocktv"


@dataclass
class _SyncSession:
    """Receive side of one sync stream."""

    buffer: bytearray = field(default_factory=bytearray)
    path: str | None = None
    data: bytearray = field(default_factory=bytearray)
    done: bool = False

    def feed(self, payload: bytes) -> None:
        """Consume every complete sync message buffered so far."""
        self.buffer.extend(payload)
        while len(self.buffer) >= SYNC_HEADER_SIZE:
            header = SyncHeader.from_bytes(bytes(self.buffer[:SYNC_HEADER_SIZE]))
            body_len = header.arg if header.id in (SyncId.SEND, SyncId.DATA, SyncId.QUIT) else 0
            if len(self.buffer) < SYNC_HEADER_SIZE + body_len:
                return
            body = bytes(self.buffer[SYNC_HEADER_SIZE : SYNC_HEADER_SIZE + body_len])
            del self.buffer[: SYNC_HEADER_SIZE + body_len]

            if header.id == SyncId.SEND:
                self.path = body.decode("utf-8")
                self.data.clear()
                self.done = False
            elif header.id == SyncId.DATA:
                self.data.extend(body)
            elif header.id == SyncId.DONE:
                self.done = True
            logging.debug("sync %s(%d)", header.name, header.arg)


class _ClientHandler(threading.Thread):
    """Handle a single client connection."""

    def __init__(self, sock: socket.socket, addr, server: "Server"):
        super().__init__(daemon=True)
        self.sock = sock
        self.addr = addr
        self.server = server
        self.running = True
        # local id -> (our id, destination)
        self._streams: dict[int, tuple[int, str]] = {}
        self._sessions: dict[int, _SyncSession] = {}

    def run(self):
        """Handle client connection."""
        try:
            self._serve()
        except (SdbError, OSError) as exc:
            logging.debug("Client %s closed: %s", self.addr, exc)
        finally:
            self.sock.close()

    def _send(self, command: int, arg0: int, arg1: int, payload: bytes = b"") -> None:
        send_frame(self.sock, Frame(command, arg0, arg1, payload))

    def _serve(self):
        """Serve client frames until the connection drops."""
        while self.running:
            frame = recv_frame(self.sock, verify_checksum=True)
            self.server.frames.append(frame)
            if frame.command == Command.CNXN:
                self._send(Command.CNXN, VERSION, MAX_PAYLOAD, cstring(self.server.banner))
            elif frame.command == Command.OPEN:
                self._handle_open(frame)
            elif frame.command == Command.WRTE:
                self._handle_write(frame)
            elif frame.command == Command.CLSE:
                self._handle_close(frame)
            elif frame.command == Command.OKAY:
                pass  # acknowledgement of one of our writes
            else:
                logging.debug("Client %s sent unexpected %s", self.addr, frame)

    def _handle_open(self, frame: Frame) -> None:
        destination = frame.text()
        local_id = frame.arg0
        if any(destination.startswith(prefix) for prefix in self.server.reject):
            self._send(Command.CLSE, 0, local_id)
            return

        our_id = self.server.next_remote_id()
        self._send(Command.OKAY, our_id, local_id)

        if destination == SYNC_SERVICE:
            self._streams[local_id] = (our_id, destination)
            self._sessions[local_id] = _SyncSession()
            return

        self.server.commands.append(destination)
        lines = self.server.on_command(destination) if self.server.on_command else []
        for line in lines:
            self._send(Command.WRTE, our_id, local_id, line.encode())
            self._wait_ack(local_id)
        self._send(Command.CLSE, our_id, local_id)

    def _wait_ack(self, local_id: int) -> None:
        while True:
            frame = recv_frame(self.sock, verify_checksum=True)
            self.server.frames.append(frame)
            if frame.command == Command.OKAY and frame.arg0 == local_id:
                return
            if frame.command == Command.CLSE:
                raise ConnectionAbortedError(f"stream {local_id} closed while writing")

    def _handle_write(self, frame: Frame) -> None:
        local_id = frame.arg0
        if local_id not in self._streams:
            self._send(Command.CLSE, 0, local_id)
            return
        our_id, _ = self._streams[local_id]
        session = self._sessions[local_id]
        self._send(Command.OKAY, our_id, local_id)

        session.feed(frame.payload)
        if session.done:
            session.done = False
            self._finish_push(local_id, our_id, session)

    def _finish_push(self, local_id: int, our_id: int, session: _SyncSession) -> None:
        if self.server.fail_push is not None:
            status = SyncStatus(SyncId.FAIL, self.server.fail_push)
        else:
            self.server.files[session.path or ""] = bytes(session.data)
            status = SyncStatus(SyncId.OKAY, f"{len(session.data)} bytes written to {session.path}")
        self._send(Command.WRTE, our_id, local_id, status.to_bytes())
        self._wait_ack(local_id)

    def _handle_close(self, frame: Frame) -> None:
        local_id = frame.arg0
        stream = self._streams.pop(local_id, None)
        self._sessions.pop(local_id, None)
        if stream is not None:
            self._send(Command.CLSE, stream[0], local_id)


class Server:
    """Threaded SDB peer that accepts connections and serves streams."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        banner: str = DEFAULT_BANNER,
        on_command: Callable[[str], list[str]] | None = None,
        reject: tuple[str, ...] = (),
        first_remote_id: int = 1,
        fail_push: str | None = None,
    ):
        """Initialize server.

        Args:
            host: Host to bind to
            port: Port to bind to; 0 picks a free one (see ``port`` once started)
            banner: Identity sent in the CNXN reply
            on_command: Returns the output lines for a non-sync destination
            reject: Destination prefixes answered with CLSE instead of OKAY
            first_remote_id: First id handed out to accepted streams
            fail_push: If set, every push ends with a FAIL status carrying this message
        """
        self.host = host
        self.port = port
        self.banner = banner
        self.on_command = on_command
        self.reject = reject
        self.fail_push = fail_push
        self._ids = itertools.count(first_remote_id)
        self._ids_lock = threading.Lock()
        self._sock: socket.socket | None = None
        self._running = threading.Event()

        self.files: dict[str, bytes] = {}
        self.commands: list[str] = []
        self.frames: list[Frame] = []

    def next_remote_id(self) -> int:
        with self._ids_lock:
            return next(self._ids)

    def serve_forever(self):
        """Start the server and handle connections."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as srv:
            srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            srv.bind((self.host, self.port))
            srv.listen()
            self.port = srv.getsockname()[1]
            self._sock = srv
            self._running.set()

            logging.info("SDB server listening on %s:%d", self.host, self.port)

            while self._running.is_set():
                try:
                    cli_sock, addr = srv.accept()
                    _ClientHandler(cli_sock, addr, self).start()
                except OSError:
                    break  # socket closed

    def start(self, timeout: float = 5.0) -> threading.Thread:
        """Serve in a daemon thread and wait until listening."""
        thread = threading.Thread(target=self.serve_forever, name="sdb-server", daemon=True)
        thread.start()
        if not self._running.wait(timeout):
            raise RuntimeError("SDB server did not start")
        return thread

    def stop(self):
        """Stop the server."""
        self._running.clear()
        if self._sock:
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
