"""SDB client: connection handshake and stream life-cycle."""

import logging
import os
import socket
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from . import sync
from .config import SdbConfig
from .constants import DEFAULT_IDENTITY, DEFAULT_PORT, MAX_PAYLOAD, SYNC_SERVICE, VERSION, Command
from .errors import FramingError, LocalFileError, OpenRejectedError, SdbError, StreamStateError
from .frames import Frame, cstring, recv_frame, send_frame


class StreamState(Enum):
    """Life-cycle of one local stream id."""

    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"


@dataclass
class Stream:
    """One logical channel, named by the client's and the peer's id."""

    local_id: int
    destination: str
    remote_id: int = 0
    state: StreamState = StreamState.OPENING


class Client:
    """SDB client driving one already-connected byte stream.

    Every operation is a blocking round trip on the socket; only one stream is
    in use at a time.
    """

    def __init__(self, sock: socket.socket, verify_checksum: bool = False):
        """Initialize client.

        Args:
            sock: Connected stream socket (anything with ``sendall`` and ``recv``)
            verify_checksum: Treat payload checksum mismatches as errors
        """
        self._sock = sock
        self.verify_checksum = verify_checksum
        self._streams: dict[int, Stream] = {}

        self.peer_identity: str | None = None
        self.peer_version: int | None = None
        self.peer_max_payload: int | None = None

    @classmethod
    def from_address(
        cls, host: str, port: int = DEFAULT_PORT, timeout: float | None = None, verify_checksum: bool = False
    ) -> "Client":
        """Open a TCP connection to a daemon.

        Args:
            host: Device address
            port: Daemon port
            timeout: Socket timeout in seconds; None blocks indefinitely
            verify_checksum: Treat payload checksum mismatches as errors
        """
        sock = socket.create_connection((host, port), timeout=timeout)
        return cls(sock, verify_checksum=verify_checksum)

    @classmethod
    def from_config(cls, config: SdbConfig) -> "Client":
        return cls.from_address(
            config.host, config.port, timeout=config.timeout, verify_checksum=config.verify_checksum
        )

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Frame I/O
    # ------------------------------------------------------------------

    def send(self, frame: Frame) -> None:
        send_frame(self._sock, frame)

    def read_frame(self) -> Frame:
        """Block until the next frame arrives."""
        return recv_frame(self._sock, verify_checksum=self.verify_checksum)

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    def connect(self, identity: str = DEFAULT_IDENTITY) -> str:
        """Perform the CNXN handshake.

        The single reply is not checked beyond framing.

        Args:
            identity: System identity string sent to the peer

        Returns:
            The peer's identity string
        """
        self.send(Frame(Command.CNXN, VERSION, MAX_PAYLOAD, cstring(identity)))
        reply = self.read_frame()
        if reply.command != Command.CNXN:
            logging.warning("connect: expected CNXN reply, got %s", reply)

        self.peer_identity = reply.text()
        self.peer_version = reply.arg0
        self.peer_max_payload = reply.arg1
        logging.info(
            "%s: ver: 0x%08X, %d, %s", reply.name, reply.arg0, reply.arg1, self.peer_identity
        )
        return self.peer_identity

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def _stream(self, local_id: int, remote_id: int, *states: StreamState) -> Stream:
        stream = self._streams.get(local_id)
        if stream is None or stream.state not in states:
            current = stream.state.value if stream else StreamState.CLOSED.value
            raise StreamStateError(f"stream {local_id} is {current}")
        if stream.remote_id != remote_id:
            raise StreamStateError(
                f"stream {local_id} is paired with remote id {stream.remote_id}, not {remote_id}"
            )
        return stream

    def stream_state(self, local_id: int) -> StreamState:
        stream = self._streams.get(local_id)
        return stream.state if stream else StreamState.CLOSED

    def open(self, destination: str, local_id: int) -> int:
        """Open a stream to a destination service.

        Args:
            destination: Service string, e.g. ``"sync:"`` or ``"shell:ls"``
            local_id: Client-chosen id for the stream

        Returns:
            The remote id assigned by the peer

        Raises:
            StreamStateError: If ``local_id`` is already in use
            FramingError: If the destination does not fit in one frame
            OpenRejectedError: If the peer does not answer with OKAY
        """
        if self.stream_state(local_id) is not StreamState.CLOSED:
            raise StreamStateError(f"open: stream {local_id} is already {self.stream_state(local_id).value}")

        payload = cstring(destination)
        if len(payload) > MAX_PAYLOAD - 1:
            raise FramingError(f"open: destination oversized ({len(payload)} bytes)")

        stream = Stream(local_id=local_id, destination=destination)
        self._streams[local_id] = stream
        try:
            self.send(Frame(Command.OPEN, local_id, 0, payload))
            reply = self.read_frame()
        except SdbError:
            del self._streams[local_id]
            raise

        if reply.command != Command.OKAY:
            del self._streams[local_id]
            raise OpenRejectedError(f"open {destination!r} failed: got {reply}")

        stream.remote_id = reply.arg0
        stream.state = StreamState.OPEN
        logging.debug("opened %r as (%d, %d)", destination, local_id, stream.remote_id)
        return stream.remote_id

    def write(self, local_id: int, remote_id: int, payload: bytes) -> None:
        self._stream(local_id, remote_id, StreamState.OPEN)
        self.send(Frame(Command.WRTE, local_id, remote_id, payload))

    def ack(self, local_id: int, remote_id: int) -> None:
        """Acknowledge a WRTE received on the stream."""
        self._stream(local_id, remote_id, StreamState.OPEN, StreamState.CLOSING)
        self.send(Frame(Command.OKAY, local_id, remote_id))

    def close(self, local_id: int, remote_id: int) -> None:
        """Send CLSE; the stream stays CLOSING until the peer's CLSE arrives."""
        stream = self._stream(local_id, remote_id, StreamState.OPEN)
        self.send(Frame(Command.CLSE, local_id, remote_id))
        stream.state = StreamState.CLOSING

    def mark_closed(self, local_id: int) -> None:
        """Forget a stream the peer has closed."""
        self._streams.pop(local_id, None)

    def run_to_close(
        self, local_id: int, remote_id: int, on_text: Callable[[str], None] | None = None
    ) -> list[str]:
        """Drain a stream until the peer closes it.

        Each WRTE is passed to ``on_text`` and acknowledged. OKAY frames are
        acknowledgements of our own writes and are skipped. Anything else is
        logged and ignored.

        Returns:
            The text payloads received
        """
        self._stream(local_id, remote_id, StreamState.OPEN, StreamState.CLOSING)
        lines: list[str] = []
        while True:
            frame = self.read_frame()
            if frame.command == Command.CLSE:
                self.mark_closed(local_id)
                return lines
            if frame.command == Command.WRTE:
                text = frame.text()
                lines.append(text)
                if on_text:
                    on_text(text)
                self.ack(local_id, remote_id)
            elif frame.command != Command.OKAY:
                logging.warning("stream %d: unexpected %s", local_id, frame)

    def service(self, destination: str, local_id: int, on_text: Callable[[str], None] | None = None) -> list[str]:
        """Run an application command: open the destination and drain it until the peer closes it."""
        logging.info("service: %s", destination)
        remote_id = self.open(destination, local_id)
        return self.run_to_close(local_id, remote_id, on_text)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def push_file(
        self,
        local_path: str | os.PathLike,
        remote_path: str,
        local_id: int,
        remote_id: int,
        mtime: int = 0,
        progress_callback: sync.ProgressCallback | None = None,
        on_text: Callable[[str], None] | None = None,
    ) -> sync.PushResult:
        """Upload a file over an already open sync stream (see :func:`tinysdb.sync.push_file`)."""
        return sync.push_file(
            self, local_path, remote_path, local_id, remote_id,
            mtime=mtime, progress_callback=progress_callback, on_text=on_text,
        )

    def quit_sync(self, local_id: int, remote_id: int, remote_path: str = "") -> Frame:
        return sync.quit_sync(self, local_id, remote_id, remote_path)

    def push(
        self,
        local_path: str | os.PathLike,
        remote_path: str,
        local_id: int,
        on_text: Callable[[str], None] | None = None,
        progress_callback: sync.ProgressCallback | None = None,
    ) -> sync.PushResult:
        """Complete push step: open ``sync:``, transfer, QUIT, close and drain.

        Raises:
            LocalFileError: If ``local_path`` is not a readable file; raised before any I/O
        """
        if not os.path.isfile(local_path) or not os.access(local_path, os.R_OK):
            raise LocalFileError(f"push: unable to open {local_path}")

        logging.info("push %s to %s", local_path, remote_path)
        remote_id = self.open(SYNC_SERVICE, local_id)
        result = self.push_file(
            local_path, remote_path, local_id, remote_id, progress_callback=progress_callback, on_text=on_text
        )
        if self.stream_state(local_id) is StreamState.OPEN:
            self.quit_sync(local_id, remote_id, remote_path)
        if self.stream_state(local_id) is StreamState.OPEN:
            self.close(local_id, remote_id)
            self.run_to_close(local_id, remote_id, on_text)
        return result

    def shutdown(self) -> None:
        """Close the underlying socket."""
        if self._sock:
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            finally:
                self._sock.close()
                self._streams.clear()
