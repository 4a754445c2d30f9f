"""SDB frame structures, serialization and blocking frame I/O."""

import logging
import socket
import struct
from dataclasses import dataclass

from .constants import HEADER_SIZE, MAX_PAYLOAD, id_to_str
from .errors import ChecksumError, FramingError, TransportError

HEADER_FORMAT = "<6I"  # command, arg0, arg1, data_length, data_check, magic

# ----------------------------------------------------------------------------
# Frame structures
# ----------------------------------------------------------------------------


def checksum(payload: bytes) -> int:
    """Additive payload checksum: the byte sum truncated to 32 bits."""
    return sum(payload) & 0xFFFFFFFF


def magic_for(command: int) -> int:
    """Header integrity word for a command."""
    return command ^ 0xFFFFFFFF


@dataclass
class FrameHeader:
    """Fixed 24-byte SDB frame header."""

    command: int
    arg0: int = 0
    arg1: int = 0
    data_length: int = 0
    data_check: int = 0
    magic: int = 0

    def to_bytes(self) -> bytes:
        """Pack header fields little-endian."""
        return struct.pack(
            HEADER_FORMAT,
            self.command,
            self.arg0,
            self.arg1,
            self.data_length,
            self.data_check,
            self.magic,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "FrameHeader":
        """Unpack and validate a header.

        Raises:
            FramingError: If the header is short, its magic does not match the
                command, or it advertises more than ``MAX_PAYLOAD`` bytes
        """
        if len(data) != HEADER_SIZE:
            raise FramingError(f"Short frame header: {len(data)} of {HEADER_SIZE} bytes")

        header = cls(*struct.unpack(HEADER_FORMAT, data))
        if header.magic != magic_for(header.command):
            raise FramingError(f"Bad magic 0x{header.magic:08X} for command {id_to_str(header.command)}")
        if header.data_length > MAX_PAYLOAD:
            raise FramingError(f"Payload length {header.data_length} exceeds maximum {MAX_PAYLOAD}")
        return header


@dataclass
class Frame:
    """SDB frame: a command, two arguments and a bounded payload."""

    command: int
    arg0: int = 0
    arg1: int = 0
    payload: bytes = b""

    def __post_init__(self) -> None:
        if isinstance(self.payload, str):  # type: ignore[unreachable]
            self.payload = self.payload.encode()  # type: ignore[unreachable]
        self.payload = bytes(self.payload)
        if len(self.payload) > MAX_PAYLOAD:
            raise FramingError(f"Payload length {len(self.payload)} exceeds maximum {MAX_PAYLOAD}")

    @property
    def header(self) -> FrameHeader:
        """Header with length, checksum and magic computed from this frame."""
        return FrameHeader(
            command=self.command,
            arg0=self.arg0,
            arg1=self.arg1,
            data_length=len(self.payload),
            data_check=checksum(self.payload),
            magic=magic_for(self.command),
        )

    @property
    def name(self) -> str:
        return id_to_str(self.command)

    def text(self) -> str:
        """Payload decoded for display, without trailing NULs."""
        return self.payload.rstrip(b"\x00").decode("utf-8", errors="replace")

    def __str__(self) -> str:
        return f"{self.name}({self.arg0}, {self.arg1}) len={len(self.payload)}"


def cstring(value: str) -> bytes:
    """Encode a string as a NUL-terminated payload."""
    return value.encode("utf-8") + b"\x00"


# ----------------------------------------------------------------------------
# Frame serialization/deserialization
# ----------------------------------------------------------------------------


def encode(frame: Frame) -> tuple[bytes, bytes]:
    """Serialize a frame.

    Args:
        frame: The frame to serialize

    Returns:
        Tuple of (header bytes, payload bytes)
    """
    return frame.header.to_bytes(), frame.payload


def decode(data: bytes) -> FrameHeader:
    """Deserialize a frame header; the payload is read separately."""
    return FrameHeader.from_bytes(data)


def send_frame(sock: socket.socket, frame: Frame) -> None:
    """Write one frame as a header write followed by a payload write.

    Args:
        sock: Connected stream socket
        frame: Frame to send

    Raises:
        TransportError: If either write fails
    """
    header, payload = encode(frame)
    logging.debug("send %s", frame)
    try:
        sock.sendall(header)
        if payload:
            sock.sendall(payload)
    except OSError as exc:
        raise TransportError(f"send_frame: {frame.name} failed: {exc}") from exc


def recv_exact(sock: socket.socket, n: int) -> bytes:
    """Receive exactly n bytes from socket.

    Args:
        sock: Socket to receive from
        n: Number of bytes to receive

    Returns:
        Received bytes

    Raises:
        TransportError: If the connection is closed or fails before n bytes arrive
    """
    buf = bytearray()
    while len(buf) < n:
        try:
            chunk = sock.recv(n - len(buf))
        except OSError as exc:
            raise TransportError(f"recv_frame: read failed after {len(buf)} of {n} bytes: {exc}") from exc
        if not chunk:
            raise TransportError(f"recv_frame: unexpected EOF after {len(buf)} of {n} bytes")
        buf.extend(chunk)
    return bytes(buf)


def recv_frame(sock: socket.socket, verify_checksum: bool = False) -> Frame:
    """Read one frame from socket.

    Args:
        sock: Socket to read from
        verify_checksum: Raise on a payload checksum mismatch instead of logging it

    Returns:
        Parsed frame

    Raises:
        TransportError: If the connection is closed unexpectedly
        FramingError: If the header is invalid
        ChecksumError: If verification is enabled and the checksum mismatches
    """
    header = decode(recv_exact(sock, HEADER_SIZE))
    payload = recv_exact(sock, header.data_length) if header.data_length else b""

    actual = checksum(payload)
    if actual != header.data_check:
        if verify_checksum:
            raise ChecksumError(f"Received checksum {actual} != {header.data_check}")
        logging.debug("checksum mismatch on %s: %d != %d", id_to_str(header.command), actual, header.data_check)

    frame = Frame(command=header.command, arg0=header.arg0, arg1=header.arg1, payload=payload)
    logging.debug("recv %s", frame)
    return frame
