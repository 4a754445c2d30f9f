"""Tests for the SDB frame codec and blocking frame I/O."""

import socket
import struct

import pytest

from tinysdb import Command, Frame, FrameHeader, checksum, decode, encode, recv_frame, send_frame
from tinysdb.constants import HEADER_SIZE, MAX_PAYLOAD, id_to_str
from tinysdb.errors import ChecksumError, FramingError, TransportError


class TrickleSocket:
    """Socket stand-in that returns at most ``step`` bytes per recv."""

    def __init__(self, data: bytes, step: int = 3):
        self.data = data
        self.step = step
        self.calls = 0

    def recv(self, n: int) -> bytes:
        self.calls += 1
        chunk, self.data = self.data[: min(n, self.step)], self.data[min(n, self.step) :]
        return chunk


def mkid(tag: str) -> int:
    return int.from_bytes(tag.encode("ascii"), "little")


def raw_frame(command: int, arg0: int, arg1: int, payload: bytes, check: int | None = None) -> bytes:
    check = checksum(payload) if check is None else check
    return struct.pack("<6I", command, arg0, arg1, len(payload), check, command ^ 0xFFFFFFFF) + payload


def test_opcodes_are_ascii_packed() -> None:
    """Opcodes are their 4-character tags packed little-endian."""
    for command in Command:
        assert mkid(command.name) == command
        assert id_to_str(command) == command.name


@pytest.mark.parametrize("command", list(Command) + [0, 0xFFFFFFFF, 0x12345678])
def test_magic_is_command_complement(command: int) -> None:
    """Decoded magic always equals command XOR 0xFFFFFFFF."""
    header, _ = encode(Frame(command, 1, 2, b"abc"))
    assert decode(header).magic == command ^ 0xFFFFFFFF


def test_checksum_is_truncated_byte_sum() -> None:
    """Checksum is the unsigned byte sum modulo 2**32."""
    assert checksum(b"") == 0
    assert checksum(b"\x01\x02\x03") == 6
    assert checksum(b"\xff" * MAX_PAYLOAD) == 0xFF * MAX_PAYLOAD
    assert checksum(bytes(range(256)) * 16) == sum(range(256)) * 16


def test_header_layout_is_little_endian() -> None:
    """Header fields are six little-endian u32 values."""
    header, payload = encode(Frame(Command.OPEN, 7, 0, b"sync:\x00"))
    assert len(header) == HEADER_SIZE
    assert header[:4] == b"OPEN"
    assert header == struct.pack("<6I", Command.OPEN, 7, 0, 6, checksum(b"sync:\x00"), Command.OPEN ^ 0xFFFFFFFF)
    assert payload == b"sync:\x00"


def test_oversized_payload_rejected() -> None:
    """Payloads above the maximum cannot be framed."""
    Frame(Command.WRTE, 1, 2, b"x" * MAX_PAYLOAD)
    with pytest.raises(FramingError):
        Frame(Command.WRTE, 1, 2, b"x" * (MAX_PAYLOAD + 1))


def test_decode_rejects_oversized_length() -> None:
    """A header advertising more than the maximum payload is a framing error."""
    header = FrameHeader(Command.WRTE, 1, 2, MAX_PAYLOAD + 1, 0, Command.WRTE ^ 0xFFFFFFFF).to_bytes()
    with pytest.raises(FramingError):
        decode(header)


def test_decode_rejects_bad_magic_and_short_header() -> None:
    header = bytearray(encode(Frame(Command.OKAY, 1, 2))[0])
    header[20:24] = b"\x00\x00\x00\x00"
    with pytest.raises(FramingError):
        decode(bytes(header))
    with pytest.raises(FramingError):
        decode(b"\x00" * (HEADER_SIZE - 1))


def test_string_payload_is_encoded() -> None:
    frame = Frame(Command.WRTE, 1, 2, "hello")  # type: ignore[arg-type]
    assert frame.payload == b"hello"
    assert frame.text() == "hello"


def test_recv_frame_accumulates_partial_reads() -> None:
    """Short reads are accumulated until the header and payload are complete."""
    sock = TrickleSocket(raw_frame(Command.WRTE, 3, 9, b"installed ok\x00"))
    frame = recv_frame(sock)  # type: ignore[arg-type]
    assert (frame.command, frame.arg0, frame.arg1) == (Command.WRTE, 3, 9)
    assert frame.payload == b"installed ok\x00"
    assert frame.text() == "installed ok"
    assert sock.calls > 2


def test_recv_frame_eof_mid_payload() -> None:
    data = raw_frame(Command.WRTE, 1, 2, b"truncated payload")[:-4]
    with pytest.raises(TransportError):
        recv_frame(TrickleSocket(data))  # type: ignore[arg-type]


def test_checksum_mismatch_only_fails_when_verifying() -> None:
    data = raw_frame(Command.WRTE, 1, 2, b"data", check=12345)
    assert recv_frame(TrickleSocket(data)).payload == b"data"  # type: ignore[arg-type]
    with pytest.raises(ChecksumError):
        recv_frame(TrickleSocket(data), verify_checksum=True)  # type: ignore[arg-type]


def test_send_and_receive_over_socketpair() -> None:
    a, b = socket.socketpair()
    with a, b:
        send_frame(a, Frame(Command.CNXN, 0x02000000, MAX_PAYLOAD, b"host::\x00"))
        send_frame(a, Frame(Command.CLSE, 4, 5))
        first = recv_frame(b, verify_checksum=True)
        second = recv_frame(b, verify_checksum=True)
    assert first.command == Command.CNXN
    assert first.arg0 == 0x02000000 and first.arg1 == MAX_PAYLOAD
    assert first.text() == "host::"
    assert (second.command, second.arg0, second.arg1, second.payload) == (Command.CLSE, 4, 5, b"")


def test_send_on_closed_socket_is_transport_error() -> None:
    a, b = socket.socketpair()
    b.close()
    a.close()
    with pytest.raises(TransportError):
        send_frame(a, Frame(Command.OKAY, 1, 2))
