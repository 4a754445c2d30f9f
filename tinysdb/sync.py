"""Sync sub-protocol: file push inside an open ``sync:`` stream.

Sync messages ride inside WRTE payloads. Each starts with an 8-byte header
(``id``, ``arg``) optionally followed by ``arg`` bytes of body:

* ``SEND(namelen) + path`` starts a transfer
* ``DATA(size) + bytes`` carries one chunk of file content
* ``DONE(timestamp)`` ends the transfer
* ``QUIT(namelen) + path`` asks the peer to end the sync session
* ``OKAY(msglen) [+ msg]`` / ``FAIL(msglen) + msg`` are the peer's status

Exactly one chunk is in flight: every WRTE is acknowledged with OKAY before
the next one is sent.
"""

import logging
import os
import struct
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from google_crc32c import Checksum

from .constants import MAX_PAYLOAD, SYNC_HEADER_SIZE, Command, SyncId, id_to_str
from .errors import FramingError, LocalFileError, PushFailedError, TransferError
from .frames import Frame

if TYPE_CHECKING:
    from .client import Client

SYNC_HEADER_FORMAT = "<2I"

ProgressCallback = Callable[[int, int], None]
TextCallback = Callable[[str], None]

# ----------------------------------------------------------------------------
# Sync messages
# ----------------------------------------------------------------------------


@dataclass
class SyncHeader:
    """Sync sub-message header: an id and one argument (length, size or timestamp)."""

    id: int
    arg: int = 0

    def to_bytes(self) -> bytes:
        return struct.pack(SYNC_HEADER_FORMAT, self.id, self.arg)

    @classmethod
    def from_bytes(cls, data: bytes) -> "SyncHeader":
        if len(data) < SYNC_HEADER_SIZE:
            raise FramingError(f"Short sync header: {len(data)} of {SYNC_HEADER_SIZE} bytes")
        return cls(*struct.unpack_from(SYNC_HEADER_FORMAT, data))

    @classmethod
    def request(cls, sync_id: SyncId, path: str) -> bytes:
        """Build a path-carrying request (SEND, QUIT): header plus path bytes."""
        raw = path.encode("utf-8")
        return cls(sync_id, len(raw)).to_bytes() + raw

    @classmethod
    def data(cls, chunk: bytes) -> bytes:
        return cls(SyncId.DATA, len(chunk)).to_bytes() + chunk

    @classmethod
    def done(cls, timestamp: int = 0) -> bytes:
        return cls(SyncId.DONE, timestamp).to_bytes()

    @property
    def name(self) -> str:
        return id_to_str(self.id)


@dataclass
class SyncStatus:
    """Peer status message: OKAY or FAIL with an optional text."""

    id: int
    message: str = ""

    @property
    def failed(self) -> bool:
        return self.id == SyncId.FAIL

    def to_bytes(self) -> bytes:
        raw = self.message.encode("utf-8")
        return SyncHeader(self.id, len(raw)).to_bytes() + raw

    @classmethod
    def from_payload(cls, payload: bytes) -> "SyncStatus | None":
        """Parse a status message, or return None if the payload is not one."""
        if len(payload) < SYNC_HEADER_SIZE:
            return None
        header = SyncHeader.from_bytes(payload)
        if header.id not in (SyncId.OKAY, SyncId.FAIL):
            return None
        body = payload[SYNC_HEADER_SIZE : SYNC_HEADER_SIZE + header.arg]
        return cls(id=header.id, message=body.decode("utf-8", errors="replace"))

    def __str__(self) -> str:
        return f"{id_to_str(self.id)}: {self.message}" if self.message else id_to_str(self.id)


@dataclass(frozen=True)
class PushResult:
    """Outcome of one file push."""

    local_path: str
    remote_path: str
    size: int
    chunks: int
    crc32c: str
    status: str | None = None


# ----------------------------------------------------------------------------
# Push
# ----------------------------------------------------------------------------


def _describe(frame: Frame) -> str:
    if frame.command == Command.WRTE:
        status = SyncStatus.from_payload(frame.payload)
        if status is not None:
            return f"{frame} [{status}]"
    return str(frame)


def _expect_okay(client: "Client", what: str) -> None:
    frame = client.read_frame()
    if frame.command != Command.OKAY:
        raise TransferError(f"push {what}: expected OKAY, got {_describe(frame)}")


def _read_status(client: "Client", local_id: int, remote_id: int, on_text: TextCallback | None) -> str | None:
    """Read, report and acknowledge the peer's post-transfer status write."""
    frame = client.read_frame()
    if frame.command == Command.CLSE:
        client.mark_closed(local_id)
        return None
    if frame.command != Command.WRTE:
        logging.warning("push status: unexpected %s", frame)
        return None

    status = SyncStatus.from_payload(frame.payload)
    text = str(status) if status is not None else frame.text()
    logging.info("push status: %s", text)
    if on_text:
        on_text(text)
    client.ack(local_id, remote_id)

    if status is not None and status.failed:
        raise PushFailedError(f"push failed: {status.message or 'no reason given'}")
    return text


def push_file(
    client: "Client",
    local_path: str | os.PathLike,
    remote_path: str,
    local_id: int,
    remote_id: int,
    mtime: int = 0,
    progress_callback: ProgressCallback | None = None,
    on_text: TextCallback | None = None,
) -> PushResult:
    """Upload a local file over an open sync stream.

    The SEND request shares the first WRTE with the first DATA chunk. Each
    chunk is acknowledged before the next is read from disk. DONE goes in its
    own WRTE and is acknowledged too; the peer then writes a status message,
    which is reported and acknowledged.

    Args:
        client: Connected client with the sync stream open
        local_path: File to upload
        remote_path: Destination path on the device
        local_id: Local stream id
        remote_id: Remote stream id assigned at open
        mtime: Timestamp carried by DONE
        progress_callback: Called as ``(sent_bytes, total_bytes)`` after each acknowledged chunk
        on_text: Called with the peer's status text

    Returns:
        Summary of the transfer

    Raises:
        LocalFileError: If the file cannot be opened; raised before any I/O
        FramingError: If ``remote_path`` leaves no room for data in a frame
        TransferError: If a chunk or DONE is not acknowledged with OKAY
        PushFailedError: If the peer reports a FAIL status
    """
    pending = SyncHeader.request(SyncId.SEND, remote_path)
    if len(pending) + SYNC_HEADER_SIZE >= MAX_PAYLOAD:
        raise FramingError(f"push: remote path too long ({len(remote_path)} bytes)")

    try:
        f = open(local_path, "rb")
    except OSError as exc:
        raise LocalFileError(f"push: unable to open {local_path}: {exc}") from exc

    crc = Checksum()
    sent = 0
    chunks = 0
    with f:
        total = os.fstat(f.fileno()).st_size
        while True:
            data = f.read(MAX_PAYLOAD - len(pending) - SYNC_HEADER_SIZE)
            if not data:
                break
            crc.update(data)
            client.write(local_id, remote_id, pending + SyncHeader.data(data))
            pending = b""
            chunks += 1
            _expect_okay(client, f"DATA chunk {chunks}")
            sent += len(data)
            if progress_callback:
                progress_callback(sent, total)

    # An empty file still needs its SEND request; it travels with DONE.
    client.write(local_id, remote_id, pending + SyncHeader.done(mtime))
    _expect_okay(client, "DONE")
    logging.debug("pushed %d bytes in %d chunks to %s", sent, chunks, remote_path)

    status = _read_status(client, local_id, remote_id, on_text)
    return PushResult(
        local_path=os.fspath(local_path),
        remote_path=remote_path,
        size=sent,
        chunks=chunks,
        crc32c=crc.digest().hex(),
        status=status,
    )


def quit_sync(client: "Client", local_id: int, remote_id: int, remote_path: str = "") -> Frame:
    """Send a best-effort QUIT and read its single reply without validating it.

    A WRTE reply is still acknowledged; a CLSE reply closes the stream.

    Returns:
        The reply frame
    """
    client.write(local_id, remote_id, SyncHeader.request(SyncId.QUIT, remote_path))
    frame = client.read_frame()
    if frame.command == Command.WRTE:
        client.ack(local_id, remote_id)
    elif frame.command == Command.CLSE:
        client.mark_closed(local_id)
    logging.debug("quit reply: %s", _describe(frame))
    return frame
