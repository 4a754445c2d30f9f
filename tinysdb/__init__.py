# Copyright 2025 Maida.AI
# SPDX-License-Identifier: Apache-2.0
r"""tinysdb - a small SDB (smart development bridge) client.

This package talks to a device-management daemon over one TCP connection and
provides:
- Frame codec with additive checksum and magic validation
- Blocking frame I/O over a connected socket
- Stream life-cycle (open, write, acknowledge, close) keyed by local/remote ids
- Sync sub-protocol file push with one chunk in flight
- A package deployment workflow and the ``tinysdb`` command line
- A minimal in-process daemon for tests and demos
"""

# Import public API from modules
from .client import Client, Stream, StreamState
from .config import SdbConfig
from .constants import (
    DEFAULT_IDENTITY,
    DEFAULT_PORT,
    HEADER_SIZE,
    MAX_PAYLOAD,
    SYNC_HEADER_SIZE,
    SYNC_SERVICE,
    VERSION,
    Command,
    SyncId,
)
from .deploy import DeployReport, StepResult, deploy, package_name
from .errors import (
    ChecksumError,
    FramingError,
    LocalFileError,
    OpenRejectedError,
    ProtocolError,
    PushFailedError,
    SdbError,
    StreamStateError,
    TransferError,
    TransportError,
)
from .frames import (
    Frame,
    FrameHeader,
    checksum,
    decode,
    encode,
    recv_frame,
    send_frame,
)
from .server import Server
from .sync import PushResult, SyncHeader, SyncStatus, push_file, quit_sync

# Public API exports
__all__ = [
    # Core classes
    "Client",
    "Stream",
    "StreamState",
    "Frame",
    "FrameHeader",
    "SyncHeader",
    "SyncStatus",
    "PushResult",
    "SdbConfig",
    "Server",
    # Constants and enums
    "VERSION",
    "MAX_PAYLOAD",
    "HEADER_SIZE",
    "SYNC_HEADER_SIZE",
    "SYNC_SERVICE",
    "DEFAULT_PORT",
    "DEFAULT_IDENTITY",
    "Command",
    "SyncId",
    # Frame utilities
    "checksum",
    "encode",
    "decode",
    "send_frame",
    "recv_frame",
    # Sync
    "push_file",
    "quit_sync",
    # Deployment
    "deploy",
    "package_name",
    "DeployReport",
    "StepResult",
    # Errors
    "SdbError",
    "TransportError",
    "FramingError",
    "ChecksumError",
    "ProtocolError",
    "OpenRejectedError",
    "TransferError",
    "PushFailedError",
    "StreamStateError",
    "LocalFileError",
]
