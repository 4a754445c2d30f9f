"""SDB protocol constants and enums."""

from enum import IntEnum

# ----------------------------------------------------------------------------
# Protocol constants
# ----------------------------------------------------------------------------

VERSION = 0x02000000  # SDB protocol version
MAX_PAYLOAD = 4096
HEADER_SIZE = 24  # six little-endian u32 fields
SYNC_HEADER_SIZE = 8  # id + one u32 argument

DEFAULT_PORT = 26101
DEFAULT_IDENTITY = "host::"
SYNC_SERVICE = "sync:"
DEFAULT_REMOTE_DIR = "/home/owner/share/tmp/sdk_tools"


def id_to_str(value: int) -> str:
    """Render a packed id as its ASCII tag, or hex if it is not printable."""
    raw = (value & 0xFFFFFFFF).to_bytes(4, "little")
    if all(0x20 <= b < 0x7F for b in raw):
        return raw.decode("ascii")
    return f"0x{value:08X}"


# ----------------------------------------------------------------------------
# Frame commands
# ----------------------------------------------------------------------------


class Command(IntEnum):
    """Frame opcodes (ASCII packed, little-endian)."""

    SYNC = 0x434E5953  # "SYNC"
    CNXN = 0x4E584E43  # "CNXN"
    OPEN = 0x4E45504F  # "OPEN"
    OKAY = 0x59414B4F  # "OKAY"
    CLSE = 0x45534C43  # "CLSE"
    WRTE = 0x45545257  # "WRTE"
    STAT = 0x54415453  # "STAT" (declared, unused)


# ----------------------------------------------------------------------------
# Sync sub-protocol ids
# ----------------------------------------------------------------------------


class SyncId(IntEnum):
    """Sync sub-message ids carried inside WRTE payloads."""

    STAT = 0x54415453  # "STAT"
    LIST = 0x5453494C  # "LIST"
    ULNK = 0x4B4E4C55  # "ULNK"
    SEND = 0x444E4553  # "SEND"
    RECV = 0x56434552  # "RECV"
    DENT = 0x544E4544  # "DENT"
    DONE = 0x454E4F44  # "DONE"
    DATA = 0x41544144  # "DATA"
    OKAY = 0x59414B4F  # "OKAY"
    FAIL = 0x4C494146  # "FAIL"
    QUIT = 0x54495551  # "QUIT"
