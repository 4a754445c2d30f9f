"""Exceptions raised by the SDB client.

Nothing in the package recovers from these locally; they propagate to the
caller, which decides whether to abort (the CLI prints one line and exits).
"""


class SdbError(Exception):
    """Base class for every SDB client error."""


class TransportError(SdbError, ConnectionError):
    """The byte stream failed: short read, EOF, timeout or socket error."""


class FramingError(SdbError, ValueError):
    """A frame violates the wire format (size bound, header length, magic)."""


class ChecksumError(FramingError):
    """A received payload does not match its advertised checksum."""


class ProtocolError(SdbError):
    """The peer answered with something the exchange does not allow."""


class OpenRejectedError(ProtocolError):
    """An OPEN request was not accepted with OKAY."""


class TransferError(ProtocolError):
    """A sync chunk or DONE marker was not acknowledged with OKAY."""


class PushFailedError(TransferError):
    """The peer reported a sync FAIL status for a push."""


class StreamStateError(ProtocolError):
    """An operation is not legal in the stream's current state."""


class LocalFileError(SdbError, OSError):
    """A local file needed for a push could not be opened."""
