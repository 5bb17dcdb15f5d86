"""
=============================================================================
REQUEST FRAMING
=============================================================================

A request is one command byte followed by an argument region that runs
until the client half-closes its write side:

    ┌──────┬──────────────────────────────────────────┬─────────┐
    │  G   │  r e p o r t . p d f                     │   FIN   │
    └──────┴──────────────────────────────────────────┴─────────┘
    byte 0   bytes 1..EOF (UTF-8)                      client shutdown(SHUT_WR)

There is no length prefix. The TCP FIN produced by the half-close IS the
delimiter, which is why each connection carries exactly one request.

=============================================================================
WHY AN INCREMENTAL PARSER?
=============================================================================

The server never blocks on a socket. Bytes arrive in whatever chunks TCP
hands us, one readiness event at a time:

    readable → recv() → b"G"          parser.feed(b"G")
    readable → recv() → b"report."    parser.feed(b"report.")
    readable → recv() → b"pdf"        parser.feed(b"pdf")
    readable → recv() → b""           parser.feed_eof()   ← complete!

RequestParser accumulates those chunks and answers one question after
every event: "is the request complete yet?" Three cases finish early,
without waiting for the FIN:

    1. Command byte is L      → no argument, reply right away
    2. Command byte unknown    → reply F right away
    3. Argument too long      → reply F right away (stop buffering)

=============================================================================
FILENAME RULES
=============================================================================

    - UTF-8, non-empty, at most 1024 bytes
    - no NUL byte
    - no path separator, not "." or ".."

The last rule keeps the service confined to its directory. A name like
"../../etc/passwd" is refused before it ever reaches the filesystem.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from .commands import (
    Command,
    ReplyCode,
    MAX_ARGUMENT_LENGTH,
    MAX_FILENAME_LENGTH,
    RENAME_SEPARATOR,
)


class ProtocolError(Exception):
    """
    Raised when a request cannot be framed or its argument is malformed.

    The wire has a single failure code, so every ProtocolError is answered
    with F. The message is for the server log only.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.reply_code = ReplyCode.FAILURE


_SEPARATORS = {"/", os.sep} | ({os.altsep} if os.altsep else set())


def validate_filename(raw: bytes, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """
    Decode and check a single filename from the wire.

    Args:
        raw: Name bytes as received.
        max_length: Maximum encoded length in bytes.

    Returns:
        The decoded name.

    Raises:
        ProtocolError: If the name breaks any of the filename rules.
    """
    if not raw:
        raise ProtocolError("empty filename")

    if len(raw) > max_length:
        raise ProtocolError(f"filename too long: {len(raw)} bytes (max {max_length})")

    if b"\x00" in raw:
        raise ProtocolError("filename contains NUL byte")

    try:
        name = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise ProtocolError("filename is not valid UTF-8") from None

    if name in (".", ".."):
        raise ProtocolError(f"refusing directory token {name!r}")

    if any(sep in name for sep in _SEPARATORS):
        raise ProtocolError(f"filename contains a path separator: {name!r}")

    return name


@dataclass
class Request:
    """
    A fully framed request.

    Attributes:
        command: Which operation the client asked for.
        argument: Raw argument region (everything after the command byte).
        max_filename_length: Per-name byte limit applied on access.
    """

    command: Command
    argument: bytes = b""
    max_filename_length: int = MAX_FILENAME_LENGTH

    @property
    def filename(self) -> str:
        """Single validated filename (DELETE and GET)."""
        return validate_filename(self.argument, self.max_filename_length)

    @property
    def rename_pair(self) -> Tuple[str, str]:
        """
        Split a RENAME argument on the first comma.

        A comma inside the new name would make the split ambiguous, so it
        is refused just like a missing comma.

        Returns:
            (old_name, new_name), both validated.
        """
        old, sep, new = self.argument.partition(RENAME_SEPARATOR)
        if not sep:
            raise ProtocolError("rename argument has no separator")
        if RENAME_SEPARATOR in new:
            raise ProtocolError("rename argument has more than one separator")

        return (
            validate_filename(old, self.max_filename_length),
            validate_filename(new, self.max_filename_length),
        )

    def describe(self) -> str:
        """Short human-readable form for logs, e.g. 'G report.pdf'."""
        if not self.command.takes_argument:
            return self.command.value
        text = self.argument.decode("utf-8", errors="replace")
        return f"{self.command.value} {text}"


class RequestParser:
    """
    Incremental request framer used by the event loop.

    Usage:
        parser = RequestParser()
        parser.feed(b"Dold.txt")
        parser.is_complete       # False, still waiting for FIN
        parser.feed_eof()
        parser.is_complete       # True
        parser.build()           # Request(Command.DELETE, b"old.txt")
    """

    def __init__(
        self,
        max_argument_length: int = MAX_ARGUMENT_LENGTH,
        max_filename_length: int = MAX_FILENAME_LENGTH,
    ):
        self.max_argument_length = max_argument_length
        self.max_filename_length = max_filename_length
        self._buffer = bytearray()
        self._eof = False

    def feed(self, data: bytes) -> None:
        """Append received bytes. Bytes after a complete request are dropped."""
        if self.is_complete:
            return
        self._buffer += data

    def feed_eof(self) -> None:
        """Record that the client half-closed its write side."""
        self._eof = True

    @property
    def at_eof(self) -> bool:
        return self._eof

    @property
    def has_command(self) -> bool:
        return len(self._buffer) > 0

    @property
    def command(self) -> Optional[Command]:
        """Known command, or None if no byte yet or the byte is unknown."""
        if not self._buffer:
            return None
        return Command.from_byte(self._buffer[0])

    @property
    def argument_length(self) -> int:
        return max(0, len(self._buffer) - 1)

    @property
    def is_complete(self) -> bool:
        """
        Whether the server can commit to a reply now.

        Returns False until the command byte arrives. An EOF with no
        command byte at all is NOT complete; the caller closes such a
        connection without a reply.
        """
        if not self._buffer:
            return False

        command = self.command
        if command is None or not command.takes_argument:
            return True

        if self.argument_length > self.max_argument_length:
            return True

        return self._eof

    def build(self) -> Request:
        """
        Produce the framed Request.

        Raises:
            ProtocolError: Unknown command byte, oversize argument, or
                           called before the request is complete.
        """
        if not self._buffer:
            raise ProtocolError("empty request")

        command = self.command
        if command is None:
            raise ProtocolError(f"unknown command byte {self._buffer[0]:#04x}")

        if not command.takes_argument:
            return Request(command, b"", self.max_filename_length)

        if self.argument_length > self.max_argument_length:
            raise ProtocolError(
                f"argument too long: more than {self.max_argument_length} bytes"
            )

        if not self._eof:
            raise ProtocolError("request is incomplete")

        return Request(command, bytes(self._buffer[1:]), self.max_filename_length)


def parse_request(raw: bytes, max_argument_length: int = MAX_ARGUMENT_LENGTH) -> Request:
    """
    Parse a complete request (command byte + argument region) in one shot.

    Convenience wrapper around RequestParser for tests and tools that
    already hold the whole request.
    """
    parser = RequestParser(max_argument_length=max_argument_length)
    parser.feed(raw)
    parser.feed_eof()
    return parser.build()


def encode_request(command: Command, *names: str) -> bytes:
    """
    Frame a request on the client side.

    Names are checked with the same rules the server applies, so a bad
    name fails locally instead of costing a round trip.

    Args:
        command: The operation.
        *names: No names for LIST, one for DELETE/GET, two for RENAME.

    Returns:
        Bytes to send before half-closing.

    Raises:
        ValueError: Wrong number of names for the command.
        ProtocolError: A name breaks the filename rules.
    """
    expected = {
        Command.LIST: 0,
        Command.DELETE: 1,
        Command.GET: 1,
        Command.RENAME: 2,
    }[command]
    if len(names) != expected:
        raise ValueError(f"{command.name} takes {expected} name(s), got {len(names)}")

    encoded = [name.encode("utf-8") for name in names]
    for raw in encoded:
        validate_filename(raw)
        if command is Command.RENAME and RENAME_SEPARATOR in raw:
            raise ProtocolError(f"rename names cannot contain ',': {raw!r}")

    return command.byte + RENAME_SEPARATOR.join(encoded)
