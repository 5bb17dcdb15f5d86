"""
=============================================================================
REPLIES
=============================================================================

The server answers every framed request with exactly one reply code,
optionally followed by a payload:

    ┌─────┬────────────────────────────────────────────────┬─────────┐
    │  S  │  payload (L: listing lines, G: raw file bytes) │   FIN   │
    └─────┴────────────────────────────────────────────────┴─────────┘

    ┌─────┬─────────┐
    │  F  │   FIN   │       failure never carries a payload
    └─────┴─────────┘

The end of the payload is signalled by the server closing the
connection, mirroring how the client ends its request.

LISTING FORMAT
──────────────

    notes.txt : 812\n
    photo.jpg : 204877\n
    .profile : 33\n

One line per regular file: name, " : ", decimal size in bytes.

=============================================================================
"""

import os
import re
from dataclasses import dataclass, field
from typing import BinaryIO, Iterable, List, Optional

from .commands import ReplyCode, LISTING_SEPARATOR
from .request import ProtocolError


LISTING_LINE = re.compile(rb"^[^\n]+ : [0-9]+\n$")

_SEPARATOR_BYTES = LISTING_SEPARATOR.encode("ascii")


@dataclass
class Reply:
    """
    What the server sends back on one connection.

    Attributes:
        code: S or F.
        payload: In-memory payload written right after the code (L).
        stream: Open binary file streamed after the payload (G).
                The connection owns it once the reply starts and closes
                it when the transfer ends or fails.
    """

    code: ReplyCode
    payload: bytes = b""
    stream: Optional[BinaryIO] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.code.is_success and (self.payload or self.stream is not None):
            raise ValueError("a failure reply cannot carry a payload")

    @classmethod
    def success(cls, payload: bytes = b"", stream: Optional[BinaryIO] = None) -> "Reply":
        return cls(ReplyCode.SUCCESS, payload, stream)

    @classmethod
    def failure(cls) -> "Reply":
        return cls(ReplyCode.FAILURE)

    @property
    def header(self) -> bytes:
        """Reply code followed by any in-memory payload."""
        return self.code.byte + self.payload

    def close(self) -> None:
        """Release the payload stream, if any."""
        if self.stream is not None:
            self.stream.close()
            self.stream = None


@dataclass(frozen=True)
class FileEntry:
    """One line of a listing."""

    name: str
    size: int

    def to_line(self) -> bytes:
        # fsencode round-trips names that are not valid UTF-8
        return (
            os.fsencode(self.name)
            + _SEPARATOR_BYTES
            + str(self.size).encode("ascii")
            + b"\n"
        )


def format_listing(entries: Iterable[FileEntry]) -> bytes:
    """Render a listing payload. An empty directory gives b""."""
    return b"".join(entry.to_line() for entry in entries)


def parse_listing(payload: bytes) -> List[FileEntry]:
    """
    Parse a listing payload on the client side.

    The name is split off at the LAST separator, so a name that itself
    contains " : " still parses.

    Raises:
        ProtocolError: If any line is malformed or the payload is cut
                       off mid-line.
    """
    if not payload:
        return []

    if not payload.endswith(b"\n"):
        raise ProtocolError("listing payload is truncated")

    entries = []
    for line in payload[:-1].split(b"\n"):
        name, sep, size = line.rpartition(_SEPARATOR_BYTES)
        if not sep or not name or not size.isdigit():
            raise ProtocolError(f"malformed listing line: {line!r}")
        entries.append(FileEntry(os.fsdecode(name), int(size)))

    return entries
