"""
=============================================================================
COMMAND BYTES AND REPLY CODES
=============================================================================

The whole vocabulary of the protocol fits in six bytes:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        CLIENT → SERVER                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │   L   list        no argument                                       │
    │   D   delete      <name>                                            │
    │   G   get         <name>                                            │
    │   R   rename      <old>,<new>                                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                        SERVER → CLIENT                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │   S   accepted / succeeded   (payload may follow for L and G)       │
    │   F   rejected / failed      (never followed by a payload)          │
    └─────────────────────────────────────────────────────────────────────┘

Every error cause (unknown command, missing file, permission denied,
rename collision) collapses into F. There is no room on the wire for
diagnostic text; the server logs the real reason instead.

=============================================================================
"""

from enum import Enum
from typing import Optional


# =============================================================================
# WIRE CONSTANTS
# =============================================================================

DEFAULT_PORT = 2000

MAX_FILENAME_LENGTH = 1024          # bytes, after UTF-8 encoding

RENAME_SEPARATOR = b","

# Largest legal rename argument: two full-length names plus the comma.
MAX_ARGUMENT_LENGTH = 2 * MAX_FILENAME_LENGTH + len(RENAME_SEPARATOR)

LISTING_SEPARATOR = " : "


class Command(str, Enum):
    """
    Request kinds, identified by the first byte of a request.

    The value is the ASCII letter sent on the wire, so a Command compares
    equal to its letter:

        Command.LIST == "L"     # True
        Command.from_byte(ord("G"))  # Command.GET
    """

    LIST = "L"
    DELETE = "D"
    GET = "G"
    RENAME = "R"

    @property
    def byte(self) -> bytes:
        """The single byte that identifies this command on the wire."""
        return self.value.encode("ascii")

    @property
    def takes_argument(self) -> bool:
        """
        Whether the request carries an argument region.

        LIST is the exception: the command byte alone completes the
        request, so the server must not wait for the client to half-close.
        """
        return self is not Command.LIST

    @classmethod
    def from_byte(cls, value: int) -> Optional["Command"]:
        """
        Look up a command from its wire byte.

        Returns:
            The matching Command, or None for an unknown byte.
        """
        try:
            return cls(chr(value))
        except ValueError:
            return None


class ReplyCode(str, Enum):
    """One-byte reply code, always the first byte the server writes."""

    SUCCESS = "S"
    FAILURE = "F"

    @property
    def byte(self) -> bytes:
        return self.value.encode("ascii")

    @property
    def is_success(self) -> bool:
        return self is ReplyCode.SUCCESS

    @classmethod
    def from_byte(cls, value: int) -> Optional["ReplyCode"]:
        try:
            return cls(chr(value))
        except ValueError:
            return None
