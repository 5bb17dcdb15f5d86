"""
=============================================================================
WIRE PROTOCOL
=============================================================================

Byte-level framing shared by the server and the client.

    client → server     byte 0: command (L, D, G, R)
                        bytes 1..EOF: argument, ended by half-close

    server → client     byte 0: reply code (S, F)
                        bytes 1..EOF: payload, ended by close

    ┌─────────────────┬───────────────────────────────────────────────┐
    │ commands.py     │ Command / ReplyCode enums, wire constants     │
    │ request.py      │ RequestParser, filename rules, encode_request │
    │ response.py     │ Reply, FileEntry, listing format              │
    └─────────────────┴───────────────────────────────────────────────┘

=============================================================================
"""

from .commands import (
    Command,
    ReplyCode,
    DEFAULT_PORT,
    MAX_ARGUMENT_LENGTH,
    MAX_FILENAME_LENGTH,
    RENAME_SEPARATOR,
)
from .request import (
    ProtocolError,
    Request,
    RequestParser,
    encode_request,
    parse_request,
    validate_filename,
)
from .response import (
    LISTING_LINE,
    FileEntry,
    Reply,
    format_listing,
    parse_listing,
)

__all__ = [
    # Commands
    "Command",
    "ReplyCode",
    "DEFAULT_PORT",
    "MAX_ARGUMENT_LENGTH",
    "MAX_FILENAME_LENGTH",
    "RENAME_SEPARATOR",
    # Requests
    "ProtocolError",
    "Request",
    "RequestParser",
    "encode_request",
    "parse_request",
    "validate_filename",
    # Replies
    "LISTING_LINE",
    "FileEntry",
    "Reply",
    "format_listing",
    "parse_listing",
]
