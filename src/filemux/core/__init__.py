"""
=============================================================================
CORE MODULE
=============================================================================

The non-blocking networking core:

    ┌─────────────────┬───────────────────────────────────────────────┐
    │ multiplexer.py  │ Selector event loop: accept, read, write,     │
    │                 │ expire, graceful shutdown                     │
    │ connection.py   │ Per-connection state record: framing buffer,  │
    │                 │ outgoing buffer, file stream, deadline        │
    └─────────────────┴───────────────────────────────────────────────┘

Why one thread and a selector instead of a thread pool? Each connection
carries exactly one small request, and handlers are a handful of
syscalls. The only thing worth waiting for is the network, and a
selector waits on all of it at once.

=============================================================================
"""

from .multiplexer import Multiplexer
from .connection import Connection, ConnectionState

__all__ = [
    "Multiplexer",      # Event loop - accepts and drives connections
    "Connection",       # Per-connection state - framing and streaming
    "ConnectionState",  # Enum for connection lifecycle states
]
