"""
=============================================================================
FILEMUX - REMOTE FILE MANAGEMENT OVER TCP
=============================================================================

A long-running server exposes one directory of regular files; a small
command-line client lists, fetches, deletes and renames them.

    ┌──────────────┐      one request per connection      ┌──────────────┐
    │   client     │ ───────────────────────────────────► │   server     │
    │              │   L | D<name> | G<name> | R<a>,<b>   │              │
    │              │ ◄─────────────────────────────────── │  /srv/files  │
    └──────────────┘          S + payload | F             └──────────────┘

=============================================================================
ARCHITECTURE
=============================================================================

    filemux/
    ├── protocol/       Wire framing: command bytes, reply codes, listing
    ├── core/           Selector event loop and per-connection state
    ├── handlers/       L / D / G / R bound to the served directory
    ├── server.py       FileServer: config + loop + handlers + access log
    ├── client.py       FileClient and the interactive shell
    ├── config.py       ServerConfig (defaults, environment, validation)
    └── __main__.py     python -m filemux

The server runs a single thread. All socket I/O is non-blocking and
multiplexed with selectors.DefaultSelector (epoll / kqueue), so a slow
client never holds up the others, and a stalled one is dropped after
the configured timeout.

=============================================================================
QUICK START
=============================================================================

    # Serve the current directory on port 2000
    python -m filemux

    # Serve /srv/files on port 2100
    python -m filemux --port 2100 --dir /srv/files

    # Talk to it
    filemux-client 127.0.0.1 2100

    # Or from code
    from filemux import FileClient
    client = FileClient("127.0.0.1", 2100)
    for entry in client.list_files():
        print(entry.name, entry.size)

=============================================================================
"""

__version__ = "1.0.0"

from .server import FileServer, create_server
from .config import ServerConfig
from .client import ClientError, FileClient

__all__ = [
    "FileServer",
    "create_server",
    "ServerConfig",
    "FileClient",
    "ClientError",
    "__version__",
]
