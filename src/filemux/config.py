"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the file server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m filemux --port 2100 --dir /srv/files            │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── FILEMUX_PORT=2100 python -m filemux                       │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │      └── port 2000, current working directory                      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

None of the environment variables are required. With no flags and no
environment the server behaves like the historical one: port 2000 on
every local address, serving the current directory.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional

from .protocol import DEFAULT_PORT, MAX_FILENAME_LENGTH


LOG_FORMATS = ("text", "json")

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class ServerConfig:
    """
    Configuration for the file server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, chunk_size

    RESOURCE LIMITS
    - timeout, poll_interval, max_filename_length

    FILESYSTEM
    - root_dir, allow_overwrite

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    The IP address to bind to.
    - "0.0.0.0" - All local addresses (historical behavior)
    - "127.0.0.1" - Localhost only
    """

    port: int = DEFAULT_PORT
    """
    The port number to listen on. 0 lets the OS pick a free port
    (handy in tests; read the real one from FileServer.address).
    """

    backlog: int = 128
    """Maximum number of queued, not yet accepted connections."""

    buffer_size: int = 4096
    """Bytes requested per recv() call while reading a request."""

    chunk_size: int = 64 * 1024
    """Bytes read from disk per refill while streaming a G payload."""

    # ─────────────────────────────────────────────────────────────────────
    # RESOURCE LIMITS
    # ─────────────────────────────────────────────────────────────────────

    timeout: float = 30.0
    """
    Maximum seconds between accept and completion of one connection.
    A slow or stalled client is dropped after this, so it cannot hold
    a socket forever.
    """

    poll_interval: float = 0.5
    """
    How often the event loop wakes up when nothing is ready, to expire
    stale connections and notice shutdown().
    """

    max_filename_length: int = MAX_FILENAME_LENGTH
    """Maximum filename length in bytes."""

    # ─────────────────────────────────────────────────────────────────────
    # FILESYSTEM
    # ─────────────────────────────────────────────────────────────────────

    root_dir: str = "."
    """Served directory. Must exist; the server never creates it."""

    allow_overwrite: bool = False
    """Let R replace an existing destination instead of answering F."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """Access log format: 'text' (one line) or 'json'."""

    @property
    def max_argument_length(self) -> int:
        """Largest legal argument region: two names and the comma."""
        return 2 * self.max_filename_length + 1

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        FILEMUX_HOST             Bind address (default: 0.0.0.0)
        FILEMUX_PORT             TCP port (default: 2000)
        FILEMUX_DIR              Served directory (default: .)
        FILEMUX_TIMEOUT          Per-connection limit in seconds (default: 30)
        FILEMUX_ALLOW_OVERWRITE  1/true/yes/on to let R overwrite
        FILEMUX_LOG_LEVEL        Logging level (default: INFO)
        FILEMUX_LOG_FORMAT       text or json (default: text)

        =====================================================================
        """
        defaults = cls()
        return cls(
            host=os.getenv("FILEMUX_HOST", defaults.host),
            port=int(os.getenv("FILEMUX_PORT", str(defaults.port))),
            root_dir=os.getenv("FILEMUX_DIR", defaults.root_dir),
            timeout=float(os.getenv("FILEMUX_TIMEOUT", str(defaults.timeout))),
            allow_overwrite=_env_flag("FILEMUX_ALLOW_OVERWRITE", defaults.allow_overwrite),
            log_level=os.getenv("FILEMUX_LOG_LEVEL", defaults.log_level),
            log_format=os.getenv("FILEMUX_LOG_FORMAT", defaults.log_format),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called at startup so a bad value fails immediately, not on the
        first request.

        Raises:
            ValueError: On the first invalid value found.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if not os.path.isdir(self.root_dir):
            raise ValueError(f"Served directory does not exist: {self.root_dir}")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1 or self.chunk_size < 1:
            raise ValueError("buffer_size and chunk_size must be >= 1")

        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if self.max_filename_length < 1:
            raise ValueError("max_filename_length must be >= 1")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}, got {self.log_format!r}")


def _env_flag(name: str, default: bool) -> bool:
    value: Optional[str] = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY
