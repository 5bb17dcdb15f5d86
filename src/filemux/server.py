"""
=============================================================================
FILE SERVER
=============================================================================

Composes the pieces into a runnable server:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          FileServer                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ServerConfig ──► Multiplexer ──► _dispatch() ──► RequestHandler    │
    │                    (event loop)    (access log)    (ServedDirectory) │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Request flow on one connection:

    accept → read (L: 1 byte, D/G/R: until FIN) → handler → S/F + payload → close

Everything runs on one thread. Handlers execute inline on the loop
thread; only G payloads are spread over several loop turns.

=============================================================================
ACCESS LOG
=============================================================================

One record per framed request on the "filemux.access" logger:

    text:  127.0.0.1 [a1b2c3d4] "G report.pdf" S 0.42ms
    json:  {"conn_id": "a1b2c3d4", "client_ip": "127.0.0.1",
            "request": "G report.pdf", "reply": "S", "duration_ms": 0.42, ...}

Malformed requests that never reach a handler are logged by the
multiplexer instead.

=============================================================================
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from .config import ServerConfig
from .core import Connection, Multiplexer
from .handlers import RequestHandler, ServedDirectory
from .protocol import Reply, Request


logger = logging.getLogger(__name__)
access_logger = logging.getLogger("filemux.access")


@dataclass
class RequestLog:
    """Structured access-log entry for one request."""

    conn_id: str
    client_ip: str
    command: str
    request: str
    reply: str
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "conn_id": self.conn_id,
            "client_ip": self.client_ip,
            "command": self.command,
            "request": self.request,
            "reply": self.reply,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        return (
            f'{self.client_ip} [{self.conn_id}] "{self.request}" '
            f'{self.reply} {self.duration_ms:.2f}ms'
        )


class FileServer:
    """
    Remote file-management server.

    Usage:
        server = FileServer(ServerConfig(port=2000, root_dir="/srv/files"))
        server.run()  # Blocks until Ctrl+C / SIGTERM / shutdown()
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        """
        Args:
            config: Server configuration. Validated here, so a bad value
                    fails before any socket is opened.

        Raises:
            ValueError: Invalid configuration.
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self.directory = ServedDirectory(
            self.config.root_dir,
            allow_overwrite=self.config.allow_overwrite,
            max_filename_length=self.config.max_filename_length,
        )
        self.handler = RequestHandler(self.directory)
        self._multiplexer = Multiplexer(self.config, self._dispatch)

    @property
    def address(self) -> Tuple[str, int]:
        return self._multiplexer.address

    @property
    def multiplexer(self) -> Multiplexer:
        return self._multiplexer

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Start the server (blocking).

        Returns once shutdown() is called or a SIGINT/SIGTERM arrives.
        """
        self._setup_logging()
        logger.info(f"Serving {self.directory.root_dir} on {self.config.host}:{self.config.port}")

        try:
            self._multiplexer.start()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
            self._multiplexer.shutdown()

        logger.info("Server stopped")

    def shutdown(self):
        """Stop the event loop. Safe from any thread."""
        self._multiplexer.shutdown()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._multiplexer.wait_until_ready(timeout)

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        return self._multiplexer.wait_for_shutdown(timeout)

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("filemux").setLevel(level)

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def _dispatch(self, request: Request, conn: Connection) -> Reply:
        """
        Execute one framed request (runs inline on the loop thread).

        The handler already turns filesystem and argument errors into F;
        anything else escaping it is a bug, which still must not take the
        server down or leave the client without a reply code.
        """
        start = time.perf_counter()

        try:
            reply = self.handler.handle(request)
        except Exception as e:
            logger.exception(f"[{conn.id}] Handler error: {e}")
            reply = Reply.failure()

        duration_ms = (time.perf_counter() - start) * 1000
        self._log_request(request, reply, conn, duration_ms)
        return reply

    def _log_request(self, request: Request, reply: Reply, conn: Connection, duration_ms: float):
        entry = RequestLog(
            conn_id=conn.id,
            client_ip=conn.client_ip,
            command=request.command.name,
            request=request.describe(),
            reply=reply.code.value,
            duration_ms=duration_ms,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

        if self.config.log_format == "json":
            access_logger.info(json.dumps(entry.to_dict()))
        else:
            access_logger.info(entry.to_text())


def create_server(config: Optional[ServerConfig] = None) -> FileServer:
    """
    Create a file server.

    Example:
        server = create_server(ServerConfig(root_dir="/srv/files"))
        server.run()
    """
    return FileServer(config)
