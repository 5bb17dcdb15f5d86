"""
pytest configuration and fixtures.
"""

import socket
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable, Generator, List

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from filemux import FileClient, FileServer, ServerConfig


@pytest.fixture
def served_dir(tmp_path: Path) -> Path:
    """Empty directory for the server to expose."""
    root = tmp_path / "served"
    root.mkdir()
    return root


@pytest.fixture
def config(served_dir: Path) -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        root_dir=str(served_dir),
        timeout=5.0,
        poll_interval=0.05,
        log_level="WARNING",
    )


class ServerThread:
    """Runs a FileServer in a background thread."""

    def __init__(self, server: FileServer):
        self.server = server
        self._thread: threading.Thread = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        """Start server in background thread and wait until it listens."""
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        """Stop the server."""
        self.server.shutdown()
        self.server.wait_for_shutdown(timeout=5.0)

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def server_factory(config: ServerConfig) -> Generator[Callable[..., ServerThread], None, None]:
    """
    Start servers with per-test overrides, e.g. server_factory(timeout=0.3).
    Every server started is stopped at teardown.
    """
    started: List[ServerThread] = []

    def factory(**overrides) -> ServerThread:
        srv = ServerThread(FileServer(replace(config, **overrides)))
        srv.start()
        started.append(srv)
        return srv

    yield factory

    for srv in started:
        srv.stop()


@pytest.fixture
def running_server(server_factory) -> ServerThread:
    """A server on an ephemeral port exposing served_dir."""
    return server_factory()


@pytest.fixture
def client(running_server: ServerThread) -> FileClient:
    return FileClient("127.0.0.1", running_server.port, timeout=5.0)


def exchange(port: int, payload: bytes, half_close: bool = True, timeout: float = 5.0) -> bytes:
    """
    Send a raw request and return every byte the server wrote until it
    closed the connection.
    """
    with socket.create_connection(("127.0.0.1", port), timeout=timeout) as sock:
        sock.sendall(payload)
        if half_close:
            sock.shutdown(socket.SHUT_WR)

        chunks = []
        while True:
            chunk = sock.recv(65536)
            if not chunk:
                break
            chunks.append(chunk)

    return b"".join(chunks)


@pytest.fixture
def raw(running_server: ServerThread) -> Callable[..., bytes]:
    """exchange() bound to the running server's port."""

    def send(payload: bytes, **kwargs) -> bytes:
        return exchange(running_server.port, payload, **kwargs)

    return send
