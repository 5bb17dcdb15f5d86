"""
=============================================================================
CONNECTION MULTIPLEXER
=============================================================================

A single-threaded event loop that drives the listening socket and every
accepted connection through readiness notifications. No worker threads,
no per-connection threads: all socket I/O is non-blocking and the only
call that ever waits is selector.select().

=============================================================================
READINESS, NOT BLOCKING
=============================================================================

A blocking server asks "read 1 byte" and waits. A multiplexed server asks
the OS "which of these sockets can make progress RIGHT NOW?" and only
touches those:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       DefaultSelector                               │
    │               (epoll on Linux, kqueue on BSD/macOS)                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   listening socket   EVENT_READ   → a connection is waiting         │
    │   connection 1       EVENT_READ   → request bytes (or FIN) arrived  │
    │   connection 2       EVENT_WRITE  → send buffer has room            │
    │   connection 3       EVENT_READ                                      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    select() returns only the ready subset; each entry is handled once,
    then we go back to select().

=============================================================================
REGISTRATION TRANSITIONS
=============================================================================

    listening socket:   EVENT_READ (accept-ready) for its entire life

    connection:
        accept()  ──► register EVENT_READ
                          │
                          │  request framed (L: 1 byte, D/G/R: FIN)
                          ▼
                      dispatch() → Reply
                          │
                          ▼
                      modify → EVENT_WRITE
                          │
                          │  reply code + payload written
                          ▼
                      unregister + close

    An expired connection (older than config.timeout) is closed where it
    stands, without further writes. If its reply was already under way the
    close is a reset (RST), so the client reports a failed transfer.

=============================================================================
SIGNAL HANDLING FOR GRACEFUL SHUTDOWN
=============================================================================

SIGINT (Ctrl+C) and SIGTERM set the shutdown flag. select() wakes up at
least every poll_interval seconds, so the loop notices the flag, closes
every connection, and releases the selector and the listening socket.

=============================================================================
"""

import selectors
import signal
import socket
import threading
import logging
import time
from typing import Callable, Dict, Optional, Tuple

from ..config import ServerConfig
from ..protocol import ProtocolError, Reply, Request
from .connection import Connection


logger = logging.getLogger(__name__)


Dispatcher = Callable[[Request, Connection], Reply]


class Multiplexer:
    """
    Readiness-driven TCP server loop.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      Multiplexer Internals                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start()           Main entry point (blocks)                       │
    │        │                                                             │
    │        ├──► _create_socket()   socket, SO_REUSEADDR, bind, listen   │
    │        ├──► register listening socket for EVENT_READ                 │
    │        ├──► _setup_signals()   SIGTERM/SIGINT → shutdown()           │
    │        │                                                             │
    │        └──► _event_loop()                                            │
    │                 │                                                    │
    │                 └──► while running:                                  │
    │                         select(poll_interval)                        │
    │                         _accept() / _on_readable() / _on_writable()  │
    │                         _expire_connections()                        │
    │                                                                      │
    │    shutdown()        Set the flag (thread safe, idempotent)          │
    │                                                                      │
    │    _cleanup()        Close connections, selector, listening socket   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        def dispatch(request: Request, conn: Connection) -> Reply:
            return Reply.success()

        mux = Multiplexer(config, dispatch)
        mux.start()  # Blocks until shutdown()
    """

    def __init__(self, config: ServerConfig, dispatch: Dispatcher):
        """
        Args:
            config: Server configuration (host, port, limits).
            dispatch: Called once per framed request, inline on the loop
                      thread. Must return a Reply and should not raise.
        """
        self.config = config
        self.dispatch = dispatch

        self._socket: Optional[socket.socket] = None
        self._selector: Optional[selectors.BaseSelector] = None
        self._connections: Dict[int, Connection] = {}  # fileno -> Connection

        self._running = False
        self._ready_event = threading.Event()
        self._shutdown_event = threading.Event()
        self._original_handlers: dict = {}

        self.connections_served = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port). Resolves port 0 once the socket is bound."""
        if self._socket is not None:
            host, port = self._socket.getsockname()[:2]
            return (host, port)
        return (self.config.host, self.config.port)

    @property
    def open_connections(self) -> int:
        return len(self._connections)

    # =========================================================================
    # SETUP
    # =========================================================================

    def _create_socket(self) -> socket.socket:
        """Create, bind and listen on the non-blocking listening socket."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Restarting the server must not fail with "Address already in use"
        # while old connections sit in TIME_WAIT.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        try:
            sock.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            sock.close()
            raise

        sock.listen(self.config.backlog)

        # The selector only works with non-blocking sockets
        sock.setblocking(False)
        return sock

    def _setup_signals(self):
        """
        Install SIGTERM/SIGINT handlers for graceful shutdown.

        Python only allows this from the main thread; a loop running in a
        background thread (tests, embedding) relies on shutdown() instead.
        """
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self):
        """
        Bind, listen and run the event loop.

        This method BLOCKS until shutdown() is called.
        """
        self._socket = self._create_socket()
        self._selector = selectors.DefaultSelector()

        # data=None marks the listening socket; connections carry their
        # Connection object as key.data
        self._selector.register(self._socket, selectors.EVENT_READ, data=None)

        self._running = True
        self._shutdown_event.clear()
        self._setup_signals()

        host, port = self.address
        logger.info(f"Listening on {host}:{port}")
        self._ready_event.set()

        try:
            self._event_loop()
        finally:
            self._cleanup()

    def shutdown(self):
        """
        Ask the event loop to stop.

        Callable from a signal handler or another thread. The loop exits
        within poll_interval seconds. Idempotent.
        """
        if self._running:
            logger.info("Shutting down multiplexer...")
        self._running = False

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listening socket is bound. True if it is."""
        return self._ready_event.wait(timeout)

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Block until the loop has exited and released its resources."""
        return self._shutdown_event.wait(timeout)

    def _cleanup(self):
        """Close every connection, the selector and the listening socket."""
        for conn in list(self._connections.values()):
            self._close(conn)

        if self._selector is not None:
            self._selector.close()
            self._selector = None

        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        self._restore_signals()
        self._running = False
        self._ready_event.clear()
        self._shutdown_event.set()

        logger.info(f"Multiplexer stopped after {self.connections_served} connections")

    # =========================================================================
    # EVENT LOOP
    # =========================================================================

    def _event_loop(self):
        """
        Wait for readiness, dispatch each ready channel once, repeat.

        ┌─────────────────────────────────────────────────────────────────┐
        │                     Event Loop Flow                              │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │   while self._running:                                           │
        │       │                                                          │
        │       ├──► select(poll_interval)     only blocking call          │
        │       │                                                          │
        │       ├──► for each (key, mask) ready:                           │
        │       │       key.data is None   → _accept()                     │
        │       │       EVENT_READ         → _on_readable(conn)            │
        │       │       EVENT_WRITE        → _on_writable(conn)            │
        │       │                                                          │
        │       └──► _expire_connections()     enforce config.timeout      │
        │                                                                  │
        └─────────────────────────────────────────────────────────────────┘
        """
        while self._running:
            try:
                events = self._selector.select(timeout=self.config.poll_interval)
            except InterruptedError:
                continue
            except OSError as e:
                logger.error(f"Select error: {e}")
                time.sleep(self.config.poll_interval)
                continue

            for key, mask in events:
                if key.data is None:
                    self._accept()
                    continue

                conn: Connection = key.data
                if conn.is_closed:
                    continue  # Closed earlier in this same batch

                try:
                    if mask & selectors.EVENT_READ:
                        self._on_readable(conn)
                    elif mask & selectors.EVENT_WRITE:
                        self._on_writable(conn)
                except Exception:
                    logger.exception(f"[{conn.id}] Unexpected error, dropping connection")
                    self._close(conn)

            self._expire_connections()

    def _accept(self):
        """accept-ready: take one pending connection and watch it for reads."""
        try:
            client_socket, client_address = self._socket.accept()
        except (BlockingIOError, InterruptedError):
            return  # Another wake-up already took it
        except OSError as e:
            # EMFILE, ECONNABORTED, ... the server stays available
            logger.error(f"Accept error: {e}")
            return

        conn = Connection(
            socket=client_socket,
            address=client_address,
            buffer_size=self.config.buffer_size,
            chunk_size=self.config.chunk_size,
            timeout=self.config.timeout,
            max_argument_length=self.config.max_argument_length,
            max_filename_length=self.config.max_filename_length,
        )

        self._connections[client_socket.fileno()] = conn
        self._selector.register(client_socket, selectors.EVENT_READ, data=conn)
        self.connections_served += 1

        logger.debug(f"[{conn.id}] Accepted connection from {client_address[0]}:{client_address[1]}")

    def _on_readable(self, conn: Connection):
        """read-ready: frame the request; once framed, execute and reply."""
        try:
            complete = conn.on_readable()
        except OSError as e:
            logger.debug(f"[{conn.id}] Closed without reply: {e}")
            self._close(conn)
            return

        if not complete:
            return

        try:
            request = conn.request()
        except ProtocolError as e:
            logger.info(f"[{conn.id}] Malformed request from {conn.client_ip}: {e}")
            reply = Reply.failure()
        else:
            reply = self.dispatch(request, conn)

        conn.start_reply(reply)
        self._selector.modify(conn.socket, selectors.EVENT_WRITE, data=conn)

    def _on_writable(self, conn: Connection):
        """write-ready: push the next piece of the reply."""
        try:
            finished = conn.on_writable()
        except OSError as e:
            # S is already out: _close() resets the connection so the
            # client sees a transport error, not a short file.
            logger.warning(f"[{conn.id}] Reply aborted after {conn.bytes_sent} bytes: {e}")
            self._close(conn)
            return

        if finished:
            self._close(conn)

    def _expire_connections(self):
        now = time.monotonic()
        for conn in list(self._connections.values()):
            if conn.is_expired(now):
                idle = now - conn.last_activity
                logger.warning(
                    f"[{conn.id}] Timed out in state {conn.state.value} after {self.config.timeout}s "
                    f"(idle {idle:.1f}s, {conn.bytes_sent} bytes sent)"
                )
                self._close(conn)

    def _close(self, conn: Connection):
        """
        Deregister and close. Every connection passes through here exactly once.

        A reply still in progress is cut off with a reset (Connection.abort)
        rather than a FIN, so the client cannot mistake it for a whole file.
        """
        fd = conn.socket.fileno()
        if fd >= 0:
            if self._selector is not None:
                try:
                    self._selector.unregister(conn.socket)
                except (KeyError, ValueError):
                    pass
            self._connections.pop(fd, None)

        if conn.reply_in_progress:
            conn.abort()
        else:
            conn.close()
