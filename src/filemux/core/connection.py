"""
=============================================================================
CONNECTION STATE
=============================================================================

One accepted client socket plus everything the event loop needs to
resume work on it at the next readiness event.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

A non-blocking recv() returns whatever the kernel has right now:

    Client sends:   b"Rnotes.txt,old-notes.txt" then FIN

    Server might see:
        recv() → b"R"
        recv() → b"notes.txt,old-"
        recv() → b"notes.txt"
        recv() → b""                 ← FIN: end of request

Even the one-byte command can take more than one readiness event to
arrive. So nothing here ever loops on recv() waiting for "enough" bytes.
Each readiness event gets ONE recv() and the bytes are handed to a
RequestParser, which decides whether the request is complete.

The same goes for writing: one send() per writable event, the rest stays
in an outgoing buffer until the socket is writable again.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    ACCEPTED ──────► READING ──────► EXECUTING ──────► REPLYING
        │               │                                  │
        │               │ (EOF before any byte,            │
        │               │  reset, timeout)                 │
        ▼               ▼                                  ▼
      CLOSED ◄──────────┴──────────────────────────────────┘

EXECUTING is short: the handler runs inline in the event loop. The only
long phase is REPLYING for a large G payload, which streams the file in
chunk_size pieces across many writable events.

=============================================================================
"""

import socket
import struct
import time
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Tuple

from ..protocol import (
    MAX_ARGUMENT_LENGTH,
    MAX_FILENAME_LENGTH,
    Reply,
    Request,
    RequestParser,
)


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Where a connection is in its single request/reply lifetime."""

    ACCEPTED = "accepted"    # Just accepted, nothing read yet
    READING = "reading"      # Accumulating command byte and argument
    EXECUTING = "executing"  # Handler is running
    REPLYING = "replying"    # Writing reply code and payload
    CLOSED = "closed"        # Socket released


@dataclass
class Connection:
    """
    Represents one client connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. REQUEST FRAMING                                                  │
    │     └── One recv() per readable event, fed to RequestParser          │
    │     └── Never blocks, never busy-waits                               │
    │                                                                      │
    │  2. REPLY STREAMING                                                  │
    │     └── Reply code first, then in-memory payload, then file chunks   │
    │     └── One send() per writable event                                │
    │                                                                      │
    │  3. DEADLINE                                                         │
    │     └── is_expired() once timeout seconds have passed since accept  │
    │                                                                      │
    │  4. CLOSE                                                            │
    │     └── Half-close (FIN) so the client sees end of payload           │
    │     └── Release the socket and any open file exactly once            │
    │     └── abort(): RST instead of FIN when a reply is cut off          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Attributes:
        socket: The client socket (switched to non-blocking).
        address: Client's (ip, port) tuple.
        id: Short identifier for log lines.
        state: Current ConnectionState.
        created_at: Monotonic timestamp of accept.
        last_activity: Monotonic timestamp of the last byte moved.
        bytes_sent: Bytes written so far, reply code included.
        reply: The reply being written, once chosen.
    """

    # Required parameters
    socket: socket.socket
    address: Tuple[str, int]

    # Generated/default parameters
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.ACCEPTED
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)
    bytes_sent: int = 0
    reply: Optional[Reply] = None

    # Configuration (passed from ServerConfig)
    buffer_size: int = 4096
    chunk_size: int = 64 * 1024
    timeout: float = 30.0
    max_argument_length: int = MAX_ARGUMENT_LENGTH
    max_filename_length: int = MAX_FILENAME_LENGTH

    # Internal state
    _parser: RequestParser = field(init=False, repr=False)
    _outgoing: bytearray = field(default_factory=bytearray, repr=False)

    def __post_init__(self):
        self.socket.setblocking(False)
        self._parser = RequestParser(self.max_argument_length, self.max_filename_length)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def age(self) -> float:
        """Seconds since accept."""
        return time.monotonic() - self.created_at

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Whether the per-connection deadline has passed."""
        if now is None:
            now = time.monotonic()
        return now - self.created_at > self.timeout

    # =========================================================================
    # READING
    # =========================================================================

    def on_readable(self) -> bool:
        """
        Consume one readiness event.

        Returns:
            True once the request is framed and the server can commit to
            a reply (see RequestParser.is_complete).

        Raises:
            ConnectionAbortedError: Peer closed before sending a command
                                    byte; there is nothing to answer.
            OSError: Reset or other socket error.
        """
        self.state = ConnectionState.READING

        try:
            data = self.socket.recv(self.buffer_size)
        except (BlockingIOError, InterruptedError):
            return False  # Spurious wake-up, try again next turn

        self.last_activity = time.monotonic()

        if data:
            self._parser.feed(data)
        else:
            self._parser.feed_eof()
            if not self._parser.has_command:
                raise ConnectionAbortedError("peer closed before sending a command")

        return self._parser.is_complete

    def request(self) -> Request:
        """
        The framed request. Only valid after on_readable() returned True.

        Raises:
            ProtocolError: Unknown command byte or oversize argument.
        """
        self.state = ConnectionState.EXECUTING
        return self._parser.build()

    # =========================================================================
    # WRITING
    # =========================================================================

    def start_reply(self, reply: Reply) -> None:
        """Queue the reply. The code byte is always the first byte written."""
        self.reply = reply
        self._outgoing = bytearray(reply.header)
        self.state = ConnectionState.REPLYING

    @property
    def reply_finished(self) -> bool:
        if self._outgoing:
            return False
        return self.reply is None or self.reply.stream is None

    @property
    def reply_in_progress(self) -> bool:
        """Reply started but not fully written; closing now truncates it."""
        return self.state is ConnectionState.REPLYING and not self.reply_finished

    def on_writable(self) -> bool:
        """
        Consume one writable event.

        Refills the outgoing buffer from the file stream when it runs
        dry. A read error on the file propagates as OSError; the caller
        then closes the connection and the client sees a truncated
        payload.

        Returns:
            True once the whole reply has been written.
        """
        if not self._outgoing:
            self._refill()

        if self._outgoing:
            try:
                sent = self.socket.send(self._outgoing)
            except (BlockingIOError, InterruptedError):
                return False

            del self._outgoing[:sent]
            self.bytes_sent += sent
            self.last_activity = time.monotonic()

        return self.reply_finished

    def _refill(self) -> None:
        if self.reply is None or self.reply.stream is None:
            return

        chunk = self.reply.stream.read(self.chunk_size)
        if chunk:
            self._outgoing += chunk
        else:
            self.reply.close()  # EOF on the file

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self) -> None:
        """
        Close the connection.

        1. shutdown(SHUT_WR): send FIN, the client's end-of-payload marker
        2. Discard anything the client sent that we never read, so the
           kernel does not answer it with a reset
        3. close(): release the file descriptor

        Safe to call more than once.
        """
        if self.state is ConnectionState.CLOSED:
            return

        if self.reply is not None:
            self.reply.close()

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Already disconnected

        try:
            while self.socket.recv(self.buffer_size):
                pass
        except OSError:
            pass  # Nothing buffered (BlockingIOError) or peer gone

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.age * 1000:.1f}ms, {self.bytes_sent} bytes sent")

    def abort(self) -> None:
        """
        Close with a reset instead of a FIN.

        A G payload has no length prefix, so a FIN in the middle of it
        would look like a complete file. SO_LINGER with a zero timeout
        makes close() send RST, which the client sees as ECONNRESET.

        Safe to call more than once.
        """
        if self.state is ConnectionState.CLOSED:
            return

        if self.reply is not None:
            self.reply.close()

        try:
            self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
        except OSError:
            pass  # Already disconnected

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection reset after {self.bytes_sent} bytes sent")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
