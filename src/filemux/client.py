"""
=============================================================================
CLIENT
=============================================================================

Command-line client for the file server.

    filemux-client <server_host> <server_port>

    enter a command (D, G, L, R, or Q):
    l
    notes.txt : 812
    photo.jpg : 204877

Every operation opens a FRESH TCP connection:

    Client                                   Server
      │ ── connect ───────────────────────────► │
      │ ── "Gnotes.txt" ──────────────────────► │
      │ ── FIN (shutdown SHUT_WR) ────────────► │   request complete
      │ ◄──────────────────────────────── "S" ─ │   reply code, 1 byte
      │ ◄──────────────────────── file bytes ── │   payload
      │ ◄──────────────────────────────── FIN ─ │   end of payload
      │ ── close ─────────────────────────────► │

The client never retries. A refused or reset connection is reported to
the user and the prompt comes back.

=============================================================================
"""

import argparse
import io
import logging
import os
import socket
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, TextIO, Tuple

from .protocol import (
    Command,
    FileEntry,
    ProtocolError,
    ReplyCode,
    encode_request,
    parse_listing,
)


logger = logging.getLogger(__name__)


class ClientError(Exception):
    """Transport failure: refused, reset, timed out, or cut off."""


class FileClient:
    """
    Programmatic client, one connection per call.

    Usage:
        client = FileClient("127.0.0.1", 2000)
        client.list_files()                  # [FileEntry("a.txt", 6)] or None
        client.get("a.txt")                  # b"hello\\n" or None
        client.rename("a.txt", "b.txt")      # True / False
        client.delete("b.txt")               # True / False

    None / False mean the server answered F. Transport problems raise
    ClientError.
    """

    def __init__(self, host: str, port: int, timeout: float = 10.0, buffer_size: int = 64 * 1024):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.buffer_size = buffer_size

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def list_files(self) -> Optional[List[FileEntry]]:
        with self._exchange(encode_request(Command.LIST)) as (code, sock):
            if not code.is_success:
                return None
            buffer = io.BytesIO()
            self._read_payload(sock, buffer)

        try:
            return parse_listing(buffer.getvalue())
        except ProtocolError as e:
            raise ClientError(f"Invalid listing from server: {e}") from e

    def delete(self, name: str) -> bool:
        with self._exchange(encode_request(Command.DELETE, name)) as (code, _):
            return code.is_success

    def rename(self, old: str, new: str) -> bool:
        with self._exchange(encode_request(Command.RENAME, old, new)) as (code, _):
            return code.is_success

    def get(self, name: str) -> Optional[bytes]:
        """Fetch a file into memory."""
        with self._exchange(encode_request(Command.GET, name)) as (code, sock):
            if not code.is_success:
                return None
            buffer = io.BytesIO()
            self._read_payload(sock, buffer)
            return buffer.getvalue()

    def download(self, name: str, dest: Optional[os.PathLike] = None) -> Optional[int]:
        """
        Fetch a file straight to disk, byte for byte.

        The local file is only created once the server has answered S,
        and removed again if the transfer is cut off.

        Args:
            name: Remote filename.
            dest: Local path (default: same name in the current directory).

        Returns:
            Bytes written, or None if the server answered F.

        Raises:
            ClientError: Transport failure, or the local file could not be
                         created or written.
        """
        dest_path = Path(dest) if dest is not None else Path(name)

        with self._exchange(encode_request(Command.GET, name)) as (code, sock):
            if not code.is_success:
                return None

            try:
                out = open(dest_path, "wb")
            except OSError as e:
                raise ClientError(f"Cannot write {dest_path}: {e.strerror or e}") from e

            try:
                with out:
                    return self._read_payload(sock, out)
            except ClientError:
                dest_path.unlink(missing_ok=True)
                raise

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    @contextmanager
    def _exchange(self, request: bytes) -> Iterator[Tuple[ReplyCode, socket.socket]]:
        """
        Connect, send the request, half-close, read the reply code.

        Yields the reply code and the socket positioned at the payload.
        """
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as e:
            raise ClientError(f"Cannot connect to {self.host}:{self.port}: {e}") from e

        with sock:
            try:
                sock.sendall(request)
                sock.shutdown(socket.SHUT_WR)
                code = self._read_reply_code(sock)
            except OSError as e:
                raise ClientError(f"Connection to {self.host}:{self.port} failed: {e}") from e

            logger.debug(f"{request[:1]!r} -> {code.value}")
            yield code, sock

    def _read_reply_code(self, sock: socket.socket) -> ReplyCode:
        """Read exactly one byte, looping over short reads."""
        data = b""
        while not data:
            data = sock.recv(1)
            if data == b"":
                raise ClientError("Server closed the connection without a reply")

        code = ReplyCode.from_byte(data[0])
        if code is None:
            raise ClientError(f"Unexpected reply code {data!r}")
        return code

    def _read_payload(self, sock: socket.socket, out: BinaryIO) -> int:
        """Copy everything up to the server's FIN into out."""
        total = 0
        while True:
            try:
                chunk = sock.recv(self.buffer_size)
            except OSError as e:
                raise ClientError(f"Transfer interrupted after {total} bytes: {e}") from e

            if not chunk:
                return total

            try:
                out.write(chunk)
            except OSError as e:
                raise ClientError(f"Local write failed after {total} bytes: {e}") from e
            total += len(chunk)


class Shell:
    """
    Interactive prompt on top of FileClient.

    Commands are single letters, case-insensitive. Q exits; anything else
    unknown re-prompts.
    """

    PROMPT = "enter a command (D, G, L, R, or Q):"

    def __init__(
        self,
        client: FileClient,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        download_dir: str = ".",
    ):
        self.client = client
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.download_dir = Path(download_dir)

        self._commands = {
            "L": self.do_list,
            "D": self.do_delete,
            "G": self.do_get,
            "R": self.do_rename,
        }

    def run(self) -> int:
        """
        Prompt until Q.

        Returns:
            0 on Q.

        Raises:
            EOFError: Standard input was closed.
        """
        while True:
            letter = self._ask(self.PROMPT).upper()
            if not letter:
                continue
            if letter == "Q":
                return 0

            action = self._commands.get(letter)
            if action is None:
                self._say("Unknown command!")
                continue

            try:
                action()
            except ProtocolError as e:
                self._say(f"Invalid filename: {e}")
            except ClientError as e:
                self._say(f"Error: {e}")

    def do_list(self):
        entries = self.client.list_files()
        if entries is None:
            self._say("Server rejected the request.")
        elif not entries:
            self._say("(no files)")
        else:
            for entry in entries:
                self._say(f"{entry.name} : {entry.size}")

    def do_delete(self):
        name = self._ask("Enter the file you'd like to delete: ")
        if self.client.delete(name):
            self._say("File successfully deleted.")
        else:
            self._say("The request was rejected by the server.")

    def do_get(self):
        name = self._ask("Enter the file you'd like to receive: ")
        # encode_request refuses separators, so the name stays in download_dir
        received = self.client.download(name, self.download_dir / name)
        if received is None:
            self._say("The request was rejected by the server.")
        else:
            self._say(f"File received: {name} ({received} bytes)")

    def do_rename(self):
        old = self._ask("Enter the file you'd like to rename: ")
        new = self._ask("Enter the desired new filename: ")
        if self.client.rename(old, new):
            self._say("File successfully renamed.")
        else:
            self._say("The request was rejected by the server.")

    def _ask(self, prompt: str) -> str:
        self._say(prompt)
        line = self.stdin.readline()
        if line == "":
            raise EOFError("standard input closed")
        return line.strip()

    def _say(self, text: str):
        print(text, file=self.stdout, flush=True)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Client CLI entry point.

    Exit codes:
        0  Q entered
        1  Standard input closed or interrupted
        2  Usage error
    """
    parser = argparse.ArgumentParser(
        prog="filemux-client",
        description="Interactive client for the filemux file server",
    )
    parser.add_argument("server_host", help="Server address")
    parser.add_argument("server_port", type=int, help="Server TCP port")
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Socket timeout in seconds (default: 10)",
    )
    parser.add_argument(
        "--download-dir",
        default=".",
        help="Where G stores received files (default: current directory)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log protocol exchanges to stderr",
    )

    args = parser.parse_args(argv)

    if not 0 < args.server_port < 65536:
        parser.error(f"invalid server_port: {args.server_port}")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    client = FileClient(args.server_host, args.server_port, timeout=args.timeout)
    shell = Shell(client, download_dir=args.download_dir)

    try:
        return shell.run()
    except EOFError:
        print("Input closed, exiting.", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print(file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
