"""
=============================================================================
REQUEST HANDLERS
=============================================================================

Maps each framed request to a reply:

    ┌─────────┬──────────────────────────────┬──────────────────────────┐
    │ Command │ Success                      │ Failure                  │
    ├─────────┼──────────────────────────────┼──────────────────────────┤
    │ L       │ S + "<name> : <size>\n" ...  │ F (directory unreadable) │
    │ D       │ S                            │ F                        │
    │ G       │ S + raw file bytes           │ F, no payload            │
    │ R       │ S                            │ F (also: no comma)       │
    └─────────┴──────────────────────────────┴──────────────────────────┘

A handler finishes all filesystem work BEFORE the reply code is chosen,
so any failure up to that point still becomes a clean F. For G the file
is opened here and the connection streams it later; a read error during
streaming can only truncate the payload.

=============================================================================
"""

import logging
from typing import Callable, Dict

from ..protocol import (
    Command,
    ProtocolError,
    Reply,
    Request,
    format_listing,
)
from .directory import ServedDirectory


logger = logging.getLogger(__name__)


class RequestHandler:
    """
    Executes requests against a ServedDirectory.

    handle() never raises for ProtocolError or OSError; both collapse to
    an F reply and the cause goes to the log.
    """

    def __init__(self, directory: ServedDirectory):
        self.directory = directory
        self._handlers: Dict[Command, Callable[[Request], Reply]] = {
            Command.LIST: self.list_files,
            Command.DELETE: self.delete,
            Command.GET: self.get,
            Command.RENAME: self.rename,
        }

    def handle(self, request: Request) -> Reply:
        """
        Run one request to completion.

        Args:
            request: A framed request.

        Returns:
            Reply to write on the connection.
        """
        handler = self._handlers[request.command]

        try:
            return handler(request)
        except ProtocolError as e:
            logger.info(f"Refused {request.describe()!r}: {e}")
        except OSError as e:
            logger.info(f"Failed {request.describe()!r}: {e.strerror or e}")

        return Reply.failure()

    def list_files(self, request: Request) -> Reply:
        entries = self.directory.list_files()
        return Reply.success(format_listing(entries))

    def delete(self, request: Request) -> Reply:
        self.directory.delete(request.filename)
        return Reply.success()

    def get(self, request: Request) -> Reply:
        stream = self.directory.open_file(request.filename)
        return Reply.success(stream=stream)

    def rename(self, request: Request) -> Reply:
        old, new = request.rename_pair
        self.directory.rename(old, new)
        return Reply.success()
