"""
=============================================================================
SERVED DIRECTORY
=============================================================================

The single directory whose flat contents the server exposes.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    /srv/files  (root_dir)                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │   notes.txt          regular file   → visible, operable            │
    │   .profile           regular file   → visible (dotfiles included)  │
    │   photos/            directory      → invisible to L, D/G/R fail   │
    │   pipe               FIFO           → invisible to L, G fails      │
    └─────────────────────────────────────────────────────────────────────┘

The directory must exist before the server starts. The server never
creates or removes it.

=============================================================================
SECURITY: STAYING INSIDE root_dir
=============================================================================

Names arriving from the wire have already been checked (no "/", no "..",
no NUL). Every operation here checks again before touching the disk, so
nothing outside root_dir is reachable even if a caller skips the wire
rules:

    full_path = root_dir / name
    full_path.parent == root_dir     # otherwise refuse

Symlinks inside root_dir are followed like any ordinary lookup.

=============================================================================
"""

import errno
import logging
import os
import stat
from pathlib import Path
from typing import BinaryIO, List

from ..protocol import FileEntry, MAX_FILENAME_LENGTH, validate_filename


logger = logging.getLogger(__name__)


class ServedDirectory:
    """
    Filesystem operations bound to one directory.

    Every method raises OSError (or a subclass) on failure and leaves the
    translation into a reply code to the caller. Nothing here knows about
    sockets.

    Usage:
        served = ServedDirectory("/srv/files")
        served.list_files()            # [FileEntry("notes.txt", 812), ...]
        with served.open_file("notes.txt") as f:
            data = f.read()
        served.rename("notes.txt", "old-notes.txt")
        served.delete("old-notes.txt")
    """

    def __init__(
        self,
        root_dir: str,
        allow_overwrite: bool = False,
        max_filename_length: int = MAX_FILENAME_LENGTH,
    ):
        """
        Args:
            root_dir: Directory to serve. Must already exist.
            allow_overwrite: Let rename replace an existing destination.
            max_filename_length: Per-name byte limit.
        """
        self.root_dir = Path(root_dir).resolve()
        self.allow_overwrite = allow_overwrite
        self.max_filename_length = max_filename_length

        if not self.root_dir.is_dir():
            raise ValueError(f"Served directory does not exist: {root_dir}")

    def _resolve(self, name: str) -> Path:
        """Map a wire name to a path directly inside root_dir."""
        validate_filename(os.fsencode(name), self.max_filename_length)

        full_path = self.root_dir / name
        if full_path.parent != self.root_dir:
            logger.warning(f"Path traversal attempt: {name!r}")
            raise PermissionError(errno.EACCES, "Outside served directory", name)

        return full_path

    # =========================================================================
    # L: LIST
    # =========================================================================

    def list_files(self) -> List[FileEntry]:
        """
        Snapshot the regular files in the directory.

        Entries that vanish between the directory scan and the stat call
        are skipped. Names containing a newline cannot be represented in
        the line-based listing and are skipped too.

        Returns:
            Entries sorted by name, each name at most once.
        """
        entries = []

        with os.scandir(self.root_dir) as scan:
            for entry in scan:
                try:
                    if not entry.is_file():
                        continue
                    size = entry.stat().st_size
                except OSError:
                    continue

                if "\n" in entry.name:
                    logger.debug(f"Skipping unlistable name {entry.name!r}")
                    continue

                entries.append(FileEntry(entry.name, size))

        entries.sort(key=lambda e: e.name)
        return entries

    # =========================================================================
    # D: DELETE
    # =========================================================================

    def delete(self, name: str) -> None:
        """Remove a file. Directories fail naturally (unlink refuses them)."""
        os.unlink(self._resolve(name))

    # =========================================================================
    # G: GET
    # =========================================================================

    def open_file(self, name: str) -> BinaryIO:
        """
        Open a regular file for a raw byte copy.

        O_NONBLOCK keeps a FIFO from stalling the event loop at open();
        the fstat check then refuses anything that is not a regular file.

        Returns:
            File object opened in binary mode. The caller closes it.

        Raises:
            IsADirectoryError: The name is a directory.
            OSError: Missing, unreadable, or not a regular file.
        """
        path = self._resolve(name)
        flags = os.O_RDONLY | getattr(os, "O_NONBLOCK", 0) | getattr(os, "O_BINARY", 0)

        fd = os.open(path, flags)
        try:
            mode = os.fstat(fd).st_mode
            if stat.S_ISDIR(mode):
                raise IsADirectoryError(errno.EISDIR, "Is a directory", name)
            if not stat.S_ISREG(mode):
                raise OSError(errno.EINVAL, "Not a regular file", name)
        except OSError:
            os.close(fd)
            raise

        return os.fdopen(fd, "rb")

    # =========================================================================
    # R: RENAME
    # =========================================================================

    def rename(self, old: str, new: str) -> None:
        """
        Rename old → new inside the directory.

        Only regular files can be renamed. An existing destination is
        refused unless allow_overwrite is set.

        Raises:
            FileNotFoundError: old does not exist.
            IsADirectoryError: old is a directory.
            FileExistsError: new exists and overwriting is off.
        """
        src = self._resolve(old)
        dst = self._resolve(new)

        mode = os.stat(src).st_mode
        if stat.S_ISDIR(mode):
            raise IsADirectoryError(errno.EISDIR, "Is a directory", old)
        if not stat.S_ISREG(mode):
            raise OSError(errno.EINVAL, "Not a regular file", old)

        if not self.allow_overwrite and os.path.lexists(dst):
            raise FileExistsError(errno.EEXIST, "Destination exists", new)

        os.rename(src, dst)
