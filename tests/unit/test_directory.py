"""
Unit tests for ServedDirectory and RequestHandler.
"""

import os
from pathlib import Path

import pytest

from filemux.handlers import RequestHandler, ServedDirectory
from filemux.protocol import FileEntry, ProtocolError, ReplyCode, parse_request


@pytest.fixture
def populated(served_dir: Path) -> Path:
    (served_dir / "a.txt").write_bytes(b"hello\n")
    (served_dir / "empty.bin").write_bytes(b"")
    (served_dir / ".hidden").write_bytes(b"abc")
    (served_dir / "subdir").mkdir()
    return served_dir


@pytest.fixture
def directory(populated: Path) -> ServedDirectory:
    return ServedDirectory(str(populated))


class TestServedDirectory:
    """Tests for filesystem operations."""

    def test_missing_root(self, tmp_path: Path):
        with pytest.raises(ValueError):
            ServedDirectory(str(tmp_path / "nope"))

    def test_list_regular_files_only(self, directory: ServedDirectory):
        """Directories are invisible, dotfiles are listed, output is sorted."""
        assert directory.list_files() == [
            FileEntry(".hidden", 3),
            FileEntry("a.txt", 6),
            FileEntry("empty.bin", 0),
        ]

    def test_list_empty(self, served_dir: Path):
        assert ServedDirectory(str(served_dir)).list_files() == []

    def test_list_skips_newline_names(self, populated: Path, directory: ServedDirectory):
        (populated / "two\nlines").write_bytes(b"x")
        names = [e.name for e in directory.list_files()]
        assert "two\nlines" not in names

    def test_delete(self, populated: Path, directory: ServedDirectory):
        directory.delete("a.txt")
        assert not (populated / "a.txt").exists()

    def test_delete_missing(self, directory: ServedDirectory):
        with pytest.raises(FileNotFoundError):
            directory.delete("ghost.txt")

    def test_delete_directory_fails(self, populated: Path, directory: ServedDirectory):
        with pytest.raises(OSError):
            directory.delete("subdir")
        assert (populated / "subdir").is_dir()

    def test_open_file(self, directory: ServedDirectory):
        with directory.open_file("a.txt") as f:
            assert f.read() == b"hello\n"

    def test_open_directory_fails(self, directory: ServedDirectory):
        with pytest.raises(IsADirectoryError):
            directory.open_file("subdir")

    @pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="FIFOs not supported")
    def test_open_fifo_fails_without_blocking(self, populated: Path, directory: ServedDirectory):
        os.mkfifo(populated / "pipe")

        with pytest.raises(OSError):
            directory.open_file("pipe")
        assert "pipe" not in [e.name for e in directory.list_files()]

    def test_traversal_refused(self, directory: ServedDirectory):
        with pytest.raises(ProtocolError):
            directory.open_file("../outside.txt")

    def test_rename(self, populated: Path, directory: ServedDirectory):
        directory.rename("a.txt", "b.txt")

        assert not (populated / "a.txt").exists()
        assert (populated / "b.txt").read_bytes() == b"hello\n"

    def test_rename_onto_existing_refused(self, populated: Path, directory: ServedDirectory):
        with pytest.raises(FileExistsError):
            directory.rename("a.txt", "empty.bin")

        assert (populated / "a.txt").read_bytes() == b"hello\n"
        assert (populated / "empty.bin").read_bytes() == b""

    def test_rename_onto_existing_with_overwrite(self, populated: Path):
        directory = ServedDirectory(str(populated), allow_overwrite=True)
        directory.rename("a.txt", "empty.bin")

        assert not (populated / "a.txt").exists()
        assert (populated / "empty.bin").read_bytes() == b"hello\n"

    def test_rename_directory_refused(self, directory: ServedDirectory):
        with pytest.raises(IsADirectoryError):
            directory.rename("subdir", "other")

    def test_rename_missing(self, directory: ServedDirectory):
        with pytest.raises(FileNotFoundError):
            directory.rename("ghost.txt", "b.txt")


class TestRequestHandler:
    """Tests for reply selection."""

    @pytest.fixture
    def handler(self, directory: ServedDirectory) -> RequestHandler:
        return RequestHandler(directory)

    def test_list(self, handler: RequestHandler):
        reply = handler.handle(parse_request(b"L"))

        assert reply.code is ReplyCode.SUCCESS
        assert reply.payload == b".hidden : 3\na.txt : 6\nempty.bin : 0\n"

    def test_get_returns_stream(self, handler: RequestHandler):
        reply = handler.handle(parse_request(b"Ga.txt"))

        assert reply.code is ReplyCode.SUCCESS
        assert reply.payload == b""
        assert reply.stream.read() == b"hello\n"
        reply.close()
        assert reply.stream is None

    @pytest.mark.parametrize("raw", [
        b"Gghost.txt",           # Missing
        b"Gsubdir",              # Directory
        b"G../etc/passwd",       # Traversal
        b"Dghost.txt",
        b"Ra.txt",               # No comma
        b"Ra.txt,empty.bin",     # Destination exists
        b"Rghost.txt,b.txt",
    ])
    def test_failures_become_f(self, handler: RequestHandler, raw: bytes):
        reply = handler.handle(parse_request(raw))

        assert reply.code is ReplyCode.FAILURE
        assert reply.header == b"F"

    def test_failed_rename_leaves_directory_unchanged(self, populated: Path, handler: RequestHandler):
        before = sorted(os.listdir(populated))
        handler.handle(parse_request(b"Ra.txt"))
        assert sorted(os.listdir(populated)) == before

    def test_delete_then_delete_again(self, handler: RequestHandler):
        assert handler.handle(parse_request(b"Da.txt")).code is ReplyCode.SUCCESS
        assert handler.handle(parse_request(b"Da.txt")).code is ReplyCode.FAILURE

    def test_rename(self, populated: Path, handler: RequestHandler):
        reply = handler.handle(parse_request(b"Ra.txt,b.txt"))

        assert reply.code is ReplyCode.SUCCESS
        assert (populated / "b.txt").exists()
