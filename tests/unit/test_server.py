"""
Unit tests for FileServer dispatch, the access log and the server CLI.
"""

import json
import logging
from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace

import pytest

from filemux import FileServer, ServerConfig, create_server
from filemux.__main__ import build_parser, main
from filemux.protocol import ReplyCode, parse_request


@pytest.fixture
def conn():
    """Just enough of a Connection for _dispatch()."""
    return SimpleNamespace(id="a1b2c3d4", client_ip="127.0.0.1")


class TestFileServer:
    """Tests for construction and dispatch."""

    def test_invalid_config_rejected(self, config: ServerConfig, tmp_path: Path):
        with pytest.raises(ValueError):
            FileServer(replace(config, root_dir=str(tmp_path / "missing")))

    def test_create_server(self, config: ServerConfig):
        assert isinstance(create_server(config), FileServer)

    def test_dispatch(self, config: ServerConfig, served_dir: Path, conn):
        (served_dir / "b.txt").write_bytes(b"hello\n")
        server = FileServer(config)

        reply = server._dispatch(parse_request(b"Gb.txt"), conn)
        try:
            assert reply.code is ReplyCode.SUCCESS
            assert reply.stream.read() == b"hello\n"
        finally:
            reply.close()

    def test_handler_bug_becomes_f(self, config: ServerConfig, conn, monkeypatch, caplog):
        server = FileServer(config)

        def explode(request):
            raise RuntimeError("boom")

        monkeypatch.setattr(server.handler, "handle", explode)

        with caplog.at_level(logging.ERROR, logger="filemux.server"):
            reply = server._dispatch(parse_request(b"L"), conn)

        assert reply.code is ReplyCode.FAILURE
        assert "Handler error: boom" in caplog.text


class TestAccessLog:
    """Tests for access-log records."""

    def test_text_format(self, config: ServerConfig, served_dir: Path, conn, caplog):
        (served_dir / "a.txt").write_bytes(b"abc")
        server = FileServer(config)

        with caplog.at_level(logging.INFO, logger="filemux.access"):
            server._dispatch(parse_request(b"Da.txt"), conn)
            server._dispatch(parse_request(b"Da.txt"), conn)

        records = [r for r in caplog.records if r.name == "filemux.access"]
        assert len(records) == 2
        assert records[0].getMessage().startswith('127.0.0.1 [a1b2c3d4] "D a.txt" S ')
        assert records[1].getMessage().startswith('127.0.0.1 [a1b2c3d4] "D a.txt" F ')

    def test_json_format(self, config: ServerConfig, conn, caplog):
        server = FileServer(replace(config, log_format="json"))

        with caplog.at_level(logging.INFO, logger="filemux.access"):
            server._dispatch(parse_request(b"Rmissing.txt,new.txt"), conn)

        record = next(r for r in caplog.records if r.name == "filemux.access")
        entry = json.loads(record.getMessage())

        assert entry["conn_id"] == "a1b2c3d4"
        assert entry["command"] == "RENAME"
        assert entry["request"] == "R missing.txt,new.txt"
        assert entry["reply"] == "F"
        assert entry["duration_ms"] >= 0
        assert "timestamp" in entry


class TestServerCli:
    """Tests for python -m filemux argument handling."""

    def test_parser_defaults(self):
        args = build_parser(ServerConfig()).parse_args([])

        assert args.port == 2000
        assert args.root_dir == "."
        assert args.allow_overwrite is False

    def test_parser_overrides(self):
        args = build_parser(ServerConfig()).parse_args(
            ["--port", "2100", "--dir", "/srv/files", "--allow-overwrite", "-l", "debug"]
        )

        assert args.port == 2100
        assert args.root_dir == "/srv/files"
        assert args.allow_overwrite is True
        assert args.log_level == "DEBUG"

    def test_missing_directory(self, tmp_path: Path, capsys):
        assert main(["--dir", str(tmp_path / "missing")]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_bad_environment(self, monkeypatch, capsys):
        monkeypatch.setenv("FILEMUX_PORT", "not-a-port")

        assert main([]) == 2
        assert "FILEMUX_" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert "filemux" in capsys.readouterr().out
