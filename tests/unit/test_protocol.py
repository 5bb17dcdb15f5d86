"""
Unit tests for wire framing, filename rules and the listing format.
"""

import pytest

from filemux.protocol import (
    LISTING_LINE,
    MAX_ARGUMENT_LENGTH,
    Command,
    FileEntry,
    ProtocolError,
    Reply,
    ReplyCode,
    Request,
    RequestParser,
    encode_request,
    format_listing,
    parse_listing,
    parse_request,
    validate_filename,
)


class TestCommands:
    """Tests for Command and ReplyCode."""

    def test_command_bytes(self):
        assert Command.LIST.byte == b"L"
        assert Command.DELETE.byte == b"D"
        assert Command.GET.byte == b"G"
        assert Command.RENAME.byte == b"R"

    def test_from_byte(self):
        assert Command.from_byte(ord("G")) is Command.GET
        assert Command.from_byte(ord("X")) is None
        assert Command.from_byte(ord("l")) is None  # Wire bytes are case-sensitive

    def test_only_list_has_no_argument(self):
        assert Command.LIST.takes_argument is False
        assert all(c.takes_argument for c in (Command.DELETE, Command.GET, Command.RENAME))

    def test_reply_codes(self):
        assert ReplyCode.SUCCESS.byte == b"S"
        assert ReplyCode.FAILURE.byte == b"F"
        assert ReplyCode.from_byte(ord("S")).is_success
        assert ReplyCode.from_byte(ord("Z")) is None


class TestValidateFilename:
    """Tests for the filename rules."""

    def test_plain_name(self):
        assert validate_filename(b"notes.txt") == "notes.txt"

    def test_unicode_name(self):
        assert validate_filename("résumé.pdf".encode("utf-8")) == "résumé.pdf"

    def test_dotfile_allowed(self):
        assert validate_filename(b".profile") == ".profile"

    @pytest.mark.parametrize("raw", [
        b"",
        b"a\x00b",
        b"../etc/passwd",
        b"sub/file.txt",
        b".",
        b"..",
        b"\xff\xfe",
    ])
    def test_rejected(self, raw: bytes):
        with pytest.raises(ProtocolError):
            validate_filename(raw)

    def test_length_limit(self):
        assert validate_filename(b"a" * 1024) == "a" * 1024
        with pytest.raises(ProtocolError):
            validate_filename(b"a" * 1025)

    def test_error_maps_to_failure(self):
        with pytest.raises(ProtocolError) as exc_info:
            validate_filename(b"")
        assert exc_info.value.reply_code is ReplyCode.FAILURE


class TestRequestParser:
    """Tests for incremental framing."""

    def test_nothing_received(self):
        parser = RequestParser()
        assert parser.has_command is False
        assert parser.is_complete is False

    def test_list_completes_on_command_byte(self):
        """L must not wait for the half-close."""
        parser = RequestParser()
        parser.feed(b"L")

        assert parser.is_complete is True
        assert parser.build() == Request(Command.LIST, b"")

    def test_delete_waits_for_eof(self):
        parser = RequestParser()
        parser.feed(b"D")
        parser.feed(b"old")
        assert parser.is_complete is False

        parser.feed(b".txt")
        parser.feed_eof()

        assert parser.is_complete is True
        request = parser.build()
        assert request.command is Command.DELETE
        assert request.filename == "old.txt"

    def test_unknown_command_completes_immediately(self):
        parser = RequestParser()
        parser.feed(b"X")

        assert parser.is_complete is True
        with pytest.raises(ProtocolError):
            parser.build()

    def test_oversize_argument_completes_without_eof(self):
        parser = RequestParser(max_argument_length=8)
        parser.feed(b"G" + b"a" * 9)

        assert parser.is_complete is True
        with pytest.raises(ProtocolError):
            parser.build()

    def test_default_cap_fits_two_full_names(self):
        raw = b"R" + b"a" * 1024 + b"," + b"b" * 1024
        assert len(raw) - 1 == MAX_ARGUMENT_LENGTH

        request = parse_request(raw)
        assert request.rename_pair == ("a" * 1024, "b" * 1024)

    def test_build_before_eof_is_an_error(self):
        parser = RequestParser()
        parser.feed(b"Gname")
        with pytest.raises(ProtocolError):
            parser.build()

    def test_eof_without_command_is_not_complete(self):
        parser = RequestParser()
        parser.feed_eof()
        assert parser.at_eof is True
        assert parser.is_complete is False

    def test_bytes_after_list_are_ignored(self):
        parser = RequestParser()
        parser.feed(b"L")
        parser.feed(b"trailing")
        assert parser.build().argument == b""


class TestRequest:
    """Tests for argument access on framed requests."""

    def test_rename_splits_on_first_comma(self):
        request = parse_request(b"Ra.txt,b.txt")
        assert request.rename_pair == ("a.txt", "b.txt")

    def test_rename_without_comma(self):
        with pytest.raises(ProtocolError):
            parse_request(b"Ra.txt").rename_pair

    def test_rename_with_embedded_comma(self):
        with pytest.raises(ProtocolError):
            parse_request(b"Ra.txt,b,c.txt").rename_pair

    def test_rename_with_empty_side(self):
        with pytest.raises(ProtocolError):
            parse_request(b"R,b.txt").rename_pair

    def test_describe(self):
        assert parse_request(b"L").describe() == "L"
        assert parse_request(b"Gb.txt").describe() == "G b.txt"


class TestEncodeRequest:
    """Tests for client-side framing."""

    def test_encode_each_command(self):
        assert encode_request(Command.LIST) == b"L"
        assert encode_request(Command.DELETE, "ghost.txt") == b"Dghost.txt"
        assert encode_request(Command.GET, "b.txt") == b"Gb.txt"
        assert encode_request(Command.RENAME, "a.txt", "b.txt") == b"Ra.txt,b.txt"

    def test_wrong_arity(self):
        with pytest.raises(ValueError):
            encode_request(Command.GET)
        with pytest.raises(ValueError):
            encode_request(Command.RENAME, "only-one")

    def test_rename_refuses_comma(self):
        with pytest.raises(ProtocolError):
            encode_request(Command.RENAME, "a,b", "c")

    def test_refuses_path(self):
        with pytest.raises(ProtocolError):
            encode_request(Command.GET, "../secret")


class TestReply:
    """Tests for Reply."""

    def test_header_starts_with_code(self):
        assert Reply.success(b"a : 1\n").header == b"Sa : 1\n"
        assert Reply.failure().header == b"F"

    def test_failure_cannot_carry_payload(self):
        with pytest.raises(ValueError):
            Reply(ReplyCode.FAILURE, b"oops")


class TestListing:
    """Tests for the listing format."""

    def test_format(self):
        payload = format_listing([FileEntry("a.txt", 6), FileEntry("b.bin", 0)])
        assert payload == b"a.txt : 6\nb.bin : 0\n"

    def test_empty(self):
        assert format_listing([]) == b""
        assert parse_listing(b"") == []

    def test_lines_match_pattern(self):
        payload = format_listing([FileEntry("with space.txt", 12), FileEntry(".hidden", 3)])
        for line in payload.splitlines(keepends=True):
            assert LISTING_LINE.match(line)

    def test_parse(self):
        entries = parse_listing(b"b.txt : 6\nnotes : 1024\n")
        assert entries == [FileEntry("b.txt", 6), FileEntry("notes", 1024)]

    def test_parse_name_containing_separator(self):
        assert parse_listing(b"a : b : 7\n") == [FileEntry("a : b", 7)]

    @pytest.mark.parametrize("payload", [
        b"b.txt : 6",            # Truncated, no newline
        b"b.txt 6\n",            # No separator
        b"b.txt : six\n",        # Size not a number
        b" : 6\n",               # Empty name
    ])
    def test_parse_malformed(self, payload: bytes):
        with pytest.raises(ProtocolError):
            parse_listing(payload)
