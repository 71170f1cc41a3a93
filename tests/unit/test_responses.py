"""
Unit tests for reply parsing.
"""

import pytest

from bloomd.errors import (
    CommandError,
    FilterNotFoundError,
    FilterNotProxiedError,
    ProtocolError,
)
from bloomd.protocol.commands import encode_info, encode_multi_check, encode_set
from bloomd.protocol.responses import parse_bools, parse_info, parse_list, parse_status
from bloomd.protocol.status import Reply, error_for_line


def lines(*items: str):
    return iter(items)


class TestParseStatus:
    """Tests for single status lines."""

    def test_done(self):
        assert parse_status(lines("Done\r\n")) == Reply.DONE

    def test_exists_is_success(self):
        assert parse_status(lines("Exists")) == Reply.EXISTS

    def test_trailing_whitespace_stripped(self):
        assert parse_status(lines("Done  \t\r\n")) == Reply.DONE

    def test_filter_not_found(self):
        with pytest.raises(FilterNotFoundError) as exc_info:
            parse_status(lines("Filter does not exist"), "missing")
        assert exc_info.value.filter_name == "missing"

    def test_client_error_keeps_message(self):
        with pytest.raises(CommandError) as exc_info:
            parse_status(lines("Client Error: Bad arguments"))
        assert exc_info.value.kind == "Client Error"
        assert exc_info.value.message == "Bad arguments"

    def test_internal_error(self):
        with pytest.raises(CommandError) as exc_info:
            parse_status(lines("Internal Error: out of memory"))
        assert exc_info.value.kind == "Internal Error"

    def test_not_proxied(self):
        with pytest.raises(FilterNotProxiedError):
            parse_status(lines("Filter is not proxied. Close it first."))

    def test_unknown_line_is_protocol_error(self):
        with pytest.raises(ProtocolError) as exc_info:
            parse_status(lines("UNKNOWN"))
        assert exc_info.value.line == "UNKNOWN"

    def test_missing_line_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            parse_status(lines())


class TestParseBools:
    """Tests for Yes/No vectors."""

    def test_vector_in_order(self):
        result = parse_bools(lines("Yes No Yes No Yes\n"), 5)
        assert result == [True, False, True, False, True]

    def test_single(self):
        assert parse_bools(lines("No"), 1) == [False]

    def test_count_mismatch(self):
        with pytest.raises(ProtocolError):
            parse_bools(lines("Yes No"), 3)

    def test_unknown_token(self):
        with pytest.raises(ProtocolError):
            parse_bools(lines("Yes Maybe"), 2)

    def test_filter_not_found(self):
        with pytest.raises(FilterNotFoundError):
            parse_bools(lines("Filter does not exist"), 2)

    def test_client_error(self):
        with pytest.raises(CommandError):
            parse_bools(lines("Client Error: Must provide filter name and key"), 1)


class TestParseBlocks:
    """Tests for list and info blocks."""

    def test_list(self):
        reply = lines(
            "START",
            "foo 0.001000 300046 100000 12",
            "bar 0.000100 1797211 1000000 0  ",
            "END",
        )
        assert parse_list(reply) == {
            "foo": "0.001000 300046 100000 12",
            "bar": "0.000100 1797211 1000000 0",
        }

    def test_list_preserves_server_order(self):
        reply = lines("START", "b 0.1 1 1 1", "a 0.1 1 1 1", "END")
        assert list(parse_list(reply)) == ["b", "a"]

    def test_list_without_start(self):
        assert parse_list(lines("foo 0.1 1 2 3", "END")) == {"foo": "0.1 1 2 3"}

    def test_empty_block(self):
        assert parse_list(lines("END")) == {}
        assert parse_list(lines("START", "END")) == {}

    def test_malformed_list_entry(self):
        with pytest.raises(ProtocolError):
            parse_list(lines("START", "foo 0.1", "END"))

    def test_info(self):
        reply = lines("START", "capacity 100000", "checks 4", "size 2", "END")
        assert parse_info(reply, "f") == {"capacity": "100000", "checks": "4", "size": "2"}

    def test_info_missing_filter(self):
        with pytest.raises(FilterNotFoundError):
            parse_info(lines("Filter does not exist"), "f")

    def test_error_inside_block_aborts(self):
        reply = lines("START", "capacity 1", "Internal Error: disk", "END")
        with pytest.raises(CommandError):
            parse_info(reply, "f")

    def test_block_without_end(self):
        with pytest.raises(ProtocolError):
            parse_list(lines("START", "foo 0.1 1 2 3"))


class TestErrorForLine:
    """Tests for the server error mapping."""

    def test_regular_lines_are_not_errors(self):
        for line in ("Done", "Yes No", "END"):
            assert error_for_line(line) is None

    def test_error_prefix_without_colon_space(self):
        error = error_for_line("Client Error:bad")
        assert isinstance(error, CommandError)
        assert error.message == "bad"


class TestEncodeParseAgreement:
    """Tests that commands and canonical replies agree on shape."""

    def test_bool_vector_matches_key_count(self):
        expected = [True, False, True, True, False]
        command = encode_multi_check("f", [f"k{i}" for i in range(5)])
        reply = " ".join("Yes" if v else "No" for v in expected)

        assert parse_bools(lines(reply), command.key_count, command.filter_name) == expected

    def test_single_key_reply(self):
        command = encode_set("f", "k")
        assert parse_bools(lines("Yes"), command.key_count) == [True]

    def test_list_values(self):
        filters = {
            "alpha": "0.000100 300046 100000 0",
            "beta": "0.001000 1797211 1000000 42",
        }
        reply = ["START"] + [f"{name} {value}" for name, value in filters.items()] + ["END"]

        assert parse_list(iter(reply)) == filters

    def test_info_values(self):
        stats = {"capacity": "100000", "checks": "7", "probability": "0.000100", "size": "3"}
        command = encode_info("f")
        reply = ["START"] + [f"{key} {value}" for key, value in stats.items()] + ["END"]

        assert parse_info(iter(reply), command.filter_name) == stats
