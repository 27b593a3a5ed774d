import pytest

from mbxcore.config import DEFAULT_POLL_MS, clamp_poll_ms
from mbxcore.crypto import fingerprint
from mbxcore.protocol import (
    Execute,
    Stop,
    first_line,
    format_error,
    format_return_code,
    is_stop_keyword,
    parse_directive,
    parse_return_code,
    payload_size,
)


def test_first_line_skips_blank_and_trims():
    assert first_line("\r\n   \r\n  dir /w  \r\necho x\r\n") == "dir /w"


def test_first_line_none_for_whitespace_only():
    assert first_line(" \r\n\t\r\n") is None
    assert first_line("") is None


@pytest.mark.parametrize("text", ["EXIT\r\n", "quit", "\r\n  Exit  \r\n", "QuIt\r\necho ignored\r\n"])
def test_stop_keywords_are_case_insensitive(text):
    directive = parse_directive(text)
    assert isinstance(directive, Stop)
    assert directive.keyword in ("EXIT", "QUIT")


def test_execute_carries_whole_text():
    text = "echo one\r\necho two\r\n"
    assert parse_directive(text) == Execute(text)


def test_stop_word_must_be_the_whole_directive_line():
    assert isinstance(parse_directive("exit 3\r\n"), Execute)
    assert isinstance(parse_directive("echo EXIT\r\n"), Execute)


def test_empty_command_has_no_directive():
    assert parse_directive("\r\n\r\n") is None


def test_is_stop_keyword():
    assert is_stop_keyword("exit")
    assert not is_stop_keyword("exits")


@pytest.mark.parametrize(
    "text, expected",
    [
        ("0\r\n", 0),
        ("  42 \r\n", 42),
        ("\r\n\t7", 7),
        ("-3\n", -3),
        ("", None),
        ("abc", None),
        ("ECHO is off.\r\n", None),
    ],
)
def test_parse_return_code(text, expected):
    assert parse_return_code(text) == expected


def test_format_error_has_reason_and_errno_lines():
    assert format_error("CMD file is empty") == "ERROR: CMD file is empty\r\nerrno=0\r\n"
    assert format_error("boom", 5).splitlines() == ["ERROR: boom", "errno=5"]


def test_format_return_code():
    assert format_return_code(3) == "3\r\n"


def test_payload_size_counts_encoded_bytes():
    assert payload_size("abc") == 3
    assert payload_size("é") == 2
    assert payload_size("é", "cp437") == 1


def test_fingerprint_is_short_stable_hex():
    fp = fingerprint("dir\r\n")
    assert fp == fingerprint("dir\r\n")
    assert fp != fingerprint("dir /w\r\n")
    assert len(fp) == 12
    int(fp, 16)


@pytest.mark.parametrize("value, expected", [(10, 10), (2000, 2000), (250, 250), (5, DEFAULT_POLL_MS), (5000, DEFAULT_POLL_MS)])
def test_clamp_poll_ms(value, expected):
    assert clamp_poll_ms(value) == expected
