"""
Text cleanup and token estimation.
"""

import pytest

from utils.text import estimate_token_count, sanitize


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("```\nBonjour\n```", "Bonjour"),
        ("```srt\r\n1\r\nBonjour\r\n```", "1\nBonjour"),
        ("  Hola  \n", "Hola"),
        ("line1\rline2", "line1\nline2"),
        ("```json\n{\"a\": 1}```", "{\"a\": 1}"),
    ],
)
def test_sanitize_strips_fences_and_normalizes_line_endings(raw, expected):
    assert sanitize(raw) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("```1\n00:00:01,000 --> 00:00:02,000\nBonjour\n```", "1\n00:00:01,000 --> 00:00:02,000\nBonjour"),
        ("```Bonjour le monde```", "Bonjour le monde"),
        ("```SRT\n2\nSalut\n```", "2\nSalut"),
    ],
)
def test_sanitize_keeps_text_that_follows_a_fence(raw, expected):
    assert sanitize(raw) == expected


def test_sanitize_handles_empty_values():
    assert sanitize(None) == ""
    assert sanitize("") == ""
    assert sanitize("   ") == ""


@pytest.mark.parametrize(
    "raw",
    [
        "``````\nText\n``````",
        "`````\n`Hi`\n```",
        "```\r\n```py\r\nnested\r\n```\r\n```",
        "plain text\r\n\r\nwith blocks",
    ],
)
def test_sanitize_is_idempotent(raw):
    once = sanitize(raw)
    assert sanitize(once) == once
    assert "\r" not in once


def test_estimate_token_count():
    assert estimate_token_count(None) == 0
    assert estimate_token_count("") == 0
    # ceil(3 / 3) = 1 -> ceil(1.1) = 2
    assert estimate_token_count("abc") == 2
    # 100 * 1.1 is not exact in binary
    assert estimate_token_count("a" * 300) in (110, 111)
    assert estimate_token_count("a" * 3000) > estimate_token_count("a" * 300)
