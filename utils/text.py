from __future__ import annotations

import math
import re


# Only known tags count as a fence language; anything else after ``` is content
_FENCE_TAGS = ("srt", "subrip", "vtt", "webvtt", "ass", "ssa", "txt", "text", "plaintext", "json", "markdown", "md")
_FENCE_RE = re.compile(
    r"```(?:(?:" + "|".join(_FENCE_TAGS) + r")[ \t]*(?=\r?\n))?[ \t]*\r?\n?",
    re.IGNORECASE,
)
_LINE_BREAK_RE = re.compile(r"\r\n?")


def sanitize(text: str | None) -> str:
    """Strip code fences, normalize line endings and trim."""
    if not text:
        return ""
    cleaned = str(text)
    # Removing a fence can join stray backticks into a new one
    while True:
        stripped = _FENCE_RE.sub("", cleaned)
        if stripped == cleaned:
            break
        cleaned = stripped
    cleaned = _LINE_BREAK_RE.sub("\n", cleaned)
    return cleaned.strip()


def estimate_token_count(text: str | None) -> int:
    # ~3 chars per token plus 10% for structure/punctuation
    if not text:
        return 0
    approx = math.ceil(len(text) / 3)
    return math.ceil(approx * 1.1)
