from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

from .completion import FinishReason, normalize_finish_reason


_BLOCK_SPLIT_RE = re.compile(r"\r?\n\r?\n")
_LINE_SPLIT_RE = re.compile(r"\r?\n")

DONE_SENTINEL = "[DONE]"
# SSE fields that never carry payload
_IGNORED_SSE_FIELDS = ("id:", "retry:")


class Framing(str, Enum):
    SSE_BLOCKS = "sse_blocks"
    LINES = "lines"


class StreamStatus(str, Enum):
    IDLE = "idle"
    RECEIVING = "receiving"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class Frame:
    data: Any
    event: Optional[str] = None


@dataclass(slots=True)
class StreamState:
    buffer: str = ""
    raw_text: str = ""
    aggregated_text: str = ""
    finish_reason: Optional[FinishReason] = None
    native_finish_reason: Optional[str] = None
    block_reason: Optional[str] = None
    safety_ratings: Optional[List[Any]] = None
    frames_parsed: int = 0
    status: StreamStatus = StreamStatus.IDLE

    def record_finish(self, native: Any, *, keep_first: bool = False) -> None:
        if not native or (keep_first and self.native_finish_reason):
            return
        self.native_finish_reason = str(native)
        self.finish_reason = normalize_finish_reason(native)


class StreamDialect(ABC):
    """Vendor-specific interpretation of decoded stream frames."""

    framing: Framing = Framing.LINES

    @abstractmethod
    def read_frame(self, frame: Frame, state: StreamState) -> str:
        """Record metadata from ``frame`` on ``state`` and return its text delta."""


def decode_frame(text: str) -> Optional[Frame]:
    """Decode one SSE block or JSON line; None when it carries no JSON payload."""
    if not text or not text.strip():
        return None
    event: Optional[str] = None
    data_lines: List[str] = []
    for line in _LINE_SPLIT_RE.split(text):
        stripped = line.strip()
        if not stripped or stripped.startswith(":"):
            continue
        if stripped.startswith("event:"):
            event = stripped[6:].strip()
        elif stripped.startswith("data:"):
            data_lines.append(stripped[5:].strip())
        elif stripped.startswith(_IGNORED_SSE_FIELDS):
            continue
        else:
            data_lines.append(stripped)
    payload = "".join(data_lines)
    if not payload or payload == DONE_SENTINEL:
        return None
    try:
        data = json.loads(payload)
    except ValueError:
        return None
    return Frame(data=data, event=event)


def split_frames(buffer: str, framing: Framing) -> tuple[List[str], str]:
    """Split ``buffer`` into complete frames and the trailing partial frame."""
    pattern = _BLOCK_SPLIT_RE if framing is Framing.SSE_BLOCKS else _LINE_SPLIT_RE
    parts = pattern.split(buffer)
    return parts[:-1], parts[-1]


def split_blocks(text: str) -> List[str]:
    return _BLOCK_SPLIT_RE.split(text)


def split_lines(text: str) -> List[str]:
    return _LINE_SPLIT_RE.split(text)
