"""
Fallback parsing for streams the incremental pass could not read.

Intermediary proxies sometimes rebuffer or merge SSE frames, so a stream can
arrive as one blob with unexpected delimiters. Three framing strategies are
tried in order and the first one that decodes at least one frame wins.
"""
from __future__ import annotations

import json
import re
from typing import Callable, List, Sequence

from .frames import Frame, StreamDialect, StreamState, decode_frame, split_blocks, split_lines


_OBJECT_BOUNDARY_RE = re.compile(r"}\s*(?=\{)")
_DATA_PREFIX_RE = re.compile(r"^data:\s*")

Strategy = Callable[[str], List[Frame]]


def frames_from_sse_blocks(raw: str) -> List[Frame]:
    """Blank-line separated SSE events, ``data:`` stripped per line."""
    frames: List[Frame] = []
    for block in split_blocks(raw):
        frame = decode_frame(block)
        if frame is not None:
            frames.append(frame)
    return frames


def frames_from_json_lines(raw: str) -> List[Frame]:
    """One JSON document per line."""
    frames: List[Frame] = []
    for line in split_lines(raw):
        frame = decode_frame(line)
        if frame is not None:
            frames.append(frame)
    return frames


def frames_from_concatenated_json(raw: str) -> List[Frame]:
    """JSON objects glued together as ``{...}{...}`` without delimiters."""
    if not re.search(r"}\s*\{", raw):
        return []
    pieces = _OBJECT_BOUNDARY_RE.split(raw)
    frames: List[Frame] = []
    for index, piece in enumerate(pieces):
        segment = _DATA_PREFIX_RE.sub("", piece.strip())
        if index < len(pieces) - 1:
            segment += "}"
        if segment and not segment.startswith("{"):
            segment = "{" + segment
        try:
            data = json.loads(segment)
        except ValueError:
            continue
        frames.append(Frame(data=data))
    return frames


STRATEGIES: Sequence[Strategy] = (
    frames_from_sse_blocks,
    frames_from_json_lines,
    frames_from_concatenated_json,
)


def recover_stream(raw: str, dialect: StreamDialect) -> StreamState:
    """Re-read ``raw`` with each strategy and replay the frames through ``dialect``.

    Returns a fresh ``StreamState``; ``frames_parsed`` is 0 when nothing decoded.
    """
    state = StreamState(raw_text=raw)
    if not raw or not raw.strip():
        return state
    for strategy in STRATEGIES:
        frames = strategy(raw)
        if not frames:
            continue
        for frame in frames:
            state.frames_parsed += 1
            delta = dialect.read_frame(frame, state)
            if delta:
                state.aggregated_text += delta
        break
    return state
