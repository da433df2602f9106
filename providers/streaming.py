"""
Incremental stream parsing.

A ``StreamProcessor`` consumes raw transport chunks for one call, cuts them
into frames, hands each decoded frame to the provider's ``StreamDialect`` and
reports sanitized partial text as it grows. When the incremental pass yields
nothing the raw text goes through ``recover_stream`` before the completion is
assessed.
"""
from __future__ import annotations

import asyncio
import codecs
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, Optional, Union

from config import SETTINGS
from utils.text import sanitize

from .completion import assess_completion
from .frames import StreamDialect, StreamState, StreamStatus, decode_frame, split_frames
from .recovery import recover_stream

if TYPE_CHECKING:
    from .base import BaseProvider, TranslationRequest


PartialCallback = Callable[[str], Union[None, Awaitable[None]]]


class PartialGate:
    """Forwards partial text only when it is longer than anything sent before.

    One gate lives for a whole ``stream_translate`` call, so retried attempts
    never report shorter text than an earlier attempt already did. A failing
    callback is logged and never reaches the retry or fallback layers.
    """

    def __init__(self, callback: Optional[PartialCallback]) -> None:
        self._callback = callback
        self._emitted = 0
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def emitted_length(self) -> int:
        return self._emitted

    async def send(self, text: str) -> None:
        if self._callback is None or len(text) <= self._emitted:
            return
        try:
            outcome = self._callback(text)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Partial callback failed: %s", exc)
            return
        self._emitted = len(text)


class StreamProcessor:
    """Per-call state machine: IDLE -> RECEIVING -> FINALIZING -> DONE | FAILED."""

    def __init__(
        self,
        dialect: StreamDialect,
        *,
        source_text: str,
        on_partial: Optional[Union[PartialCallback, PartialGate]] = None,
        provider: str = "",
        content_type: str = "",
    ) -> None:
        self.dialect = dialect
        self.source_text = source_text
        self.provider = provider
        self.content_type = content_type
        self.state = StreamState()
        self._gate = on_partial if isinstance(on_partial, PartialGate) else PartialGate(on_partial)
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.logger = logging.getLogger(self.__class__.__name__)

    async def feed(self, chunk: bytes | str) -> None:
        state = self.state
        if state.status is StreamStatus.IDLE:
            state.status = StreamStatus.RECEIVING
        text = self._decoder.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        if not text:
            return
        state.raw_text += text
        state.buffer += text
        frames, state.buffer = split_frames(state.buffer, self.dialect.framing)
        for frame_text in frames:
            await self._consume(frame_text)

    async def _consume(self, frame_text: str) -> None:
        frame = decode_frame(frame_text)
        if frame is None:
            return
        self.state.frames_parsed += 1
        delta = self.dialect.read_frame(frame, self.state)
        if delta:
            self.state.aggregated_text += delta
            await self._gate.send(sanitize(self.state.aggregated_text))

    async def finish(self) -> str:
        """Flush the tail, run recovery if needed and return the sanitized text."""
        state = self.state
        state.status = StreamStatus.FINALIZING
        tail = self._decoder.decode(b"", final=True)
        if tail:
            state.raw_text += tail
            state.buffer += tail
        if state.buffer.strip():
            await self._consume(state.buffer)
        state.buffer = ""

        if not state.aggregated_text and state.raw_text.strip():
            self._recover()

        text = sanitize(state.aggregated_text)
        try:
            assess_completion(
                text,
                source_text=self.source_text,
                finish_reason=state.finish_reason,
                native_finish_reason=state.native_finish_reason,
                block_reason=state.block_reason,
                safety_ratings=state.safety_ratings,
                provider=self.provider,
            )
        except Exception:
            state.status = StreamStatus.FAILED
            raise
        state.status = StreamStatus.DONE
        return text

    def _recover(self) -> None:
        state = self.state
        recovered = recover_stream(state.raw_text, self.dialect)
        if recovered.aggregated_text:
            self.logger.debug(
                "[%s] Stream parsed via recovery (%d frames, content-type=%s)",
                self.provider,
                recovered.frames_parsed,
                self.content_type or "unknown",
            )
            state.aggregated_text = recovered.aggregated_text
        elif self.content_type and "text/event-stream" not in self.content_type:
            self.logger.warning(
                "[%s] Streaming response was '%s' with no text; check the API base URL",
                self.provider,
                self.content_type,
            )
        if state.finish_reason is None:
            state.finish_reason = recovered.finish_reason
            state.native_finish_reason = recovered.native_finish_reason
        state.block_reason = state.block_reason or recovered.block_reason
        state.safety_ratings = state.safety_ratings or recovered.safety_ratings


@dataclass(frozen=True, slots=True)
class StreamUpdate:
    text: str
    final: bool = False


_END = object()


async def stream_partials(
    provider: "BaseProvider",
    request: "TranslationRequest",
    *,
    maxsize: int | None = None,
) -> AsyncIterator[StreamUpdate]:
    """Yield partial translations through a bounded queue.

    The producer blocks once ``maxsize`` partials are waiting (by default
    ``SETTINGS.stream_channel_size``), so a slow consumer applies back-pressure
    to the stream. The last update is final and carries the full result; a
    failed call re-raises its error here.
    """
    if maxsize is None:
        maxsize = SETTINGS.stream_channel_size
    queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, maxsize))

    async def produce():
        try:
            result = await provider.stream_translate(request, queue.put)
        except Exception:
            await queue.put(_END)
            raise
        await queue.put(_END)
        return result

    task = asyncio.create_task(produce())
    try:
        while True:
            item = await queue.get()
            if item is _END:
                result = await task
                yield StreamUpdate(result.text, final=True)
                return
            yield StreamUpdate(item)
    finally:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
