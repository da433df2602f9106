"""
Anthropic Messages API provider.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from utils.text import sanitize

from .base import BaseProvider, ModelDescriptor, TranslationRequest, TranslationResult
from .completion import assess_completion, normalize_finish_reason
from .errors import ErrorKind, ProviderError, describe_error
from .frames import Frame, Framing, StreamDialect, StreamState
from .prompt import build_prompt
from .streaming import PartialGate


MAX_TOTAL_TOKENS = 200000
MIN_OUTPUT_TOKENS_WITH_THINKING = 512

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MessagesBudget:
    max_tokens: int
    thinking_budget: int

    @property
    def thinking_enabled(self) -> bool:
        return self.thinking_budget > 0


def plan_messages_budget(
    max_output_tokens: int,
    thinking_budget: int,
    *,
    total_limit: int = MAX_TOTAL_TOKENS,
    provider: str = "anthropic",
) -> MessagesBudget:
    """Split ``max_tokens`` between visible output and extended thinking.

    Thinking draws from the same ``max_tokens`` pool, so it is capped to leave
    at least ``MIN_OUTPUT_TOKENS_WITH_THINKING`` for the translation and is
    dropped entirely when that is impossible.
    """
    cap = max(1, min(MAX_TOTAL_TOKENS, total_limit))
    output_tokens = max(1, int(max_output_tokens))
    requested = max(0, int(thinking_budget))

    if requested == 0:
        return MessagesBudget(max_tokens=min(cap, output_tokens), thinking_budget=0)

    combined = output_tokens + requested
    max_tokens = min(cap, combined)
    thinking = min(requested, max_tokens - MIN_OUTPUT_TOKENS_WITH_THINKING)
    if thinking <= 0:
        logger.warning(
            "[%s] Dropping thinking budget (%d) because it leaves insufficient room for output "
            "(max_tokens=%d, reserve=%d)",
            provider,
            requested,
            max_tokens,
            MIN_OUTPUT_TOKENS_WITH_THINKING,
        )
        return MessagesBudget(max_tokens=min(cap, output_tokens), thinking_budget=0)

    if thinking != requested or combined > cap:
        logger.warning(
            "[%s] Adjusted thinking budget to %d tokens (requested %d) and max_tokens to %d",
            provider,
            thinking,
            requested,
            max_tokens,
        )
    return MessagesBudget(max_tokens=max_tokens, thinking_budget=thinking)


class MessagesDialect(StreamDialect):
    """Messages API event stream; only text deltas from text blocks count."""

    framing = Framing.SSE_BLOCKS

    def __init__(self, provider: str = "anthropic") -> None:
        self.provider = provider
        self._block_types: Dict[int, str] = {}

    def read_frame(self, frame: Frame, state: StreamState) -> str:
        data = frame.data
        if not isinstance(data, dict):
            return ""
        event = frame.event or data.get("type")

        if event == "content_block_start":
            block = data.get("content_block") or {}
            if isinstance(data.get("index"), int) and isinstance(block, dict) and block.get("type"):
                self._block_types[data["index"]] = block["type"]
            return ""

        if event == "content_block_delta":
            delta = data.get("delta") or {}
            if not isinstance(delta, dict):
                return ""
            block_type = self._block_types.get(data.get("index"), "text")
            if block_type == "text" and delta.get("type") == "text_delta" and isinstance(delta.get("text"), str):
                return delta["text"]
            return ""

        if event == "message_delta":
            delta = data.get("delta") or {}
            if isinstance(delta, dict):
                state.record_finish(delta.get("stop_reason"), keep_first=True)
            return ""

        if event == "message_stop":
            state.record_finish(data.get("stop_reason"), keep_first=True)
            return ""

        if event == "error":
            error = data.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else None
            kind = ErrorKind.FATAL
            if isinstance(error, dict) and error.get("type") in ("overloaded_error", "api_error"):
                kind = ErrorKind.SERVICE_UNAVAILABLE
            raise ProviderError(
                f"{self.provider}: {message or 'Stream error'}",
                kind=kind,
                provider=self.provider,
                raw_cause=data,
            )
        return ""


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API adapter.

    Features:
    - ``x-api-key`` + ``anthropic-version`` headers
    - Extended thinking with a guaranteed output reserve
    - Event-stream parsing that ignores thinking and tool blocks
    - Token counting through ``messages/count_tokens``
    """

    name = "anthropic"
    supports_streaming = True
    supports_token_counting = True

    def __init__(self, config, *, api_version: str = "2023-06-01", **kwargs) -> None:
        super().__init__(config, **kwargs)
        self.base_url = (config.base_url or "https://api.anthropic.com/v1").rstrip("/")
        self.api_version = api_version

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": (self.config.api_key or "").strip(),
            "anthropic-version": self.api_version,
        }

    def token_budget(self) -> MessagesBudget:
        return plan_messages_budget(
            self.max_output_tokens,
            self.config.thinking_budget,
            total_limit=self.config.output_token_limit or MAX_TOTAL_TOKENS,
            provider=self.provider_name,
        )

    def build_body(self, request: TranslationRequest, *, stream: bool) -> Dict[str, Any]:
        prompt = build_prompt(request.content, request.target_language, request.custom_prompt_template)
        budget = self.token_budget()
        body: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": budget.max_tokens,
            "system": prompt.system,
            "messages": [{"role": "user", "content": prompt.user}],
        }
        if self.config.temperature is not None:
            body["temperature"] = self.config.temperature
        if self.config.top_p is not None:
            body["top_p"] = self.config.top_p
        if budget.thinking_enabled:
            body["thinking"] = {"type": "enabled", "budget_tokens": budget.thinking_budget}
        if stream:
            body["stream"] = True
        return body

    async def _translate_once(self, request: TranslationRequest, timeout: Optional[float]) -> TranslationResult:
        body = self.build_body(request, stream=False)
        data = await self._request_json(
            "POST", f"{self.base_url}/messages", timeout=timeout, payload=body, operation="Translate"
        )
        data = data if isinstance(data, dict) else {}
        blocks = data.get("content") or []
        text = sanitize(
            "\n".join(
                block["text"]
                for block in blocks
                if isinstance(block, dict) and block.get("type", "text") == "text" and block.get("text")
            )
        )
        native_reason = data.get("stop_reason")
        finish_reason = normalize_finish_reason(native_reason)
        assess_completion(
            text,
            source_text=request.content,
            finish_reason=finish_reason,
            native_finish_reason=native_reason,
            provider=self.provider_name,
        )
        return self._result(text, finish_reason)

    async def _stream_once(
        self,
        request: TranslationRequest,
        gate: PartialGate,
        timeout: Optional[float],
    ) -> TranslationResult:
        text, state = await self._request_stream(
            f"{self.base_url}/messages",
            self.build_body(request, stream=True),
            timeout=timeout,
            dialect=MessagesDialect(self.provider_name),
            gate=gate,
            source_text=request.content,
        )
        return self._result(text, state.finish_reason)

    async def count_tokens(self, request: TranslationRequest) -> Optional[int]:
        prompt = build_prompt(request.content, request.target_language, request.custom_prompt_template)
        body = {
            "model": self.model,
            "system": prompt.system,
            "messages": [{"role": "user", "content": prompt.user}],
        }
        try:
            data = await self.discovery_retry.run(
                lambda timeout: self._request_json(
                    "POST",
                    f"{self.base_url}/messages/count_tokens",
                    timeout=timeout,
                    payload=body,
                    operation="Count tokens",
                )
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("[%s] Count tokens failed: %s", self.provider_name, describe_error(exc))
            return None
        total = data.get("input_tokens") if isinstance(data, dict) else None
        return total if isinstance(total, int) else None

    async def _fetch_models(self, timeout: Optional[float]) -> List[ModelDescriptor]:
        data = await self._request_json("GET", f"{self.base_url}/models", timeout=timeout, operation="Fetch models")
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        models: List[ModelDescriptor] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            name = item.get("id") or item.get("name")
            if not name:
                continue
            models.append(
                ModelDescriptor(
                    name=name,
                    display_name=item.get("display_name") or item.get("displayName") or name,
                    description=item.get("description") or "",
                    max_tokens=item.get("input_tokens") or item.get("max_tokens"),
                )
            )
        return models
