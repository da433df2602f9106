"""
OpenAI-compatible chat completion provider.

One adapter serves OpenAI, xAI, DeepSeek, Mistral, OpenRouter, Cloudflare
Workers AI and user-supplied endpoints by swapping the base URL and headers.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

from utils.text import sanitize

from .base import BaseProvider, ModelDescriptor, TranslationRequest, TranslationResult
from .completion import assess_completion, normalize_finish_reason
from .errors import ErrorKind, ProviderError
from .frames import Frame, Framing, StreamDialect, StreamState
from .prompt import CHAT_SYSTEM_MESSAGE, build_prompt
from .streaming import PartialGate


REASONING_EFFORTS = ("low", "medium", "high")

_WORKERS_RUN_MODEL_RE = re.compile(r"^@cf/", re.I)
_TRAILING_V1_RE = re.compile(r"/v1$")


def normalize_reasoning_effort(value: Any) -> Optional[str]:
    normalized = value.strip().lower() if isinstance(value, str) else ""
    return normalized if normalized in REASONING_EFFORTS else None


def _collect_parts(content: Any) -> List[str]:
    if isinstance(content, str):
        return [content]
    parts: List[str] = []
    if isinstance(content, list):
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
    return parts


def extract_choice_text(choice: Any) -> str:
    """Text carried by one streamed or complete chat choice."""
    if not isinstance(choice, dict):
        return ""
    delta = choice.get("delta") or {}
    collected: List[str] = []
    if isinstance(delta, dict):
        content = delta.get("content")
        if isinstance(content, (str, list)):
            collected.extend(_collect_parts(content))
        elif isinstance(delta.get("text"), str):
            collected.append(delta["text"])
    if not collected:
        message = choice.get("message") or {}
        if isinstance(message, dict):
            collected.extend(p for p in _collect_parts(message.get("content")) if p)
    return "".join(collected)


def extract_workers_text(payload: Any) -> str:
    """Text from a Workers AI ``/run`` chunk."""
    if not isinstance(payload, dict):
        return ""
    if isinstance(payload.get("response"), str):
        return payload["response"]
    result = payload.get("result")
    if isinstance(result, dict):
        for key in ("response", "output"):
            if isinstance(result.get(key), str):
                return result[key]
    return ""


class ChatCompletionDialect(StreamDialect):
    framing = Framing.LINES

    def read_frame(self, frame: Frame, state: StreamState) -> str:
        data = frame.data
        if not isinstance(data, dict):
            return ""
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        choice = choices[0]
        if isinstance(choice, dict):
            state.record_finish(choice.get("finish_reason"))
        return extract_choice_text(choice)


class WorkersRunDialect(StreamDialect):
    framing = Framing.LINES

    def read_frame(self, frame: Frame, state: StreamState) -> str:
        data = frame.data
        if isinstance(data, dict) and (data.get("finished") or data.get("done") is True):
            state.record_finish("stop", keep_first=True)
        return extract_workers_text(data)


class OpenAICompatibleProvider(BaseProvider):
    """Chat completion adapter for OpenAI-style APIs.

    Features:
    - System + user message envelope with temperature/top_p/max_tokens
    - OpenAI ``reasoning.effort`` when configured
    - Workers AI ``/run/{model}`` routing for ``@cf/`` models
    - SSE or JSON-lines streaming with recovery
    """

    name = "openai"
    supports_streaming = True

    def __init__(self, config, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self.base_url = (config.base_url or "https://api.openai.com/v1").rstrip("/")
        self.reasoning_effort = normalize_reasoning_effort(config.reasoning_effort)

    @property
    def is_workers_run_model(self) -> bool:
        return self.provider_name == "cfworkers" and bool(_WORKERS_RUN_MODEL_RE.match(self.model or ""))

    def _headers(self) -> Dict[str, str]:
        key = (self.config.api_key or "").strip()
        return {"Authorization": f"Bearer {key}"} if key else {}

    async def build_chat_request(self, request: TranslationRequest, *, stream: bool) -> Tuple[str, Dict[str, Any]]:
        prompt = build_prompt(request.content, request.target_language, request.custom_prompt_template)
        budget = await self.plan_budget(request)
        max_tokens = budget.total_requested_tokens if budget else self.max_output_tokens

        if self.is_workers_run_model:
            body: Dict[str, Any] = {"prompt": prompt.user, "stream": stream}
            url = f"{_TRAILING_V1_RE.sub('', self.base_url)}/run/{self.model}"
        else:
            body = {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": CHAT_SYSTEM_MESSAGE},
                    {"role": "user", "content": prompt.user},
                ],
                "stream": stream,
            }
            url = f"{self.base_url}/chat/completions"
            if self.provider_name == "openai" and self.reasoning_effort:
                body["reasoning"] = {"effort": self.reasoning_effort}

        if self.config.temperature is not None:
            body["temperature"] = self.config.temperature
        if self.config.top_p is not None:
            body["top_p"] = self.config.top_p
        if max_tokens:
            body["max_tokens"] = max_tokens
        return url, body

    def _dialect(self) -> StreamDialect:
        return WorkersRunDialect() if self.is_workers_run_model else ChatCompletionDialect()

    async def _translate_once(self, request: TranslationRequest, timeout: Optional[float]) -> TranslationResult:
        url, body = await self.build_chat_request(request, stream=False)
        data = await self._request_json("POST", url, timeout=timeout, payload=body, operation="Translate")

        native_reason = None
        if self.is_workers_run_model:
            result = data.get("result") if isinstance(data, dict) else None
            if isinstance(result, dict):
                raw = result.get("translated_text") or result.get("output") or result.get("response")
            else:
                raw = result
        else:
            choices = data.get("choices") if isinstance(data, dict) else None
            choice = choices[0] if isinstance(choices, list) and choices else None
            if not isinstance(choice, dict):
                raise ProviderError(
                    f"{self.provider_name}: no choices in response",
                    kind=ErrorKind.MALFORMED_RESPONSE,
                    provider=self.provider_name,
                )
            native_reason = choice.get("finish_reason")
            raw = extract_choice_text(choice)

        text = sanitize(raw if isinstance(raw, str) else None)
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
        url, body = await self.build_chat_request(request, stream=True)
        text, state = await self._request_stream(
            url,
            body,
            timeout=timeout,
            dialect=self._dialect(),
            gate=gate,
            source_text=request.content,
        )
        return self._result(text, state.finish_reason)

    async def _fetch_models(self, timeout: Optional[float]) -> List[ModelDescriptor]:
        is_workers = self.provider_name == "cfworkers"
        root = _TRAILING_V1_RE.sub("", self.base_url) if is_workers else self.base_url
        headers = {**self._headers(), **(self.config.extra_headers or {})}

        if is_workers:
            try:
                data = await self._request_json(
                    "GET", f"{root}/models/search", timeout=timeout, headers=headers, operation="Fetch models"
                )
            except ProviderError as exc:
                if exc.retryable:
                    raise
                data = await self._request_json(
                    "GET", f"{root}/models", timeout=timeout, headers=headers, operation="Fetch models"
                )
        else:
            data = await self._request_json(
                "GET", f"{root}/models", timeout=timeout, headers=headers, operation="Fetch models"
            )
        return parse_model_listing(data, workers=is_workers)


def parse_model_listing(data: Any, *, workers: bool = False) -> List[ModelDescriptor]:
    if not isinstance(data, dict):
        return []
    raw: Any = None
    for candidate in (data.get("data"), data.get("models"), data.get("result")):
        if isinstance(candidate, list):
            raw = candidate
            break
    if raw is None and isinstance(data.get("result"), dict):
        raw = data["result"].get("models")
    if not isinstance(raw, list):
        return []

    models: List[ModelDescriptor] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        # Workers AI puts a UUID in ``id`` and the usable slug in ``name``
        if workers:
            name = item.get("name") or item.get("slug") or item.get("id") or item.get("model")
        else:
            name = item.get("id") or item.get("name") or item.get("model")
        if not name:
            continue
        display = (
            item.get("display_name")
            or item.get("displayName")
            or item.get("name")
            or item.get("slug")
            or name
        )
        models.append(
            ModelDescriptor(
                name=str(name),
                display_name=str(display),
                description=item.get("description") or "",
                max_tokens=item.get("max_tokens") or item.get("maxTokens"),
            )
        )
    return models
