"""
Gemini generative content provider.

Talks to ``generateContent`` / ``streamGenerateContent`` with a planned output
budget, optional thinking configuration and model limits discovered once per
instance.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from utils.text import sanitize

from .base import BaseProvider, ModelDescriptor, TranslationRequest, TranslationResult
from .budget import DYNAMIC_THINKING, GenerationBudget, ModelLimits
from .completion import assess_completion, normalize_finish_reason
from .errors import describe_error
from .frames import Frame, Framing, StreamDialect, StreamState
from .prompt import build_prompt
from .streaming import PartialGate


GEMMA_MAX_OUTPUT_TOKENS = 8192
LEGACY_OUTPUT_LIMIT = 8192
EXTENDED_OUTPUT_LIMIT = 65536


def fallback_output_limit(model: str) -> int:
    """Output limit guessed from the model family when the API does not say."""
    name = (model or "").lower()
    if "2.0" in name or name.endswith("-flash-001") or name.endswith("-flash-lite-001"):
        return LEGACY_OUTPUT_LIMIT
    if "2.5" in name:
        return EXTENDED_OUTPUT_LIMIT
    return LEGACY_OUTPUT_LIMIT


def candidate_text(candidate: Any) -> str:
    if not isinstance(candidate, dict):
        return ""
    content = candidate.get("content") or {}
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    # Thought summaries are not part of the translation
    return "".join(
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str) and not part.get("thought")
    )


def _non_empty_list(value: Any) -> Optional[List[Any]]:
    return value if isinstance(value, list) and value else None


class GeminiDialect(StreamDialect):
    framing = Framing.LINES

    def read_frame(self, frame: Frame, state: StreamState) -> str:
        data = frame.data
        if not isinstance(data, dict):
            return ""
        feedback = data.get("promptFeedback")
        if isinstance(feedback, dict):
            state.block_reason = feedback.get("blockReason") or state.block_reason
            state.safety_ratings = _non_empty_list(feedback.get("safetyRatings")) or state.safety_ratings
        candidates = data.get("candidates")
        candidate = candidates[0] if isinstance(candidates, list) and candidates else None
        if not isinstance(candidate, dict):
            return ""
        state.record_finish(candidate.get("finishReason"))
        state.safety_ratings = _non_empty_list(candidate.get("safetyRatings")) or state.safety_ratings
        return candidate_text(candidate)


class GeminiProvider(BaseProvider):
    """Gemini API adapter.

    Features:
    - ``x-goog-api-key`` header authentication
    - Output budget planned from discovered model limits
    - ``thinkingConfig``: null for dynamic, value when positive, omitted when off
    - Gemma models run without thinking and with a lower output cap
    - Token counting through ``countTokens``
    """

    name = "gemini"
    supports_streaming = True
    supports_token_counting = True

    def __init__(self, config, *, base_url: Optional[str] = None, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self.base_url = (base_url or config.base_url or "https://generativelanguage.googleapis.com/v1beta").rstrip("/")
        self.is_gemma = "gemma" in (self.model or "").lower()
        if self.is_gemma:
            self.max_output_tokens = GEMMA_MAX_OUTPUT_TOKENS

    @property
    def thinking_budget(self) -> int:
        return 0 if self.is_gemma else self.config.thinking_budget

    def _headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": (self.config.api_key or "").strip()}

    def _model_url(self, action: str = "") -> str:
        return f"{self.base_url}/models/{self.model}{action}"

    async def _resolve_model_limits(self) -> ModelLimits:
        if self.config.output_token_limit:
            return ModelLimits(output_token_limit=self.config.output_token_limit)
        try:
            data = await self.discovery_retry.run(
                lambda timeout: self._request_json(
                    "GET", self._model_url(), timeout=timeout, operation="Fetch model limits"
                )
            )
        except Exception as exc:  # noqa: BLE001
            limit = fallback_output_limit(self.model)
            self.logger.warning(
                "[%s] Model limits unavailable (%s), using %d output tokens",
                self.provider_name,
                describe_error(exc),
                limit,
            )
            return ModelLimits(output_token_limit=limit)

        data = data if isinstance(data, dict) else {}
        output_limit = data.get("outputTokenLimit")
        if not isinstance(output_limit, int) or output_limit <= 0:
            output_limit = fallback_output_limit(self.model)
        input_limit = data.get("inputTokenLimit")
        limits = ModelLimits(
            output_token_limit=output_limit,
            input_token_limit=input_limit if isinstance(input_limit, int) else None,
        )
        self.logger.debug(
            "[%s] Model: %s, output limit: %d, input limit: %s",
            self.provider_name,
            self.model,
            limits.output_token_limit,
            limits.input_token_limit or "unlimited",
        )
        return limits

    def generation_config(self, budget: GenerationBudget) -> Dict[str, Any]:
        config: Dict[str, Any] = {"maxOutputTokens": budget.total_requested_tokens}
        if self.config.temperature is not None:
            config["temperature"] = self.config.temperature
        if self.config.top_k is not None:
            config["topK"] = self.config.top_k
        if self.config.top_p is not None:
            config["topP"] = self.config.top_p
        thinking = self.thinking_budget
        if thinking == DYNAMIC_THINKING:
            config["thinkingConfig"] = {"thinkingBudget": None}
        elif thinking > 0:
            config["thinkingConfig"] = {"thinkingBudget": budget.thinking_reserve}
        return config

    async def build_body(self, request: TranslationRequest) -> Dict[str, Any]:
        thinking = self.thinking_budget
        prompt = build_prompt(
            request.content,
            request.target_language,
            request.custom_prompt_template,
            thinking=thinking != 0,
        )
        budget = await self.plan_budget(request, thinking_budget=thinking)
        return {
            "contents": [{"parts": [{"text": prompt.user}]}],
            "generationConfig": self.generation_config(budget),
        }

    async def _translate_once(self, request: TranslationRequest, timeout: Optional[float]) -> TranslationResult:
        body = await self.build_body(request)
        data = await self._request_json(
            "POST", self._model_url(":generateContent"), timeout=timeout, payload=body, operation="Translate"
        )
        # A complete response has the same shape as one stream frame
        state = StreamState()
        text = sanitize(GeminiDialect().read_frame(Frame(data=data), state))
        assess_completion(
            text,
            source_text=request.content,
            finish_reason=state.finish_reason,
            native_finish_reason=state.native_finish_reason,
            block_reason=state.block_reason,
            safety_ratings=state.safety_ratings,
            provider=self.provider_name,
        )
        return self._result(text, state.finish_reason)

    async def _stream_once(
        self,
        request: TranslationRequest,
        gate: PartialGate,
        timeout: Optional[float],
    ) -> TranslationResult:
        body = await self.build_body(request)
        text, state = await self._request_stream(
            self._model_url(":streamGenerateContent?alt=sse"),
            body,
            timeout=timeout,
            dialect=GeminiDialect(),
            gate=gate,
            source_text=request.content,
        )
        return self._result(text, state.finish_reason)

    async def count_tokens(self, request: TranslationRequest) -> Optional[int]:
        prompt = build_prompt(
            request.content,
            request.target_language,
            request.custom_prompt_template,
            thinking=self.thinking_budget != 0,
        )
        body = {"contents": [{"parts": [{"text": prompt.user}]}]}
        try:
            data = await self.discovery_retry.run(
                lambda timeout: self._request_json(
                    "POST", self._model_url(":countTokens"), timeout=timeout, payload=body, operation="Count tokens"
                )
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("[%s] Count tokens failed: %s", self.provider_name, describe_error(exc))
            return None
        total = data.get("totalTokens") if isinstance(data, dict) else None
        if isinstance(total, int):
            return total
        self.logger.warning("[%s] Token count response missing totalTokens, falling back to estimate", self.provider_name)
        return None

    async def _fetch_models(self, timeout: Optional[float]) -> List[ModelDescriptor]:
        data = await self._request_json("GET", f"{self.base_url}/models", timeout=timeout, operation="Fetch models")
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return []
        descriptors: List[ModelDescriptor] = []
        for model in models:
            if not isinstance(model, dict) or not model.get("name"):
                continue
            if "generateContent" not in (model.get("supportedGenerationMethods") or []):
                continue
            name = str(model["name"]).replace("models/", "", 1)
            descriptors.append(
                ModelDescriptor(
                    name=name,
                    display_name=model.get("displayName") or name,
                    description=model.get("description") or "",
                    max_tokens=model.get("inputTokenLimit"),
                )
            )
        return descriptors
