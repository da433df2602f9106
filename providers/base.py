from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

from config import BackendConfig
from utils.cache import OnceCache
from utils.text import estimate_token_count

from .budget import GenerationBudget, ModelLimits, plan_generation_budget
from .completion import FinishReason
from .errors import ErrorKind, ProviderError, describe_error, error_from_status
from .frames import StreamDialect, StreamState
from .retry import RetryController
from .streaming import PartialCallback, PartialGate, StreamProcessor


ConnectorFactory = Callable[[], aiohttp.BaseConnector]


@dataclass(frozen=True, slots=True)
class TranslationRequest:
    content: str
    target_language: str
    source_language: Optional[str] = None
    custom_prompt_template: Optional[str] = None


@dataclass(slots=True)
class TranslationResult:
    text: str
    provider: str = ""
    model: str = ""
    finish_reason: Optional[FinishReason] = None


@dataclass(slots=True)
class ModelDescriptor:
    name: str
    display_name: str
    description: str = ""
    max_tokens: Optional[int] = None


def client_timeout(seconds: Optional[float]) -> Optional[aiohttp.ClientTimeout]:
    if seconds is None:
        return None
    return aiohttp.ClientTimeout(total=seconds)


class BaseProvider(ABC):
    """Common contract for every translation backend.

    Subclasses implement ``_translate_once`` (and ``_stream_once`` when they
    can stream). Retries, the stream-unsupported fallback and partial
    monotonicity are handled here so adapters only marshal requests and
    responses.
    """

    name: str = "base"
    supports_streaming: bool = True
    supports_token_counting: bool = False

    def __init__(
        self,
        config: BackendConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        connector_factory: Optional[ConnectorFactory] = None,
        retry: Optional[RetryController] = None,
        discovery_retry: Optional[RetryController] = None,
    ) -> None:
        self.config = config
        self.provider_name = config.provider or self.name
        self.model = config.model
        self.timeout = config.timeout
        self.max_output_tokens = config.max_output_tokens
        self._session = session
        self._connector_factory = connector_factory
        self._limits: OnceCache[Optional[ModelLimits]] = OnceCache()
        self.retry = retry or RetryController.from_policy(
            max_retries=config.max_retries,
            attempt_timeout=config.timeout,
            provider=self.provider_name,
        )
        self.discovery_retry = discovery_retry or RetryController.from_policy(
            max_retries=config.max_retries,
            provider=self.provider_name,
            discovery=True,
        )
        self.logger = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session, using the injected connector factory if any."""
        if self._session is None or self._session.closed:
            if self._connector_factory is not None:
                connector = self._connector_factory()
            else:
                connector = aiohttp.TCPConnector(limit=64, ttl_dns_cache=300)
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session:
            try:
                await self._session.close()
            except Exception as exc:  # noqa: BLE001
                self.logger.debug("[%s] Session close failed: %s", self.provider_name, exc)
            self._session = None

    def _headers(self) -> Dict[str, str]:
        return {}

    def _request_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(self._headers())
        headers.update(self.config.extra_headers or {})
        return headers

    async def _raise_for_status(
        self,
        response: aiohttp.ClientResponse,
        *,
        operation: str,
        streaming: bool = False,
    ) -> None:
        if response.status < 400:
            return
        body = await response.text()
        self.logger.warning(
            "[%s] %s failed: HTTP %s %s",
            self.provider_name,
            operation,
            response.status,
            body[:300],
        )
        raise error_from_status(response.status, body, provider=self.provider_name, streaming=streaming)

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        timeout: Optional[float],
        payload: Any = None,
        operation: str = "Request",
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        session = await self._get_session()
        async with session.request(
            method,
            url,
            json=payload,
            params=params,
            headers=headers if headers is not None else self._request_headers(),
            timeout=client_timeout(timeout),
        ) as resp:
            await self._raise_for_status(resp, operation=operation)
            return await resp.json(content_type=None)

    async def _request_stream(
        self,
        url: str,
        payload: Any,
        *,
        timeout: Optional[float],
        dialect: StreamDialect,
        gate: PartialGate,
        source_text: str,
    ) -> Tuple[str, StreamState]:
        """POST ``payload`` and run the response body through a ``StreamProcessor``."""
        session = await self._get_session()
        async with session.request(
            "POST",
            url,
            json=payload,
            headers=self._request_headers(),
            timeout=client_timeout(timeout),
        ) as resp:
            await self._raise_for_status(resp, operation="Stream", streaming=True)
            processor = StreamProcessor(
                dialect,
                source_text=source_text,
                on_partial=gate,
                provider=self.provider_name,
                content_type=resp.headers.get("Content-Type", ""),
            )
            async for chunk in resp.content.iter_any():
                await processor.feed(chunk)
            text = await processor.finish()
        return text, processor.state

    # ------------------------------------------------------------------
    # Budget helpers
    # ------------------------------------------------------------------

    async def model_limits(self) -> Optional[ModelLimits]:
        """Output/input limits for the configured model, fetched once per instance."""
        return await self._limits.get_or_fetch(self._resolve_model_limits)

    async def _resolve_model_limits(self) -> Optional[ModelLimits]:
        if self.config.output_token_limit:
            return ModelLimits(output_token_limit=self.config.output_token_limit)
        return None

    async def plan_budget(self, request: TranslationRequest, *, thinking_budget: int = 0) -> Optional[GenerationBudget]:
        limits = await self.model_limits()
        if limits is None:
            return None
        return plan_generation_budget(
            limits,
            thinking_budget=thinking_budget,
            max_output_tokens=self.max_output_tokens,
            content_tokens=estimate_token_count(request.content),
        )

    def _result(self, text: str, finish_reason: Optional[FinishReason] = None) -> TranslationResult:
        return TranslationResult(
            text=text,
            provider=self.provider_name,
            model=self.model,
            finish_reason=finish_reason,
        )

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def _translate_once(self, request: TranslationRequest, timeout: Optional[float]) -> TranslationResult:
        """One non-streaming attempt; raise on any failure."""

    async def _stream_once(
        self,
        request: TranslationRequest,
        gate: PartialGate,
        timeout: Optional[float],
    ) -> TranslationResult:
        raise ProviderError(
            f"{self.provider_name}: streaming not supported",
            kind=ErrorKind.UNSUPPORTED_CAPABILITY,
            provider=self.provider_name,
        )

    async def translate(self, request: TranslationRequest) -> TranslationResult:
        return await self.retry.run(lambda timeout: self._translate_once(request, timeout))

    async def stream_translate(
        self,
        request: TranslationRequest,
        on_partial: Optional[PartialCallback] = None,
    ) -> TranslationResult:
        """Translate while reporting growing partial text through ``on_partial``.

        Backends that cannot stream, or endpoints that reject the streaming
        request, fall back to ``translate`` and report the full text once.
        """
        gate = PartialGate(on_partial)
        if self.supports_streaming:
            try:
                return await self.retry.run(lambda timeout: self._stream_once(request, gate, timeout))
            except ProviderError as exc:
                if exc.kind is not ErrorKind.UNSUPPORTED_CAPABILITY:
                    raise
                self.logger.warning(
                    "[%s] Streaming not supported for this model/base, falling back to non-stream",
                    self.provider_name,
                )
        result = await self.translate(request)
        await gate.send(result.text)
        return result

    async def count_tokens(self, request: TranslationRequest) -> Optional[int]:
        return None

    def estimate_token_count(self, text: str | None) -> int:
        return estimate_token_count(text)

    async def list_models(self) -> List[ModelDescriptor]:
        """Models this backend offers; empty on any failure."""
        try:
            return await self.discovery_retry.run(self._fetch_models)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("[%s] Fetch models failed: %s", self.provider_name, describe_error(exc))
            return []

    async def _fetch_models(self, timeout: Optional[float]) -> List[ModelDescriptor]:
        return []

    def __del__(self) -> None:
        """Cleanup on deletion."""
        session = getattr(self, "_session", None)
        if session is not None and not session.closed:
            try:
                loop = asyncio.get_running_loop()
                loop.create_task(self.close())
            except RuntimeError:
                pass
