"""
Keyless Google Translate provider.

Uses the public ``gtx`` endpoints across several mirrors, racing two of them
per request and steering away from mirrors that keep failing.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from utils.text import sanitize

from .base import BaseProvider, ModelDescriptor, TranslationRequest, TranslationResult
from .errors import ErrorKind, ProviderError, classify_exception


def parse_gtx_response(data: Any) -> Optional[str]:
    segments = data[0] if isinstance(data, list) and data else None
    if not isinstance(segments, list):
        return None
    return "".join(
        seg[0] for seg in segments if isinstance(seg, list) and seg and isinstance(seg[0], str)
    )


def split_into_chunks(content: str, max_chars: int) -> List[str]:
    """Pack blank-line separated blocks into chunks of at most ``max_chars``."""
    blocks = [b for b in content.replace("\r\n", "\n").split("\n\n") if b.strip()]
    chunks: List[str] = []
    current = ""
    for block in blocks:
        candidate = f"{current}\n\n{block}" if current else block
        if current and len(candidate) > max_chars:
            chunks.append(current)
            current = block
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


class GoogleTranslateProvider(BaseProvider):
    """Multi-endpoint Google Translate provider.

    Features:
    - Multiple Google mirrors raced in pairs
    - Endpoint failure tracking with round-robin selection
    - Content split into request-sized chunks translated concurrently
    - Streaming emulated with a single partial
    """

    name = "googletranslate"
    supports_streaming = False
    max_chars_per_request = 5000
    concurrency_limit = 4
    race_width = 2

    google_endpoints = [
        "https://translate.googleapis.com/translate_a/single",
        "https://translate.google.com/translate_a/single",
        "https://translate.google.com.tr/translate_a/single",
        "https://translate.google.co.uk/translate_a/single",
    ]

    def __init__(self, config, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self._endpoint_index = 0
        self._endpoint_failures: Dict[str, int] = {}

    def _get_next_endpoint(self) -> str:
        """Round-robin endpoint selection with failure tracking."""
        min_failures = min(self._endpoint_failures.get(ep, 0) for ep in self.google_endpoints)
        available = [
            ep for ep in self.google_endpoints
            if self._endpoint_failures.get(ep, 0) <= min_failures + 2
        ]
        self._endpoint_index = (self._endpoint_index + 1) % len(available)
        return available[self._endpoint_index]

    def _mark_failure(self, endpoint: str) -> None:
        self._endpoint_failures[endpoint] = self._endpoint_failures.get(endpoint, 0) + 1

    async def _try_endpoint(self, endpoint: str, params: Dict[str, str], timeout: Optional[float]) -> str:
        try:
            data = await self._request_json(
                "GET", endpoint, timeout=timeout, params=params, headers={}, operation="Translate"
            )
        except Exception:
            self._mark_failure(endpoint)
            raise
        text = parse_gtx_response(data)
        if text is None:
            self._mark_failure(endpoint)
            raise ProviderError(
                f"{self.provider_name}: unexpected response from {endpoint}",
                kind=ErrorKind.MALFORMED_RESPONSE,
                provider=self.provider_name,
            )
        self._endpoint_failures[endpoint] = 0
        return text

    async def _translate_chunk(self, text: str, source: str, target: str, timeout: Optional[float]) -> str:
        params = {"client": "gtx", "sl": source, "tl": target, "dt": "t", "q": text}
        width = min(self.race_width, len(self.google_endpoints))
        endpoints = list(dict.fromkeys(self._get_next_endpoint() for _ in range(width)))
        tasks = [asyncio.create_task(self._try_endpoint(ep, params, timeout)) for ep in endpoints]

        errors: List[BaseException] = []
        try:
            # Fastest successful mirror wins
            for next_done in asyncio.as_completed(tasks):
                try:
                    return await next_done
                except Exception as exc:  # noqa: BLE001
                    errors.append(exc)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        self.logger.debug("[%s] All raced endpoints failed for chunk of %d chars", self.provider_name, len(text))
        raise classify_exception(errors[-1], provider=self.provider_name)

    async def _translate_once(self, request: TranslationRequest, timeout: Optional[float]) -> TranslationResult:
        source = (request.source_language or "auto").strip() or "auto"
        target = (request.target_language or "").strip()
        if not target:
            raise ProviderError(
                f"{self.provider_name}: target language is required",
                kind=ErrorKind.FATAL,
                provider=self.provider_name,
            )

        chunks = split_into_chunks(request.content, self.max_chars_per_request)
        sem = asyncio.Semaphore(self.concurrency_limit)

        async def translate_one(chunk: str) -> str:
            async with sem:
                return await self._translate_chunk(chunk, source, target, timeout)

        tasks = [asyncio.create_task(translate_one(chunk)) for chunk in chunks]
        try:
            parts = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            raise

        text = sanitize("\n\n".join(p.strip() for p in parts))
        if not text:
            raise ProviderError(
                f"{self.provider_name}: no content returned",
                kind=ErrorKind.MALFORMED_RESPONSE,
                provider=self.provider_name,
            )
        return self._result(text)

    async def list_models(self) -> List[ModelDescriptor]:
        return [ModelDescriptor(name="gtx", display_name="Google Translate (keyless)")]
