from __future__ import annotations

import logging
from typing import List, Optional

from utils.text import estimate_token_count

from .base import BaseProvider, ModelDescriptor, TranslationRequest, TranslationResult
from .errors import MultiProviderError, describe_error
from .streaming import PartialCallback, PartialGate


class FallbackProvider:
    """Primary provider with an optional secondary tried after the primary gives up.

    Exposes the same contract as ``BaseProvider``. When both fail a
    ``MultiProviderError`` carries both causes; with no secondary the primary
    error propagates unchanged.
    """

    def __init__(
        self,
        primary: BaseProvider,
        secondary: Optional[BaseProvider] = None,
        *,
        primary_name: str = "primary",
        secondary_name: str = "secondary",
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.primary_name = primary_name
        self.secondary_name = secondary_name
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def name(self) -> str:
        return self.primary_name

    @property
    def supports_streaming(self) -> bool:
        return self.primary.supports_streaming

    @property
    def supports_token_counting(self) -> bool:
        return self.primary.supports_token_counting or bool(
            self.secondary and self.secondary.supports_token_counting
        )

    def _combined_error(self, primary_error: Exception, secondary_error: Exception) -> MultiProviderError:
        error = MultiProviderError(
            primary_error=primary_error,
            secondary_error=secondary_error,
            primary_provider=self.primary_name,
            secondary_provider=self.secondary_name,
        )
        error.__cause__ = secondary_error
        return error

    async def translate(self, request: TranslationRequest) -> TranslationResult:
        try:
            return await self.primary.translate(request)
        except Exception as primary_error:
            if self.secondary is None:
                raise
            self.logger.warning(
                "Primary %s failed, trying secondary %s: %s",
                self.primary_name,
                self.secondary_name,
                describe_error(primary_error),
            )
            try:
                result = await self.secondary.translate(request)
            except Exception as secondary_error:
                self.logger.error(
                    "Secondary %s also failed: %s", self.secondary_name, describe_error(secondary_error)
                )
                raise self._combined_error(primary_error, secondary_error)
            self.logger.info("Secondary %s succeeded after %s failure", self.secondary_name, self.primary_name)
            return result

    async def stream_translate(
        self,
        request: TranslationRequest,
        on_partial: Optional[PartialCallback] = None,
    ) -> TranslationResult:
        if not self.primary.supports_streaming:
            result = await self.translate(request)
            await PartialGate(on_partial).send(result.text)
            return result

        # Shared so the secondary's replay cannot report shorter text than the primary did
        gate = PartialGate(on_partial)
        try:
            return await self.primary.stream_translate(request, gate.send)
        except Exception as primary_error:
            if self.secondary is None:
                raise
            self.logger.warning(
                "Primary %s stream failed, falling back to %s (non-stream): %s",
                self.primary_name,
                self.secondary_name,
                describe_error(primary_error),
            )
            try:
                result = await self.secondary.translate(request)
            except Exception as secondary_error:
                raise self._combined_error(primary_error, secondary_error)
        await gate.send(result.text)
        self.logger.info(
            "Secondary %s succeeded after streaming failure on %s", self.secondary_name, self.primary_name
        )
        return result

    async def count_tokens(self, request: TranslationRequest) -> Optional[int]:
        if self.primary.supports_token_counting or self.secondary is None:
            return await self.primary.count_tokens(request)
        if self.secondary.supports_token_counting:
            return await self.secondary.count_tokens(request)
        return None

    def estimate_token_count(self, text: str | None) -> int:
        estimate = getattr(self.primary, "estimate_token_count", None)
        if estimate is None and self.secondary is not None:
            estimate = getattr(self.secondary, "estimate_token_count", None)
        return estimate(text) if estimate is not None else estimate_token_count(text)

    async def list_models(self) -> List[ModelDescriptor]:
        return await self.primary.list_models()

    async def close(self) -> None:
        await self.primary.close()
        if self.secondary is not None:
            await self.secondary.close()
