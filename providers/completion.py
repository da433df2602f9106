from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional, Sequence

from .errors import MAX_TOKENS, PROHIBITED_CONTENT, ErrorKind, ProviderError


logger = logging.getLogger(__name__)


class FinishReason(str, Enum):
    STOP = "STOP"
    SAFETY = "SAFETY"
    RECITATION = "RECITATION"
    MAX_TOKENS = "MAX_TOKENS"
    OTHER = "OTHER"


_NATIVE_REASONS = {
    "stop": FinishReason.STOP,
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "tool_calls": FinishReason.STOP,
    "tool_use": FinishReason.STOP,
    "safety": FinishReason.SAFETY,
    "prohibited_content": FinishReason.SAFETY,
    "blocklist": FinishReason.SAFETY,
    "spii": FinishReason.SAFETY,
    "content_filter": FinishReason.SAFETY,
    "refusal": FinishReason.SAFETY,
    "recitation": FinishReason.RECITATION,
    "max_tokens": FinishReason.MAX_TOKENS,
    "length": FinishReason.MAX_TOKENS,
}

# Output at or below this share of the input is treated as a failed truncation
MIN_OUTPUT_RATIO_NUMERATOR = 3
MIN_OUTPUT_RATIO_DENOMINATOR = 10


def normalize_finish_reason(native: Any) -> Optional[FinishReason]:
    if native is None or native == "":
        return None
    return _NATIVE_REASONS.get(str(native).strip().lower(), FinishReason.OTHER)


def is_truncated_below_threshold(text: str, source_text: str) -> bool:
    return len(text) * MIN_OUTPUT_RATIO_DENOMINATOR <= len(source_text) * MIN_OUTPUT_RATIO_NUMERATOR


def assess_completion(
    text: str,
    *,
    source_text: str,
    finish_reason: Optional[FinishReason],
    native_finish_reason: Any = None,
    block_reason: Optional[str] = None,
    safety_ratings: Optional[Sequence[Any]] = None,
    provider: str = "",
) -> str:
    """Decide whether sanitized ``text`` is an acceptable translation.

    Returns the text when it is, raises a classified ``ProviderError`` otherwise.
    """
    if not text and (block_reason or safety_ratings):
        reason = block_reason or "SAFETY"
        raise ProviderError(
            f"PROHIBITED_CONTENT: {reason}",
            kind=ErrorKind.CONTENT_BLOCKED,
            provider=provider,
            classification=PROHIBITED_CONTENT,
        )

    if finish_reason is FinishReason.SAFETY:
        raise ProviderError(
            f"PROHIBITED_CONTENT: {native_finish_reason or 'SAFETY'}",
            kind=ErrorKind.CONTENT_BLOCKED,
            provider=provider,
            classification=PROHIBITED_CONTENT,
        )
    if finish_reason is FinishReason.RECITATION:
        raise ProviderError(
            "RECITATION: Translation blocked due to recitation concerns",
            kind=ErrorKind.CONTENT_BLOCKED,
            provider=provider,
            classification=PROHIBITED_CONTENT,
        )
    if finish_reason is FinishReason.MAX_TOKENS:
        if is_truncated_below_threshold(text, source_text):
            raise ProviderError(
                "MAX_TOKENS: Translation exceeded maximum token limit with minimal output",
                kind=ErrorKind.TOKEN_BUDGET_EXCEEDED,
                provider=provider,
                classification=MAX_TOKENS,
            )
        logger.warning("[%s] MAX_TOKENS reached, continuing with partial translation", provider)
    elif finish_reason is FinishReason.OTHER:
        logger.warning("[%s] Generation finished with unusual reason: %s", provider, native_finish_reason)

    if not text:
        raise ProviderError(
            f"{provider}: no content returned",
            kind=ErrorKind.MALFORMED_RESPONSE,
            provider=provider,
        )
    return text
