"""
DeepL API Provider

Official DeepL API translator supporting both Free and Pro plans.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from utils.text import sanitize

from .base import BaseProvider, ModelDescriptor, TranslationRequest, TranslationResult
from .errors import ErrorKind, ProviderError


# Shorthand and regional spellings mapped to DeepL codes
LANGUAGE_VARIANTS = {
    "enus": "EN-US",
    "engb": "EN-GB",
    "ptbr": "PT-BR",
    "ptpt": "PT-PT",
    "es419": "ES-419",
    "zhhant": "ZH-HANT",
    "zhhans": "ZH-HANS",
    "zht": "ZH-HANT",
    "zhs": "ZH-HANS",
    "zhtw": "ZH-HANT",
    "zhcn": "ZH-HANS",
}

# Target-only regional codes collapse to the base language for sources
SOURCE_COLLAPSE = {
    "EN-US": "EN",
    "EN-GB": "EN",
    "ES-419": "ES",
    "ZH-HANS": "ZH",
    "ZH-HANT": "ZH",
    "PT-BR": "PT",
    "PT-PT": "PT",
}

CONTEXT_MARKER = "=== ENTRIES TO TRANSLATE"

_SRT_ENTRY_RE = re.compile(r"(?:^|\n)\d+\s*\n[^\n]*-->\s*[^\n]*\n([\s\S]*?)(?=\n{2,}\d+\s*\n|\Z)")
_NUMBERED_ENTRY_RE = re.compile(r"(\d+)[.):-]+\s+([\s\S]*?)(?=\n+\d+[.):-]+\s+|\Z)")


def normalize_language(code: Optional[str], *, for_target: bool = False) -> Optional[str]:
    """Map a language code to the form DeepL expects.

    Returns None for empty or auto-detect sources.
    """
    lower = (code or "").strip().lower()
    if not lower or lower in ("auto", "detected"):
        return None

    normalized = lower.replace("_", "-")
    if normalized.endswith("-tr"):
        normalized = normalized[:-3]
    if normalized == "iw":
        normalized = "he"
    elif normalized in ("pob", "ptbr"):
        normalized = "pt-br"
    elif normalized == "spn":
        normalized = "es-419"

    compact = normalized.replace("-", "")
    if compact in LANGUAGE_VARIANTS:
        normalized = LANGUAGE_VARIANTS[compact]

    if normalized == "en":
        normalized = "EN-US" if for_target else "EN"
    elif normalized == "pt":
        normalized = "PT-PT" if for_target else "PT"
    elif normalized == "zh":
        normalized = "ZH-HANS" if for_target else "ZH"
    elif normalized == "no":
        normalized = "NB"
    else:
        normalized = normalized.upper()

    if not for_target:
        normalized = SOURCE_COLLAPSE.get(normalized, normalized)
    return normalized


def extract_entries(content: str) -> List[str]:
    """Pull the translatable texts out of an SRT batch or a numbered list."""
    if not content:
        return []
    marker = content.find(CONTEXT_MARKER)
    if marker >= 0:
        content = re.sub(r"^\s*\n+", "", content[marker + len(CONTEXT_MARKER):])
    normalized = content.replace("\r\n", "\n").strip()
    if not normalized:
        return []

    if "-->" in normalized:
        entries = [m.group(1).strip() for m in _SRT_ENTRY_RE.finditer(normalized)]
        entries = [e for e in entries if e]
        if entries:
            return entries

    entries = [m.group(2).strip() for m in _NUMBERED_ENTRY_RE.finditer(normalized)]
    return [e for e in entries if e]


class DeepLAPIProvider(BaseProvider):
    """DeepL API provider with Free and Pro plan support.

    Features:
    - Automatic host selection from the key (``:fx`` keys use the free host)
    - Entry extraction from SRT blocks or numbered lists
    - Formality, model type and formatting preservation
    - Streaming emulated with a single partial
    """

    name = "deepl"
    supports_streaming = False

    PRO_API_URL = "https://api.deepl.com"
    FREE_API_URL = "https://api-free.deepl.com"

    MODELS = (
        ModelDescriptor(
            name="quality_optimized",
            display_name="Quality optimized (default)",
            description="Best translation quality (default DeepL model)",
        ),
        ModelDescriptor(
            name="latency_optimized",
            display_name="Latency optimized",
            description="Faster responses with slightly lower quality",
        ),
    )

    def __init__(self, config, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self.api_key = (config.api_key or "").strip()
        if config.base_url:
            self.api_url = config.base_url.rstrip("/")
        elif ":fx" in self.api_key.lower():
            self.api_url = self.FREE_API_URL
        else:
            self.api_url = self.PRO_API_URL

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"DeepL-Auth-Key {self.api_key}"}

    def build_payload(self, texts: List[str], request: TranslationRequest) -> Dict[str, Any]:
        target = normalize_language(request.target_language, for_target=True)
        if not target:
            raise ProviderError(
                "DeepL: target language is required",
                kind=ErrorKind.FATAL,
                provider=self.provider_name,
            )
        payload: Dict[str, Any] = {
            "text": texts,
            "target_lang": target,
            "preserve_formatting": self.config.preserve_formatting is True,
            "split_sentences": "nonewlines",
            "model_type": self.model or "quality_optimized",
        }
        source = normalize_language(request.source_language)
        if source:
            payload["source_lang"] = source
        if self.config.formality and self.config.formality != "default":
            payload["formality"] = self.config.formality
        return payload

    async def _translate_once(self, request: TranslationRequest, timeout: Optional[float]) -> TranslationResult:
        if not self.api_key:
            raise ProviderError("DeepL: API key is required", kind=ErrorKind.FATAL, provider=self.provider_name)

        texts = extract_entries(request.content) or [request.content]
        data = await self._request_json(
            "POST",
            f"{self.api_url}/v2/translate",
            timeout=timeout,
            payload=self.build_payload(texts, request),
            operation="Translate",
        )

        items = data.get("translations") if isinstance(data, dict) else None
        if not isinstance(items, list) or not items:
            raise ProviderError(
                "DeepL: no translation returned",
                kind=ErrorKind.MALFORMED_RESPONSE,
                provider=self.provider_name,
            )
        if len(items) != len(texts):
            self.logger.warning("DeepL returned %d translations for %d texts", len(items), len(texts))

        translations = [sanitize(item.get("text", "") if isinstance(item, dict) else "") for item in items]
        text = "\n\n".join(f"{index}. {value}" for index, value in enumerate(translations, start=1))
        return self._result(text)

    async def list_models(self) -> List[ModelDescriptor]:
        return list(self.MODELS)
