"""
SubRelay Translation Providers

Supported backends:
- Gemini (generative content API with thinking budgets)
- OpenAI-compatible chat completion (OpenAI, xAI, DeepSeek, Mistral, OpenRouter,
  Cloudflare Workers AI, custom endpoints)
- Anthropic Messages API
- DeepL API (free and pro plans)
- Google Translate (keyless mirrors)
"""
from .anthropic import AnthropicProvider
from .base import BaseProvider, ModelDescriptor, TranslationRequest, TranslationResult
from .budget import GenerationBudget, ModelLimits, plan_generation_budget
from .completion import FinishReason, assess_completion
from .deepl_api import DeepLAPIProvider
from .errors import ErrorKind, MultiProviderError, ProviderError
from .factory import (
    AVAILABLE_PROVIDERS,
    ProviderKind,
    ProviderSelection,
    build_provider,
    create_translation_provider,
    get_available_providers,
)
from .fallback import FallbackProvider
from .gemini import GeminiProvider
from .google import GoogleTranslateProvider
from .openai_compatible import OpenAICompatibleProvider
from .recovery import recover_stream
from .retry import RetryController
from .streaming import StreamProcessor, StreamUpdate, stream_partials

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "ModelDescriptor",
    "TranslationRequest",
    "TranslationResult",
    "GenerationBudget",
    "ModelLimits",
    "plan_generation_budget",
    "FinishReason",
    "assess_completion",
    "DeepLAPIProvider",
    "ErrorKind",
    "MultiProviderError",
    "ProviderError",
    "AVAILABLE_PROVIDERS",
    "ProviderKind",
    "ProviderSelection",
    "build_provider",
    "create_translation_provider",
    "get_available_providers",
    "FallbackProvider",
    "GeminiProvider",
    "GoogleTranslateProvider",
    "OpenAICompatibleProvider",
    "recover_stream",
    "RetryController",
    "StreamProcessor",
    "StreamUpdate",
    "stream_partials",
]
