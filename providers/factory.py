"""
Provider Factory

Builds provider instances from resolved ``BackendConfig`` values and
assembles the primary/secondary selection used by callers.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple, Union

import aiohttp

from config import SETTINGS, AppSettings, BackendConfig, ProviderSetup, is_configured, resolve_backend_config
from .anthropic import AnthropicProvider
from .base import BaseProvider, ConnectorFactory
from .deepl_api import DeepLAPIProvider
from .fallback import FallbackProvider
from .gemini import GeminiProvider
from .google import GoogleTranslateProvider
from .openai_compatible import OpenAICompatibleProvider


logger = logging.getLogger(__name__)

# Resolves a user-supplied base URL to an approved, sanitized one; raises ValueError to reject
EndpointValidator = Callable[[str], Awaitable[str]]


class ProviderKind(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    XAI = "xai"
    DEEPSEEK = "deepseek"
    MISTRAL = "mistral"
    OPENROUTER = "openrouter"
    CFWORKERS = "cfworkers"
    CUSTOM = "custom"
    ANTHROPIC = "anthropic"
    DEEPL = "deepl"
    GOOGLETRANSLATE = "googletranslate"


AVAILABLE_PROVIDERS = {
    ProviderKind.GEMINI: "Google Gemini",
    ProviderKind.OPENAI: "OpenAI",
    ProviderKind.XAI: "xAI Grok",
    ProviderKind.DEEPSEEK: "DeepSeek",
    ProviderKind.MISTRAL: "Mistral",
    ProviderKind.OPENROUTER: "OpenRouter",
    ProviderKind.CFWORKERS: "Cloudflare Workers AI",
    ProviderKind.CUSTOM: "Custom OpenAI-compatible endpoint",
    ProviderKind.ANTHROPIC: "Anthropic Claude",
    ProviderKind.DEEPL: "DeepL API",
    ProviderKind.GOOGLETRANSLATE: "Google Translate (keyless)",
}

# Chat completion providers and the endpoint setting holding their base URL
_CHAT_BASE_URLS = {
    ProviderKind.OPENAI: "openai_api_base",
    ProviderKind.XAI: "xai_api_base",
    ProviderKind.DEEPSEEK: "deepseek_api_base",
    ProviderKind.MISTRAL: "mistral_api_base",
    ProviderKind.OPENROUTER: "openrouter_api_base",
}

_CF_ACCOUNT_ID_RE = re.compile(r"^[a-f0-9]{32}$")

AnyProvider = Union[BaseProvider, FallbackProvider]


def get_available_providers() -> Dict[str, str]:
    """Get available providers with display names."""
    return {kind.value: label for kind, label in AVAILABLE_PROVIDERS.items()}


def resolve_cfworkers_credentials(raw_key: Optional[str]) -> Tuple[str, str]:
    """Split ``ACCOUNT_ID|TOKEN`` (or ``ACCOUNT_ID:TOKEN``) into its parts.

    A key without a delimiter is treated as a bare token.

    Raises:
        ValueError: If the account id is not a 32-character lowercase hex string
    """
    cleaned = (raw_key or "").strip()
    account_id, token = "", ""
    if cleaned:
        for delimiter in ("|", ":"):
            if delimiter in cleaned:
                account, _, rest = cleaned.partition(delimiter)
                account_id, token = account.strip(), rest.strip()
                break
        else:
            token = cleaned
    if account_id and not _CF_ACCOUNT_ID_RE.match(account_id):
        logger.warning("Invalid Cloudflare Workers account ID format (expected 32-char hex), rejecting")
        raise ValueError(
            "Invalid Cloudflare Workers account ID format. Expected a 32-character hexadecimal string."
        )
    return account_id, token


def openrouter_headers(settings: AppSettings) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    if settings.endpoints.openrouter_referrer:
        headers["HTTP-Referer"] = settings.endpoints.openrouter_referrer
    if settings.endpoints.openrouter_title:
        headers["X-Title"] = settings.endpoints.openrouter_title
    return headers


async def build_provider(
    name: str,
    config: BackendConfig,
    *,
    settings: Optional[AppSettings] = None,
    validate_endpoint: Optional[EndpointValidator] = None,
    connector_factory: Optional[ConnectorFactory] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> BaseProvider:
    """Build a provider instance.

    Args:
        name: Provider key (see ``ProviderKind``)
        config: Resolved backend configuration
        settings: Endpoint settings, defaults to ``SETTINGS``
        validate_endpoint: Approves custom base URLs, required for ``custom``
        connector_factory: Connector factory for custom endpoint sessions
        session: Optional shared aiohttp session

    Returns:
        BaseProvider instance

    Raises:
        ValueError: If the provider is not supported or required params are missing
    """
    settings = settings or SETTINGS
    endpoints = settings.endpoints
    try:
        kind = ProviderKind(name.lower())
    except ValueError:
        raise ValueError(f"Unsupported provider: {name}") from None
    config = replace(config, provider=kind.value)

    if kind is ProviderKind.GEMINI:
        return GeminiProvider(config, base_url=config.base_url or endpoints.gemini_api_base, session=session)

    if kind is ProviderKind.ANTHROPIC:
        config = replace(config, base_url=config.base_url or endpoints.anthropic_api_base)
        return AnthropicProvider(config, api_version=endpoints.anthropic_version, session=session)

    if kind is ProviderKind.DEEPL:
        config = replace(config, base_url=config.base_url or endpoints.deepl_api_base)
        return DeepLAPIProvider(config, session=session)

    if kind is ProviderKind.GOOGLETRANSLATE:
        return GoogleTranslateProvider(config, session=session)

    if kind is ProviderKind.CFWORKERS:
        account_id, token = resolve_cfworkers_credentials(config.api_key)
        if not account_id or not token:
            raise ValueError("Cloudflare Workers AI requires an account ID and token. Provide as ACCOUNT_ID|TOKEN.")
        config = replace(
            config,
            api_key=token,
            base_url=f"{endpoints.cfworkers_api_base.rstrip('/')}/{account_id}/ai/v1",
        )
        return OpenAICompatibleProvider(config, session=session)

    if kind is ProviderKind.CUSTOM:
        if not config.base_url:
            raise ValueError("Custom provider requires a base URL")
        if validate_endpoint is None:
            raise ValueError("Custom provider requires an endpoint validator")
        approved = await validate_endpoint(config.base_url)
        return OpenAICompatibleProvider(
            replace(config, base_url=approved),
            session=session,
            connector_factory=connector_factory,
        )

    base_url = config.base_url or getattr(endpoints, _CHAT_BASE_URLS[kind])
    extra_headers = dict(config.extra_headers or {})
    if kind is ProviderKind.OPENROUTER:
        extra_headers = {**openrouter_headers(settings), **extra_headers}
    return OpenAICompatibleProvider(replace(config, base_url=base_url, extra_headers=extra_headers), session=session)


@dataclass(slots=True)
class ProviderSelection:
    provider_name: str
    provider: AnyProvider
    model: str
    fallback_provider: Optional[BaseProvider] = None
    fallback_provider_name: Optional[str] = None
    fallback_model: Optional[str] = None


async def create_translation_provider(
    setup: ProviderSetup,
    *,
    settings: Optional[AppSettings] = None,
    validate_endpoint: Optional[EndpointValidator] = None,
    connector_factory: Optional[ConnectorFactory] = None,
) -> ProviderSelection:
    """Build the main provider, wrapped with a secondary when one is configured.

    A main provider that is missing configuration or cannot be built falls
    back to Gemini. A misconfigured secondary is skipped with a warning.
    """
    settings = settings or SETTINGS
    providers = {key.lower(): value for key, value in setup.providers.items()}
    main = (setup.main_provider or ProviderKind.GEMINI.value).lower()

    async def build(key: str) -> Optional[BaseProvider]:
        try:
            return await build_provider(
                key,
                providers[key],
                settings=settings,
                validate_endpoint=validate_endpoint,
                connector_factory=connector_factory,
            )
        except ValueError as exc:
            logger.warning("Cannot build provider '%s': %s", key, exc)
            return None

    if main != ProviderKind.GEMINI.value and not is_configured(providers.get(main)):
        logger.warning("Missing configuration for main provider '%s', falling back to Gemini", main)
        main = ProviderKind.GEMINI.value

    primary = await build(main) if main != ProviderKind.GEMINI.value else None
    if primary is None:
        if main != ProviderKind.GEMINI.value:
            logger.warning("Unsupported provider '%s', falling back to Gemini", main)
        main = ProviderKind.GEMINI.value
        providers.setdefault(main, resolve_backend_config(main, settings=settings))
        primary = await build_provider(main, providers[main], settings=settings)

    selection = ProviderSelection(provider_name=main, provider=primary, model=primary.model)

    secondary_key = (setup.secondary_provider or "").lower()
    if not setup.secondary_enabled or not secondary_key or secondary_key == main:
        return selection

    if not is_configured(providers.get(secondary_key)):
        logger.warning("Secondary provider '%s' is not fully configured; skipping fallback setup", secondary_key)
        return selection

    secondary = await build(secondary_key)
    if secondary is None:
        return selection

    selection.provider = FallbackProvider(
        primary,
        secondary,
        primary_name=main,
        secondary_name=secondary_key,
    )
    selection.fallback_provider = secondary
    selection.fallback_provider_name = secondary_key
    selection.fallback_model = secondary.model
    return selection
