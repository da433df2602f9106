from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional
import os


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(slots=True)
class RetryPolicy:
    base_delay: float = 3.0
    backoff_factor: float = 2.0
    backoff_jitter: float = 0.0
    discovery_time_budget: float = 20.0
    min_attempt_timeout: float = 5.0
    discovery_max_retries: int = 2


@dataclass(slots=True)
class EndpointSettings:
    gemini_api_base: str = field(default_factory=lambda: os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"))
    openai_api_base: str = field(default_factory=lambda: os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1"))
    xai_api_base: str = field(default_factory=lambda: os.getenv("XAI_API_BASE", "https://api.x.ai/v1"))
    deepseek_api_base: str = field(default_factory=lambda: os.getenv("DEEPSEEK_API_BASE", "https://api.deepseek.com/v1"))
    mistral_api_base: str = field(default_factory=lambda: os.getenv("MISTRAL_API_BASE", "https://api.mistral.ai/v1"))
    openrouter_api_base: str = field(default_factory=lambda: os.getenv("OPENROUTER_API_BASE", "https://openrouter.ai/api/v1"))
    openrouter_referrer: str | None = field(default_factory=lambda: os.getenv("OPENROUTER_REFERRER"))
    openrouter_title: str | None = field(default_factory=lambda: os.getenv("OPENROUTER_TITLE"))
    cfworkers_api_base: str = "https://api.cloudflare.com/client/v4/accounts"
    anthropic_api_base: str = field(default_factory=lambda: os.getenv("ANTHROPIC_API_BASE", "https://api.anthropic.com/v1"))
    anthropic_version: str = field(default_factory=lambda: os.getenv("ANTHROPIC_VERSION", "2023-06-01"))
    deepl_api_base: str | None = field(default_factory=lambda: os.getenv("DEEPL_API_BASE"))


@dataclass(slots=True)
class GeminiDefaults:
    model: str = field(default_factory=lambda: os.getenv("GEMINI_MODEL", "gemini-3-flash-preview"))
    max_output_tokens: int = field(default_factory=lambda: _env_int("GEMINI_MAX_OUTPUT_TOKENS", 65536))
    timeout: float = field(default_factory=lambda: float(_env_int("GEMINI_TRANSLATION_TIMEOUT", 600)))
    max_retries: int = field(default_factory=lambda: _env_int("GEMINI_MAX_RETRIES", 3))
    thinking_budget: int = field(default_factory=lambda: _env_int("GEMINI_THINKING_BUDGET", 0))
    temperature: float = field(default_factory=lambda: _env_float("GEMINI_TEMPERATURE", 0.8))
    top_k: int = field(default_factory=lambda: _env_int("GEMINI_TOP_K", 40))
    top_p: float = field(default_factory=lambda: _env_float("GEMINI_TOP_P", 0.95))


@dataclass(frozen=True, slots=True)
class BackendConfig:
    """Everything one provider instance needs, resolved once and passed by value."""

    provider: str
    api_key: str = ""
    model: str = ""
    base_url: str | None = None
    temperature: float | None = 0.4
    top_p: float | None = 0.95
    top_k: int | None = None
    thinking_budget: int = 0
    max_output_tokens: int = 4096
    output_token_limit: int | None = None
    timeout: float = 60.0
    max_retries: int = 2
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    reasoning_effort: str | None = None
    formality: str = "default"
    preserve_formatting: bool = True
    enabled: bool = True


# Per-provider parameter defaults, overridable per call site
PROVIDER_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "openai": {"temperature": 0.4, "top_p": 0.95, "max_output_tokens": 4096, "timeout": 60.0, "max_retries": 2},
    "xai": {"temperature": 0.4, "top_p": 0.95, "max_output_tokens": 4096, "timeout": 60.0, "max_retries": 2},
    "deepseek": {"temperature": 0.4, "top_p": 0.95, "max_output_tokens": 4096, "timeout": 60.0, "max_retries": 2},
    "mistral": {"temperature": 0.4, "top_p": 0.95, "max_output_tokens": 4096, "timeout": 60.0, "max_retries": 2},
    "openrouter": {"temperature": 0.4, "top_p": 0.95, "max_output_tokens": 4096, "timeout": 60.0, "max_retries": 2},
    "cfworkers": {"temperature": 0.4, "top_p": 0.95, "max_output_tokens": 4096, "timeout": 60.0, "max_retries": 2},
    "custom": {"temperature": 0.4, "top_p": 0.95, "max_output_tokens": 4096, "timeout": 60.0, "max_retries": 2},
    "anthropic": {"temperature": 0.4, "top_p": 0.95, "max_output_tokens": 4000, "timeout": 60.0, "max_retries": 2},
    "deepl": {"model": "quality_optimized", "timeout": 60.0, "max_retries": 2},
    "googletranslate": {"model": "gtx", "timeout": 20.0, "max_retries": 2},
}

# Providers that work without an API key
KEY_OPTIONAL_PROVIDERS = frozenset({"googletranslate", "custom"})

MIN_TIMEOUT_SECONDS = 5.0


@dataclass(slots=True)
class ProviderSetup:
    main_provider: str = "gemini"
    providers: Dict[str, BackendConfig] = field(default_factory=dict)
    secondary_provider: str | None = None
    secondary_enabled: bool = False


@dataclass(slots=True)
class AppSettings:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    endpoints: EndpointSettings = field(default_factory=EndpointSettings)
    gemini: GeminiDefaults = field(default_factory=GeminiDefaults)
    stream_channel_size: int = field(default_factory=lambda: _env_int("SUBRELAY_STREAM_CHANNEL_SIZE", 8))


SETTINGS = AppSettings()


def _gemini_defaults(settings: AppSettings) -> Dict[str, Any]:
    gemini = settings.gemini
    return {
        "model": gemini.model,
        "temperature": gemini.temperature,
        "top_p": gemini.top_p,
        "top_k": gemini.top_k,
        "thinking_budget": gemini.thinking_budget,
        "max_output_tokens": gemini.max_output_tokens,
        "timeout": gemini.timeout,
        "max_retries": gemini.max_retries,
    }


def resolve_backend_config(
    provider: str,
    overrides: Optional[Mapping[str, Any]] = None,
    settings: AppSettings | None = None,
) -> BackendConfig:
    """Merge provider defaults, env defaults and explicit overrides.

    Unknown override keys are ignored. ``None`` overrides fall back to the default.
    """
    settings = settings or SETTINGS
    key = provider.lower()
    merged: Dict[str, Any] = {}
    if key == "gemini":
        merged.update(_gemini_defaults(settings))
    else:
        merged.update(PROVIDER_DEFAULTS.get(key, {}))

    allowed = {f.name for f in fields(BackendConfig)}
    for name, value in (overrides or {}).items():
        if name in allowed and value is not None:
            merged[name] = value
    merged["provider"] = key

    config = BackendConfig(**merged)
    return replace(
        config,
        timeout=max(MIN_TIMEOUT_SECONDS, float(config.timeout)),
        max_retries=max(0, int(config.max_retries)),
    )


def is_configured(config: BackendConfig | None) -> bool:
    if config is None or not config.enabled:
        return False
    if config.provider in KEY_OPTIONAL_PROVIDERS:
        return bool(config.model)
    return bool(config.api_key and config.model)
