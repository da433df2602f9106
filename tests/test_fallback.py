"""
Primary/secondary fallback decorator.
"""

import pytest

from providers.base import TranslationRequest
from providers.errors import MULTI_PROVIDER, ErrorKind, MultiProviderError, ProviderError
from providers.fallback import FallbackProvider
from providers.openai_compatible import OpenAICompatibleProvider
from tests.fakes import FakeResponse, FakeSession, StubProvider, instant_retry, make_config

pytestmark = pytest.mark.asyncio


REQUEST = TranslationRequest(content="Hello", target_language="fr")


def unavailable(name):
    return ProviderError(f"{name} down", kind=ErrorKind.SERVICE_UNAVAILABLE, provider=name)


async def test_primary_success_skips_secondary():
    primary = StubProvider(name="gemini", text="Bonjour")
    secondary = StubProvider(name="openai", text="Salut")
    provider = FallbackProvider(primary, secondary, primary_name="gemini", secondary_name="openai")

    result = await provider.translate(REQUEST)

    assert result.text == "Bonjour"
    assert secondary.translate_calls == 0


async def test_secondary_result_after_primary_failure():
    primary = StubProvider(name="gemini", error=unavailable("gemini"))
    secondary = StubProvider(name="openai", text="Salut")
    provider = FallbackProvider(primary, secondary, primary_name="gemini", secondary_name="openai")

    result = await provider.translate(REQUEST)

    assert result.text == "Salut"
    assert result.provider == "openai"
    assert secondary.seen == [REQUEST]


async def test_both_failing_raises_combined_error():
    primary_error = unavailable("gemini")
    secondary_error = ProviderError("bad key", kind=ErrorKind.FATAL, provider="openai")
    provider = FallbackProvider(
        StubProvider(error=primary_error),
        StubProvider(error=secondary_error),
        primary_name="gemini",
        secondary_name="openai",
    )

    with pytest.raises(MultiProviderError) as exc_info:
        await provider.translate(REQUEST)

    error = exc_info.value
    assert error.classification == MULTI_PROVIDER
    assert error.primary_error is primary_error
    assert error.secondary_error is secondary_error
    assert error.__cause__ is secondary_error
    assert "gemini down" in error.message
    assert "bad key" in error.message


async def test_without_secondary_primary_error_propagates():
    primary_error = unavailable("gemini")
    provider = FallbackProvider(StubProvider(error=primary_error))

    with pytest.raises(ProviderError) as exc_info:
        await provider.translate(REQUEST)

    assert exc_info.value is primary_error


async def test_stream_failure_replays_secondary_once():
    """Verify the secondary's full text follows the primary's partials."""
    primary = StubProvider(name="gemini", partials=["Bon"], stream_error=unavailable("gemini"))
    secondary = StubProvider(name="openai", text="Bonjour")
    provider = FallbackProvider(primary, secondary, primary_name="gemini", secondary_name="openai")
    partials = []

    result = await provider.stream_translate(REQUEST, partials.append)

    assert result.text == "Bonjour"
    assert partials == ["Bon", "Bonjour"]
    assert secondary.translate_calls == 1
    assert secondary.stream_calls == 0


async def test_shorter_secondary_text_is_not_reported():
    primary = StubProvider(partials=["Bonjour tout"], stream_error=unavailable("gemini"))
    secondary = StubProvider(text="Salut")
    provider = FallbackProvider(primary, secondary)
    partials = []

    result = await provider.stream_translate(REQUEST, partials.append)

    assert result.text == "Salut"
    assert partials == ["Bonjour tout"]


async def test_stream_without_secondary_reraises():
    error = unavailable("gemini")
    provider = FallbackProvider(StubProvider(stream_error=error))

    with pytest.raises(ProviderError) as exc_info:
        await provider.stream_translate(REQUEST, lambda text: None)

    assert exc_info.value is error


async def test_non_streaming_primary_uses_translate():
    primary = StubProvider(text="Hallo", supports_streaming=False)
    provider = FallbackProvider(primary, StubProvider())
    partials = []

    result = await provider.stream_translate(REQUEST, partials.append)

    assert result.text == "Hallo"
    assert partials == ["Hallo"]
    assert primary.stream_calls == 0


async def test_stream_both_failing_raises_combined_error():
    provider = FallbackProvider(
        StubProvider(stream_error=unavailable("gemini")),
        StubProvider(error=unavailable("openai")),
        primary_name="gemini",
        secondary_name="openai",
    )

    with pytest.raises(MultiProviderError):
        await provider.stream_translate(REQUEST)


async def test_token_counting_prefers_a_capable_provider():
    primary = StubProvider(tokens=None)
    secondary = StubProvider(tokens=12, supports_token_counting=True)
    provider = FallbackProvider(primary, secondary)

    assert provider.supports_token_counting is True
    assert await provider.count_tokens(REQUEST) == 12
    assert provider.estimate_token_count("abcd") == 4


async def test_close_closes_both():
    primary, secondary = StubProvider(), StubProvider()
    await FallbackProvider(primary, secondary).close()
    assert primary.closed and secondary.closed


@pytest.mark.parametrize("max_retries", [0, 2])
async def test_adapter_exhausts_every_attempt_before_secondary(max_retries):
    session = FakeSession([FakeResponse(503, text="upstream overloaded") for _ in range(max_retries + 1)])
    primary = OpenAICompatibleProvider(make_config("openai"), session=session, retry=instant_retry(max_retries))
    secondary = StubProvider(name="gemini", text="Salut")
    provider = FallbackProvider(primary, secondary, primary_name="openai", secondary_name="gemini")

    result = await provider.translate(REQUEST)

    assert result.text == "Salut"
    assert len(session.calls) == max_retries + 1
    assert secondary.translate_calls == 1
