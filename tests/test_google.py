"""
Keyless Google Translate adapter.
"""

import pytest

from providers.base import TranslationRequest
from providers.errors import ErrorKind, ProviderError
from providers.google import GoogleTranslateProvider, parse_gtx_response, split_into_chunks
from tests.fakes import FakeResponse, FakeSession, instant_retry, make_config


def make_provider(session, *, max_retries=2):
    return GoogleTranslateProvider(
        make_config("googletranslate", api_key="", model="gtx", base_url=None),
        session=session,
        retry=instant_retry(max_retries),
    )


def gtx(*segments):
    return [[[segment, "source", None, None] for segment in segments], None, "en"]


def test_parse_gtx_response():
    assert parse_gtx_response(gtx("Bon", "jour")) == "Bonjour"
    assert parse_gtx_response({"error": "x"}) is None
    assert parse_gtx_response([]) is None


def test_split_into_chunks_respects_size():
    blocks = [f"{i}\n00:00:0{i % 10},000 --> 00:00:0{i % 10},500\nLine number {i}" for i in range(50)]
    content = "\n\n".join(blocks)

    chunks = split_into_chunks(content, 300)

    assert len(chunks) > 1
    assert all(len(chunk) <= 300 for chunk in chunks)
    assert "\n\n".join(chunks) == content


def test_split_keeps_oversized_blocks_whole():
    chunks = split_into_chunks("a" * 50 + "\n\n" + "b" * 10, 20)
    assert chunks == ["a" * 50, "b" * 10]


@pytest.mark.asyncio
async def test_translate_races_mirrors():
    session = FakeSession(handler=lambda method, url, kwargs: FakeResponse(200, gtx("Bonjour")))
    provider = make_provider(session)

    result = await provider.translate(TranslationRequest(content="Hello", target_language="fr"))

    assert result.text == "Bonjour"
    assert result.provider == "googletranslate"
    assert 1 <= len(session.calls) <= provider.race_width
    params = session.calls[0].kwargs["params"]
    assert params == {"client": "gtx", "sl": "auto", "tl": "fr", "dt": "t", "q": "Hello"}
    assert "Authorization" not in (session.calls[0].kwargs["headers"] or {})


@pytest.mark.asyncio
async def test_one_failing_mirror_does_not_fail_the_chunk():
    failing = set()

    def handler(method, url, kwargs):
        if not failing:
            failing.add(url)
        if url in failing:
            return FakeResponse(500, text="mirror down")
        return FakeResponse(200, gtx("Bonjour"))

    session = FakeSession(handler=handler)
    provider = make_provider(session, max_retries=0)

    result = await provider.translate(TranslationRequest(content="Hello", target_language="fr"))

    assert result.text == "Bonjour"


@pytest.mark.asyncio
async def test_all_mirrors_failing_raises_classified_error():
    session = FakeSession(handler=lambda method, url, kwargs: FakeResponse(503, text="unavailable"))
    provider = make_provider(session, max_retries=0)

    with pytest.raises(ProviderError) as exc_info:
        await provider.translate(TranslationRequest(content="Hello", target_language="fr"))

    assert exc_info.value.kind is ErrorKind.SERVICE_UNAVAILABLE
    assert sum(provider._endpoint_failures.values()) == provider.race_width


def test_failing_mirrors_are_skipped():
    provider = make_provider(FakeSession())
    bad = provider.google_endpoints[0]
    provider._endpoint_failures[bad] = 5

    picked = {provider._get_next_endpoint() for _ in range(12)}

    assert bad not in picked
    assert len(picked) == len(provider.google_endpoints) - 1


@pytest.mark.asyncio
async def test_large_content_is_chunked():
    def handler(method, url, kwargs):
        return FakeResponse(200, gtx(kwargs["params"]["q"].upper()))

    session = FakeSession(handler=handler)
    provider = make_provider(session)
    provider.max_chars_per_request = 40
    content = "\n\n".join(f"line {i} of the subtitle" for i in range(6))

    result = await provider.translate(TranslationRequest(content=content, target_language="de"))

    assert result.text == content.upper()


@pytest.mark.asyncio
async def test_missing_target_is_fatal():
    provider = make_provider(FakeSession())

    with pytest.raises(ProviderError) as exc_info:
        await provider.translate(TranslationRequest(content="Hello", target_language=""))

    assert exc_info.value.kind is ErrorKind.FATAL
