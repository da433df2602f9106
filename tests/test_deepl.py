"""
DeepL API adapter.
"""

import pytest

from providers.base import TranslationRequest
from providers.deepl_api import DeepLAPIProvider, extract_entries, normalize_language
from providers.errors import ErrorKind, ProviderError
from tests.fakes import FakeResponse, FakeSession, instant_retry, make_config


SRT = (
    "1\n00:00:01,000 --> 00:00:02,000\nHello\n\n"
    "2\n00:00:03,000 --> 00:00:04,000\nWorld\nagain\n"
)


def make_provider(session, **overrides):
    values = {"model": "quality_optimized", "base_url": None, "api_key": "abc:fx"}
    values.update(overrides)
    return DeepLAPIProvider(make_config("deepl", **values), session=session, retry=instant_retry())


@pytest.mark.parametrize(
    "code, for_target, expected",
    [
        ("en", True, "EN-US"),
        ("en", False, "EN"),
        ("pt-br", True, "PT-BR"),
        ("pt-br", False, "PT"),
        ("pob", True, "PT-BR"),
        ("pt", True, "PT-PT"),
        ("zh", True, "ZH-HANS"),
        ("zh-tw", True, "ZH-HANT"),
        ("zh", False, "ZH"),
        ("es_419", True, "ES-419"),
        ("no", True, "NB"),
        ("iw", False, "HE"),
        ("fr", True, "FR"),
        ("auto", False, None),
        ("", True, None),
        (None, False, None),
    ],
)
def test_normalize_language(code, for_target, expected):
    assert normalize_language(code, for_target=for_target) == expected


def test_extract_entries_from_srt():
    assert extract_entries(SRT) == ["Hello", "World\nagain"]


def test_extract_entries_from_numbered_list():
    assert extract_entries("1. Hello\n\n2. World\n3) Again") == ["Hello", "World", "Again"]


def test_extract_entries_after_context_marker():
    content = "Context lines\n=== ENTRIES TO TRANSLATE ===\n\n1. Hello\n2. Bye"
    assert extract_entries(content) == ["Hello", "Bye"]


def test_extract_entries_of_plain_text_is_empty():
    assert extract_entries("") == []
    assert extract_entries("Just a sentence") == []


@pytest.mark.asyncio
async def test_translate_numbers_the_output():
    session = FakeSession([FakeResponse(200, {"translations": [
        {"detected_source_language": "EN", "text": "Bonjour"},
        {"detected_source_language": "EN", "text": "Monde\nencore"},
    ]})])
    provider = make_provider(session)
    request = TranslationRequest(content=SRT, target_language="fr", source_language="en-us")

    result = await provider.translate(request)

    assert result.text == "1. Bonjour\n\n2. Monde\nencore"
    call = session.calls[0]
    assert call.url == "https://api-free.deepl.com/v2/translate"
    assert call.headers["Authorization"] == "DeepL-Auth-Key abc:fx"
    assert call.json == {
        "text": ["Hello", "World\nagain"],
        "target_lang": "FR",
        "preserve_formatting": True,
        "split_sentences": "nonewlines",
        "model_type": "quality_optimized",
        "source_lang": "EN",
    }


@pytest.mark.asyncio
async def test_pro_keys_and_formality():
    session = FakeSession([FakeResponse(200, {"translations": [{"text": "Hallo"}]})])
    provider = make_provider(session, api_key="pro-key", formality="prefer_less")

    await provider.translate(TranslationRequest(content="Hello", target_language="de"))

    call = session.calls[0]
    assert call.url == "https://api.deepl.com/v2/translate"
    assert call.json["formality"] == "prefer_less"
    assert call.json["text"] == ["Hello"]


@pytest.mark.asyncio
async def test_quota_exceeded_is_not_retried():
    session = FakeSession([FakeResponse(456, {"message": "Quota exceeded"})])
    provider = make_provider(session)

    with pytest.raises(ProviderError) as exc_info:
        await provider.translate(TranslationRequest(content="Hello", target_language="fr"))

    assert exc_info.value.classification == "QUOTA"
    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_missing_key_is_fatal():
    provider = make_provider(FakeSession(), api_key="")

    with pytest.raises(ProviderError) as exc_info:
        await provider.translate(TranslationRequest(content="Hello", target_language="fr"))

    assert exc_info.value.kind is ErrorKind.FATAL


@pytest.mark.asyncio
async def test_stream_translate_emits_one_partial():
    session = FakeSession([FakeResponse(200, {"translations": [{"text": "Bonjour"}, {"text": "Monde"}]})])
    provider = make_provider(session)
    partials = []

    result = await provider.stream_translate(
        TranslationRequest(content="1. Hello\n2. World", target_language="fr"),
        partials.append,
    )

    assert partials == ["1. Bonjour\n\n2. Monde"]
    assert result.text == partials[0]


@pytest.mark.asyncio
async def test_models_are_static():
    provider = make_provider(FakeSession())
    assert [m.name for m in await provider.list_models()] == ["quality_optimized", "latency_optimized"]
