import pytest

from providers.base import TranslationRequest
from tests.fakes import FakeSession


SRT_BLOCK = "1\n00:00:01,000 --> 00:00:02,000\nHello"


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def srt_request():
    return TranslationRequest(content=SRT_BLOCK, target_language="French")


@pytest.fixture
def short_request():
    return TranslationRequest(content="Hello", target_language="French")
