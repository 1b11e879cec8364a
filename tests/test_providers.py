import httpx
import openai
import pytest

from branching_chat.config import KNOWN_PROVIDERS, Settings
from branching_chat.errors import (
    CredentialMissingError,
    InvalidProviderError,
    ProviderRateLimitError,
    ProviderTransportError,
    UnknownProviderError,
)
from branching_chat.llms.base import LLMMessage, Roles
from branching_chat.llms.openai_compatible import OpenAICompatibleLLM
from branching_chat.llms.registry import ProviderRegistry
from tests.conftest import ScriptedLLM, make_registry

REQUEST = httpx.Request("POST", "https://example.invalid/v1/chat/completions")


def status_error(cls, status: int) -> openai.APIStatusError:
    return cls("failed", response=httpx.Response(status, request=REQUEST), body=None)


class TestProviderRegistry:
    def test_get_builds_provider_with_credential(self):
        llm = ScriptedLLM("openai")
        registry = make_registry({"openai": llm})

        assert registry.is_known("openai")
        assert registry.get("openai") is llm

    def test_get_unknown_provider(self):
        with pytest.raises(InvalidProviderError):
            make_registry({}).get("mystery")

    def test_get_without_credential(self):
        registry = make_registry({"claude": ScriptedLLM("claude")}, without_credentials=["claude"])

        assert registry.is_known("claude")
        assert not registry.has_credential("claude")
        with pytest.raises(CredentialMissingError) as exc_info:
            registry.get("claude")
        assert exc_info.value.message == "credential not configured"

    def test_from_settings_registers_every_known_provider(self):
        registry = ProviderRegistry.from_settings(Settings(api_keys={"openai": "sk-test", "grok": ""}))

        assert registry.providers == sorted(KNOWN_PROVIDERS)
        assert registry.has_credential("openai")
        assert not registry.has_credential("grok")
        llm = registry.get("openai")
        assert isinstance(llm, OpenAICompatibleLLM)
        assert llm.model_name == KNOWN_PROVIDERS["openai"].default_model


class TestOpenAICompatibleLLM:
    @pytest.fixture
    def llm(self) -> OpenAICompatibleLLM:
        return OpenAICompatibleLLM(provider="openai", model_name="gpt-test", api_key="sk-test")

    def test_messages_wrap_history(self, llm):
        history = [LLMMessage(role=Roles.USER, content="q1"), LLMMessage(role=Roles.ASSISTANT, content="a1")]

        messages = llm._messages("q2", history)

        assert messages[0]["role"] == "system"
        assert messages[1:] == [
            {"role": "user", "content": "q1"},
            {"role": "assistant", "content": "a1"},
            {"role": "user", "content": "q2"},
        ]

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (openai.APITimeoutError(request=REQUEST), ProviderTransportError),
            (openai.APIConnectionError(request=REQUEST), ProviderTransportError),
            (status_error(openai.RateLimitError, 429), ProviderRateLimitError),
            (status_error(openai.AuthenticationError, 401), CredentialMissingError),
            (status_error(openai.InternalServerError, 503), ProviderTransportError),
            (ValueError("bad payload"), UnknownProviderError),
        ],
    )
    def test_translate(self, llm, error, expected):
        translated = llm._translate(error)

        assert isinstance(translated, expected)
        assert translated.provider == "openai"

    def test_status_errors_name_the_status(self, llm):
        translated = llm._translate(status_error(openai.InternalServerError, 503))
        assert translated.message == "openai returned HTTP 503"
