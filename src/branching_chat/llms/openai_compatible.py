"""
OpenAI-compatible provider.

All known providers expose an OpenAI-compatible chat completions endpoint, so a
single adapter built on the official 'openai' client serves them all. SDK
exceptions are translated into the provider error taxonomy: timeouts and
connection failures become 'ProviderTransportError', rate limits and quota
exhaustion become 'ProviderRateLimitError', authentication failures become
'CredentialMissingError'.
"""

from collections.abc import AsyncIterator
from typing import Any

import openai
from openai import AsyncOpenAI

from branching_chat.errors import (
    CredentialMissingError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTransportError,
    UnknownProviderError,
)
from branching_chat.llms.base import LLM, LLMMessage, Roles

SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Respond to the user based on the conversation history provided."
)


class OpenAICompatibleLLM(LLM):
    def __init__(
        self,
        provider: str,
        model_name: str,
        api_key: str,
        base_url: str | None = None,
        timeout: float = 60.0,
        max_tokens: int = 1024,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        super().__init__(provider)
        self.model_name = model_name
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    def _messages(self, prompt: str, history: list[LLMMessage]) -> list[dict[str, Any]]:
        return [
            {"role": Roles.SYSTEM.value, "content": self.system_prompt},
            *({"role": message.role.value, "content": message.content} for message in history),
            {"role": Roles.USER.value, "content": prompt},
        ]

    def _translate(self, error: Exception) -> ProviderError:
        if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
            return ProviderTransportError(self.provider, f"{self.provider} is unreachable: {error}")
        if isinstance(error, openai.RateLimitError):
            return ProviderRateLimitError(self.provider, f"{self.provider} rate limit or quota exceeded")
        if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return CredentialMissingError(self.provider)
        if isinstance(error, openai.APIStatusError):
            return ProviderTransportError(self.provider, f"{self.provider} returned HTTP {error.status_code}")
        return UnknownProviderError(self.provider, str(error))

    async def generate(self, prompt: str, history: list[LLMMessage]) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model_name,
                messages=self._messages(prompt, history),  # type: ignore[arg-type]
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as e:
            raise self._translate(e) from e
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def generate_stream(self, prompt: str, history: list[LLMMessage]) -> AsyncIterator[str]:
        try:
            stream = await self.client.chat.completions.create(
                model=self.model_name,
                messages=self._messages(prompt, history),  # type: ignore[arg-type]
                max_tokens=self.max_tokens,
                stream=True,
            )
            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except openai.OpenAIError as e:
            raise self._translate(e) from e
