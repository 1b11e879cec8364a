"""
Provider registry.

'ProviderRegistry' maps provider identifiers to 'LLM' factories and answers the
two questions the orchestrator asks before talking to a provider: is the
provider known, and is a credential configured for it. Factories receive the
credential so an instance is only ever built for a provider that has one.
"""

from collections.abc import Callable, Mapping

from loguru import logger

from branching_chat.config import KNOWN_PROVIDERS, Settings
from branching_chat.errors import CredentialMissingError, InvalidProviderError
from branching_chat.llms.base import LLM

LLMFactory = Callable[[str], LLM]


class ProviderRegistry:
    def __init__(self, factories: Mapping[str, LLMFactory], credentials: Mapping[str, str]):
        self._factories = dict(factories)
        self._credentials = {name: key for name, key in credentials.items() if key}

    @property
    def providers(self) -> list[str]:
        return sorted(self._factories)

    def is_known(self, provider: str) -> bool:
        return provider in self._factories

    def has_credential(self, provider: str) -> bool:
        return bool(self._credentials.get(provider))

    def get(self, provider: str) -> LLM:
        """Build the provider's 'LLM'.

        Raises 'InvalidProviderError' for unregistered providers and
        'CredentialMissingError' when no credential is configured.
        """
        factory = self._factories.get(provider)
        if factory is None:
            raise InvalidProviderError(provider)
        credential = self._credentials.get(provider)
        if not credential:
            raise CredentialMissingError(provider)
        return factory(credential)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderRegistry":
        """Registry of every known provider behind its OpenAI-compatible endpoint."""
        from branching_chat.llms.openai_compatible import OpenAICompatibleLLM

        def make_factory(name: str) -> LLMFactory:
            spec = KNOWN_PROVIDERS[name]

            def factory(api_key: str) -> LLM:
                return OpenAICompatibleLLM(
                    provider=name,
                    model_name=spec.default_model,
                    api_key=api_key,
                    base_url=spec.base_url,
                    timeout=settings.provider_timeout_seconds,
                )

            return factory

        registry = cls({name: make_factory(name) for name in KNOWN_PROVIDERS}, settings.api_keys)
        logger.info(
            f"Provider registry: {registry.providers} "
            f"(credentials: {[p for p in registry.providers if registry.has_credential(p)]})"
        )
        return registry
