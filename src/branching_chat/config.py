"""
Application settings.

'Settings' collects every tunable of the engine in one pydantic model so it can
be passed explicitly to the store, the orchestrator and the API factory.
'Settings.from_env' reads the process environment; tests construct 'Settings'
directly.

Known providers are described by 'ProviderSpec': each one is reached through an
OpenAI-compatible endpoint, with its credential read from a provider-specific
environment variable.
"""

import os

from pydantic import BaseModel, Field

ROOT_BRANCH = "root"

DEFAULT_CONTEXT_WINDOW_SIZE = 10
DEFAULT_DEDUP_WINDOW_SECONDS = 5.0
DEFAULT_PROVIDER_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_MESSAGE_LENGTH = 100_000
DEFAULT_TITLE_MAX_LENGTH = 30


class ProviderSpec(BaseModel):
    """Static description of a model provider."""

    name: str
    api_key_env: str
    base_url: str
    default_model: str


KNOWN_PROVIDERS: dict[str, ProviderSpec] = {
    spec.name: spec
    for spec in (
        ProviderSpec(
            name="openai",
            api_key_env="OPENAI_API_KEY",
            base_url="https://api.openai.com/v1",
            default_model="gpt-4o-mini",
        ),
        ProviderSpec(
            name="claude",
            api_key_env="ANTHROPIC_API_KEY",
            base_url="https://api.anthropic.com/v1/",
            default_model="claude-3-7-sonnet-20250219",
        ),
        ProviderSpec(
            name="gemini",
            api_key_env="GEMINI_API_KEY",
            base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
            default_model="gemini-2.0-flash",
        ),
        ProviderSpec(
            name="grok",
            api_key_env="XAI_API_KEY",
            base_url="https://api.x.ai/v1",
            default_model="grok-2-latest",
        ),
    )
}


class Settings(BaseModel):
    """
    Engine configuration.

    Attributes:
        database_path: SQLite file for the durable store. 'None' selects the
            in-memory store.
        context_window_size: Number of resolved turns passed to a provider as
            history.
        provider_context_window_sizes: Per-provider overrides of
            'context_window_size'.
        dedup_window_seconds: Window in which an identical user turn is reused
            instead of created again.
        provider_timeout_seconds: Idle timeout of one provider session; it is
            reset by every received chunk.
        api_keys: Provider credentials keyed by provider name.
    """

    database_path: str | None = None
    context_window_size: int = Field(default=DEFAULT_CONTEXT_WINDOW_SIZE, ge=1)
    provider_context_window_sizes: dict[str, int] = Field(default_factory=dict)
    dedup_window_seconds: float = Field(default=DEFAULT_DEDUP_WINDOW_SECONDS, ge=0)
    provider_timeout_seconds: float = Field(default=DEFAULT_PROVIDER_TIMEOUT_SECONDS, gt=0)
    max_message_length: int = Field(default=DEFAULT_MAX_MESSAGE_LENGTH, ge=1)
    title_max_length: int = Field(default=DEFAULT_TITLE_MAX_LENGTH, ge=1)
    log_level: str = "INFO"
    port: int = 5000
    api_keys: dict[str, str] = Field(default_factory=dict)

    def context_window_for(self, provider: str) -> int:
        return self.provider_context_window_sizes.get(provider, self.context_window_size)

    @classmethod
    def from_env(cls) -> "Settings":
        window_overrides = {}
        api_keys = {}
        for name, spec in KNOWN_PROVIDERS.items():
            override = os.environ.get(f"{name.upper()}_CONTEXT_WINDOW_SIZE")
            if override:
                window_overrides[name] = int(override)
            api_key = os.environ.get(spec.api_key_env, "")
            if api_key:
                api_keys[name] = api_key

        return cls(
            database_path=os.environ.get("DATABASE_PATH") or None,
            context_window_size=int(os.environ.get("CONTEXT_WINDOW_SIZE", DEFAULT_CONTEXT_WINDOW_SIZE)),
            provider_context_window_sizes=window_overrides,
            dedup_window_seconds=float(os.environ.get("DEDUP_WINDOW_SECONDS", DEFAULT_DEDUP_WINDOW_SECONDS)),
            provider_timeout_seconds=float(
                os.environ.get("PROVIDER_TIMEOUT_SECONDS", DEFAULT_PROVIDER_TIMEOUT_SECONDS)
            ),
            max_message_length=int(os.environ.get("MAX_MESSAGE_LENGTH", DEFAULT_MAX_MESSAGE_LENGTH)),
            title_max_length=int(os.environ.get("TITLE_MAX_LENGTH", DEFAULT_TITLE_MAX_LENGTH)),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            port=int(os.environ.get("PORT", "5000")),
            api_keys=api_keys,
        )
