"""
Provider capability abstractions and message data models.

Every model provider implements the 'LLM' ABC. The orchestrator only ever sees
this contract: a prompt plus the resolved branch history in, either a complete
text ('generate') or an async stream of text chunks ('generate_stream') out.
Failures are raised as 'ProviderError' subclasses; anything else is treated as
an unknown provider failure by the caller.

'LLMMessage' is the backend-agnostic history entry built from stored turns, so
the orchestrator never depends on a provider's wire format.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import StrEnum

from pydantic import BaseModel


class Roles(StrEnum):
    """Conversation roles as used by the OpenAI chat completions API."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class LLMMessage(BaseModel):
    """A single history entry sent to a provider."""

    content: str = ""
    role: Roles = Roles.ASSISTANT


class LLM(ABC):
    """
    Abstract base class for model providers.

    Attributes:
        provider: Provider identifier, also used as the branch id of the
            provider's replies.
    """

    def __init__(self, provider: str) -> None:
        self.provider = provider

    @abstractmethod
    async def generate(self, prompt: str, history: list[LLMMessage]) -> str:
        """Return a single complete response for 'prompt' given 'history'."""
        pass

    @abstractmethod
    def generate_stream(self, prompt: str, history: list[LLMMessage]) -> AsyncIterator[str]:
        """Yield response text chunks in emission order as they arrive."""
        pass
