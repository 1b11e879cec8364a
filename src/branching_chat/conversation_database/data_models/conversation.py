"""
Conversation data model and storage interface.

The 'ConversationDatabase' ABC is the pluggable storage backend for conversation
records. Concrete implementations ('InMemoryConversationDatabase',
'SQLiteConversationDatabase') are interchangeable at construction time, keeping
the orchestrator and API layer free of storage-specific code.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel

DEFAULT_CONVERSATION_TITLE = "New Conversation"


class Conversation(BaseModel):
    """A container of turns. 'title' is derived from the first user turn."""

    id: str
    title: str = DEFAULT_CONVERSATION_TITLE
    created_at: int


class ConversationDatabase(ABC):
    """Abstract repository for 'Conversation' records."""

    @abstractmethod
    async def create_conversation(self, conversation: Conversation) -> Conversation:
        pass

    @abstractmethod
    async def get_conversations(self) -> list[Conversation]:
        pass

    @abstractmethod
    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        pass

    @abstractmethod
    async def update_conversation(self, conversation: Conversation) -> Conversation:
        pass

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> bool:
        pass
