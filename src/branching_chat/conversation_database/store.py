"""
Turn store (Facade).

'TurnStore' is the single entry point the orchestrator and the API use for
persistence. It coordinates the conversation and turn repositories, enforces
that turn operations target an existing conversation, assigns ids, timestamps
and (through the repository) insertion sequences, guards sealed turns against
further writes, and derives the conversation title from the first user turn.
"""

from loguru import logger

from branching_chat.config import DEFAULT_TITLE_MAX_LENGTH, Settings
from branching_chat.conversation_database.data_models.conversation import (
    DEFAULT_CONVERSATION_TITLE,
    Conversation,
    ConversationDatabase,
)
from branching_chat.conversation_database.data_models.turn import Turn, TurnDatabase
from branching_chat.conversation_database.in_memory import InMemoryConversationDatabase, InMemoryTurnDatabase
from branching_chat.errors import NotFoundError, ValidationError
from branching_chat.llms.base import Roles
from branching_chat.utils.database import generate_uid
from branching_chat.utils.time import get_current_timestamp

TITLE_ELLIPSIS = "..."


def derive_title(content: str, max_length: int = DEFAULT_TITLE_MAX_LENGTH) -> str:
    content = content.strip()
    if len(content) <= max_length:
        return content
    return content[:max_length] + TITLE_ELLIPSIS


class TurnStore:
    def __init__(
        self,
        conversation_db: ConversationDatabase,
        turn_db: TurnDatabase,
        title_max_length: int = DEFAULT_TITLE_MAX_LENGTH,
    ):
        self.conversation_db = conversation_db
        self.turn_db = turn_db
        self.title_max_length = title_max_length

    @classmethod
    def from_settings(cls, settings: Settings) -> "TurnStore":
        if settings.database_path:
            from branching_chat.conversation_database.sqlite import (
                SQLiteConversationDatabase,
                SQLiteDatabase,
                SQLiteTurnDatabase,
            )

            database = SQLiteDatabase(settings.database_path)
            logger.info(f"Using SQLite turn store at {settings.database_path}")
            return cls(SQLiteConversationDatabase(database), SQLiteTurnDatabase(database), settings.title_max_length)
        logger.info("Using in-memory turn store")
        return cls(InMemoryConversationDatabase(), InMemoryTurnDatabase(), settings.title_max_length)

    async def create_conversation(self, title: str | None = None) -> Conversation:
        return await self.conversation_db.create_conversation(
            Conversation(
                id=generate_uid(),
                title=title or DEFAULT_CONVERSATION_TITLE,
                created_at=get_current_timestamp(),
            )
        )

    async def list_conversations(self) -> list[Conversation]:
        return await self.conversation_db.get_conversations()

    async def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.conversation_db.get_conversation_by_id(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation with id {conversation_id} not found")
        return conversation

    async def delete_conversation(self, conversation_id: str) -> None:
        await self.delete_all(conversation_id)
        await self.conversation_db.delete_conversation(conversation_id)

    async def append(self, turn: Turn) -> Turn:
        conversation = await self.get_conversation(turn.conversation_id)
        is_first_user_turn = False
        if turn.role == Roles.USER:
            existing = await self.turn_db.get_turns_by_conversation_id(conversation.id)
            is_first_user_turn = not any(t.role == Roles.USER for t in existing)

        stored = await self.turn_db.create_turn(
            turn.model_copy(
                update={
                    "id": turn.id or generate_uid(),
                    "timestamp": turn.timestamp or get_current_timestamp(),
                }
            )
        )

        if is_first_user_turn:
            conversation.title = derive_title(stored.content, self.title_max_length)
            await self.conversation_db.update_conversation(conversation)
            logger.debug(f"Conversation {conversation.id} titled {conversation.title!r}")
        return stored

    async def list_all(self, conversation_id: str) -> list[Turn]:
        await self.get_conversation(conversation_id)
        return await self.turn_db.get_turns_by_conversation_id(conversation_id)

    async def get(self, conversation_id: str, turn_id: str) -> Turn:
        await self.get_conversation(conversation_id)
        turn = await self.turn_db.get_turn_by_id(turn_id)
        if turn is None or turn.conversation_id != conversation_id:
            raise NotFoundError(f"Turn with id {turn_id} not found in conversation {conversation_id}")
        return turn

    async def update_content(self, turn_id: str, text: str, seal: bool = True) -> Turn:
        """Replace a turn's content; 'seal' makes it immutable afterwards."""
        turn = await self.turn_db.get_turn_by_id(turn_id)
        if turn is None:
            raise NotFoundError(f"Turn with id {turn_id} not found")
        await self.get_conversation(turn.conversation_id)
        if turn.sealed:
            raise ValidationError(f"Turn {turn_id} is sealed and can no longer change")
        updated = await self.turn_db.update_turn_content(turn_id, text, sealed=seal)
        if updated is None:
            raise NotFoundError(f"Turn with id {turn_id} not found")
        return updated

    async def delete_all(self, conversation_id: str) -> int:
        await self.get_conversation(conversation_id)
        deleted = await self.turn_db.delete_turns_by_conversation_id(conversation_id)
        logger.info(f"Purged {deleted} turns of conversation {conversation_id}")
        return deleted
