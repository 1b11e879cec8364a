"""
In-memory repositories.

Used by the tests and by ephemeral deployments without 'DATABASE_PATH'. Records
are stored as copies so callers can never mutate stored state by accident.
"""

import itertools

from branching_chat.conversation_database.data_models.conversation import Conversation, ConversationDatabase
from branching_chat.conversation_database.data_models.turn import Turn, TurnDatabase


class InMemoryConversationDatabase(ConversationDatabase):
    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        self._conversations[conversation.id] = conversation.model_copy()
        return conversation

    async def get_conversations(self) -> list[Conversation]:
        return sorted(
            (c.model_copy() for c in self._conversations.values()), key=lambda c: c.created_at, reverse=True
        )

    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy() if conversation else None

    async def update_conversation(self, conversation: Conversation) -> Conversation:
        self._conversations[conversation.id] = conversation.model_copy()
        return conversation

    async def delete_conversation(self, conversation_id: str) -> bool:
        return self._conversations.pop(conversation_id, None) is not None


class InMemoryTurnDatabase(TurnDatabase):
    def __init__(self) -> None:
        self._turns: dict[str, Turn] = {}
        self._seq = itertools.count(1)

    async def create_turn(self, turn: Turn) -> Turn:
        stored = turn.model_copy(update={"seq": next(self._seq)})
        self._turns[stored.id] = stored
        return stored.model_copy()

    async def get_turns_by_conversation_id(self, conversation_id: str) -> list[Turn]:
        turns = [t.model_copy() for t in self._turns.values() if t.conversation_id == conversation_id]
        return sorted(turns, key=lambda t: t.sort_key)

    async def get_turn_by_id(self, turn_id: str) -> Turn | None:
        turn = self._turns.get(turn_id)
        return turn.model_copy() if turn else None

    async def update_turn_content(self, turn_id: str, content: str, sealed: bool) -> Turn | None:
        turn = self._turns.get(turn_id)
        if turn is None:
            return None
        updated = turn.model_copy(update={"content": content, "sealed": sealed})
        self._turns[turn_id] = updated
        return updated.model_copy()

    async def delete_turns_by_conversation_id(self, conversation_id: str) -> int:
        doomed = [turn_id for turn_id, t in self._turns.items() if t.conversation_id == conversation_id]
        for turn_id in doomed:
            del self._turns[turn_id]
        return len(doomed)
