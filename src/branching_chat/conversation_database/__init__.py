from branching_chat.conversation_database.data_models.conversation import Conversation, ConversationDatabase
from branching_chat.conversation_database.data_models.turn import Turn, TurnDatabase
from branching_chat.conversation_database.in_memory import InMemoryConversationDatabase, InMemoryTurnDatabase
from branching_chat.conversation_database.store import TurnStore

__all__ = [
    "Conversation",
    "ConversationDatabase",
    "InMemoryConversationDatabase",
    "InMemoryTurnDatabase",
    "Turn",
    "TurnDatabase",
    "TurnStore",
]
