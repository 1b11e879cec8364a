"""
Turn data model and storage interface.

Turns form a forest within a conversation. 'parent_turn_id' is a plain lookup
key into the same conversation's turns, never an owning reference, so any path
through the forest is reconstructed by id lookup ('branching.resolver').
'branch_id' names the path a turn belongs to: "root" for the trunk, otherwise
the provider id that produced the reply (or the id inherited when a non-root
branch is continued). Branches themselves are never stored.

An assistant turn is created empty while its stream is open and sealed once
its content is final. 'seq' is the store-assigned insertion sequence used to
break timestamp ties deterministically.

The 'TurnDatabase' ABC is the pluggable storage backend. Concrete
implementations: 'InMemoryTurnDatabase', 'SQLiteTurnDatabase'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel, model_validator

from branching_chat.config import ROOT_BRANCH
from branching_chat.llms.base import Roles


class Turn(BaseModel):
    """
    A single user or assistant message.

    'id', 'timestamp' and 'seq' may be left unset by callers; the store assigns
    them on append. 'model' is set only on assistant turns.
    """

    id: str = ""
    conversation_id: str
    parent_turn_id: str | None = None
    branch_id: str = ROOT_BRANCH
    role: Roles
    model: str | None = None
    content: str = ""
    timestamp: int = 0
    seq: int = 0
    sealed: bool = True

    @model_validator(mode="after")
    def _check_role_fields(self) -> "Turn":
        if self.role == Roles.ASSISTANT and (not self.parent_turn_id or not self.model):
            raise ValueError("assistant turns require parent_turn_id and model")
        if self.role == Roles.USER and self.model is not None:
            raise ValueError("user turns carry no model")
        return self

    @property
    def sort_key(self) -> tuple[int, int]:
        return self.timestamp, self.seq


class TurnDatabase(ABC):
    """Abstract repository for 'Turn' records.

    Implementations assign 'seq' on insert and return turns ordered by
    '(timestamp, seq)'. Conversation existence is checked by 'TurnStore', not
    here.
    """

    @abstractmethod
    async def create_turn(self, turn: Turn) -> Turn:
        pass

    @abstractmethod
    async def get_turns_by_conversation_id(self, conversation_id: str) -> list[Turn]:
        pass

    @abstractmethod
    async def get_turn_by_id(self, turn_id: str) -> Turn | None:
        pass

    @abstractmethod
    async def update_turn_content(self, turn_id: str, content: str, sealed: bool) -> Turn | None:
        pass

    @abstractmethod
    async def delete_turns_by_conversation_id(self, conversation_id: str) -> int:
        pass
