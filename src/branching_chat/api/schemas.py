"""
Request and response bodies of the HTTP API.

Request bodies accept both snake_case and camelCase keys, since browser clients
send 'parentTurnId' while Python clients send 'parent_turn_id'.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from branching_chat.config import ROOT_BRANCH
from branching_chat.conversation_database.data_models.conversation import Conversation
from branching_chat.conversation_database.data_models.turn import Turn


class _Input(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversationInput(_Input):
    title: str | None = None


class FanOutInput(_Input):
    content: str
    providers: list[str] = Field(min_length=1)
    branch_id: str = ROOT_BRANCH
    parent_turn_id: str | None = None


class CompareInput(_Input):
    user_turn_id: str
    providers: list[str] = Field(min_length=1)


class ConversationWithTurns(Conversation):
    turns: list[Turn]


class CancelResponse(BaseModel):
    turn_id: str
    cancelled: list[str]


class ProviderStatus(BaseModel):
    provider: str
    has_credential: bool
