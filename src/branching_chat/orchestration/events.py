"""
Stream events.

One fan-out run emits a single, interleaved sequence of events for all its
providers. Consumers key incremental text by turn id ('data.id'), never by
arrival order. Each event is framed as one Server-Sent Events message:

    data: {"event": "chunk", "data": {"id": "...", "model": "openai", "content": "4"}}
"""

import json
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    USER_TURN = "userTurn"
    TURN_START = "turnStart"
    CHUNK = "chunk"
    ERROR = "error"
    TURN_END = "turnEnd"
    DONE = "done"


class StreamEvent(BaseModel):
    event: EventType
    data: dict[str, Any] | None = Field(default=None)

    def to_dict(self) -> dict[str, Any]:
        if self.data is None:
            return {"event": self.event.value}
        return {"event": self.event.value, "data": self.data}

    def encode(self, charset: str = "utf-8") -> bytes:
        return f"data: {json.dumps(self.to_dict())}\n\n".encode(charset)

    @classmethod
    def user_turn(cls, turn_id: str) -> "StreamEvent":
        return cls(event=EventType.USER_TURN, data={"id": turn_id})

    @classmethod
    def turn_start(cls, turn_id: str, model: str, parent_turn_id: str) -> "StreamEvent":
        return cls(event=EventType.TURN_START, data={"id": turn_id, "model": model, "parentTurnId": parent_turn_id})

    @classmethod
    def chunk(cls, turn_id: str, model: str, content: str) -> "StreamEvent":
        return cls(event=EventType.CHUNK, data={"id": turn_id, "model": model, "content": content})

    @classmethod
    def error(cls, model: str, error: str, turn_id: str | None = None) -> "StreamEvent":
        data: dict[str, Any] = {"model": model, "error": error}
        if turn_id is not None:
            data["id"] = turn_id
        return cls(event=EventType.ERROR, data=data)

    @classmethod
    def turn_end(cls, turn_id: str, model: str) -> "StreamEvent":
        return cls(event=EventType.TURN_END, data={"id": turn_id, "model": model})

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(event=EventType.DONE)
