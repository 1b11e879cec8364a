from branching_chat.orchestration.accumulator import TurnAccumulator
from branching_chat.orchestration.dedup import UserTurnDeduplicator
from branching_chat.orchestration.events import EventType, StreamEvent
from branching_chat.orchestration.fan_out import (
    CompareRequest,
    FanOutOrchestrator,
    FanOutRequest,
    FanOutResult,
    FanOutRun,
    ProviderResult,
    SessionOutcome,
)

__all__ = [
    "CompareRequest",
    "EventType",
    "FanOutOrchestrator",
    "FanOutRequest",
    "FanOutResult",
    "FanOutRun",
    "ProviderResult",
    "SessionOutcome",
    "StreamEvent",
    "TurnAccumulator",
    "UserTurnDeduplicator",
]
