import asyncio
from collections.abc import AsyncIterator, Iterable

import pytest

from branching_chat.config import Settings
from branching_chat.conversation_database.data_models.conversation import Conversation
from branching_chat.conversation_database.in_memory import InMemoryConversationDatabase, InMemoryTurnDatabase
from branching_chat.conversation_database.sqlite import SQLiteConversationDatabase, SQLiteDatabase, SQLiteTurnDatabase
from branching_chat.conversation_database.store import TurnStore
from branching_chat.llms.base import LLM, LLMMessage
from branching_chat.llms.registry import ProviderRegistry
from branching_chat.orchestration.events import StreamEvent
from branching_chat.orchestration.fan_out import FanOutOrchestrator, FanOutRun


class ScriptedLLM(LLM):
    """
    Fake provider that replays a fixed list of chunks.

    'hold' keeps the stream open after the last chunk until the event is set,
    which lets tests cancel or disconnect mid-stream. 'error' is raised after
    the chunks (and after 'hold', if any).
    """

    def __init__(
        self,
        provider: str,
        chunks: Iterable[str] = (),
        error: Exception | None = None,
        hold: asyncio.Event | None = None,
        delay: float = 0.0,
    ):
        super().__init__(provider)
        self.chunks = list(chunks)
        self.error = error
        self.hold = hold
        self.delay = delay
        self.calls: list[tuple[str, list[LLMMessage]]] = []

    async def generate(self, prompt: str, history: list[LLMMessage]) -> str:
        self.calls.append((prompt, history))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return "".join(self.chunks)

    async def generate_stream(self, prompt: str, history: list[LLMMessage]) -> AsyncIterator[str]:
        self.calls.append((prompt, history))
        for chunk in self.chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise self.error


def make_registry(llms: dict[str, ScriptedLLM], without_credentials: Iterable[str] = ()) -> ProviderRegistry:
    missing = set(without_credentials)
    return ProviderRegistry(
        factories={name: (lambda _key, llm=llm: llm) for name, llm in llms.items()},
        credentials={name: f"key-{name}" for name in llms if name not in missing},
    )


async def collect(run: FanOutRun) -> list[StreamEvent]:
    return [event async for event in run.events()]


def chunks_by_turn(events: list[StreamEvent]) -> dict[str, list[str]]:
    result: dict[str, list[str]] = {}
    for event in events:
        if event.event == "chunk" and event.data:
            result.setdefault(event.data["id"], []).append(event.data["content"])
    return result


@pytest.fixture
def settings() -> Settings:
    return Settings(dedup_window_seconds=5, provider_timeout_seconds=5, context_window_size=10)


@pytest.fixture
def store() -> TurnStore:
    return TurnStore(InMemoryConversationDatabase(), InMemoryTurnDatabase())


@pytest.fixture
def sqlite_store(tmp_path) -> TurnStore:
    database = SQLiteDatabase(tmp_path / "turns.db")
    return TurnStore(SQLiteConversationDatabase(database), SQLiteTurnDatabase(database))


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, store: TurnStore, sqlite_store: TurnStore) -> TurnStore:
    return store if request.param == "memory" else sqlite_store


@pytest.fixture
async def conversation(store: TurnStore) -> Conversation:
    return await store.create_conversation()


@pytest.fixture
def orchestrator_factory(store: TurnStore, settings: Settings):
    def build(llms: dict[str, ScriptedLLM], without_credentials: Iterable[str] = (), **overrides) -> FanOutOrchestrator:
        effective = settings.model_copy(update=overrides) if overrides else settings
        return FanOutOrchestrator(store, make_registry(llms, without_credentials), effective)

    return build
