"""
Time-windowed user-turn de-duplication.

One logical "send" may reach the server as several independent requests (one
per provider), each of which would otherwise create its own user turn. A user
turn with the same '(conversation_id, branch_id, content)' created within
'window_seconds' is reused instead.

The lookup and the append for one key run as a single in-flight task. A
request arriving while that task is pending awaits it instead of starting its
own lookup, so requests racing on a store that suspends on I/O (SQLite) still
share one turn. Siblings only ever wait for that lookup and append, never for
each other's provider sessions.

This is a best-effort heuristic, not an exactly-once guarantee: the in-flight
table is per process, and a user who deliberately repeats a prompt within the
window gets the earlier turn back.
"""

import asyncio

from loguru import logger

from branching_chat.conversation_database.data_models.turn import Turn
from branching_chat.conversation_database.store import TurnStore
from branching_chat.llms.base import Roles
from branching_chat.utils.time import get_current_timestamp

PendingKey = tuple[str, str, str]


class UserTurnDeduplicator:
    def __init__(self, store: TurnStore, window_seconds: float):
        self.store = store
        self.window_ms = int(window_seconds * 1000)
        self._pending: dict[PendingKey, asyncio.Task[tuple[Turn, bool]]] = {}

    async def find_recent(self, conversation_id: str, branch_id: str, content: str) -> Turn | None:
        if self.window_ms <= 0:
            return None
        cutoff = get_current_timestamp() - self.window_ms
        turns = await self.store.list_all(conversation_id)
        for turn in reversed(turns):
            if turn.timestamp < cutoff:
                break
            if turn.role == Roles.USER and turn.branch_id == branch_id and turn.content == content:
                return turn
        return None

    async def _find_or_append(self, candidate: Turn) -> tuple[Turn, bool]:
        existing = await self.find_recent(candidate.conversation_id, candidate.branch_id, candidate.content)
        if existing is not None:
            logger.info(f"Reusing user turn {existing.id} created within the de-duplication window")
            return existing, False
        return await self.store.append(candidate), True

    def _release(self, key: PendingKey, task: asyncio.Task[tuple[Turn, bool]]) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]

    async def get_or_create(self, candidate: Turn) -> tuple[Turn, bool]:
        """Return '(turn, created)'; 'created' is False when a recent or in-flight duplicate was reused."""
        if self.window_ms <= 0:
            return await self.store.append(candidate), True

        key = (candidate.conversation_id, candidate.branch_id, candidate.content)
        task = self._pending.get(key)
        if task is not None:
            turn, _ = await asyncio.shield(task)
            logger.info(f"Reusing user turn {turn.id} appended by a concurrent request")
            return turn, False

        task = asyncio.create_task(self._find_or_append(candidate))
        self._pending[key] = task
        task.add_done_callback(lambda done: self._release(key, done))
        return await asyncio.shield(task)
