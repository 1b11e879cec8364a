"""
SQLite repositories.

The durable backend. Each operation opens its own 'sqlite3' connection inside a
worker thread ('asyncio.to_thread'), so concurrent provider sessions never
share a connection and the event loop never blocks on disk I/O. WAL journaling
lets readers proceed while a session seals its turn.

'seq' is the table's INTEGER PRIMARY KEY, i.e. SQLite's insertion rowid.
"""

import asyncio
import sqlite3
from collections.abc import Callable
from contextlib import closing
from pathlib import Path
from typing import Any, TypeVar

from loguru import logger

from branching_chat.conversation_database.data_models.conversation import Conversation, ConversationDatabase
from branching_chat.conversation_database.data_models.turn import Turn, TurnDatabase
from branching_chat.errors import StorageError
from branching_chat.llms.base import Roles

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    created_at INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS turns (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    parent_turn_id TEXT,
    branch_id TEXT NOT NULL,
    role TEXT NOT NULL,
    model TEXT,
    content TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    sealed INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_turns_conversation ON turns(conversation_id, timestamp, seq);
"""

TURN_COLUMNS = "seq, id, conversation_id, parent_turn_id, branch_id, role, model, content, timestamp, sealed"


class SQLiteDatabase:
    """Connection helper shared by the SQLite repositories."""

    def __init__(self, path: str | Path):
        self.path = str(path)
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self.path, timeout=30.0)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA journal_mode=WAL")
        connection.execute("PRAGMA foreign_keys=ON")
        if not self._initialized:
            connection.executescript(SCHEMA)
            self._initialized = True
        return connection

    async def run(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        def work() -> T:
            with closing(self._connect()) as connection:
                with connection:
                    return operation(connection)

        try:
            return await asyncio.to_thread(work)
        except sqlite3.Error as e:
            logger.error(f"SQLite operation failed on {self.path}: {e}")
            raise StorageError(f"storage failure: {e}") from e


def _turn_from_row(row: sqlite3.Row) -> Turn:
    return Turn(
        seq=row["seq"],
        id=row["id"],
        conversation_id=row["conversation_id"],
        parent_turn_id=row["parent_turn_id"],
        branch_id=row["branch_id"],
        role=Roles(row["role"]),
        model=row["model"],
        content=row["content"],
        timestamp=row["timestamp"],
        sealed=bool(row["sealed"]),
    )


def _conversation_from_row(row: sqlite3.Row) -> Conversation:
    return Conversation(id=row["id"], title=row["title"], created_at=row["created_at"])


class SQLiteConversationDatabase(ConversationDatabase):
    def __init__(self, database: SQLiteDatabase):
        self.database = database

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        await self.database.run(
            lambda c: c.execute(
                "INSERT INTO conversations (id, title, created_at) VALUES (?, ?, ?)",
                (conversation.id, conversation.title, conversation.created_at),
            )
        )
        return conversation

    async def get_conversations(self) -> list[Conversation]:
        rows = await self.database.run(
            lambda c: c.execute("SELECT * FROM conversations ORDER BY created_at DESC, rowid DESC").fetchall()
        )
        return [_conversation_from_row(row) for row in rows]

    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        row = await self.database.run(
            lambda c: c.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
        )
        return _conversation_from_row(row) if row else None

    async def update_conversation(self, conversation: Conversation) -> Conversation:
        await self.database.run(
            lambda c: c.execute(
                "UPDATE conversations SET title = ? WHERE id = ?", (conversation.title, conversation.id)
            )
        )
        return conversation

    async def delete_conversation(self, conversation_id: str) -> bool:
        deleted = await self.database.run(
            lambda c: c.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,)).rowcount
        )
        return deleted > 0


class SQLiteTurnDatabase(TurnDatabase):
    def __init__(self, database: SQLiteDatabase):
        self.database = database

    async def create_turn(self, turn: Turn) -> Turn:
        def insert(c: sqlite3.Connection) -> Any:
            return c.execute(
                "INSERT INTO turns (id, conversation_id, parent_turn_id, branch_id, role, model, content, "
                "timestamp, sealed) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    turn.id,
                    turn.conversation_id,
                    turn.parent_turn_id,
                    turn.branch_id,
                    turn.role.value,
                    turn.model,
                    turn.content,
                    turn.timestamp,
                    int(turn.sealed),
                ),
            ).lastrowid

        seq = await self.database.run(insert)
        return turn.model_copy(update={"seq": seq})

    async def get_turns_by_conversation_id(self, conversation_id: str) -> list[Turn]:
        rows = await self.database.run(
            lambda c: c.execute(
                f"SELECT {TURN_COLUMNS} FROM turns WHERE conversation_id = ? ORDER BY timestamp, seq",
                (conversation_id,),
            ).fetchall()
        )
        return [_turn_from_row(row) for row in rows]

    async def get_turn_by_id(self, turn_id: str) -> Turn | None:
        row = await self.database.run(
            lambda c: c.execute(f"SELECT {TURN_COLUMNS} FROM turns WHERE id = ?", (turn_id,)).fetchone()
        )
        return _turn_from_row(row) if row else None

    async def update_turn_content(self, turn_id: str, content: str, sealed: bool) -> Turn | None:
        def update(c: sqlite3.Connection) -> sqlite3.Row | None:
            c.execute("UPDATE turns SET content = ?, sealed = ? WHERE id = ?", (content, int(sealed), turn_id))
            return c.execute(f"SELECT {TURN_COLUMNS} FROM turns WHERE id = ?", (turn_id,)).fetchone()

        row = await self.database.run(update)
        return _turn_from_row(row) if row else None

    async def delete_turns_by_conversation_id(self, conversation_id: str) -> int:
        return await self.database.run(
            lambda c: c.execute("DELETE FROM turns WHERE conversation_id = ?", (conversation_id,)).rowcount
        )
