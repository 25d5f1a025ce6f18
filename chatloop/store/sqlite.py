"""
SQLite-backed message store.

Uses ``aiosqlite`` for async database access with a write lock to serialise
mutations (SQLite only supports one writer at a time in WAL mode).

Schema is version-tracked via a ``schema_version`` table.  Migrations are
applied automatically on ``init()``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from chatloop.errors import PersistenceError
from chatloop.llm.types import Conversation, Message, ToolCall
from chatloop.store.base import MessageStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 1

MIGRATIONS: dict[int, list[str]] = {
    1: [
        """CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS conversations (
            conversation_id TEXT PRIMARY KEY,
            title TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS messages (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            message_id TEXT NOT NULL UNIQUE,
            conversation_id TEXT NOT NULL,
            role TEXT NOT NULL,
            content TEXT,
            tool_call_id TEXT,
            tool_name TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (conversation_id) REFERENCES conversations(conversation_id) ON DELETE CASCADE
        )""",
        """CREATE TABLE IF NOT EXISTS tool_calls (
            record_id TEXT PRIMARY KEY,
            message_id TEXT,
            call_index INTEGER NOT NULL,
            call_id TEXT NOT NULL,
            function_name TEXT NOT NULL,
            arguments TEXT NOT NULL,
            FOREIGN KEY (message_id) REFERENCES messages(message_id) ON DELETE CASCADE
        )""",
        """CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id)""",
        """CREATE INDEX IF NOT EXISTS idx_tool_calls_message ON tool_calls(message_id)""",
    ],
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SQLiteMessageStore(MessageStore):
    """
    Async SQLite store for conversations, messages and tool calls.

    Usage::

        store = SQLiteMessageStore("~/.chatloop/messages.db")
        await store.init()
        cid = await store.create_conversation("weather")
        mid = await store.create_message(cid, "user", "Is it raining?")
        messages = await store.get_messages(cid)
        await store.close()
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create store directory {self.db_path.parent}: {exc}") from exc
        self._write_lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Open the database and ensure the schema is up to date."""
        try:
            self._db = await aiosqlite.connect(str(self.db_path))
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA foreign_keys=ON")
            await self._run_migrations()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Cannot open message store {self.db_path}: {exc}") from exc

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    @asynccontextmanager
    async def _writing(self, what: str) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the write lock, commit on success, wrap driver errors."""
        assert self._db is not None
        async with self._write_lock:
            try:
                yield self._db
                await self._db.commit()
            except aiosqlite.Error as exc:
                logger.error("Store write failed (%s): %s", what, exc)
                await self._db.rollback()
                raise PersistenceError(f"Failed to {what}: {exc}") from exc
            except asyncio.CancelledError:
                await self._db.rollback()
                raise

    async def _fetchall(self, sql: str, params: tuple = ()) -> list:
        assert self._db is not None
        try:
            cursor = await self._db.execute(sql, params)
            return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Store read failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Migration runner
    # ------------------------------------------------------------------

    async def _get_schema_version(self) -> int:
        """Return the current schema version, or 0 if not initialised."""
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        row = await cursor.fetchone()
        if row is None:
            return 0
        cursor = await self._db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        if row is None:
            return 0
        return int(row[0])

    async def _set_schema_version(self, version: int) -> None:
        assert self._db is not None
        cursor = await self._db.execute("SELECT COUNT(*) FROM schema_version")
        row = await cursor.fetchone()
        assert row is not None
        if row[0] == 0:
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
        else:
            await self._db.execute(
                "UPDATE schema_version SET version = ?", (version,)
            )

    async def _run_migrations(self) -> None:
        """Apply any pending migrations sequentially."""
        assert self._db is not None
        current = await self._get_schema_version()
        if current >= SCHEMA_VERSION:
            return

        for version in range(current + 1, SCHEMA_VERSION + 1):
            stmts = MIGRATIONS.get(version)
            if stmts is None:
                raise RuntimeError(
                    f"Missing migration for schema version {version}"
                )
            for stmt in stmts:
                await self._db.execute(stmt)
            await self._set_schema_version(version)

        await self._db.commit()

    async def get_schema_version(self) -> int:
        """Public accessor for the current schema version."""
        return await self._get_schema_version()

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(self, title: str = "") -> str:
        conversation_id = str(uuid.uuid4())
        async with self._writing("create conversation") as db:
            await db.execute(
                "INSERT INTO conversations (conversation_id, title, created_at) VALUES (?, ?, ?)",
                (conversation_id, title, _now()),
            )
        return conversation_id

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        rows = await self._fetchall(
            "SELECT conversation_id, title, created_at FROM conversations WHERE conversation_id = ?",
            (conversation_id,),
        )
        if not rows:
            return None
        row = rows[0]
        return Conversation(
            id=row[0], title=row[1], created_at=datetime.fromisoformat(row[2])
        )

    async def list_conversations(self) -> list[Conversation]:
        """Return all conversations, newest first."""
        rows = await self._fetchall(
            "SELECT conversation_id, title, created_at FROM conversations ORDER BY created_at DESC"
        )
        return [
            Conversation(id=row[0], title=row[1], created_at=datetime.fromisoformat(row[2]))
            for row in rows
        ]

    async def delete_conversation(self, conversation_id: str) -> None:
        async with self._writing("delete conversation") as db:
            # Foreign keys cascade, but be explicit for portability.
            await db.execute(
                """DELETE FROM tool_calls WHERE message_id IN
                   (SELECT message_id FROM messages WHERE conversation_id = ?)""",
                (conversation_id,),
            )
            await db.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
            )
            await db.execute(
                "DELETE FROM conversations WHERE conversation_id = ?", (conversation_id,)
            )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str | None = None,
        *,
        tool_call_id: str | None = None,
        tool_name: str | None = None,
    ) -> str:
        message_id = str(uuid.uuid4())
        async with self._writing("create message") as db:
            await db.execute(
                """INSERT INTO messages
                   (message_id, conversation_id, role, content, tool_call_id, tool_name, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (message_id, conversation_id, role, content, tool_call_id, tool_name, _now()),
            )
        logger.debug("Created %s message %s in %s", role, message_id, conversation_id)
        return message_id

    async def update_message(
        self,
        message_id: str,
        *,
        content: str | None = None,
        tool_call_ids: list[str] | None = None,
    ) -> None:
        if content is None and tool_call_ids is None:
            return
        async with self._writing("update message") as db:
            if content is not None:
                await db.execute(
                    "UPDATE messages SET content = ? WHERE message_id = ?",
                    (content, message_id),
                )
            if tool_call_ids:
                await db.executemany(
                    "UPDATE tool_calls SET message_id = ? WHERE record_id = ?",
                    [(message_id, record_id) for record_id in tool_call_ids],
                )

    async def delete_message(self, message_id: str) -> None:
        async with self._writing("delete message") as db:
            await db.execute("DELETE FROM tool_calls WHERE message_id = ?", (message_id,))
            await db.execute("DELETE FROM messages WHERE message_id = ?", (message_id,))

    async def get_message(self, message_id: str) -> Message | None:
        rows = await self._fetchall(
            """SELECT message_id, conversation_id, role, content, tool_call_id, tool_name, created_at
               FROM messages WHERE message_id = ?""",
            (message_id,),
        )
        if not rows:
            return None
        calls = await self._tool_calls_for([message_id])
        return self._row_to_message(rows[0], calls.get(message_id, []))

    async def get_messages(self, conversation_id: str) -> list[Message]:
        rows = await self._fetchall(
            """SELECT message_id, conversation_id, role, content, tool_call_id, tool_name, created_at
               FROM messages WHERE conversation_id = ?
               ORDER BY seq ASC""",
            (conversation_id,),
        )
        calls = await self._tool_calls_for([row[0] for row in rows])
        return [self._row_to_message(row, calls.get(row[0], [])) for row in rows]

    async def _tool_calls_for(self, message_ids: list[str]) -> dict[str, list[ToolCall]]:
        if not message_ids:
            return {}
        placeholders = ",".join("?" for _ in message_ids)
        rows = await self._fetchall(
            f"""SELECT message_id, call_index, call_id, function_name, arguments
                FROM tool_calls WHERE message_id IN ({placeholders})
                ORDER BY call_index ASC""",
            tuple(message_ids),
        )
        grouped: dict[str, list[ToolCall]] = {}
        for row in rows:
            grouped.setdefault(row[0], []).append(
                ToolCall(index=row[1], id=row[2], function_name=row[3], arguments_text=row[4])
            )
        return grouped

    @staticmethod
    def _row_to_message(row, tool_calls: list[ToolCall]) -> Message:
        return Message(
            id=row[0],
            conversation_id=row[1],
            role=row[2],
            content=row[3],
            tool_call_id=row[4],
            tool_name=row[5],
            created_at=datetime.fromisoformat(row[6]),
            tool_calls=tool_calls,
        )

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    async def create_tool_call(self, tool_call: ToolCall) -> str:
        record_id = str(uuid.uuid4())
        async with self._writing("create tool call") as db:
            await db.execute(
                """INSERT INTO tool_calls
                   (record_id, message_id, call_index, call_id, function_name, arguments)
                   VALUES (?, NULL, ?, ?, ?, ?)""",
                (
                    record_id,
                    tool_call.index,
                    tool_call.id,
                    tool_call.function_name,
                    tool_call.arguments_text,
                ),
            )
        return record_id
