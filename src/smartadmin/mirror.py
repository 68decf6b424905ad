"""
Durable message mirror — SQLite via aiosqlite.

The mirror is shared by every producer (live sessions, webhook ingestion,
history sync), possibly in different processes. All writes go through
``INSERT ... ON CONFLICT(message_id) DO NOTHING`` so the same message observed
twice is a no-op rather than an error.
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import aiosqlite

from smartadmin.models.channels import BROADCAST_CLIENT_ID
from smartadmin.models.message import (
    Message,
    MessageLogEntry,
    MirrorStats,
    format_timestamp,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger("smartadmin.mirror")

MAX_QUERY_LIMIT = 1000
SQLITE_TIMEOUT_SECONDS = 3.0

SCHEMA = """
CREATE TABLE IF NOT EXISTS message_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id TEXT NOT NULL,
    client_id TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('sent', 'received')),
    channel TEXT NOT NULL DEFAULT '',
    command TEXT NOT NULL,
    payload TEXT,
    timestamp TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_message_logs_message_id_unique ON message_logs(message_id);
CREATE INDEX IF NOT EXISTS idx_message_logs_client_id ON message_logs(client_id);
CREATE INDEX IF NOT EXISTS idx_message_logs_timestamp ON message_logs(timestamp);
CREATE INDEX IF NOT EXISTS idx_message_logs_type ON message_logs(type);
CREATE INDEX IF NOT EXISTS idx_message_logs_command ON message_logs(command);
"""

INSERT_IF_ABSENT = """
INSERT INTO message_logs (message_id, client_id, type, channel, command, payload, timestamp, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(message_id) DO NOTHING
"""


def _row_to_message(row: aiosqlite.Row) -> Message:
    return Message(
        id=row["message_id"],
        client_id=row["client_id"],
        direction=row["type"],
        command=row["command"],
        payload=json.loads(row["payload"]) if row["payload"] else {},
        timestamp=parse_timestamp(row["timestamp"]),
        channel=row["channel"] or None,
    )


def _row_to_entry(row: aiosqlite.Row) -> MessageLogEntry:
    message = _row_to_message(row)
    return MessageLogEntry(
        **message.model_dump(),
        row_id=row["id"],
        created_at=parse_timestamp(row["created_at"]),
    )


class MirrorStore:
    def __init__(self, path: Union[str, Path] = ":memory:", timeout: float = SQLITE_TIMEOUT_SECONDS):
        self._path = str(path)
        self._timeout = timeout
        self._db: Optional[aiosqlite.Connection] = None
        self._open_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._path

    async def open(self) -> aiosqlite.Connection:
        """Open the database on first use and ensure the schema exists."""
        async with self._open_lock:
            if self._db is not None:
                return self._db
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(self._path, timeout=self._timeout)
            db.row_factory = aiosqlite.Row
            if self._path != ":memory:":
                await db.execute("PRAGMA journal_mode=WAL;")
                await db.execute("PRAGMA synchronous=NORMAL;")
            await db.executescript(SCHEMA)
            await db.commit()
            logger.debug(f"Mirror opened at {self._path}")
            self._db = db
            return db

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "MirrorStore":
        await self.open()
        return self

    async def __aexit__(self, *_exc: Any) -> None:
        await self.close()

    @staticmethod
    def _values(message: Message) -> tuple[Any, ...]:
        return (
            message.id,
            message.client_id,
            message.direction,
            message.channel or "",
            message.command,
            json.dumps(message.payload),
            format_timestamp(message.timestamp),
            format_timestamp(utcnow()),
        )

    async def insert_if_absent(self, message: Message) -> bool:
        """Insert unless the message id is already stored. Returns True if a row was added."""
        db = await self.open()
        async with self._write_lock:
            cursor = await db.execute(INSERT_IF_ABSENT, self._values(message))
            await db.commit()
        inserted = cursor.rowcount > 0
        if not inserted:
            logger.debug(f"Message already mirrored: {message.id}")
        return inserted

    async def insert_many(self, messages: Iterable[Message]) -> int:
        db = await self.open()
        inserted = 0
        async with self._write_lock:
            for message in messages:
                cursor = await db.execute(INSERT_IF_ABSENT, self._values(message))
                inserted += max(cursor.rowcount, 0)
            await db.commit()
        return inserted

    async def fetch_range(self, client_id: str, before: datetime, limit: int = 100) -> list[Message]:
        """The newest ``limit`` records for a client (broadcasts included) strictly before ``before``, ascending."""
        db = await self.open()
        async with db.execute(
            """
            SELECT * FROM message_logs
            WHERE (client_id = ? OR (client_id = ? AND type = 'sent')) AND timestamp < ?
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            (client_id, BROADCAST_CLIENT_ID, format_timestamp(before), limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_message(row) for row in reversed(rows)]

    async def query(
        self,
        client_id: Optional[str] = None,
        command: Optional[str] = None,
        direction: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[MessageLogEntry]:
        """Filtered log listing, newest first."""
        conditions: list[str] = []
        values: list[Any] = []
        if client_id and client_id != "all":
            conditions.append("client_id = ?")
            values.append(client_id)
        if command:
            conditions.append("command = ?")
            values.append(command)
        if direction:
            conditions.append("type = ?")
            values.append(direction)
        if start:
            conditions.append("timestamp >= ?")
            values.append(format_timestamp(start))
        if end:
            conditions.append("timestamp <= ?")
            values.append(format_timestamp(end))

        sql = "SELECT * FROM message_logs"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        values.append(max(1, min(limit, MAX_QUERY_LIMIT)))

        db = await self.open()
        async with db.execute(sql, values) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_entry(row) for row in rows]

    async def delete(self, row_ids: Iterable[int]) -> int:
        ids = [int(i) for i in row_ids]
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        db = await self.open()
        async with self._write_lock:
            cursor = await db.execute(f"DELETE FROM message_logs WHERE id IN ({placeholders})", ids)
            await db.commit()
        logger.info(f"Deleted {cursor.rowcount} mirrored messages")
        return cursor.rowcount

    async def delete_all(self) -> int:
        db = await self.open()
        async with self._write_lock:
            cursor = await db.execute("DELETE FROM message_logs")
            await db.commit()
        logger.info(f"Deleted all {cursor.rowcount} mirrored messages")
        return cursor.rowcount

    async def last_timestamp(self) -> Optional[datetime]:
        db = await self.open()
        async with db.execute("SELECT MAX(timestamp) AS last FROM message_logs") as cursor:
            row = await cursor.fetchone()
        return parse_timestamp(row["last"]) if row else None

    async def stats(self) -> MirrorStats:
        db = await self.open()
        async with db.execute(
            "SELECT COUNT(*) AS total, MIN(timestamp) AS first, MAX(timestamp) AS last FROM message_logs"
        ) as cursor:
            totals = await cursor.fetchone()
        async with db.execute("SELECT DISTINCT client_id FROM message_logs ORDER BY client_id") as cursor:
            clients = [row["client_id"] for row in await cursor.fetchall()]
        async with db.execute("SELECT DISTINCT command FROM message_logs ORDER BY command") as cursor:
            commands = [row["command"] for row in await cursor.fetchall()]
        since = format_timestamp(utcnow() - timedelta(hours=24))
        async with db.execute("SELECT COUNT(*) AS recent FROM message_logs WHERE timestamp > ?", (since,)) as cursor:
            recent = await cursor.fetchone()
        return MirrorStats(
            total_count=totals["total"],
            unique_clients=clients,
            unique_commands=commands,
            recent_count=recent["recent"],
            first_message=parse_timestamp(totals["first"]),
            last_message=parse_timestamp(totals["last"]),
        )


class MirrorWriter:
    """The single write path into the mirror, shared by every producer."""

    def __init__(self, store: MirrorStore):
        self._store = store
        self._pending: set[asyncio.Task] = set()

    async def write(self, message: Message) -> bool:
        inserted = await self._store.insert_if_absent(message)
        if inserted:
            logger.debug(f"Mirrored {message.direction} {message.command} for {message.client_id}")
        return inserted

    def submit(self, message: Message) -> None:
        """Fire-and-forget write on the running loop. Failures are logged."""

        async def _do_write() -> None:
            try:
                await self.write(message)
            except Exception as e:
                logger.error(f"Mirror write failed for {message.id}: {e}")

        task = asyncio.get_running_loop().create_task(_do_write())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))
