"""SQLite storage for the audit log and conversation messages."""

from __future__ import annotations

import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite

from agent_guard.audit import AuditSink
from agent_guard.models import AuditEntry, AuditStatus, Message, RiskLevel

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a storage operation fails."""


class MessageStore(ABC):
    """Interface for conversation message persistence."""

    @abstractmethod
    async def save_message(self, message: Message) -> str:
        """Persist *message* and return its message id."""
        ...

    @abstractmethod
    async def get_conversation(
        self,
        user_id: str,
        agent_id: str,
        limit: int = 50,
        *,
        exclude_conversation: str | None = None,
    ) -> list[Message]:
        """Return the latest *limit* messages exchanged between a user and an agent.

        Only messages sent by the user or by that agent are included, oldest first.
        """
        ...

    @abstractmethod
    async def mark_as_read(self, conversation_id: str, reader: str) -> None:
        """Record that *reader* has seen every message of the conversation."""
        ...


_SCHEMA = """
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    agent TEXT NOT NULL,
    endpoint_id TEXT NOT NULL,
    method TEXT NOT NULL,
    path TEXT NOT NULL,
    status TEXT NOT NULL,
    reason TEXT,
    risk_level TEXT,
    require_confirmation INTEGER,
    metadata TEXT
);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_agent ON audit_log(agent);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id TEXT NOT NULL UNIQUE,
    conversation_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    sender TEXT NOT NULL,
    recipients TEXT NOT NULL,
    message_type TEXT NOT NULL,
    content TEXT NOT NULL,
    metadata TEXT,
    read_by TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_user_sender ON messages(user_id, sender);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id);
"""


class Database(AuditSink, MessageStore):
    """aiosqlite-backed audit sink and message store."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._conn: aiosqlite.Connection | None = None

    def _get_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError("Database not initialized")
        return self._conn

    async def initialize(self) -> None:
        """Open the database file (mode 0600) and create tables and indexes."""
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()
        if self._path != ":memory:":
            os.chmod(self._path, 0o600)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # --- Audit log ---

    async def append(self, entry: AuditEntry) -> None:
        conn = self._get_conn()
        await conn.execute(
            "INSERT INTO audit_log (timestamp, agent, endpoint_id, method, path, status, "
            "reason, risk_level, require_confirmation, metadata) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.timestamp,
                entry.agent,
                entry.endpoint_id,
                entry.method,
                entry.path,
                entry.status.value,
                entry.reason,
                entry.risk_level.value if entry.risk_level else None,
                None if entry.require_confirmation is None else int(entry.require_confirmation),
                json.dumps(entry.metadata) if entry.metadata is not None else None,
            ),
        )
        await conn.commit()

    async def query(
        self,
        limit: int = 100,
        agent: str | None = None,
        status: AuditStatus | None = None,
    ) -> list[AuditEntry]:
        clauses: list[str] = []
        params: list[object] = []
        if agent:
            clauses.append("agent = ?")
            params.append(agent)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        conn = self._get_conn()
        cursor = await conn.execute(
            f"SELECT * FROM audit_log {where} ORDER BY id DESC LIMIT ?", params
        )
        rows = await cursor.fetchall()
        return [_row_to_audit(row) for row in rows]

    async def debug_entries(self, limit: int = 50) -> list[AuditEntry]:
        conn = self._get_conn()
        cursor = await conn.execute(
            "SELECT * FROM audit_log WHERE status != ? ORDER BY id DESC LIMIT ?",
            (AuditStatus.ALLOWED.value, limit),
        )
        rows = await cursor.fetchall()
        return [_row_to_audit(row) for row in rows]

    # --- Messages ---

    async def save_message(self, message: Message) -> str:
        message_id = message.message_id or f"msg_{uuid.uuid4().hex}"
        conn = self._get_conn()
        try:
            await conn.execute(
                "INSERT INTO messages (message_id, conversation_id, user_id, sender, recipients, "
                "message_type, content, metadata, read_by, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    message_id,
                    message.conversation_id,
                    message.user_id,
                    message.sender,
                    json.dumps(message.recipients),
                    message.message_type,
                    message.content,
                    json.dumps(message.metadata) if message.metadata is not None else None,
                    json.dumps([message.sender]),
                    message.created_at,
                ),
            )
            await conn.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to save message: {exc}") from exc
        logger.debug("Message saved: %s (conversation %s)", message_id, message.conversation_id)
        return message_id

    async def get_conversation(
        self,
        user_id: str,
        agent_id: str,
        limit: int = 50,
        *,
        exclude_conversation: str | None = None,
    ) -> list[Message]:
        query = "SELECT * FROM messages WHERE user_id = ? AND sender IN ('user', ?)"
        params: list[object] = [user_id, agent_id]
        if exclude_conversation:
            query += " AND conversation_id != ?"
            params.append(exclude_conversation)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        conn = self._get_conn()
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [_row_to_message(row) for row in reversed(rows)]

    async def get_messages(self, conversation_id: str) -> list[Message]:
        """Return every message of one conversation in creation order."""
        conn = self._get_conn()
        cursor = await conn.execute(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY id", (conversation_id,)
        )
        rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def mark_as_read(self, conversation_id: str, reader: str) -> None:
        """Add *reader* to read_by of every message in the conversation."""
        conn = self._get_conn()
        cursor = await conn.execute(
            "SELECT id, read_by FROM messages WHERE conversation_id = ?", (conversation_id,)
        )
        for row in await cursor.fetchall():
            read_by = json.loads(row["read_by"])
            if reader not in read_by:
                read_by.append(reader)
                await conn.execute(
                    "UPDATE messages SET read_by = ? WHERE id = ?",
                    (json.dumps(read_by), row["id"]),
                )
        await conn.commit()

    async def read_by(self, message_id: str) -> list[str]:
        conn = self._get_conn()
        cursor = await conn.execute(
            "SELECT read_by FROM messages WHERE message_id = ?", (message_id,)
        )
        row = await cursor.fetchone()
        return json.loads(row["read_by"]) if row else []

    async def cleanup_old_conversations(self, days_old: int = 90) -> int:
        """Delete messages older than *days_old* days. Returns the number deleted."""
        cutoff = (datetime.now(UTC) - timedelta(days=days_old)).isoformat()
        conn = self._get_conn()
        cursor = await conn.execute("DELETE FROM messages WHERE created_at < ?", (cutoff,))
        await conn.commit()
        logger.info("Deleted %d messages older than %d days", cursor.rowcount, days_old)
        return cursor.rowcount


def _row_to_audit(row: aiosqlite.Row) -> AuditEntry:
    confirmation = row["require_confirmation"]
    return AuditEntry(
        agent=row["agent"],
        endpoint_id=row["endpoint_id"],
        method=row["method"],
        path=row["path"],
        status=AuditStatus(row["status"]),
        timestamp=row["timestamp"],
        reason=row["reason"],
        risk_level=RiskLevel(row["risk_level"]) if row["risk_level"] else None,
        require_confirmation=None if confirmation is None else bool(confirmation),
        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
    )


def _row_to_message(row: aiosqlite.Row) -> Message:
    return Message(
        message_id=row["message_id"],
        conversation_id=row["conversation_id"],
        user_id=row["user_id"],
        sender=row["sender"],
        content=row["content"],
        message_type=row["message_type"],
        recipients=json.loads(row["recipients"]),
        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        created_at=row["created_at"],
    )
