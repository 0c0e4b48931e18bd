"""Append-only audit log sinks."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from agent_guard.models import AuditEntry, AuditStatus

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Interface for audit log storage. Entries are never mutated once appended."""

    @abstractmethod
    async def append(self, entry: AuditEntry) -> None:
        """Append one entry."""
        ...

    @abstractmethod
    async def query(
        self,
        limit: int = 100,
        agent: str | None = None,
        status: AuditStatus | None = None,
    ) -> list[AuditEntry]:
        """Return entries most-recent-first, optionally filtered, capped at *limit*."""
        ...

    async def debug_entries(self, limit: int = 50) -> list[AuditEntry]:
        """Return only denied and error entries, most-recent-first."""
        entries = await self.query(limit=10**9)
        failures = [e for e in entries if e.status is not AuditStatus.ALLOWED]
        return failures[:limit]


def _select(
    entries: list[AuditEntry],
    limit: int,
    agent: str | None,
    status: AuditStatus | None,
) -> list[AuditEntry]:
    """Filter oldest-first *entries* and return them newest-first."""
    if agent:
        entries = [e for e in entries if e.agent == agent]
    if status is not None:
        entries = [e for e in entries if e.status is status]
    return list(reversed(entries))[:limit]


class MemoryAuditSink(AuditSink):
    """In-process audit log, used by tests and single-shot CLI runs."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    async def query(
        self,
        limit: int = 100,
        agent: str | None = None,
        status: AuditStatus | None = None,
    ) -> list[AuditEntry]:
        return _select(self.entries, limit, agent, status)


class JsonlAuditSink(AuditSink):
    """Audit log written as one JSON object per line."""

    def __init__(self, path: str) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    def _write_line(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(line)

    def _read_entries(self) -> list[AuditEntry]:
        if not self._path.exists():
            return []
        entries: list[AuditEntry] = []
        with open(self._path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    raw = json.loads(line)
                    if not isinstance(raw, dict):
                        raise ValueError("audit line is not an object")
                    entries.append(AuditEntry.from_dict(raw))
                except (ValueError, KeyError):
                    logger.warning("Skipping malformed audit line %d in %s", lineno, self._path)
        return entries

    async def append(self, entry: AuditEntry) -> None:
        line = json.dumps(entry.to_dict(), ensure_ascii=False) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._write_line, line)

    async def query(
        self,
        limit: int = 100,
        agent: str | None = None,
        status: AuditStatus | None = None,
    ) -> list[AuditEntry]:
        entries = await asyncio.to_thread(self._read_entries)
        return _select(entries, limit, agent, status)


async def try_log(sink: AuditSink, entry: AuditEntry) -> bool:
    """Append *entry*, returning False instead of raising if the sink fails.

    Only for boundaries where a log failure must not abort the caller.
    """
    try:
        await sink.append(entry)
    except Exception:
        logger.warning(
            "Failed to write audit entry for %s %s %s",
            entry.agent,
            entry.method,
            entry.path,
            exc_info=True,
        )
        return False
    return True
