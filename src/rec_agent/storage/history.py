"""Append-only conversation history keyed by session token."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path

from loguru import logger

from rec_agent.protocol import (
    ConversationEntry,
    HistoryRecord,
    ItemKind,
    StructuredPayload,
    parse_items,
)


class HistoryStore(ABC):
    """One row per message, read back in creation order."""

    @abstractmethod
    async def append(self, record: HistoryRecord) -> None:
        """Append one row."""

    @abstractmethod
    async def recent(self, token: str, limit: int) -> list[HistoryRecord]:
        """Return the last ``limit`` rows for ``token``, oldest first."""

    async def save_message(
        self,
        token: str,
        role: str,
        content: str,
        payload: StructuredPayload | None = None,
    ) -> None:
        items_json = (
            json.dumps([item.to_wire() for item in payload.items], ensure_ascii=False)
            if payload is not None
            else None
        )
        await self.append(
            HistoryRecord(
                token=token,
                role=role,
                content=content,
                structured_payload_items_json=items_json,
                kind=payload.kind if payload is not None else None,
            )
        )

    async def conversation_history(self, token: str, limit: int = 5) -> list[ConversationEntry]:
        """Up to ``limit`` user/assistant pairs, oldest first."""

        rows = await self.recent(token, limit * 2)
        return pair_history(rows)


class InMemoryHistoryStore(HistoryStore):
    def __init__(self) -> None:
        self._rows: dict[str, list[HistoryRecord]] = {}

    async def append(self, record: HistoryRecord) -> None:
        self._rows.setdefault(record.token, []).append(record)

    async def recent(self, token: str, limit: int) -> list[HistoryRecord]:
        if limit <= 0:
            return []
        return list(self._rows.get(token, [])[-limit:])


class SqliteHistoryStore(HistoryStore):
    """SQLite-backed log; blocking calls run in a worker thread."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        _ensure_messages_table(self.path)

    async def append(self, record: HistoryRecord) -> None:
        await asyncio.to_thread(self._insert, record)

    async def recent(self, token: str, limit: int) -> list[HistoryRecord]:
        if limit <= 0:
            return []
        return await asyncio.to_thread(self._select_recent, token, limit)

    def _insert(self, record: HistoryRecord) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "INSERT INTO messages(token, role, content, items_json, kind) VALUES(?, ?, ?, ?, ?)",
                (
                    record.token,
                    record.role,
                    record.content,
                    record.structured_payload_items_json,
                    record.kind.value if record.kind is not None else None,
                ),
            )
            conn.commit()

    def _select_recent(self, token: str, limit: int) -> list[HistoryRecord]:
        with sqlite3.connect(self.path) as conn:
            cur = conn.execute(
                "SELECT token, role, content, items_json, kind FROM messages "
                "WHERE token = ? ORDER BY id DESC LIMIT ?",
                (token, limit),
            )
            rows = cur.fetchall()
        rows.reverse()
        return [
            HistoryRecord(
                token=row[0],
                role=row[1],
                content=row[2],
                structured_payload_items_json=row[3],
                kind=row[4],
            )
            for row in rows
        ]


def pair_history(rows: list[HistoryRecord]) -> list[ConversationEntry]:
    """Pair each user row with the assistant row right after it.

    Pairing is positional; a user row with no assistant reply after it (for
    example the turn still in flight) is left out.
    """

    entries: list[ConversationEntry] = []
    index = 0
    while index < len(rows):
        row = rows[index]
        following = rows[index + 1] if index + 1 < len(rows) else None
        if row.role == "user" and following is not None and following.role == "assistant":
            entries.append(
                ConversationEntry(
                    user=row.content,
                    assistant=following.content,
                    structured_payload=_restore_payload(following),
                )
            )
            index += 2
            continue
        index += 1
    return entries


def _restore_payload(record: HistoryRecord) -> StructuredPayload | None:
    if record.kind is None or record.structured_payload_items_json is None:
        return None
    try:
        items = parse_items(ItemKind(record.kind), json.loads(record.structured_payload_items_json))
    except ValueError as exc:
        logger.warning("Dropping unreadable stored payload for {}: {}", record.token, exc)
        return None
    return StructuredPayload(kind=record.kind, items=items)


def _ensure_messages_table(db_path: Path) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS messages ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "token TEXT NOT NULL, "
            "role TEXT NOT NULL, "
            "content TEXT NOT NULL, "
            "items_json TEXT, "
            "kind TEXT)"
        )
        conn.commit()
