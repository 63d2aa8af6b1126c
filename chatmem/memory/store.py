"""MemoryStore — conversation documents, messages and memory entries.

Conversations are stored one row per document, with their memory entries
embedded as a JSON array. Messages have their own table and are removed
together with their conversation.

Every row read back is validated into a pydantic model. Driver failures and
rows that do not validate surface as ``StoreUnavailableError``.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError

from chatmem.config import settings
from chatmem.errors import StoreUnavailableError
from chatmem.memory.models import (
    Attachment,
    ConversationRecord,
    MemoryEntry,
    Message,
    Role,
    utc_now,
)
from chatmem.memory.summary import update_summary

if TYPE_CHECKING:
    from chatmem.db import Database

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id             TEXT PRIMARY KEY,
        title          TEXT NOT NULL,
        user_id        TEXT NOT NULL DEFAULT '',
        summary        TEXT NOT NULL DEFAULT '',
        memory_entries TEXT NOT NULL DEFAULT '[]',
        created_at     TEXT NOT NULL,
        updated_at     TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id              TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
        user_id         TEXT NOT NULL DEFAULT '',
        role            TEXT NOT NULL,
        content         TEXT NOT NULL,
        attachments     TEXT NOT NULL DEFAULT '[]',
        partial         INTEGER NOT NULL DEFAULT 0,
        created_at      TEXT NOT NULL,
        updated_at      TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_messages_conversation
        ON messages (conversation_id, created_at)
    """,
)

_CONVERSATION_COLUMNS = "id, title, user_id, summary, memory_entries, created_at, updated_at"
_MESSAGE_COLUMNS = (
    "id, conversation_id, user_id, role, content, attachments, partial, created_at, updated_at"
)

_entries_adapter = TypeAdapter(list[MemoryEntry])
_attachments_adapter = TypeAdapter(list[Attachment])


class MemoryStore:
    """Persistence for conversation records and their messages.

    Takes an open :class:`~chatmem.db.Database`; the schema is created on
    first use.
    """

    def __init__(self, db: Database, summary_max_length: int | None = None) -> None:
        self._db = db
        self._summary_max_length = (
            settings.summary_max_length if summary_max_length is None else summary_max_length
        )
        self._initialised = False

    @property
    def summary_max_length(self) -> int:
        return self._summary_max_length

    async def _ensure_schema(self) -> None:
        if self._initialised:
            return
        for statement in _SCHEMA:
            await self._db.execute(statement)
        await self._db.commit()
        self._initialised = True

    # -- Conversations ---------------------------------------------------------

    async def create_conversation(self, user_id: str, title: str) -> ConversationRecord:
        """Insert a new, empty conversation."""
        await self._ensure_schema()
        record = ConversationRecord(title=title, user_id=user_id)
        await self._db.execute(
            f"INSERT INTO conversations ({_CONVERSATION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                record.id,
                record.title,
                record.user_id,
                record.summary,
                "[]",
                record.created_at,
                record.updated_at,
            ),
        )
        await self._db.commit()
        logger.info("Created conversation %s for user %s", record.id, user_id)
        return record

    async def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        """Fetch a conversation by id, or None if it does not exist."""
        await self._ensure_schema()
        row = await self._db.fetchone(
            f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = ?",
            (conversation_id,),
        )
        return self._conversation_from_row(row) if row else None

    async def list_conversations(self, user_id: str, limit: int = 50) -> list[ConversationRecord]:
        """Return the user's conversations, most recently updated first."""
        await self._ensure_schema()
        rows = await self._db.fetchall(
            f"""
            SELECT {_CONVERSATION_COLUMNS} FROM conversations
            WHERE user_id = ?
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (user_id, limit),
        )
        return [self._conversation_from_row(row) for row in rows]

    async def rename_conversation(
        self, conversation_id: str, user_id: str, title: str
    ) -> ConversationRecord | None:
        """Retitle a conversation owned by *user_id*. Returns None if not found."""
        await self._ensure_schema()
        updated = await self._db.execute(
            "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ? AND user_id = ?",
            (title, utc_now(), conversation_id, user_id),
        )
        await self._db.commit()
        if not updated:
            return None
        return await self.get_conversation(conversation_id)

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages. Returns True if it existed."""
        await self._ensure_schema()
        await self._db.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
        deleted = await self._db.execute(
            "DELETE FROM conversations WHERE id = ?", (conversation_id,)
        )
        await self._db.commit()
        if deleted:
            logger.info("Deleted conversation %s", conversation_id)
        return deleted > 0

    # -- Messages --------------------------------------------------------------

    async def add_message(
        self,
        conversation_id: str,
        user_id: str,
        role: Role,
        content: str,
        attachments: list[Attachment] | None = None,
        *,
        partial: bool = False,
    ) -> Message:
        """Append a message and touch the conversation's ``updated_at``."""
        await self._ensure_schema()
        message = Message(
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            content=content,
            attachments=attachments or [],
            partial=partial,
        )
        await self._db.execute(
            f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                message.id,
                message.conversation_id,
                message.user_id,
                message.role,
                message.content,
                _attachments_adapter.dump_json(message.attachments).decode(),
                int(message.partial),
                message.created_at,
                message.updated_at,
            ),
        )
        await self._db.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (message.created_at, conversation_id),
        )
        await self._db.commit()
        return message

    async def recent_messages(
        self,
        conversation_id: str,
        limit: int,
        role: Role | None = None,
        user_id: str | None = None,
    ) -> list[Message]:
        """Return up to *limit* messages, newest first."""
        await self._ensure_schema()
        clauses = ["conversation_id = ?"]
        params: list[object] = [conversation_id]
        if role is not None:
            clauses.append("role = ?")
            params.append(role)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        params.append(limit)
        rows = await self._db.fetchall(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE {" AND ".join(clauses)}
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            tuple(params),
        )
        return [self._message_from_row(row) for row in rows]

    async def list_messages(self, conversation_id: str) -> list[Message]:
        """Return every message in a conversation, oldest first."""
        await self._ensure_schema()
        rows = await self._db.fetchall(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE conversation_id = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            (conversation_id,),
        )
        return [self._message_from_row(row) for row in rows]

    # -- Memory entries --------------------------------------------------------

    async def add_memory_entry(self, entry: MemoryEntry) -> bool:
        """Append *entry* to its conversation and fold it into the summary.

        Returns False (and writes nothing) when the conversation does not
        exist. Concurrent writers to one conversation are last-write-wins.
        """
        conversation_id = entry.metadata.conversation_id
        record = await self.get_conversation(conversation_id)
        if record is None:
            logger.warning("Memory entry dropped: conversation %s not found", conversation_id)
            return False

        summary = update_summary(record.summary, entry, self._summary_max_length)
        entries = [*record.memory_entries, entry]
        await self._db.execute(
            """
            UPDATE conversations
            SET summary = ?, memory_entries = ?, updated_at = ?
            WHERE id = ?
            """,
            (summary, self._dump_entries(entries), utc_now(), conversation_id),
        )
        await self._db.commit()
        logger.debug(
            "Stored memory %s [%s/%d]: %s",
            entry.id,
            entry.metadata.type,
            entry.metadata.importance,
            entry.content[:80],
        )
        return True

    async def replace_summary(self, conversation_id: str, summary: str) -> bool:
        """Overwrite the summary (cut to the cap). Returns True if updated."""
        await self._ensure_schema()
        updated = await self._db.execute(
            "UPDATE conversations SET summary = ?, updated_at = ? WHERE id = ?",
            (summary[: self._summary_max_length], utc_now(), conversation_id),
        )
        await self._db.commit()
        return updated > 0

    async def delete_memory_entry(self, conversation_id: str, memory_id: str) -> bool:
        """Remove one memory entry by id.

        An unknown conversation or memory id removes nothing. Returns True
        if an entry was removed.
        """
        record = await self.get_conversation(conversation_id)
        if record is None:
            return False

        remaining = [e for e in record.memory_entries if e.id != memory_id]
        if len(remaining) == len(record.memory_entries):
            return False

        await self._db.execute(
            "UPDATE conversations SET memory_entries = ?, updated_at = ? WHERE id = ?",
            (self._dump_entries(remaining), utc_now(), conversation_id),
        )
        await self._db.commit()
        logger.info("Deleted memory %s from conversation %s", memory_id, conversation_id)
        return True

    # -- Helpers ---------------------------------------------------------------

    @staticmethod
    def _dump_entries(entries: list[MemoryEntry]) -> str:
        return _entries_adapter.dump_json(entries).decode()

    @staticmethod
    def _conversation_from_row(row: tuple) -> ConversationRecord:
        try:
            return ConversationRecord(
                id=row[0],
                title=row[1],
                user_id=row[2],
                summary=row[3] or "",
                memory_entries=_entries_adapter.validate_json(row[4] or "[]"),
                created_at=row[5],
                updated_at=row[6],
            )
        except (ValidationError, json.JSONDecodeError) as exc:
            raise StoreUnavailableError(f"Malformed conversation record {row[0]}: {exc}") from exc

    @staticmethod
    def _message_from_row(row: tuple) -> Message:
        try:
            return Message(
                id=row[0],
                conversation_id=row[1],
                user_id=row[2],
                role=row[3],
                content=row[4],
                attachments=_attachments_adapter.validate_json(row[5] or "[]"),
                partial=bool(row[6]),
                created_at=row[7],
                updated_at=row[8],
            )
        except (ValidationError, json.JSONDecodeError) as exc:
            raise StoreUnavailableError(f"Malformed message {row[0]}: {exc}") from exc
