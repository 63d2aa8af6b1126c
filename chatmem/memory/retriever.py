"""Ranked memory retrieval for a conversation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chatmem.config import settings
from chatmem.errors import StoreUnavailableError
from chatmem.memory.models import MemoryMetadata, ScoredMemory
from chatmem.memory.similarity import KeywordOverlapScorer, Scorer

if TYPE_CHECKING:
    from chatmem.memory.models import ConversationRecord, Message
    from chatmem.memory.store import MemoryStore

logger = logging.getLogger(__name__)

SUMMARY_IMPORTANCE = 8
USER_MESSAGE_IMPORTANCE = 7
ASSISTANT_MESSAGE_IMPORTANCE = 5

ALL_MEMORIES_LIMIT = 50


def _summary_candidate(record: ConversationRecord) -> tuple[str, MemoryMetadata]:
    return record.summary, MemoryMetadata(
        conversation_id=record.id,
        user_id=record.user_id,
        timestamp=record.updated_at,
        type="summary",
        importance=SUMMARY_IMPORTANCE,
    )


def _message_candidate(message: Message) -> tuple[str, MemoryMetadata]:
    is_user = message.role == "user"
    return message.content, MemoryMetadata(
        conversation_id=message.conversation_id,
        user_id=message.user_id,
        timestamp=message.created_at,
        type="user_preference" if is_user else "context",
        importance=USER_MESSAGE_IMPORTANCE if is_user else ASSISTANT_MESSAGE_IMPORTANCE,
    )


class MemoryRetriever:
    """Scores the conversation summary and recent messages against a query.

    Candidates are ranked by ``score * importance``; equal ranks keep pool
    order (summary first, then messages newest first).
    """

    def __init__(
        self,
        store: MemoryStore,
        scorer: Scorer | None = None,
        candidate_messages: int | None = None,
    ) -> None:
        self._store = store
        self._scorer = scorer or KeywordOverlapScorer()
        self._candidate_messages = (
            settings.memory_candidate_messages if candidate_messages is None else candidate_messages
        )

    async def _candidate_pool(self, conversation_id: str) -> list[tuple[str, MemoryMetadata]]:
        pool: list[tuple[str, MemoryMetadata]] = []
        record = await self._store.get_conversation(conversation_id)
        if record is not None and record.summary:
            pool.append(_summary_candidate(record))

        messages = await self._store.recent_messages(conversation_id, self._candidate_messages)
        pool.extend(_message_candidate(m) for m in messages if not m.partial)
        return pool

    async def retrieve(
        self,
        query: str,
        conversation_id: str,
        limit: int = 5,
        min_score: float = 0.3,
    ) -> list[ScoredMemory]:
        """Return at most *limit* memories scoring at least *min_score*.

        An empty query scores 0 against everything, so it returns the whole
        pool when *min_score* is 0 and nothing otherwise. If the store is
        unavailable the result is empty.
        """
        try:
            pool = await self._candidate_pool(conversation_id)
        except StoreUnavailableError:
            logger.warning(
                "Memory retrieval skipped for %s: store unavailable", conversation_id, exc_info=True
            )
            return []

        scored = []
        for content, metadata in pool:
            relevance = self._scorer(query, content)
            if relevance >= min_score:
                scored.append(ScoredMemory(content=content, score=relevance, metadata=metadata))

        # sorted() is stable, so ties keep pool order
        ranked = sorted(scored, key=lambda m: m.rank, reverse=True)
        return ranked[: max(limit, 0)]

    async def all_memories(self, conversation_id: str) -> list[ScoredMemory]:
        """Every candidate memory for a conversation, ranked by importance."""
        return await self.retrieve("", conversation_id, limit=ALL_MEMORIES_LIMIT, min_score=0)
