"""Context assembly: memory injection followed by history trimming."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from chatmem.config import settings
from chatmem.memory.models import ChatTurnMessage, ScoredMemory

if TYPE_CHECKING:
    from chatmem.memory.retriever import MemoryRetriever

logger = logging.getLogger(__name__)

MEMORY_PREAMBLE = "Relevant memories from past conversations:\n\n"
MEMORY_SUFFIX = (
    "\n\nUse this information to personalize your response "
    "and keep continuity with earlier conversations."
)

MIN_MESSAGES = 6
TOKENS_PER_MESSAGE = 500


def max_messages_for(max_tokens: int) -> int:
    """Message budget for an approximate token budget."""
    return max(MIN_MESSAGES, max_tokens // TOKENS_PER_MESSAGE)


def trim_history(messages: Sequence[ChatTurnMessage], max_tokens: int) -> list[ChatTurnMessage]:
    """Keep only the most recent messages that fit the budget."""
    return list(messages[-max_messages_for(max_tokens) :])


def format_memories(memories: Sequence[ScoredMemory]) -> str:
    """Render retrieved memories as the body of a system message."""
    lines = [f"[{m.metadata.type.upper()}] {m.content}" for m in memories]
    return MEMORY_PREAMBLE + "\n\n".join(lines) + MEMORY_SUFFIX


def build_query(messages: Sequence[ChatTurnMessage]) -> str:
    return " ".join(m.content for m in messages)


class ContextAssembler:
    """Builds the message list sent to the model for one turn.

    Memories are injected before trimming, so under a tight budget the
    injected system message can itself be trimmed away.
    """

    def __init__(
        self,
        retriever: MemoryRetriever,
        limit: int | None = None,
        min_score: float | None = None,
    ) -> None:
        self._retriever = retriever
        self._limit = settings.memory_retrieval_limit if limit is None else limit
        self._min_score = settings.memory_min_score if min_score is None else min_score

    async def assemble(
        self,
        conversation_id: str,
        messages: Sequence[ChatTurnMessage],
        max_tokens: int,
    ) -> list[ChatTurnMessage]:
        query = build_query(messages)
        memories = await self._retriever.retrieve(
            query, conversation_id, limit=self._limit, min_score=self._min_score
        )

        augmented = list(messages)
        if memories:
            logger.debug("Injecting %d memories into %s", len(memories), conversation_id)
            augmented.insert(0, ChatTurnMessage(role="system", content=format_memories(memories)))

        return trim_history(augmented, max_tokens)
