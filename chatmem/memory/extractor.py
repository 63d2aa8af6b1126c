"""Opportunistic memory extraction from a turn's messages.

User messages that state a preference become ``user_preference`` entries;
assistant messages that state a fact become ``fact`` entries. Detection is
delegated to a :class:`MemoryClassifier` so the keyword heuristics can be
swapped for a model-backed classifier without touching the extractor.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from chatmem.config import settings
from chatmem.memory.models import ChatTurnMessage, MemoryEntry, MemoryType

if TYPE_CHECKING:
    from chatmem.memory.store import MemoryStore

logger = logging.getLogger(__name__)

PREFERENCE_KEYWORDS: tuple[str, ...] = (
    "i like",
    "i prefer",
    "i want",
    "i need",
    "i love",
    "i hate",
    "my favorite",
    "i always",
    "i never",
    "i usually",
    "i typically",
)

FACT_KEYWORDS: tuple[str, ...] = (
    "remember",
    "note that",
    "important",
    "keep in mind",
    "fact:",
    "info:",
    "data:",
    "statistics",
)


class MemoryClassifier(Protocol):
    def is_preference(self, content: str) -> bool: ...

    def is_fact(self, content: str) -> bool: ...


def _contains_any(content: str, keywords: Sequence[str]) -> bool:
    lowered = content.lower()
    return any(keyword in lowered for keyword in keywords)


@dataclass(frozen=True)
class KeywordClassifier:
    """Case-insensitive substring match against fixed keyword lists."""

    preference_keywords: tuple[str, ...] = PREFERENCE_KEYWORDS
    fact_keywords: tuple[str, ...] = FACT_KEYWORDS

    def is_preference(self, content: str) -> bool:
        return _contains_any(content, self.preference_keywords)

    def is_fact(self, content: str) -> bool:
        return _contains_any(content, self.fact_keywords)


@dataclass(frozen=True)
class _Candidate:
    content: str
    type: MemoryType
    importance: int


class MemoryExtractor:
    """Turns detected preferences and facts into persisted memory entries."""

    def __init__(self, store: MemoryStore, classifier: MemoryClassifier | None = None) -> None:
        self._store = store
        self._classifier = classifier or KeywordClassifier()

    def candidates(self, messages: Sequence[ChatTurnMessage]) -> list[_Candidate]:
        """Entries that *messages* would produce, user preferences first."""
        found: list[_Candidate] = []
        for message in messages:
            if message.role == "user" and self._classifier.is_preference(message.content):
                found.append(
                    _Candidate(f"User preference: {message.content}", "user_preference", 8)
                )
        for message in messages:
            if message.role == "assistant" and self._classifier.is_fact(message.content):
                found.append(_Candidate(f"Fact: {message.content}", "fact", 6))
        return found

    async def extract(
        self,
        conversation_id: str,
        user_id: str,
        messages: Sequence[ChatTurnMessage],
    ) -> list[MemoryEntry]:
        """Persist a memory entry for every qualifying message.

        Each write is attempted independently; a failure is logged and the
        remaining candidates are still written. Returns the stored entries.
        """
        if not settings.memory_extraction_enabled:
            return []

        saved: list[MemoryEntry] = []
        for candidate in self.candidates(messages):
            entry = MemoryEntry.create(
                candidate.content,
                conversation_id=conversation_id,
                user_id=user_id,
                type=candidate.type,
                importance=candidate.importance,
            )
            try:
                if await self._store.add_memory_entry(entry):
                    saved.append(entry)
            except Exception:
                logger.exception("Failed to store extracted %s memory (non-fatal)", candidate.type)

        if saved:
            logger.info("Extracted %d memories for conversation %s", len(saved), conversation_id)
        return saved
