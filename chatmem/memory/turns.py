"""Write-back of a chat turn to the memory store.

Every method here is non-fatal: a failed write is logged and reported as
``False`` so the chat turn itself always proceeds.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chatmem.memory.models import ChatTurnMessage, MemoryEntry

if TYPE_CHECKING:
    from chatmem.memory.store import MemoryStore

logger = logging.getLogger(__name__)

ASSISTANT_CONTEXT_IMPORTANCE = 6


class TurnRecorder:
    """Persists the user and assistant sides of a turn."""

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    async def on_user_turn_start(
        self, conversation_id: str, user_id: str, message: ChatTurnMessage
    ) -> bool:
        """Persist the user's message verbatim before generation starts."""
        try:
            saved = await self._store.add_message(
                conversation_id,
                user_id,
                "user",
                message.content,
                message.attachments,
            )
        except Exception:
            logger.exception("Failed to save user message for %s (non-fatal)", conversation_id)
            return False
        logger.info("User message %s saved for %s", saved.id, conversation_id)
        return True

    async def on_assistant_turn_complete(
        self, conversation_id: str, user_id: str, final_text: str
    ) -> bool:
        """Persist the final assistant text and record it as context memory.

        The store folds the new entry into the rolling summary.
        """
        try:
            saved = await self._store.add_message(conversation_id, user_id, "assistant", final_text)
            logger.info("Assistant message %s saved for %s", saved.id, conversation_id)

            entry = MemoryEntry.create(
                f"Assistant response: {final_text}",
                conversation_id=conversation_id,
                user_id=user_id,
                type="context",
                importance=ASSISTANT_CONTEXT_IMPORTANCE,
            )
            await self._store.add_memory_entry(entry)
        except Exception:
            logger.exception("Failed to save assistant turn for %s (non-fatal)", conversation_id)
            return False
        return True

    async def on_assistant_turn_aborted(
        self, conversation_id: str, user_id: str, partial_text: str
    ) -> bool:
        """Keep whatever was generated before an abort, flagged as partial.

        Partial output never becomes a memory entry or touches the summary.
        """
        if not partial_text:
            logger.info("Generation aborted for %s before any output", conversation_id)
            return False
        try:
            saved = await self._store.add_message(
                conversation_id, user_id, "assistant", partial_text, partial=True
            )
        except Exception:
            logger.exception("Failed to save partial assistant message for %s", conversation_id)
            return False
        logger.info("Partial assistant message %s saved for %s", saved.id, conversation_id)
        return True
