"""Chat turn handling: context assembly, streaming, and write-back.

A turn is started with :meth:`ChatService.start_turn`, streamed with
:meth:`ChatTurn.stream`, and closed by awaiting :meth:`ChatTurn.finish`
once the stream has ended or been abandoned. Only a fully consumed stream
is recorded as a final assistant message.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from pydantic import Field

from chatmem.config import settings
from chatmem.errors import ConversationNotFound, StoreUnavailableError
from chatmem.llm.client import ModelProvider, stream_text
from chatmem.memory.models import ApiModel, Attachment, ChatTurnMessage, make_record_id

if TYPE_CHECKING:
    from chatmem.memory.context import ContextAssembler
    from chatmem.memory.extractor import MemoryExtractor
    from chatmem.memory.store import MemoryStore
    from chatmem.memory.turns import TurnRecorder

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New chat"


class ChatRequestData(ApiModel):
    attachments: list[Attachment] = Field(default_factory=list)


class ChatRequest(ApiModel):
    """Body of a chat request, as sent by the browser client."""

    conversation_id: str | None = None
    messages: list[ChatTurnMessage] = Field(default_factory=list)
    system: str | None = None
    model: str | None = None
    max_tokens: int | None = Field(default=None, gt=0)
    data: ChatRequestData | None = None


def title_for(messages: list[ChatTurnMessage]) -> str:
    """Title a new conversation after its first message."""
    if messages and messages[0].content:
        return messages[0].content[: settings.title_max_length]
    return DEFAULT_TITLE


def merge_attachments(
    messages: list[ChatTurnMessage], attachments: list[Attachment]
) -> list[ChatTurnMessage]:
    """Attach per-request files to the last message when it is from the user."""
    merged = list(messages)
    if attachments and merged and merged[-1].role == "user":
        merged[-1] = merged[-1].model_copy(update={"attachments": attachments})
    return merged


class ChatTurn:
    """One in-flight generation and its pending write-back."""

    def __init__(
        self,
        *,
        conversation_id: str,
        user_id: str,
        system: str,
        model: str | None,
        context: list[ChatTurnMessage],
        user_message: ChatTurnMessage | None,
        provider: ModelProvider,
        recorder: TurnRecorder,
        extractor: MemoryExtractor,
    ) -> None:
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.system = system
        self.model = model
        self.context = context
        self.user_message = user_message
        self._provider = provider
        self._recorder = recorder
        self._extractor = extractor
        self._fragments: list[str] = []
        self._completed = False
        self._finished = False

    @property
    def text(self) -> str:
        return "".join(self._fragments)

    @property
    def completed(self) -> bool:
        """True once the provider stream has ended normally."""
        return self._completed

    async def stream(self) -> AsyncIterator[str]:
        """Yield text fragments from the model as they arrive."""
        async for fragment in self._provider(self.system, self.context, model=self.model):
            self._fragments.append(fragment)
            yield fragment
        self._completed = True

    async def complete(self) -> None:
        """Persist the final response, then extract memories from the turn."""
        final_text = self.text
        await self._recorder.on_assistant_turn_complete(
            self.conversation_id, self.user_id, final_text
        )

        turn_messages = [ChatTurnMessage(role="assistant", content=final_text)]
        if self.user_message is not None:
            turn_messages.insert(0, self.user_message)
        await self._extractor.extract(self.conversation_id, self.user_id, turn_messages)

    async def abort(self) -> None:
        """Record an interrupted generation without treating it as final."""
        logger.info(
            "Generation for %s ended early after %d chars", self.conversation_id, len(self.text)
        )
        await self._recorder.on_assistant_turn_aborted(
            self.conversation_id, self.user_id, self.text
        )

    async def finish(self) -> None:
        """Run the completion or abort path, exactly once."""
        if self._finished:
            return
        self._finished = True
        if self._completed:
            await self.complete()
        else:
            await self.abort()


class ChatService:
    """Starts chat turns against a store, a context pipeline and a model."""

    def __init__(
        self,
        store: MemoryStore,
        assembler: ContextAssembler,
        recorder: TurnRecorder,
        extractor: MemoryExtractor,
        provider: ModelProvider = stream_text,
    ) -> None:
        self._store = store
        self._assembler = assembler
        self._recorder = recorder
        self._extractor = extractor
        self._provider = provider

    async def _check_owner(self, conversation_id: str, user_id: str) -> str:
        try:
            record = await self._store.get_conversation(conversation_id)
        except StoreUnavailableError:
            logger.warning(
                "Could not verify owner of %s, continuing without memory", conversation_id
            )
            return conversation_id
        if record is None or record.user_id != user_id:
            raise ConversationNotFound(conversation_id)
        return conversation_id

    async def _resolve_conversation(self, request: ChatRequest, user_id: str) -> str:
        if request.conversation_id:
            return await self._check_owner(request.conversation_id, user_id)

        title = title_for(request.messages)
        try:
            record = await self._store.create_conversation(user_id, title)
        except StoreUnavailableError:
            # The turn still runs; nothing about it will be persisted.
            conversation_id = make_record_id()
            logger.warning(
                "Could not create conversation, using unsaved id %s",
                conversation_id,
                exc_info=True,
            )
            return conversation_id
        return record.id

    async def start_turn(self, request: ChatRequest, user_id: str) -> ChatTurn:
        """Prepare the model input for a turn and persist the user's message."""
        conversation_id = await self._resolve_conversation(request, user_id)

        attachments = request.data.attachments if request.data else []
        merged = merge_attachments(request.messages, attachments)

        max_tokens = request.max_tokens or settings.default_max_tokens
        context = await self._assembler.assemble(conversation_id, merged, max_tokens)

        logger.info(
            "Chat turn for %s: %d messages in, %d sent to model",
            conversation_id,
            len(merged),
            len(context),
        )

        user_message = merged[-1] if merged and merged[-1].role == "user" else None
        if user_message is not None:
            await self._recorder.on_user_turn_start(conversation_id, user_id, user_message)
        else:
            logger.info("No user message to save for %s", conversation_id)

        return ChatTurn(
            conversation_id=conversation_id,
            user_id=user_id,
            system=request.system or settings.default_system_prompt,
            model=request.model,
            context=context,
            user_message=user_message,
            provider=self._provider,
            recorder=self._recorder,
            extractor=self._extractor,
        )
