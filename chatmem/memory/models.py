"""Data models for conversations, messages and memory entries."""

from __future__ import annotations

import secrets
import string
import time
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MemoryType = Literal["user_preference", "fact", "context", "summary"]
Role = Literal["user", "assistant", "system"]

MEMORY_TYPES: tuple[str, ...] = ("user_preference", "fact", "context", "summary")

_ID_ALPHABET = string.digits + string.ascii_lowercase


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(UTC).isoformat()


def make_memory_id() -> str:
    """Generate a memory id: ``mem_<epoch ms>_<9 base36 chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"mem_{int(time.time() * 1000)}_{suffix}"


def make_record_id() -> str:
    """Generate an id for a conversation or message."""
    return secrets.token_hex(12)


class ApiModel(BaseModel):
    """Shared config: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MemoryMetadata(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    conversation_id: str
    user_id: str = ""
    timestamp: str = Field(default_factory=utc_now)
    type: MemoryType = "context"
    importance: int = Field(default=5, ge=1, le=10)


class MemoryEntry(ApiModel):
    """A persisted memory snippet. Never mutated once created."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=make_memory_id)
    content: str
    metadata: MemoryMetadata

    @classmethod
    def create(
        cls,
        content: str,
        *,
        conversation_id: str,
        user_id: str = "",
        type: MemoryType = "context",
        importance: int = 5,
    ) -> MemoryEntry:
        return cls(
            content=content,
            metadata=MemoryMetadata(
                conversation_id=conversation_id,
                user_id=user_id,
                type=type,
                importance=importance,
            ),
        )


class ScoredMemory(ApiModel):
    """A retrieval result: memory content with its relevance score."""

    content: str
    score: float
    metadata: MemoryMetadata

    @property
    def rank(self) -> float:
        return self.score * self.metadata.importance


class Attachment(ApiModel):
    url: str
    type: str
    name: str | None = None
    size: int | None = None


class ChatTurnMessage(ApiModel):
    """A message as sent to or received from the model (not persisted)."""

    role: Role
    content: str = ""
    attachments: list[Attachment] = Field(default_factory=list)

    @field_validator("content", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    def to_api_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class Message(ApiModel):
    """A persisted conversation message."""

    id: str = Field(default_factory=make_record_id)
    conversation_id: str
    user_id: str = ""
    role: Role
    content: str
    attachments: list[Attachment] = Field(default_factory=list)
    partial: bool = False
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)


class ConversationRecord(ApiModel):
    """A conversation with its rolling summary and embedded memory entries."""

    id: str = Field(default_factory=make_record_id)
    title: str
    user_id: str = ""
    summary: str = ""
    memory_entries: list[MemoryEntry] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
