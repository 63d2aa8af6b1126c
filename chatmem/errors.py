"""Exceptions raised by the memory core and its store."""


class ChatMemError(Exception):
    """Base class for chatmem errors."""


class StoreUnavailableError(ChatMemError):
    """The database could not be reached or returned unusable data."""


class InvalidMemoryRequest(ChatMemError):
    """A manual memory request is missing required fields or has bad values."""


class ConversationNotFound(ChatMemError):
    """No conversation exists with the requested id."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id
