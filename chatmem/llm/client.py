"""Async Claude API client for streamed chat turns."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol

import anthropic

from chatmem.config import settings
from chatmem.memory.models import ChatTurnMessage

logger = logging.getLogger(__name__)

_client: anthropic.AsyncAnthropic | None = None


class ModelProvider(Protocol):
    """Anything that turns a system prompt and messages into text fragments."""

    def __call__(
        self,
        system: str,
        messages: Sequence[ChatTurnMessage],
        *,
        model: str | None = None,
    ) -> AsyncIterator[str]: ...


def _get_client() -> anthropic.AsyncAnthropic:
    """Lazily initialize the Anthropic client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    return _client


def build_request(
    system: str, messages: Sequence[ChatTurnMessage]
) -> tuple[list[dict[str, Any]], list[dict[str, str]]]:
    """Split chat messages into Claude's ``system`` blocks and ``messages``.

    System-role messages (e.g. injected memories) become extra system blocks
    after the caller's prompt. Claude requires the conversation to open with
    a user turn, so assistant messages left at the front by trimming are
    dropped, as are messages with no text.
    """
    system_blocks: list[dict[str, Any]] = []
    if system:
        system_blocks.append({"type": "text", "text": system})

    api_messages: list[dict[str, str]] = []
    for message in messages:
        if message.role == "system":
            if message.content:
                system_blocks.append({"type": "text", "text": message.content})
            continue
        if not message.content:
            continue
        if not api_messages and message.role == "assistant":
            continue
        api_messages.append(message.to_api_dict())

    return system_blocks, api_messages


async def stream_text(
    system: str,
    messages: Sequence[ChatTurnMessage],
    *,
    model: str | None = None,
) -> AsyncIterator[str]:
    """Stream a response from Claude, yielding text fragments as they arrive."""
    client = _get_client()
    system_blocks, api_messages = build_request(system, messages)

    kwargs: dict[str, Any] = {
        "model": model or settings.chat_model,
        "max_tokens": settings.max_output_tokens,
        "messages": api_messages,
    }
    if system_blocks:
        kwargs["system"] = system_blocks

    logger.debug(
        "Streaming from %s: %d messages, %d system blocks",
        kwargs["model"],
        len(api_messages),
        len(system_blocks),
    )
    async with client.messages.stream(**kwargs) as stream:
        async for text in stream.text_stream:
            yield text
