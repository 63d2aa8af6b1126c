"""Tests for the Claude streaming adapter."""

from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import MagicMock, patch

from chatmem.llm.client import build_request, stream_text
from chatmem.memory.models import ChatTurnMessage


def _msg(role: str, content: str) -> ChatTurnMessage:
    return ChatTurnMessage(role=role, content=content)


class _FakeStream:
    """Simulates an anthropic streaming context manager."""

    def __init__(self, text_chunks: list[str]) -> None:
        self._text_chunks = text_chunks

    @property
    async def text_stream(self):
        for chunk in self._text_chunks:
            yield chunk


def _make_mock_client(chunks: list[str], captured: list[dict]):
    client = MagicMock()

    @asynccontextmanager
    async def _stream(**kwargs):
        captured.append(kwargs)
        yield _FakeStream(chunks)

    client.messages.stream = _stream
    return client


# -- build_request -----------------------------------------------------------


def test_system_messages_become_system_blocks() -> None:
    system, messages = build_request(
        "You are helpful.",
        [_msg("system", "Relevant memories..."), _msg("user", "hi")],
    )
    assert system == [
        {"type": "text", "text": "You are helpful."},
        {"type": "text", "text": "Relevant memories..."},
    ]
    assert messages == [{"role": "user", "content": "hi"}]


def test_leading_assistant_messages_dropped() -> None:
    _, messages = build_request(
        "s", [_msg("assistant", "old reply"), _msg("user", "q"), _msg("assistant", "a")]
    )
    assert messages == [
        {"role": "user", "content": "q"},
        {"role": "assistant", "content": "a"},
    ]


def test_empty_messages_skipped() -> None:
    _, messages = build_request("s", [_msg("user", ""), _msg("user", "real")])
    assert messages == [{"role": "user", "content": "real"}]


def test_empty_system_prompt_omitted() -> None:
    system, _ = build_request("", [_msg("user", "hi")])
    assert system == []


# -- stream_text -------------------------------------------------------------


async def test_stream_text_yields_fragments() -> None:
    captured: list[dict] = []
    client = _make_mock_client(["Hel", "lo"], captured)

    with patch("chatmem.llm.client._get_client", return_value=client):
        fragments = [f async for f in stream_text("sys", [_msg("user", "hi")])]

    assert fragments == ["Hel", "lo"]
    kwargs = captured[0]
    assert kwargs["model"] == "claude-sonnet-4-5-20250929"
    assert kwargs["max_tokens"] == 4096
    assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
    assert kwargs["system"] == [{"type": "text", "text": "sys"}]


async def test_stream_text_model_override_and_no_system() -> None:
    captured: list[dict] = []
    client = _make_mock_client(["ok"], captured)

    with patch("chatmem.llm.client._get_client", return_value=client):
        [f async for f in stream_text("", [_msg("user", "hi")], model="claude-test")]

    assert captured[0]["model"] == "claude-test"
    assert "system" not in captured[0]
