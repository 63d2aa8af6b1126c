"""Tests for context assembly: memory injection and history trimming."""

from unittest.mock import AsyncMock

import pytest

from chatmem.memory.context import (
    MEMORY_PREAMBLE,
    ContextAssembler,
    build_query,
    format_memories,
    max_messages_for,
    trim_history,
)
from chatmem.memory.models import ChatTurnMessage, MemoryMetadata, ScoredMemory
from chatmem.memory.retriever import MemoryRetriever
from chatmem.memory.store import MemoryStore


def make_messages(count: int) -> list[ChatTurnMessage]:
    """Alternating user/assistant messages ``msg 0`` .. ``msg <count-1>``."""
    return [
        ChatTurnMessage(role="user" if i % 2 == 0 else "assistant", content=f"msg {i}")
        for i in range(count)
    ]


def _memory(content: str, type: str = "summary") -> ScoredMemory:
    return ScoredMemory(
        content=content,
        score=1.0,
        metadata=MemoryMetadata(conversation_id="c1", type=type, importance=8),
    )


def _retriever(memories: list[ScoredMemory]) -> AsyncMock:
    retriever = AsyncMock()
    retriever.retrieve.return_value = memories
    return retriever


# -- trimming ----------------------------------------------------------------


@pytest.mark.parametrize(
    ("max_tokens", "expected"),
    [(0, 6), (499, 6), (3000, 6), (3500, 7), (8000, 16)],
)
def test_max_messages_for(max_tokens: int, expected: int) -> None:
    assert max_messages_for(max_tokens) == expected


def test_trim_keeps_last_messages() -> None:
    trimmed = trim_history(make_messages(10), 3000)
    assert [m.content for m in trimmed] == [f"msg {i}" for i in range(4, 10)]


def test_trim_short_history_untouched() -> None:
    messages = make_messages(3)
    assert trim_history(messages, 3000) == messages


def test_trim_empty() -> None:
    assert trim_history([], 100) == []


# -- formatting --------------------------------------------------------------


def test_format_memories() -> None:
    text = format_memories([_memory("Likes tea"), _memory("Asked about trains", "context")])
    expected_body = "[SUMMARY] Likes tea\n\n[CONTEXT] Asked about trains"
    assert text.startswith(MEMORY_PREAMBLE + expected_body)
    assert "personalize" in text


def test_build_query_joins_with_spaces() -> None:
    assert build_query(make_messages(3)) == "msg 0 msg 1 msg 2"


# -- assemble ----------------------------------------------------------------


async def test_no_memory_match_returns_trimmed_history() -> None:
    assembler = ContextAssembler(_retriever([]))
    result = await assembler.assemble("c1", make_messages(10), 3000)
    assert [m.content for m in result] == [f"msg {i}" for i in range(4, 10)]


async def test_memory_injected_as_leading_system_message() -> None:
    retriever = _retriever([_memory("Likes tea")])
    messages = make_messages(2)

    result = await ContextAssembler(retriever).assemble("c1", messages, 8000)

    assert len(result) == 3
    assert result[0].role == "system"
    assert "[SUMMARY] Likes tea" in result[0].content
    assert result[1:] == messages


async def test_retrieval_uses_configured_defaults() -> None:
    retriever = _retriever([])
    await ContextAssembler(retriever).assemble("c1", make_messages(2), 8000)

    retriever.retrieve.assert_awaited_once_with("msg 0 msg 1", "c1", limit=3, min_score=0.3)


async def test_retrieval_limits_configurable() -> None:
    retriever = _retriever([])
    await ContextAssembler(retriever, limit=7, min_score=0.0).assemble("c1", [], 8000)

    retriever.retrieve.assert_awaited_once_with("", "c1", limit=7, min_score=0.0)


async def test_injected_memory_evicted_when_history_fills_budget() -> None:
    retriever = _retriever([_memory("Likes tea")])
    messages = make_messages(6)

    result = await ContextAssembler(retriever).assemble("c1", messages, 3000)

    assert result == messages
    assert all(m.role != "system" for m in result)


async def test_caller_system_messages_preserved_in_order() -> None:
    messages = [
        ChatTurnMessage(role="system", content="be brief"),
        ChatTurnMessage(role="user", content="hi"),
    ]
    result = await ContextAssembler(_retriever([])).assemble("c1", messages, 8000)
    assert result == messages


async def test_empty_input_yields_empty_output(store: MemoryStore) -> None:
    convo = await store.create_conversation("u1", "t")
    await store.replace_summary(convo.id, "User likes Python")

    result = await ContextAssembler(MemoryRetriever(store)).assemble(convo.id, [], 8000)
    assert result == []


async def test_end_to_end_with_store(store: MemoryStore) -> None:
    convo = await store.create_conversation("u1", "t")
    await store.replace_summary(convo.id, "User prefers dark mode in every editor")

    messages = [ChatTurnMessage(role="user", content="which editor mode do I prefer")]
    result = await ContextAssembler(MemoryRetriever(store)).assemble(convo.id, messages, 8000)

    assert len(result) == 2
    assert result[0].role == "system"
    assert "[SUMMARY] User prefers dark mode in every editor" in result[0].content
