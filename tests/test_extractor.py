"""Tests for keyword-based memory extraction."""

from unittest.mock import AsyncMock, patch

import pytest

from chatmem.errors import StoreUnavailableError
from chatmem.memory.extractor import KeywordClassifier, MemoryExtractor
from chatmem.memory.models import ChatTurnMessage
from chatmem.memory.store import MemoryStore


def _user(content: str) -> ChatTurnMessage:
    return ChatTurnMessage(role="user", content=content)


def _assistant(content: str) -> ChatTurnMessage:
    return ChatTurnMessage(role="assistant", content=content)


# -- KeywordClassifier -------------------------------------------------------


@pytest.mark.parametrize(
    "content",
    ["I prefer dark mode", "i LOVE hiking", "My favorite color is blue", "Honestly I never drive"],
)
def test_preference_detected(content: str) -> None:
    assert KeywordClassifier().is_preference(content)


def test_preference_not_detected() -> None:
    assert not KeywordClassifier().is_preference("What's the weather tomorrow?")


@pytest.mark.parametrize(
    "content",
    ["Remember to hydrate", "Note that Paris is in France", "FACT: water boils at 100C"],
)
def test_fact_detected(content: str) -> None:
    assert KeywordClassifier().is_fact(content)


def test_fact_not_detected() -> None:
    assert not KeywordClassifier().is_fact("Sure, here you go.")


# -- candidates --------------------------------------------------------------


def test_candidates_by_role() -> None:
    extractor = MemoryExtractor(store=AsyncMock())
    found = extractor.candidates(
        [
            _assistant("Keep in mind the store closes at 5"),
            _user("I like jazz"),
            _user("I like jazz"),
            _assistant("I like jazz too"),
            _user("Remember this"),
        ]
    )
    assert [(c.type, c.importance, c.content) for c in found] == [
        ("user_preference", 8, "User preference: I like jazz"),
        ("user_preference", 8, "User preference: I like jazz"),
        ("fact", 6, "Fact: Keep in mind the store closes at 5"),
    ]


def test_multiple_keywords_yield_one_entry() -> None:
    extractor = MemoryExtractor(store=AsyncMock())
    found = extractor.candidates([_user("I like tea, I love coffee, I hate milk")])
    assert len(found) == 1


# -- extract -----------------------------------------------------------------


async def test_preference_persisted(store: MemoryStore) -> None:
    convo = await store.create_conversation("u1", "t")
    extractor = MemoryExtractor(store)

    saved = await extractor.extract(convo.id, "u1", [_user("I prefer dark mode")])

    assert len(saved) == 1
    entry = saved[0]
    assert entry.metadata.type == "user_preference"
    assert entry.metadata.importance == 8
    assert entry.content == "User preference: I prefer dark mode"

    fetched = await store.get_conversation(convo.id)
    assert fetched is not None
    assert [e.id for e in fetched.memory_entries] == [entry.id]
    assert "Important: User preference: I prefer dark mode" in fetched.summary


async def test_fact_persisted_without_touching_summary(store: MemoryStore) -> None:
    convo = await store.create_conversation("u1", "t")
    saved = await MemoryExtractor(store).extract(
        convo.id, "u1", [_assistant("Note that the API is rate limited")]
    )

    assert [e.metadata.type for e in saved] == ["fact"]
    assert saved[0].content == "Fact: Note that the API is rate limited"
    fetched = await store.get_conversation(convo.id)
    assert fetched is not None
    assert fetched.summary == ""


async def test_no_keyword_match_yields_nothing(store: MemoryStore) -> None:
    convo = await store.create_conversation("u1", "t")
    saved = await MemoryExtractor(store).extract(convo.id, "u1", [_user("What time is it?")])
    assert saved == []


async def test_failures_isolated_per_entry() -> None:
    mock_store = AsyncMock()
    mock_store.add_memory_entry.side_effect = [True, StoreUnavailableError("down"), True]

    saved = await MemoryExtractor(mock_store).extract(
        "c1", "u1", [_user("I like a"), _user("I like b"), _user("I like c")]
    )

    assert mock_store.add_memory_entry.await_count == 3
    assert [e.content for e in saved] == ["User preference: I like a", "User preference: I like c"]


async def test_custom_classifier() -> None:
    class _Everything:
        def is_preference(self, content: str) -> bool:
            return True

        def is_fact(self, content: str) -> bool:
            return False

    mock_store = AsyncMock()
    mock_store.add_memory_entry.return_value = True
    saved = await MemoryExtractor(mock_store, classifier=_Everything()).extract(
        "c1", "u1", [_user("anything at all")]
    )
    assert len(saved) == 1


async def test_extraction_disabled_is_noop() -> None:
    mock_store = AsyncMock()
    with patch("chatmem.memory.extractor.settings") as mock_settings:
        mock_settings.memory_extraction_enabled = False
        saved = await MemoryExtractor(mock_store).extract("c1", "u1", [_user("I like tea")])

    assert saved == []
    mock_store.add_memory_entry.assert_not_called()
