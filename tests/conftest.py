"""Shared test fixtures."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from chatmem.db import Database
from chatmem.memory.store import MemoryStore


@pytest.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    """Open a Database backed by a temp file."""
    database = await Database.open(tmp_path / "test.db")
    yield database
    await database.close()


@pytest.fixture
async def store(db: Database) -> MemoryStore:
    return MemoryStore(db)

