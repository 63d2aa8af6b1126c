"""Async database handle over aiosqlite.

A single :class:`Database` is opened at process startup and injected into
every component that needs persistence. Driver errors are re-raised as
:class:`~chatmem.errors.StoreUnavailableError` so callers only have one
failure type to degrade on.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import aiosqlite

from chatmem.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class Database:
    """Owns one aiosqlite connection for the lifetime of the process."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._conn: aiosqlite.Connection | None = None

    @classmethod
    async def open(cls, path: Path) -> Database:
        """Create the parent directory, connect, and return the handle."""
        db = cls(path)
        await db.connect()
        return db

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        if self._conn is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(str(self.path))
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA busy_timeout=5000")
            await conn.execute("PRAGMA foreign_keys=ON")
        except (aiosqlite.Error, OSError) as exc:
            raise StoreUnavailableError(f"Cannot open database at {self.path}: {exc}") from exc
        self._conn = conn
        logger.info("Database opened: %s", self.path)

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        logger.info("Database closed: %s", self.path)

    # -- Queries -------------------------------------------------------------

    def _require(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreUnavailableError("Database is not open")
        return self._conn

    async def execute(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Run a statement and return the affected row count."""
        conn = self._require()
        try:
            cursor = await conn.execute(sql, params)
            return cursor.rowcount
        except (aiosqlite.Error, ValueError) as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> tuple | None:
        conn = self._require()
        try:
            cursor = await conn.execute(sql, params)
            return await cursor.fetchone()
        except (aiosqlite.Error, ValueError) as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[tuple]:
        conn = self._require()
        try:
            cursor = await conn.execute(sql, params)
            return list(await cursor.fetchall())
        except (aiosqlite.Error, ValueError) as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def commit(self) -> None:
        conn = self._require()
        try:
            await conn.commit()
        except (aiosqlite.Error, ValueError) as exc:
            raise StoreUnavailableError(str(exc)) from exc
