"""SQLite persistence adapter.

sqlite3 is blocking, so every call runs in a worker thread. An
adapter-local lock keeps calls on the single connection sequential. Batch
inserts run inside one transaction (``with conn:``); streamed reads hold
one cursor and fetch a chunk per locked call.
"""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, AsyncIterator

from dbforge.metadata.loader import EntitySchema
from dbforge.persistence.identifiers import IdNormalizer
from dbforge.persistence.sql_base import SQLAdapterBase
from dbforge.query.base import Backend


class SQLiteAdapter(SQLAdapterBase):
    """SQLite adapter for one entity table."""

    backend = Backend.SQLITE
    placeholder = "?"

    def __init__(
        self,
        schema: EntitySchema,
        db_path: Path | str = ":memory:",
        id_normalizer: IdNormalizer | None = None,
        string_id: bool = True,
    ):
        super().__init__(schema, id_normalizer=id_normalizer, string_id=string_id)
        self.db_path = str(db_path)
        self.conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    async def _open(self) -> None:
        def open_connection() -> sqlite3.Connection:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            return conn

        self.conn = await asyncio.to_thread(open_connection)

    async def _close(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self.conn.close)

    def _require_conn(self) -> sqlite3.Connection:
        if not self.conn:
            raise RuntimeError("Database not connected")
        return self.conn

    async def _fetch(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        conn = self._require_conn()

        def run() -> list[dict[str, Any]]:
            cursor = conn.execute(sql, params or [])
            return [dict(row) for row in cursor.fetchall()]

        async with self._lock:
            return await asyncio.to_thread(run)

    async def _execute(self, sql: str, params: list[Any] | None = None) -> int:
        conn = self._require_conn()

        def run() -> int:
            cursor = conn.execute(sql, params or [])
            conn.commit()
            return cursor.rowcount

        async with self._lock:
            return await asyncio.to_thread(run)

    async def _insert_rows(self, rows: list[tuple[list[str], list[Any]]]) -> list[Any]:
        conn = self._require_conn()

        def run() -> list[Any]:
            keys = []
            with conn:
                for columns, values in rows:
                    cursor = conn.execute(self._insert_sql(columns), values)
                    if self.pk_column in columns:
                        keys.append(values[columns.index(self.pk_column)])
                    else:
                        keys.append(cursor.lastrowid)
            return keys

        async with self._lock:
            return await asyncio.to_thread(run)

    async def _stream(self, sql: str, batch_size: int) -> AsyncIterator[dict[str, Any]]:
        conn = self._require_conn()
        async with self._lock:
            cursor = await asyncio.to_thread(conn.execute, sql)
        try:
            while True:
                # the lock is released between chunks so other calls interleave
                async with self._lock:
                    rows = await asyncio.to_thread(cursor.fetchmany, batch_size)
                if not rows:
                    break
                for row in rows:
                    yield dict(row)
        finally:
            async with self._lock:
                await asyncio.to_thread(cursor.close)
