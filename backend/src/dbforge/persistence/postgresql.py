"""PostgreSQL persistence adapter.

Uses psycopg v3 (psycopg[binary]>=3.1.0) through its asyncio connection.
Mirrors SQLiteAdapter with PostgreSQL-specific SQL:
  - %s placeholders instead of ?
  - ILIKE for searches
  - INSERT ... RETURNING for generated keys, batches in one transaction
  - named (server-side) cursors for streamed reads
  - dict_row cursor factory for dict-based row access

Compiled WHERE text is sent without parameters for reads. When it is
combined with bound values (update_many), ``%`` is doubled so psycopg does
not read it as a placeholder.
"""

from __future__ import annotations

import uuid
from typing import Any, AsyncIterator

from dbforge.metadata.loader import EntitySchema
from dbforge.persistence.identifiers import IdNormalizer
from dbforge.persistence.sql_base import SQLAdapterBase
from dbforge.query.base import Backend


class PostgreSQLAdapter(SQLAdapterBase):
    """PostgreSQL adapter for one entity table."""

    backend = Backend.POSTGRESQL
    placeholder = "%s"

    def __init__(
        self,
        schema: EntitySchema,
        url: str,
        id_normalizer: IdNormalizer | None = None,
        string_id: bool = True,
    ):
        super().__init__(schema, id_normalizer=id_normalizer, string_id=string_id)
        # psycopg wants a plain libpq URL, so strip a +psycopg driver suffix
        self.url = url.replace("postgresql+psycopg://", "postgresql://")

    async def _open(self) -> None:
        import psycopg
        from psycopg.rows import dict_row

        self.conn = await psycopg.AsyncConnection.connect(
            self.url, row_factory=dict_row, autocommit=True
        )

    async def _close(self) -> None:
        await self.conn.close()

    def _require_conn(self) -> Any:
        if not self.conn:
            raise RuntimeError("Database not connected")
        return self.conn

    def _embed(self, fragment: str) -> str:
        return fragment.replace("%", "%%")

    async def _fetch(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        cursor = await self._require_conn().execute(sql, params)
        return await cursor.fetchall()

    async def _execute(self, sql: str, params: list[Any] | None = None) -> int:
        cursor = await self._require_conn().execute(sql, params)
        return cursor.rowcount

    def _insert_sql(self, columns: list[str]) -> str:
        return f"{super()._insert_sql(columns)} RETURNING {self._col(self.pk_column)}"

    async def _insert_rows(self, rows: list[tuple[list[str], list[Any]]]) -> list[Any]:
        conn = self._require_conn()
        keys = []
        async with conn.transaction():
            for columns, values in rows:
                cursor = await conn.execute(self._insert_sql(columns), values or None)
                row = await cursor.fetchone()
                keys.append(row[self.pk_column])
        return keys

    async def _stream(self, sql: str, batch_size: int) -> AsyncIterator[dict[str, Any]]:
        conn = self._require_conn()
        # server-side cursors only live inside a transaction
        async with conn.transaction():
            async with conn.cursor(name=f"dbforge_{uuid.uuid4().hex}") as cursor:
                await cursor.execute(sql)
                while True:
                    rows = await cursor.fetchmany(batch_size)
                    if not rows:
                        break
                    for row in rows:
                        yield row
