"""Behavior shared by the SQL adapters.

Reads run the text compiled by ``SQLCompiler``. Writes bind values through
driver placeholders. Object and array fields are stored as JSON text and
dates as ISO-8601 text; rows are decoded back to Python values on the way
out.

Every identifier in DDL and DML is double-quoted so camelCase column names
keep their casing on PostgreSQL and reserved words (``user``, ``order``)
are safe.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any, AsyncIterator

from dbforge.core.types import FieldKind, get_storage_type, to_storage_text
from dbforge.errors import CapabilityError
from dbforge.metadata.loader import EntitySchema, IndexDefinition
from dbforge.persistence.identifiers import IdNormalizer, IntegerIdNormalizer, StringIdNormalizer
from dbforge.query.base import DEFAULT_CAPABILITIES, Backend
from dbforge.query.sql import SQLDialect, SQLQuery

logger = logging.getLogger(__name__)

# Keeps IN (...) lists under SQLite's bound-parameter limit
FETCH_CHUNK = 500


class SQLAdapterBase:
    """Common SQL adapter. Subclasses provide the driver calls."""

    backend: Backend
    placeholder: str = "?"

    def __init__(
        self,
        schema: EntitySchema,
        id_normalizer: IdNormalizer | None = None,
        string_id: bool = True,
    ):
        self.schema = schema
        self.dialect = SQLDialect.for_backend(self.backend)
        self.capabilities = DEFAULT_CAPABILITIES[self.backend]
        self.id_normalizer = id_normalizer or StringIdNormalizer()
        self.string_id = string_id
        self.conn: Any = None

    @property
    def has_nested_field_support(self) -> bool:
        return False

    @property
    def integer_ids(self) -> bool:
        return isinstance(self.id_normalizer, IntegerIdNormalizer)

    # ------------------------------------------------------------------
    # Driver hooks
    # ------------------------------------------------------------------

    async def _open(self) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        raise NotImplementedError

    async def _fetch(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def _execute(self, sql: str, params: list[Any] | None = None) -> int:
        """Run a write statement, returning the affected row count."""
        raise NotImplementedError

    async def _insert_rows(self, rows: list[tuple[list[str], list[Any]]]) -> list[Any]:
        """Insert ``(columns, values)`` rows in one transaction, returning their keys."""
        raise NotImplementedError

    def _stream(self, sql: str, batch_size: int) -> AsyncIterator[dict[str, Any]]:
        """Yield raw rows of a read, fetching ``batch_size`` at a time."""
        raise NotImplementedError

    def _embed(self, fragment: str) -> str:
        """Prepare compiled text for use next to bound parameters."""
        return fragment

    # ------------------------------------------------------------------
    # Identifier helpers
    # ------------------------------------------------------------------

    def _col(self, name: str) -> str:
        return self.dialect.quote_identifier(name)

    @property
    def table(self) -> str:
        return self._col(self.schema.collection)

    @property
    def pk_column(self) -> str:
        return self.schema.primary_column

    def _placeholders(self, count: int) -> str:
        return ", ".join(self.placeholder for _ in range(count))

    def _native_id(self, id: Any) -> Any:
        return self.id_normalizer.to_native(id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection and create the entity table if missing."""
        await self._open()
        await self._execute(self._create_table_sql())
        logger.debug("Connected %s adapter for '%s'", self.backend.value, self.schema.collection)

    async def disconnect(self) -> None:
        if self.conn is not None:
            await self._close()
            self.conn = None
            logger.debug("Disconnected %s adapter for '%s'", self.backend.value, self.schema.collection)

    def _create_table_sql(self) -> str:
        columns = []
        pk = self.pk_column
        if self.schema.primary_key is None:
            columns.append(self._pk_definition(pk))
        for fd in self.schema.stored_fields:
            if fd.column_name == pk:
                columns.append(self._pk_definition(pk))
                continue
            columns.append(f"{self._col(fd.column_name)} {get_storage_type(fd.type, self.backend.value)}")
        return f"CREATE TABLE IF NOT EXISTS {self.table} ({', '.join(columns)})"

    def _pk_definition(self, column: str) -> str:
        if self.integer_ids:
            pk_type = "BIGSERIAL" if self.backend == Backend.POSTGRESQL else "INTEGER"
        else:
            pk_type = "TEXT"
        return f"{self._col(column)} {pk_type} PRIMARY KEY"

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def _encode_row(self, row: dict[str, Any]) -> dict[str, Any]:
        encoded: dict[str, Any] = {}
        for column, value in row.items():
            if self.schema.by_column(column) is None and column != self.pk_column:
                continue
            encoded[column] = to_storage_text(value)
        return encoded

    def _decode_row(self, row: Any) -> dict[str, Any]:
        decoded = dict(row)
        for column, value in decoded.items():
            fd = self.schema.by_column(column)
            if fd is None or value is None:
                continue
            if fd.field_type.serialized and isinstance(value, str):
                decoded[column] = json.loads(value)
            elif fd.type == FieldKind.BOOLEAN and isinstance(value, int):
                decoded[column] = bool(value)
            elif fd.type == FieldKind.DATE and isinstance(value, str):
                decoded[column] = datetime.fromisoformat(value)
        return decoded

    def entity_to_json(self, entity: dict[str, Any]) -> dict[str, Any]:
        result = dict(entity)
        pk = self.pk_column
        if self.string_id and result.get(pk) is not None:
            result[pk] = self.id_normalizer.to_string(result[pk])
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find(self, query: SQLQuery) -> list[dict[str, Any]]:
        rows = await self._fetch(query.to_sql())
        return [self._decode_row(row) for row in rows]

    async def find_one(self, query: SQLQuery) -> dict[str, Any] | None:
        single = SQLQuery(
            table=query.table,
            dialect=query.dialect,
            where=query.where,
            order_by=query.order_by,
            limit=1,
            offset=query.offset,
        )
        rows = await self.find(single)
        return rows[0] if rows else None

    async def find_stream(self, query: SQLQuery, batch_size: int = 100) -> AsyncIterator[dict[str, Any]]:
        """Iterate matching rows without loading the whole result."""
        async for row in self._stream(query.to_sql(), max(batch_size, 1)):
            yield self._decode_row(row)

    async def find_by_id(self, id: Any) -> dict[str, Any] | None:
        sql = f"SELECT * FROM {self.table} WHERE {self._col(self.pk_column)} = {self.placeholder}"
        rows = await self._fetch(sql, [self._native_id(id)])
        return self._decode_row(rows[0]) if rows else None

    async def find_by_ids(self, ids: list[Any]) -> list[dict[str, Any]]:
        if not ids:
            return []
        natives = [self._native_id(id) for id in ids]
        sql = (
            f"SELECT * FROM {self.table} "
            f"WHERE {self._col(self.pk_column)} IN ({self._placeholders(len(natives))})"
        )
        rows = await self._fetch(sql, natives)
        return [self._decode_row(row) for row in rows]

    async def count(self, query: SQLQuery) -> int:
        rows = await self._fetch(query.count_sql())
        return int(rows[0]["count"]) if rows else 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _insert_values(self, entity: dict[str, Any]) -> tuple[list[str], list[Any]]:
        row = self._encode_row(entity)
        pk = self.pk_column
        if row.get(pk) is None:
            row.pop(pk, None)
            if not self.integer_ids:
                row[pk] = uuid.uuid4().hex
        else:
            row[pk] = self._native_id(row[pk])
        columns = list(row.keys())
        return columns, [row[c] for c in columns]

    def _insert_sql(self, columns: list[str]) -> str:
        if not columns:
            return f"INSERT INTO {self.table} DEFAULT VALUES"
        quoted = ", ".join(self._col(c) for c in columns)
        return f"INSERT INTO {self.table} ({quoted}) VALUES ({self._placeholders(len(columns))})"

    async def insert(self, entity: dict[str, Any]) -> dict[str, Any]:
        (key,) = await self._insert_rows([self._insert_values(entity)])
        return await self.find_by_id(key)

    async def insert_many(
        self, entities: list[dict[str, Any]], return_entities: bool = False
    ) -> list[Any]:
        """Insert a batch in one transaction; a failing row leaves nothing stored."""
        if not entities:
            return []
        keys = await self._insert_rows([self._insert_values(entity) for entity in entities])
        if not return_entities:
            return keys
        stored: dict[str, dict[str, Any]] = {}
        for start in range(0, len(keys), FETCH_CHUNK):
            for row in await self.find_by_ids(keys[start:start + FETCH_CHUNK]):
                stored[str(row[self.pk_column])] = row
        return [stored[str(key)] for key in keys]

    def _set_clause(self, changes: dict[str, Any]) -> tuple[str, list[Any]]:
        row = self._encode_row(changes)
        row.pop(self.pk_column, None)
        clause = ", ".join(f"{self._col(c)} = {self.placeholder}" for c in row)
        return clause, list(row.values())

    async def update_by_id(
        self, id: Any, changes: dict[str, Any], raw: bool = False
    ) -> dict[str, Any] | None:
        if raw:
            raise CapabilityError("raw_update", self.backend.value)
        clause, values = self._set_clause(changes)
        if clause:
            sql = f"UPDATE {self.table} SET {clause} WHERE {self._col(self.pk_column)} = {self.placeholder}"
            await self._execute(sql, values + [self._native_id(id)])
        return await self.find_by_id(id)

    async def update_many(self, query: SQLQuery, changes: dict[str, Any], raw: bool = False) -> int:
        if raw:
            raise CapabilityError("raw_update", self.backend.value)
        clause, values = self._set_clause(changes)
        if not clause:
            return 0
        sql = f"UPDATE {self.table} SET {clause}"
        if query.where:
            sql += f" WHERE {self._embed(query.where)}"
        return await self._execute(sql, values)

    async def replace_by_id(self, id: Any, entity: dict[str, Any]) -> dict[str, Any] | None:
        full = {
            fd.column_name: entity.get(fd.column_name)
            for fd in self.schema.stored_fields
            if fd.column_name != self.pk_column
        }
        clause, values = self._set_clause(full)
        if clause:
            sql = f"UPDATE {self.table} SET {clause} WHERE {self._col(self.pk_column)} = {self.placeholder}"
            await self._execute(sql, values + [self._native_id(id)])
        return await self.find_by_id(id)

    async def remove_by_id(self, id: Any) -> Any | None:
        sql = f"DELETE FROM {self.table} WHERE {self._col(self.pk_column)} = {self.placeholder}"
        removed = await self._execute(sql, [self._native_id(id)])
        return id if removed else None

    async def remove_many(self, query: SQLQuery) -> int:
        sql = f"DELETE FROM {self.table}"
        if query.where:
            sql += f" WHERE {query.where}"
        return await self._execute(sql)

    async def clear(self) -> int:
        return await self._execute(f"DELETE FROM {self.table}")

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    def index_name(self, definition: IndexDefinition) -> str:
        if definition.name:
            return definition.name
        columns = [self.schema.column_for(name) for name, _ in definition.fields]
        return f"{self.schema.collection}_{'_'.join(columns)}_idx"

    async def create_index(self, definition: IndexDefinition) -> str:
        if definition.sparse:
            raise CapabilityError("sparse_index", self.backend.value)
        if definition.expire_after_seconds is not None:
            raise CapabilityError("ttl_index", self.backend.value)
        name = self.index_name(definition)
        keys = ", ".join(
            f"{self._col(self.schema.column_for(field))} {'DESC' if direction < 0 else 'ASC'}"
            for field, direction in definition.fields
        )
        unique = "UNIQUE " if definition.unique else ""
        await self._execute(f"CREATE {unique}INDEX IF NOT EXISTS {self._col(name)} ON {self.table} ({keys})")
        return name

    async def remove_index(self, definition: IndexDefinition) -> None:
        await self._execute(f"DROP INDEX IF EXISTS {self._col(self.index_name(definition))}")
