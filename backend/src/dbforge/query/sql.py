"""SQL rendering of query filters (SQLite and PostgreSQL).

WHERE clauses are rendered as text with inline literals. Literals are typed
by the declared field type: strings and dates are quoted with ``'`` doubled,
numbers and booleans are emitted bare after validation.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from dbforge.errors import FilterError, UnsupportedOperatorError
from dbforge.query.base import Backend, CompilerBase, ResolvedField
from dbforge.query.filter import OPERATORS, QueryFilter, is_operator_condition

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PLACEHOLDER = re.compile(r"\?")


@dataclass(frozen=True)
class SQLDialect:
    """Per-engine rendering differences."""

    backend: Backend
    like: str
    true_literal: str
    false_literal: str
    offset_without_limit: str

    @classmethod
    def for_backend(cls, backend: Backend | str) -> "SQLDialect":
        backend = Backend(backend)
        if backend == Backend.POSTGRESQL:
            return cls(backend, "ILIKE", "TRUE", "FALSE", "")
        if backend == Backend.SQLITE:
            return cls(backend, "LIKE", "1", "0", "LIMIT -1 ")
        raise ValueError(f"'{backend.value}' is not a SQL backend")

    def quote_identifier(self, name: str) -> str:
        if not _IDENTIFIER.match(name):
            raise FilterError(f"Invalid SQL identifier: {name!r}")
        return f'"{name}"'

    def quote_string(self, text: str) -> str:
        if "\x00" in text:
            raise FilterError("String literals cannot contain NUL characters")
        return "'" + text.replace("'", "''") + "'"

    def literal(self, value: Any) -> str:
        """Render a normalized operand as a SQL literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return self.true_literal if value else self.false_literal
        if isinstance(value, (int, Decimal)):
            return str(value)
        if isinstance(value, float):
            if not math.isfinite(value):
                raise FilterError(f"Cannot compare with non-finite number {value}")
            return repr(value)
        if isinstance(value, (datetime, date)):
            return self.quote_string(value.isoformat())
        if isinstance(value, (dict, list)):
            return self.quote_string(json.dumps(value, default=str))
        return self.quote_string(str(value))


@dataclass
class SQLQuery:
    """A compiled SQL read. ``where``/``order_by`` exclude their keywords."""

    table: str
    dialect: SQLDialect
    where: str | None = None
    order_by: str | None = None
    limit: int | None = None
    offset: int = 0

    def _from_where(self) -> str:
        sql = f"FROM {self.dialect.quote_identifier(self.table)}"
        if self.where:
            sql += f" WHERE {self.where}"
        return sql

    def to_sql(self, columns: str = "*") -> str:
        sql = f"SELECT {columns} {self._from_where()}"
        if self.order_by:
            sql += f" ORDER BY {self.order_by}"
        if self.limit is not None:
            sql += f" LIMIT {self.limit}"
        if self.offset:
            if self.limit is None:
                sql += f" {self.dialect.offset_without_limit}OFFSET {self.offset}"
            else:
                sql += f" OFFSET {self.offset}"
        return sql

    def count_sql(self) -> str:
        return f"SELECT COUNT(*) AS count {self._from_where()}"


class SQLCompiler(CompilerBase):
    """Renders a QueryFilter into an SQLQuery."""

    def __init__(self, schema, backend: Backend | str = Backend.SQLITE, capabilities=None, normalizer=None, id_codec=None):
        self.backend = Backend(backend)
        self.dialect = SQLDialect.for_backend(self.backend)
        super().__init__(schema, capabilities, normalizer, id_codec)

    def compile(self, qf: QueryFilter, counting: bool = False) -> SQLQuery:
        self.check_capabilities(qf, counting)

        fragments = [self.condition(name, cond) for name, cond in qf.query.items()]
        if qf.search:
            fragments.append(self.search(qf.search, qf.search_fields or []))

        query = SQLQuery(
            table=self.schema.collection,
            dialect=self.dialect,
            where=" AND ".join(fragments) or None,
        )
        if not counting:
            query.order_by = self.order_by(qf) or None
            if not qf.unbounded:
                query.limit = qf.limit
            query.offset = qf.offset
        logger.debug("Compiled %s query for %s: %s", self.backend.value, self.schema.name, query.where)
        return query

    # -------------------------------------------------------------------------
    # Conditions
    # -------------------------------------------------------------------------

    def condition(self, name: str, cond: Any) -> str:
        if name == "$raw":
            return self.raw(cond)
        field = self.resolve_field(name)
        column = self.dialect.quote_identifier(field.column)
        if not is_operator_condition(cond):
            return self.compare(field, column, "$eq", cond)
        parts = [self.compare(field, column, op, operand) for op, operand in cond.items()]
        return parts[0] if len(parts) == 1 else "(" + " AND ".join(parts) + ")"

    def operand(self, field: ResolvedField, value: Any) -> str:
        value = self.normalize_operand(field, value)
        if field.is_id and value is not None:
            return self.dialect.quote_string(str(value))
        return self.dialect.literal(value)

    def compare(self, field: ResolvedField, column: str, op: str, value: Any) -> str:
        if op not in OPERATORS:
            raise UnsupportedOperatorError(op, self.backend.value)

        if op == "$eq":
            if value is None:
                return f"{column} IS NULL"
            return f"{column} = {self.operand(field, value)}"
        if op == "$ne":
            if value is None:
                return f"{column} IS NOT NULL"
            return f"({column} != {self.operand(field, value)} OR {column} IS NULL)"
        if op in ("$gt", "$gte", "$lt", "$lte"):
            if value is None:
                raise FilterError(f"Operator '{op}' on '{field.name}' cannot compare with null")
            sign = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}[op]
            return f"{column} {sign} {self.operand(field, value)}"
        if op in ("$in", "$nin"):
            return self.membership(field, column, op, value)
        if op == "$exists":
            if not isinstance(value, bool):
                raise FilterError(f"Operator '$exists' on '{field.name}' requires a boolean")
            return f"{column} IS NOT NULL" if value else f"{column} IS NULL"
        return self.raw(value)

    def membership(self, field: ResolvedField, column: str, op: str, values: Any) -> str:
        normalized = self.normalize_list(field, op, values)
        has_null = any(v is None for v in normalized)
        literals = [
            self.dialect.quote_string(str(v)) if field.is_id else self.dialect.literal(v)
            for v in normalized
            if v is not None
        ]
        if op == "$in":
            if not literals:
                return f"{column} IS NULL"
            clause = f"{column} IN ({', '.join(literals)})"
            return f"({clause} OR {column} IS NULL)" if has_null else clause
        if not literals:
            return f"{column} IS NOT NULL"
        clause = f"{column} NOT IN ({', '.join(literals)})"
        if has_null:
            return f"({clause} AND {column} IS NOT NULL)"
        return f"({clause} OR {column} IS NULL)"

    def raw(self, value: Any) -> str:
        """Raw fragment: a string, or ``{"condition": ..., "bindings": [...]}``."""
        if isinstance(value, str):
            if not value.strip():
                raise FilterError("Operator '$raw' requires a non-empty condition")
            return f"({value})"
        if isinstance(value, dict) and isinstance(value.get("condition"), str):
            bindings = list(value.get("bindings") or [])
            condition = value["condition"]
            if condition.count("?") != len(bindings):
                raise FilterError(
                    f"Operator '$raw' has {condition.count('?')} placeholders "
                    f"but {len(bindings)} bindings"
                )
            rendered = iter(self.dialect.literal(b) for b in bindings)
            return "(" + _PLACEHOLDER.sub(lambda _: next(rendered), condition) + ")"
        raise UnsupportedOperatorError(
            "$raw", self.backend.value, "expected a SQL string or {condition, bindings}"
        )

    # -------------------------------------------------------------------------
    # Search and sort
    # -------------------------------------------------------------------------

    def search(self, term: str, search_fields: list[str]) -> str:
        escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = self.dialect.quote_string(f"%{escaped}%")
        parts = []
        for name in search_fields:
            field = self.resolve_field(name)
            column = self.dialect.quote_identifier(field.column)
            fd = field.descriptor
            if fd is not None and not fd.field_type.quoted:
                column = f"CAST({column} AS TEXT)"
            parts.append(f"{column} {self.dialect.like} {pattern} ESCAPE '\\'")
        return "(" + " OR ".join(parts) + ")"

    def order_by(self, qf: QueryFilter) -> str:
        keys = []
        for key in qf.sort:
            field = self.resolve_field(key.field)
            direction = "DESC" if key.descending else "ASC"
            keys.append(f"{self.dialect.quote_identifier(field.column)} {direction}")
        return ", ".join(keys)
