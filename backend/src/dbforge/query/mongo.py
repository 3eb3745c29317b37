"""MongoDB rendering of query filters.

Conditions become one operator document per field, searches become either
``$text`` or an ``$or`` of case-insensitive regexes, and sort keys become
``(field, 1 | -1)`` tuples as accepted by Motor cursors.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from dbforge.errors import FilterError, UnsupportedOperatorError
from dbforge.query.base import Backend, CompilerBase, ResolvedField
from dbforge.query.filter import OPERATORS, QueryFilter, is_operator_condition

logger = logging.getLogger(__name__)

MONGO_ID = "_id"


@dataclass
class DocumentQuery:
    """A compiled MongoDB read."""

    filter: dict[str, Any] = field(default_factory=dict)
    sort: list[tuple[str, int]] = field(default_factory=list)
    skip: int = 0
    limit: int = 0
    hint: str | dict[str, Any] | None = None
    collation: dict[str, Any] | None = None


class MongoCompiler(CompilerBase):
    """Renders a QueryFilter into a DocumentQuery."""

    backend = Backend.MONGODB

    def id_column(self) -> str:
        return MONGO_ID

    def compile(self, qf: QueryFilter, counting: bool = False) -> DocumentQuery:
        self.check_capabilities(qf, counting)

        doc: dict[str, Any] = {}
        for name, cond in qf.query.items():
            if name == "$raw":
                doc.update(self.raw(cond))
                continue
            resolved = self.resolve_field(name)
            doc[resolved.column] = self.condition(resolved, cond)

        if qf.search:
            search = self.search(qf.search, qf.search_fields or [])
            if any(key in doc for key in search):
                doc = {"$and": [doc, search]}
            else:
                doc.update(search)

        query = DocumentQuery(filter=doc, hint=qf.hint, collation=qf.collation)
        if not counting:
            query.sort = self.sort(qf)
            query.skip = qf.offset
            query.limit = 0 if qf.unbounded else qf.limit
        logger.debug("Compiled mongodb query for %s: %s", self.schema.name, doc)
        return query

    def condition(self, field: ResolvedField, cond: Any) -> Any:
        if not is_operator_condition(cond):
            if isinstance(cond, dict):
                return cond
            return self.normalize_operand(field, cond)

        rendered: dict[str, Any] = {}
        for op, operand in cond.items():
            if op not in OPERATORS:
                raise UnsupportedOperatorError(op, self.backend.value)
            if op in ("$in", "$nin"):
                rendered[op] = self.normalize_list(field, op, operand)
            elif op == "$exists":
                if not isinstance(operand, bool):
                    raise FilterError(f"Operator '$exists' on '{field.name}' requires a boolean")
                rendered[op] = operand
            elif op == "$raw":
                rendered.update(self.raw(operand))
            else:
                if operand is None and op not in ("$eq", "$ne"):
                    raise FilterError(f"Operator '{op}' on '{field.name}' cannot compare with null")
                rendered[op] = self.normalize_operand(field, operand)
        return rendered

    def raw(self, value: Any) -> dict[str, Any]:
        if isinstance(value, dict):
            return dict(value)
        raise UnsupportedOperatorError(
            "$raw", self.backend.value, "expected a native filter document, not a string fragment"
        )

    def search(self, term: str, search_fields: list[str]) -> dict[str, Any]:
        if not search_fields:
            return {"$text": {"$search": term}}
        pattern = re.escape(term)
        return {
            "$or": [
                {self.resolve_field(name).column: {"$regex": pattern, "$options": "i"}}
                for name in search_fields
            ]
        }

    def sort(self, qf: QueryFilter) -> list[tuple[str, int]]:
        return [
            (self.resolve_field(key.field).column, -1 if key.descending else 1)
            for key in qf.sort
        ]
