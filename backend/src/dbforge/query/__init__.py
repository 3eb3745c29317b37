"""Query filters and their compilation to native backend queries."""

from dbforge.query.base import Backend, Capabilities, DEFAULT_CAPABILITIES
from dbforge.query.compiler import NativeQuery, compile_query
from dbforge.query.filter import OPERATORS, QueryFilter, SortKey, merge_query
from dbforge.query.mongo import DocumentQuery
from dbforge.query.sql import SQLDialect, SQLQuery

__all__ = [
    "Backend",
    "Capabilities",
    "DEFAULT_CAPABILITIES",
    "DocumentQuery",
    "NativeQuery",
    "OPERATORS",
    "QueryFilter",
    "SQLDialect",
    "SQLQuery",
    "SortKey",
    "compile_query",
    "merge_query",
]
