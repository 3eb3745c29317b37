"""Tests for SQL rendering of query filters (SQLite and PostgreSQL)."""

from datetime import datetime

import pytest

from dbforge.errors import CapabilityError, FilterError, InvalidIdentifierError, UnsupportedOperatorError
from dbforge.metadata.loader import build_schema
from dbforge.persistence.identifiers import IntegerIdNormalizer, SecureIdCodec
from dbforge.query import Backend, Capabilities, QueryFilter, SQLDialect, compile_query


def where(schema, query, backend="sqlite", **kwargs):
    return compile_query(QueryFilter(query=query), schema, backend, **kwargs).where


def sql(schema, params, backend="sqlite", **kwargs):
    return compile_query(QueryFilter.from_params(params), schema, backend, **kwargs).to_sql()


# =============================================================================
# Conditions
# =============================================================================


class TestComparisons:
    def test_range_and_sort(self, user_schema):
        params = {"query": {"age": {"$gte": 18, "$lte": 65}}, "sort": ["-age"]}
        assert sql(user_schema, params) == (
            'SELECT * FROM "users" WHERE ("age" >= 18 AND "age" <= 65) ORDER BY "age" DESC'
        )

    def test_string_literals_quoted_numbers_bare(self, user_schema):
        assert where(user_schema, {"name": {"$gte": "M"}}) == "\"name\" >= 'M'"
        assert where(user_schema, {"age": {"$gte": 18}}) == '"age" >= 18'

    def test_operands_coerced_to_field_type(self, user_schema):
        assert where(user_schema, {"age": "18"}) == '"age" = 18'
        assert where(user_schema, {"createdAt": {"$gte": "2024-01-01"}}) == (
            "\"createdAt\" >= '2024-01-01T00:00:00'"
        )

    def test_booleans_per_dialect(self, user_schema):
        assert where(user_schema, {"active": True}) == '"active" = 1'
        assert where(user_schema, {"active": "false"}, "postgresql") == '"active" = FALSE'

    def test_quote_escaping(self, user_schema):
        assert where(user_schema, {"name": "O'Brien"}) == "\"name\" = 'O''Brien'"

    def test_column_names(self, user_schema):
        assert where(user_schema, {"username": "ada"}) == "\"user_name\" = 'ada'"

    def test_nulls(self, user_schema):
        assert where(user_schema, {"name": None}) == '"name" IS NULL'
        assert where(user_schema, {"name": {"$ne": None}}) == '"name" IS NOT NULL'
        assert where(user_schema, {"name": {"$ne": "x"}}) == "(\"name\" != 'x' OR \"name\" IS NULL)"

    def test_null_range_rejected(self, user_schema):
        with pytest.raises(FilterError, match="null"):
            where(user_schema, {"age": {"$gt": None}})

    def test_uncoercible_operand(self, user_schema):
        with pytest.raises(FilterError, match="not a valid number"):
            where(user_schema, {"age": {"$gt": "abc"}})

    def test_exists(self, user_schema):
        assert where(user_schema, {"age": {"$exists": True}}) == '"age" IS NOT NULL'
        assert where(user_schema, {"age": {"$exists": False}}) == '"age" IS NULL'
        with pytest.raises(FilterError):
            where(user_schema, {"age": {"$exists": "yes"}})

    def test_unknown_operator(self, user_schema):
        with pytest.raises(UnsupportedOperatorError) as exc_info:
            where(user_schema, {"name": {"$regex": "^a"}})
        assert exc_info.value.operator == "$regex"


class TestMembership:
    def test_in(self, user_schema):
        assert where(user_schema, {"age": {"$in": [1, "2"]}}) == '"age" IN (1, 2)'

    def test_nin_includes_nulls(self, user_schema):
        assert where(user_schema, {"age": {"$nin": [1, 2]}}) == '("age" NOT IN (1, 2) OR "age" IS NULL)'

    def test_in_with_null(self, user_schema):
        assert where(user_schema, {"age": {"$in": [1, None]}}) == '("age" IN (1) OR "age" IS NULL)'

    def test_empty_list_rejected(self, user_schema):
        with pytest.raises(FilterError, match="non-empty"):
            where(user_schema, {"age": {"$in": []}})

    def test_requires_list(self, user_schema):
        with pytest.raises(FilterError):
            where(user_schema, {"age": {"$in": 3}})


class TestIdentifiers:
    def test_id_alias_quoted(self, user_schema):
        assert where(user_schema, {"_id": 5}) == "\"id\" = '5'"

    def test_integer_normalizer(self, user_schema):
        normalizer = IntegerIdNormalizer()
        assert where(user_schema, {"id": {"$in": ["7", 8]}}, normalizer=normalizer) == "\"id\" IN ('7', '8')"
        with pytest.raises(InvalidIdentifierError):
            where(user_schema, {"id": "abc"}, normalizer=normalizer)

    def test_secure_id_decoded(self):
        schema = build_schema("Account", {"id": {"primaryKey": True, "secure": True}})
        codec = SecureIdCodec("s3cret")
        assert where(schema, {"id": codec.encode("a1")}, id_codec=codec) == "\"id\" = 'a1'"


class TestRaw:
    def test_string_fragment(self, user_schema):
        assert where(user_schema, {"$raw": "age > 3"}) == "(age > 3)"

    def test_bindings(self, user_schema):
        raw = {"condition": "name = ? AND age > ?", "bindings": ["a'b", 3]}
        assert where(user_schema, {"$raw": raw}) == "(name = 'a''b' AND age > 3)"

    def test_binding_count_mismatch(self, user_schema):
        with pytest.raises(FilterError, match="placeholders"):
            where(user_schema, {"$raw": {"condition": "a = ?", "bindings": []}})

    def test_field_level_raw(self, user_schema):
        assert where(user_schema, {"age": {"$raw": "1 = 1"}}) == "(1 = 1)"


# =============================================================================
# Search, pagination, capabilities
# =============================================================================


class TestSearch:
    def test_like_over_fields(self, user_schema):
        qf = QueryFilter(search="ad", search_fields=["name", "age"])
        assert compile_query(qf, user_schema, "sqlite").where == (
            r"""("name" LIKE '%ad%' ESCAPE '\' OR CAST("age" AS TEXT) LIKE '%ad%' ESCAPE '\')"""
        )

    def test_ilike_on_postgres(self, user_schema):
        qf = QueryFilter(search="ad", search_fields=["name"])
        assert "ILIKE" in compile_query(qf, user_schema, "postgresql").where

    def test_wildcards_escaped(self, user_schema):
        qf = QueryFilter(search="50%_", search_fields=["name"])
        assert r"'%50\%\_%'" in compile_query(qf, user_schema, "sqlite").where

    def test_combined_with_conditions(self, user_schema):
        qf = QueryFilter(query={"age": 3}, search="ad", search_fields=["name"])
        assert compile_query(qf, user_schema, "sqlite").where.startswith('"age" = 3 AND (')


class TestPagination:
    def test_limit_offset(self, user_schema):
        assert sql(user_schema, {"limit": 10, "offset": 20}) == 'SELECT * FROM "users" LIMIT 10 OFFSET 20'

    def test_offset_without_limit(self, user_schema):
        assert sql(user_schema, {"offset": 5}) == 'SELECT * FROM "users" LIMIT -1 OFFSET 5'
        assert sql(user_schema, {"offset": 5}, "postgresql") == 'SELECT * FROM "users" OFFSET 5'

    def test_unbounded(self, user_schema):
        assert sql(user_schema, {"limit": -1}) == 'SELECT * FROM "users"'

    def test_sort_keys(self, user_schema):
        assert sql(user_schema, {"sort": ["-age", "name"]}).endswith('ORDER BY "age" DESC, "name" ASC')

    def test_counting_drops_sort_and_pagination(self, user_schema):
        qf = QueryFilter.from_params({"query": {"age": {"$gt": 1}}, "sort": "name", "limit": 5, "offset": 5})
        query = compile_query(qf, user_schema, "sqlite", counting=True)
        assert query.order_by is None
        assert query.limit is None
        assert query.count_sql() == 'SELECT COUNT(*) AS count FROM "users" WHERE "age" > 1'


class TestCapabilities:
    def test_full_text_search_needs_fields(self, user_schema):
        with pytest.raises(CapabilityError) as exc_info:
            compile_query(QueryFilter(search="ad"), user_schema, "sqlite")
        assert exc_info.value.capability == "text_search"

    def test_hint_and_collation(self, user_schema):
        with pytest.raises(CapabilityError, match="hint"):
            compile_query(QueryFilter(hint="idx"), user_schema, "postgresql")
        with pytest.raises(CapabilityError, match="collation"):
            compile_query(QueryFilter(collation={"locale": "en"}), user_schema, "sqlite")

    def test_nested_fields(self, user_schema):
        with pytest.raises(CapabilityError, match="nested_fields"):
            where(user_schema, {"address.city": "Paris"})

    def test_declared_capabilities(self, user_schema):
        caps = Capabilities(limit=False)
        with pytest.raises(CapabilityError, match="limit"):
            compile_query(QueryFilter(limit=5), user_schema, "sqlite", capabilities=caps)
        counted = compile_query(QueryFilter(limit=5), user_schema, "sqlite", capabilities=caps, counting=True)
        assert counted.limit is None


class TestFieldResolution:
    def test_invalid_field_name(self, user_schema):
        with pytest.raises(FilterError, match="Invalid field name"):
            where(user_schema, {"a b": 1})

    def test_virtual_field(self):
        schema = build_schema("P", {"a": "string", "v": {"virtual": True, "get": lambda c: 1}})
        with pytest.raises(FilterError, match="virtual"):
            where(schema, {"v": 1})

    def test_deterministic(self, user_schema):
        qf = QueryFilter.from_params({"query": {"age": {"$gte": 18}, "name": "x"}, "sort": "-age", "limit": 3})
        assert compile_query(qf, user_schema, Backend.SQLITE) == compile_query(qf, user_schema, Backend.SQLITE)


class TestDialect:
    def test_literals(self):
        dialect = SQLDialect.for_backend("postgresql")
        assert dialect.literal(None) == "NULL"
        assert dialect.literal(1.5) == "1.5"
        assert dialect.literal(datetime(2024, 1, 1)) == "'2024-01-01T00:00:00'"
        assert dialect.literal({"a": 1}) == "'{\"a\": 1}'"

    def test_rejects_unsafe_input(self):
        dialect = SQLDialect.for_backend("sqlite")
        with pytest.raises(FilterError):
            dialect.quote_string("a\x00b")
        with pytest.raises(FilterError):
            dialect.quote_identifier('x"; DROP TABLE users; --')
        with pytest.raises(FilterError):
            dialect.literal(float("nan"))

    def test_not_a_sql_backend(self):
        with pytest.raises(ValueError):
            SQLDialect.for_backend("mongodb")
