"""Tests for MongoDB rendering of query filters."""

from datetime import datetime

import pytest
from bson import ObjectId

from dbforge.errors import FilterError, InvalidIdentifierError, UnsupportedOperatorError
from dbforge.persistence.identifiers import ObjectIdNormalizer
from dbforge.query import DocumentQuery, QueryFilter, compile_query

OID = "65f1c0ffee0123456789abcd"


def compile_mongo(schema, params, counting=False):
    return compile_query(
        QueryFilter.from_params(params),
        schema,
        "mongodb",
        counting=counting,
        normalizer=ObjectIdNormalizer(),
    )


class TestConditions:
    def test_range_and_sort(self, user_schema):
        query = compile_mongo(
            user_schema, {"query": {"age": {"$gte": 18, "$lte": 65}}, "sort": ["-age", "name"]}
        )
        assert isinstance(query, DocumentQuery)
        assert query.filter == {"age": {"$gte": 18, "$lte": 65}}
        assert query.sort == [("age", -1), ("name", 1)]

    def test_identifier_mapped_to_object_id(self, user_schema):
        query = compile_mongo(user_schema, {"query": {"id": OID}})
        assert query.filter == {"_id": ObjectId(OID)}

    def test_identifier_list(self, user_schema):
        query = compile_mongo(user_schema, {"query": {"_id": {"$in": [OID]}}})
        assert query.filter == {"_id": {"$in": [ObjectId(OID)]}}

    def test_invalid_identifier(self, user_schema):
        with pytest.raises(InvalidIdentifierError):
            compile_mongo(user_schema, {"query": {"id": "not-an-object-id"}})

    def test_column_names_and_nested_paths(self, user_schema):
        query = compile_mongo(user_schema, {"query": {"username": "ada", "address.city": "Paris"}})
        assert query.filter == {"user_name": "ada", "address.city": "Paris"}

    def test_operands_coerced(self, user_schema):
        query = compile_mongo(
            user_schema,
            {"query": {"age": {"$in": ["1", 2]}, "createdAt": {"$lt": "2024-01-01"}}},
        )
        assert query.filter["age"] == {"$in": [1, 2]}
        assert query.filter["createdAt"] == {"$lt": datetime(2024, 1, 1)}

    def test_null_handling(self, user_schema):
        assert compile_mongo(user_schema, {"query": {"deletedAt": None}}).filter == {"deletedAt": None}
        assert compile_mongo(user_schema, {"query": {"age": {"$ne": None}}}).filter == {"age": {"$ne": None}}
        with pytest.raises(FilterError, match="null"):
            compile_mongo(user_schema, {"query": {"age": {"$lte": None}}})

    def test_exists(self, user_schema):
        assert compile_mongo(user_schema, {"query": {"age": {"$exists": False}}}).filter == {
            "age": {"$exists": False}
        }

    def test_plain_document_condition(self, user_schema):
        query = compile_mongo(user_schema, {"query": {"meta": {"source": "import"}}})
        assert query.filter == {"meta": {"source": "import"}}

    def test_unknown_operator(self, user_schema):
        with pytest.raises(UnsupportedOperatorError):
            compile_mongo(user_schema, {"query": {"name": {"$regex": "^a"}}})


class TestRaw:
    def test_document_merged(self, user_schema):
        query = compile_mongo(user_schema, {"query": {"$raw": {"$or": [{"a": 1}, {"b": 2}]}}})
        assert query.filter == {"$or": [{"a": 1}, {"b": 2}]}

    def test_string_rejected(self, user_schema):
        with pytest.raises(UnsupportedOperatorError, match="native filter document"):
            compile_mongo(user_schema, {"query": {"$raw": "age > 3"}})


class TestSearch:
    def test_regex_over_fields(self, user_schema):
        query = compile_mongo(user_schema, {"search": "a.b", "searchFields": ["name", "email"]})
        assert query.filter == {
            "$or": [
                {"name": {"$regex": r"a\.b", "$options": "i"}},
                {"email": {"$regex": r"a\.b", "$options": "i"}},
            ]
        }

    def test_text_search(self, user_schema):
        assert compile_mongo(user_schema, {"search": "ada"}).filter == {"$text": {"$search": "ada"}}

    def test_collision_wrapped_in_and(self, user_schema):
        query = compile_mongo(
            user_schema,
            {"query": {"$raw": {"$or": [{"a": 1}]}}, "search": "x", "searchFields": ["name"]},
        )
        assert list(query.filter) == ["$and"]
        assert query.filter["$and"][0] == {"$or": [{"a": 1}]}


class TestPagination:
    def test_skip_and_limit(self, user_schema):
        query = compile_mongo(user_schema, {"limit": 10, "offset": 20})
        assert (query.skip, query.limit) == (20, 10)

    def test_unbounded(self, user_schema):
        assert compile_mongo(user_schema, {"limit": -1}).limit == 0

    def test_hint_and_collation_passed_through(self, user_schema):
        query = compile_mongo(user_schema, {"hint": "age_1", "collation": {"locale": "en"}})
        assert query.hint == "age_1"
        assert query.collation == {"locale": "en"}

    def test_counting(self, user_schema):
        query = compile_mongo(user_schema, {"sort": "name", "limit": 5, "offset": 5}, counting=True)
        assert (query.sort, query.skip, query.limit) == ([], 0, 0)
