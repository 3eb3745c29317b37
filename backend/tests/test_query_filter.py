"""Tests for QueryFilter normalization and scope merging."""

import pytest

from dbforge.errors import FilterError
from dbforge.query import QueryFilter, SortKey, merge_query


class TestFromParams:
    def test_sort_string(self):
        qf = QueryFilter.from_params({"sort": "-age, name"})
        assert qf.sort == [SortKey("age", True), SortKey("name")]

    def test_sort_list_and_pairs(self):
        assert QueryFilter.from_params({"sort": ["-age", "name"]}).sort == [
            SortKey("age", True),
            SortKey("name"),
        ]
        assert QueryFilter.from_params({"sort": [("age", -1)]}).sort == [SortKey("age", True)]
        assert QueryFilter.from_params({"sort": {"age": "desc"}}).sort == [SortKey("age", True)]

    def test_numeric_strings(self):
        qf = QueryFilter.from_params({"limit": "10", "offset": "20"})
        assert (qf.limit, qf.offset) == (10, 20)

    def test_bad_numbers(self):
        with pytest.raises(FilterError):
            QueryFilter.from_params({"limit": "ten"})
        with pytest.raises(FilterError):
            QueryFilter.from_params({"offset": -1})
        with pytest.raises(FilterError):
            QueryFilter.from_params({"limit": -2})

    def test_json_query(self):
        qf = QueryFilter.from_params({"query": '{"age": {"$gt": 3}}'})
        assert qf.query == {"age": {"$gt": 3}}
        with pytest.raises(FilterError, match="JSON"):
            QueryFilter.from_params({"query": "{oops"})

    def test_camel_case_and_lists(self):
        qf = QueryFilter.from_params(
            {"search": "ada", "searchFields": "name email", "fields": ["name"], "populate": "author"}
        )
        assert qf.search_fields == ["name", "email"]
        assert qf.fields == ["name"]
        assert qf.populate == ["author"]

    def test_scope_forms(self):
        assert QueryFilter.from_params({}).scope is True
        assert QueryFilter.from_params({"scope": "false"}).scope is False
        assert QueryFilter.from_params({"scope": "adults,-notDeleted"}).scope == ["adults", "-notDeleted"]

    def test_overrides(self):
        assert QueryFilter.from_params({"limit": 5}, limit=2).limit == 2

    def test_mixed_operator_keys(self):
        with pytest.raises(FilterError, match="mixes operators"):
            QueryFilter(query={"age": {"$gt": 1, "x": 2}})

    @pytest.mark.parametrize("limit,unbounded", [(None, True), (-1, True), (0, True), (5, False)])
    def test_unbounded(self, limit, unbounded):
        assert QueryFilter(limit=limit).unbounded is unbounded


class TestMergeQuery:
    def test_disjoint(self):
        assert merge_query({"a": 1}, {"b": 2}) == {"a": 1, "b": 2}

    def test_operator_conditions_combined(self):
        merged = merge_query({"age": {"$lt": 65}}, {"age": {"$gte": 18}})
        assert merged == {"age": {"$lt": 65, "$gte": 18}}

    def test_literal_into_operators(self):
        assert merge_query({"age": {"$lt": 65}}, {"age": 30}) == {"age": {"$lt": 65, "$eq": 30}}
        assert merge_query({"age": 30}, {"age": {"$lt": 65}}) == {"age": {"$eq": 30, "$lt": 65}}

    def test_scope_wins_on_literal_collision(self):
        assert merge_query({"status": "x"}, {"status": "active"}) == {"status": "active"}

    def test_inputs_untouched(self):
        base = {"a": 1}
        merge_query(base, {"b": 2})
        assert base == {"a": 1}
