"""Backend-neutral query filter.

A QueryFilter is the single internal form every read goes through before
compilation. ``QueryFilter.from_params`` normalizes the loose shapes callers
pass in (sort strings, numeric strings, JSON-encoded queries).
"""

import json
import re
from dataclasses import dataclass, field, replace
from typing import Any

from dbforge.errors import FilterError

OPERATORS = ("$in", "$nin", "$gt", "$gte", "$lt", "$lte", "$eq", "$ne", "$exists", "$raw")

_LIST_SPLIT = re.compile(r"[\s,]+")


@dataclass(frozen=True)
class SortKey:
    field: str
    descending: bool = False

    @classmethod
    def parse(cls, text: str) -> "SortKey":
        text = text.strip()
        if text.startswith("-"):
            return cls(text[1:], True)
        if text.startswith("+"):
            return cls(text[1:], False)
        return cls(text, False)

    def __str__(self) -> str:
        return f"-{self.field}" if self.descending else self.field


@dataclass
class QueryFilter:
    """Normalized read request.

    Attributes:
        query: field name -> literal (equality) or operator mapping
        search: Free-text search term
        search_fields: Fields the search term is matched against
        sort: Ordered sort keys
        limit: Page size; -1 or None means unbounded (subject to max_limit)
        offset: Rows to skip
        collation: Backend collation options
        hint: Index hint
        fields: Requested output fields (None = default visible set)
        scope: True for default scopes, False for none, or scope names
            (``-name`` disables one default scope)
        populate: Fields to resolve through their populate resolver
    """

    query: dict[str, Any] = field(default_factory=dict)
    search: str | None = None
    search_fields: list[str] | None = None
    sort: list[SortKey] = field(default_factory=list)
    limit: int | None = None
    offset: int = 0
    collation: dict[str, Any] | None = None
    hint: str | dict[str, Any] | None = None
    fields: list[str] | None = None
    scope: bool | list[str] = True
    populate: list[str] | None = None

    def __post_init__(self) -> None:
        if self.offset is None:
            self.offset = 0
        if self.offset < 0:
            raise FilterError(f"offset must be non-negative, got {self.offset}")
        if self.limit is not None and self.limit < -1:
            raise FilterError(f"limit must be -1 or non-negative, got {self.limit}")
        for name, condition in self.query.items():
            validate_condition(name, condition)

    @property
    def unbounded(self) -> bool:
        return self.limit is None or self.limit <= 0

    def with_query(self, query: dict[str, Any]) -> "QueryFilter":
        return replace(self, query=query)

    @classmethod
    def from_params(cls, params: dict[str, Any] | None = None, **overrides: Any) -> "QueryFilter":
        """Build a filter from loosely-typed request parameters.

        Accepts camelCase keys (``searchFields``) as well as snake_case.
        """
        params = {**(params or {}), **overrides}
        query = params.get("query") or {}
        if isinstance(query, str):
            try:
                query = json.loads(query)
            except json.JSONDecodeError as exc:
                raise FilterError(f"query is not valid JSON: {exc}") from exc
        if not isinstance(query, dict):
            raise FilterError("query must be a mapping of field names to conditions")

        return cls(
            query=dict(query),
            search=params.get("search") or None,
            search_fields=_parse_list(_pick(params, "search_fields", "searchFields")),
            sort=_parse_sort(params.get("sort")),
            limit=_parse_int(params.get("limit"), "limit"),
            offset=_parse_int(params.get("offset"), "offset") or 0,
            collation=params.get("collation"),
            hint=params.get("hint"),
            fields=_parse_list(params.get("fields")),
            scope=_parse_scope(params.get("scope", True)),
            populate=_parse_list(params.get("populate")),
        )


def validate_condition(name: str, condition: Any) -> None:
    """Reject operator mappings that mix operators with plain keys."""
    if not isinstance(condition, dict) or not condition:
        return
    operator_keys = [k for k in condition if isinstance(k, str) and k.startswith("$")]
    if operator_keys and len(operator_keys) != len(condition):
        raise FilterError(
            f"Condition on '{name}' mixes operators with plain keys: {sorted(condition)}"
        )


def is_operator_condition(condition: Any) -> bool:
    return (
        isinstance(condition, dict)
        and bool(condition)
        and all(isinstance(k, str) and k.startswith("$") for k in condition)
    )


def merge_query(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    """AND-merge ``extra`` (a scope) into ``base`` (the caller's query).

    Operator conditions on the same field are combined; on a literal
    collision the scope's value wins.
    """
    merged = dict(base)
    for name, condition in extra.items():
        current = merged.get(name)
        if is_operator_condition(current) and is_operator_condition(condition):
            merged[name] = {**current, **condition}
        elif is_operator_condition(current) and not is_operator_condition(condition):
            merged[name] = {**current, "$eq": condition}
        elif current is not None and is_operator_condition(condition):
            merged[name] = {"$eq": current, **condition}
        else:
            merged[name] = condition
    return merged


# =============================================================================
# Param parsing
# =============================================================================


def _pick(params: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if params.get(key) is not None:
            return params[key]
    return None


def _parse_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        items = [item for item in _LIST_SPLIT.split(value) if item]
        return items or None
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise FilterError(f"expected a list or string, got {type(value).__name__}")


def _parse_sort(value: Any) -> list[SortKey]:
    if value is None:
        return []
    if isinstance(value, dict):
        return [SortKey(name, direction in (-1, "-1", "desc", "DESC")) for name, direction in value.items()]
    if isinstance(value, (str, SortKey)):
        value = [value]
    keys: list[SortKey] = []
    for entry in value:
        if isinstance(entry, SortKey):
            keys.append(entry)
        elif isinstance(entry, (tuple, list)) and len(entry) == 2:
            keys.append(SortKey(entry[0], entry[1] in (-1, "desc", "DESC")))
        elif isinstance(entry, str):
            keys.extend(SortKey.parse(item) for item in _LIST_SPLIT.split(entry) if item)
        else:
            raise FilterError(f"Unsupported sort entry: {entry!r}")
    return keys


def _parse_int(value: Any, name: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise FilterError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise FilterError(f"{name} must be an integer, got '{value}'") from None
    raise FilterError(f"{name} must be an integer")


def _parse_scope(value: Any) -> bool | list[str]:
    if isinstance(value, bool):
        return value
    if value is None:
        return True
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return _parse_list(value) or True
