"""Field type registry with storage, quoting and coercion rules.

The set of field kinds is closed. Each kind resolves once to a FieldType
record that both the field pipeline (coercion) and the filter compiler
(literal quoting, operand normalization) consume.
"""

import json
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable


class FieldKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    OBJECT = "object"
    ARRAY = "array"
    CUSTOM = "custom"


_INT_PATTERN = re.compile(r"^[+-]?\d+$")
_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def kind_of(value: Any) -> str:
    """Describe the kind of a runtime value, in field-kind vocabulary."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float, Decimal)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (datetime, date)):
        return "date"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


# =============================================================================
# Coercion
# =============================================================================


def coerce_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        raise TypeError("boolean is not a string")
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    raise TypeError(f"cannot convert {kind_of(value)} to string")


def coerce_number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise TypeError("boolean is not a number")
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if _INT_PATTERN.match(text):
            return int(text)
        number = float(text)  # ValueError on garbage
        if number != number or number in (float("inf"), float("-inf")):
            raise ValueError(f"'{value}' is not a finite number")
        return number
    raise TypeError(f"cannot convert {kind_of(value)} to number")


def coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ValueError(f"'{value}' is not a boolean")
    raise TypeError(f"cannot convert {kind_of(value)} to boolean")


def coerce_date(value: Any) -> datetime:
    """Convert to datetime. Numbers are epoch milliseconds (UTC)."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        raise TypeError("boolean is not a date")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip())
    raise TypeError(f"cannot convert {kind_of(value)} to date")


def coerce_object(value: Any) -> dict:
    if isinstance(value, dict):
        return value
    raise TypeError(f"cannot convert {kind_of(value)} to object")


def coerce_array(value: Any) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    raise TypeError(f"cannot convert {kind_of(value)} to array")


def _identity(value: Any) -> Any:
    return value


# =============================================================================
# Registry
# =============================================================================


@dataclass(frozen=True)
class FieldType:
    """Behavior bound to a field kind.

    Attributes:
        kind: The field kind
        storage_type: SQLite column type
        pg_storage_type: PostgreSQL column type
        quoted: Whether SQL literals of this kind are quoted
        serialized: Whether SQL backends store the value as JSON text
        coerce: Conversion applied on write (raises TypeError/ValueError)
    """

    kind: FieldKind
    storage_type: str
    pg_storage_type: str
    quoted: bool
    coerce: Callable[[Any], Any]
    serialized: bool = False


FIELD_TYPES: dict[FieldKind, FieldType] = {
    FieldKind.STRING: FieldType(FieldKind.STRING, "TEXT", "TEXT", True, coerce_string),
    FieldKind.NUMBER: FieldType(
        FieldKind.NUMBER, "NUMERIC", "DOUBLE PRECISION", False, coerce_number
    ),
    FieldKind.BOOLEAN: FieldType(FieldKind.BOOLEAN, "INTEGER", "BOOLEAN", False, coerce_boolean),
    # ISO-8601 text in SQL stores, native dates in document stores
    FieldKind.DATE: FieldType(FieldKind.DATE, "TEXT", "TEXT", True, coerce_date),
    FieldKind.OBJECT: FieldType(
        FieldKind.OBJECT, "TEXT", "TEXT", False, coerce_object, serialized=True
    ),
    FieldKind.ARRAY: FieldType(
        FieldKind.ARRAY, "TEXT", "TEXT", False, coerce_array, serialized=True
    ),
    FieldKind.CUSTOM: FieldType(FieldKind.CUSTOM, "TEXT", "TEXT", False, _identity),
}


def get_field_type(kind: FieldKind | str) -> FieldType:
    """Get the field type for a kind.

    Raises:
        ValueError: For kinds outside the closed set
    """
    return FIELD_TYPES[FieldKind(kind)]


def get_storage_type(kind: FieldKind | str, dialect: str = "sqlite") -> str:
    """Get the SQL column type for a field kind."""
    field_type = get_field_type(kind)
    if dialect == "postgresql":
        return field_type.pg_storage_type
    return field_type.storage_type


def to_storage_text(value: Any) -> Any:
    """Convert a coerced value into something a SQL driver can bind."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, Decimal):
        return float(value)
    return value
