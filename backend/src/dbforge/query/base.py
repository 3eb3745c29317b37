"""Shared pieces of the query compilers.

- Backend / Capabilities: what a storage engine can express
- CompilerBase: field resolution, capability checks, operand normalization
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from dbforge.core.types import FieldKind
from dbforge.errors import CapabilityError, FilterError
from dbforge.metadata.loader import EntitySchema, FieldDescriptor
from dbforge.persistence.identifiers import IdNormalizer, SecureIdCodec
from dbforge.query.filter import QueryFilter

logger = logging.getLogger(__name__)

FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)*$")


class Backend(str, Enum):
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MONGODB = "mongodb"


@dataclass(frozen=True)
class Capabilities:
    """Query features a backend can execute natively."""

    limit: bool = True
    offset: bool = True
    sort: bool = True
    hint: bool = False
    collation: bool = False
    text_search: bool = False
    nested_fields: bool = False


DEFAULT_CAPABILITIES: dict[Backend, Capabilities] = {
    Backend.SQLITE: Capabilities(),
    Backend.POSTGRESQL: Capabilities(),
    Backend.MONGODB: Capabilities(hint=True, collation=True, text_search=True, nested_fields=True),
}


@dataclass(frozen=True)
class ResolvedField:
    """A query field name resolved against the schema."""

    name: str
    column: str
    descriptor: FieldDescriptor | None
    is_id: bool


class CompilerBase:
    """Common state and helpers for the backend compilers."""

    backend: Backend

    def __init__(
        self,
        schema: EntitySchema,
        capabilities: Capabilities | None = None,
        normalizer: IdNormalizer | None = None,
        id_codec: SecureIdCodec | None = None,
    ):
        self.schema = schema
        self.capabilities = capabilities or DEFAULT_CAPABILITIES[self.backend]
        self.normalizer = normalizer
        self.id_codec = id_codec

    # -------------------------------------------------------------------------
    # Field resolution
    # -------------------------------------------------------------------------

    def id_column(self) -> str:
        return self.schema.primary_column

    def resolve_field(self, name: str) -> ResolvedField:
        if not isinstance(name, str) or not FIELD_NAME_PATTERN.match(name):
            raise FilterError(f"Invalid field name: {name!r}")
        if self.schema.is_id_alias(name):
            return ResolvedField(name, self.id_column(), self.schema.primary_key, True)
        if "." in name:
            if not self.capabilities.nested_fields:
                raise CapabilityError("nested_fields", self.backend.value)
            return ResolvedField(name, self.schema.column_for(name), None, False)
        fd = self.schema.get(name)
        if fd is not None and fd.virtual:
            raise FilterError(f"Field '{name}' is virtual and cannot be queried")
        column = fd.column_name if fd is not None else name
        return ResolvedField(name, column, fd, False)

    # -------------------------------------------------------------------------
    # Capability checks
    # -------------------------------------------------------------------------

    def check_capabilities(self, qf: QueryFilter, counting: bool) -> None:
        caps = self.capabilities
        backend = self.backend.value
        if qf.hint is not None and not caps.hint:
            raise CapabilityError("hint", backend)
        if qf.collation is not None and not caps.collation:
            raise CapabilityError("collation", backend)
        if qf.search and not qf.search_fields and not caps.text_search:
            raise CapabilityError("text_search", backend)
        if counting:
            return
        if qf.sort and not caps.sort:
            raise CapabilityError("sort", backend)
        if not qf.unbounded and not caps.limit:
            raise CapabilityError("limit", backend)
        if qf.offset and not caps.offset:
            raise CapabilityError("offset", backend)

    # -------------------------------------------------------------------------
    # Operand normalization
    # -------------------------------------------------------------------------

    def native_id(self, value: Any) -> Any:
        """Canonical id value for a query operand."""
        pk = self.schema.primary_key
        if pk is not None and pk.secure and isinstance(value, str) and self.id_codec is not None:
            value = self.id_codec.decode(value)
        if self.normalizer is not None:
            return self.normalizer.to_native(value)
        return value

    def normalize_operand(self, field: ResolvedField, value: Any) -> Any:
        """Coerce one operand to the declared type of its field.

        Raises:
            FilterError: When the operand cannot represent a value of the type
            InvalidIdentifierError: When an identifier operand is malformed
        """
        if value is None:
            return None
        if field.is_id:
            return self.native_id(value)
        fd = field.descriptor
        if fd is None:
            return value
        if fd.secure and isinstance(value, str) and self.id_codec is not None:
            return self.id_codec.decode(value)
        if fd.type in (FieldKind.OBJECT, FieldKind.ARRAY, FieldKind.CUSTOM):
            return value
        try:
            return fd.field_type.coerce(value)
        except (TypeError, ValueError) as exc:
            raise FilterError(
                f"Operand {value!r} for '{field.name}' is not a valid {fd.type.value}: {exc}"
            ) from exc

    def normalize_list(self, field: ResolvedField, operator: str, values: Any) -> list[Any]:
        if not isinstance(values, (list, tuple)):
            raise FilterError(f"Operator '{operator}' on '{field.name}' requires a list")
        if not values:
            raise FilterError(f"Operator '{operator}' on '{field.name}' requires a non-empty list")
        return [self.normalize_operand(field, v) for v in values]
