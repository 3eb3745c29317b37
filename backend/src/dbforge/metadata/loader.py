"""Entity schema model and YAML loader.

An EntitySchema is built once, at service definition time, from either a
Python mapping or a YAML file, and is read-only afterwards.
"""

import copy
import inspect
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import yaml

from dbforge.core.types import FieldKind, FieldType, get_field_type
from dbforge.errors import SchemaError
from dbforge.hooks.registry import BehaviorRegistry
from dbforge.hooks.types import BehaviorKind, FieldHookContext

logger = logging.getLogger(__name__)

ID_ALIASES = ("id", "_id")

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class Hidden(str, Enum):
    """Visibility policy of a field on read."""

    NEVER = "never"
    ALWAYS = "always"
    BY_DEFAULT = "byDefault"

    @classmethod
    def parse(cls, value: Any) -> "Hidden":
        if isinstance(value, Hidden):
            return value
        if value is True:
            return cls.ALWAYS
        if value is None or value is False:
            return cls.NEVER
        try:
            return cls(value)
        except ValueError:
            raise SchemaError(f"Unknown hidden policy '{value}'") from None


@dataclass
class PopulateConfig:
    """Reference resolution for a field.

    Attributes:
        resolver: Name of the registered resolver (usually the target entity)
        fields: Sub-fields to request from the target
        key_field: Field holding the reference, when it differs from the populated field
    """

    resolver: str
    fields: list[str] | None = None
    key_field: str | None = None


@dataclass
class IndexDefinition:
    """An index declared on an entity.

    Attributes:
        fields: Ordered (field name, direction) pairs, direction 1 or -1
        name: Explicit index name (generated when omitted)
        unique: Reject duplicate keys
        sparse: Skip documents missing the key (document stores only)
        expire_after_seconds: TTL (document stores only)
    """

    fields: list[tuple[str, int]]
    name: str | None = None
    unique: bool = False
    sparse: bool = False
    expire_after_seconds: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str | list) -> "IndexDefinition":
        """Create from ``"-createdAt"``, ``["a", "-b"]`` or a full mapping."""
        if isinstance(data, (str, list)):
            data = {"fields": data}
        raw_fields = data.get("fields")
        if isinstance(raw_fields, str):
            raw_fields = [raw_fields]
        pairs: list[tuple[str, int]] = []
        if isinstance(raw_fields, dict):
            pairs = [(name, -1 if direction in (-1, "desc") else 1) for name, direction in raw_fields.items()]
        elif isinstance(raw_fields, list):
            for entry in raw_fields:
                if entry.startswith("-"):
                    pairs.append((entry[1:], -1))
                else:
                    pairs.append((entry, 1))
        if not pairs:
            raise SchemaError("Index definition needs at least one field")
        return cls(
            fields=pairs,
            name=data.get("name"),
            unique=data.get("unique", False),
            sparse=data.get("sparse", False),
            expire_after_seconds=data.get("expireAfterSeconds", data.get("expire_after_seconds")),
        )


def _accepts_context(fn: Callable) -> bool:
    """Whether a producer needs the hook context as its first argument.

    Only a required positional parameter counts, so ``datetime.now`` and
    builtins without a readable signature (``dict``, ``list``) are called
    with no arguments.
    """
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return False
    return any(
        p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty
        for p in params
    )


def _as_hook(value: Any) -> Any:
    """Wrap zero-argument callables so every hook takes a FieldHookContext."""
    if callable(value) and not _accepts_context(value):
        return lambda ctx: value()
    return value


@dataclass
class FieldDescriptor:
    """Declaration of one entity attribute.

    Producer slots (default, on_create, on_update, on_remove) take either a
    literal or a callable receiving a FieldHookContext. Zero-argument
    callables are accepted too.
    """

    name: str
    type: FieldKind = FieldKind.STRING
    column_name: str | None = None
    primary_key: bool = False
    required: bool = False
    readonly: bool = False
    immutable: bool = False
    hidden: Hidden = Hidden.NEVER
    secure: bool = False
    trim: bool = False
    virtual: bool = False
    default: Any = None
    on_create: Any = None
    on_update: Any = None
    on_remove: Any = None
    setter: Callable[[FieldHookContext], Any] | None = None
    getter: Callable[[FieldHookContext], Any] | None = None
    validate: Callable[[FieldHookContext], bool | str] | None = None
    permission: str | list[str] | None = None
    read_permission: str | list[str] | None = None
    populate: PopulateConfig | None = None

    def __post_init__(self) -> None:
        try:
            self.type = FieldKind(self.type)
        except ValueError:
            raise SchemaError(f"Field '{self.name}' has unknown type '{self.type}'") from None
        if not self.column_name:
            self.column_name = self.name
        self.hidden = Hidden.parse(self.hidden)
        self.default = _as_hook(self.default)
        self.on_create = _as_hook(self.on_create)
        self.on_update = _as_hook(self.on_update)
        self.on_remove = _as_hook(self.on_remove)

    @property
    def field_type(self) -> FieldType:
        return get_field_type(self.type)

    def produce(self, slot: Any, ctx: FieldHookContext) -> Any:
        """Evaluate a producer slot (default or lifecycle hook)."""
        if callable(slot):
            return slot(ctx)
        return copy.deepcopy(slot)

    def apply_set(self, ctx: FieldHookContext) -> Any:
        if self.setter is None:
            return ctx.value
        return self.setter(ctx)

    def apply_get(self, ctx: FieldHookContext) -> Any:
        if self.getter is None:
            return ctx.value
        return self.getter(ctx)

    def check(self, ctx: FieldHookContext) -> str | None:
        """Run the validator. Returns a reason when the value is rejected."""
        if self.validate is None:
            return None
        result = self.validate(ctx)
        if result is True or result is None:
            return None
        if result is False:
            return "is invalid"
        return str(result)


@dataclass
class EntitySchema:
    """Ordered field declarations plus entity-level options.

    Scopes map a name to either a query mapping, merged into every query
    the scope applies to, or a callable taking and returning the query.
    """

    name: str
    fields: list[FieldDescriptor]
    collection: str | None = None
    scopes: dict[str, dict[str, Any] | Callable[[dict], dict]] = field(default_factory=dict)
    default_scopes: list[str] = field(default_factory=list)
    default_populates: list[str] = field(default_factory=list)
    indexes: list[IndexDefinition] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.collection:
            self.collection = _CAMEL_BOUNDARY.sub("_", self.name).lower()
        self._by_name: dict[str, FieldDescriptor] = {}
        self._by_column: dict[str, FieldDescriptor] = {}
        self._primary: FieldDescriptor | None = None

        for fd in self.fields:
            if fd.name in self._by_name:
                raise SchemaError(f"Entity '{self.name}' declares field '{fd.name}' twice")
            if fd.column_name in self._by_column:
                raise SchemaError(
                    f"Entity '{self.name}': column '{fd.column_name}' is used by both "
                    f"'{self._by_column[fd.column_name].name}' and '{fd.name}'"
                )
            if fd.primary_key:
                if self._primary is not None:
                    raise SchemaError(
                        f"Entity '{self.name}' declares more than one primary key "
                        f"('{self._primary.name}', '{fd.name}')"
                    )
                self._primary = fd
            self._by_name[fd.name] = fd
            self._by_column[fd.column_name] = fd

        for scope in self.default_scopes:
            if scope not in self.scopes:
                raise SchemaError(f"Entity '{self.name}' default scope '{scope}' is not defined")

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get(self, name: str) -> FieldDescriptor | None:
        return self._by_name.get(name)

    def by_column(self, column: str) -> FieldDescriptor | None:
        return self._by_column.get(column)

    @property
    def primary_key(self) -> FieldDescriptor | None:
        return self._primary

    @property
    def primary_column(self) -> str:
        if self._primary is not None:
            return self._primary.column_name
        return "id"

    def is_id_alias(self, name: str) -> bool:
        if name in ID_ALIASES:
            return True
        return self._primary is not None and name == self._primary.name

    def resolve(self, name: str) -> FieldDescriptor | None:
        """Look up a field by logical name, accepting identifier aliases."""
        if self.is_id_alias(name):
            return self._primary
        return self._by_name.get(name)

    def column_for(self, name: str) -> str:
        """Physical key for a logical name. Unknown names pass through."""
        if self.is_id_alias(name):
            return self.primary_column
        head, _, rest = name.partition(".")
        fd = self._by_name.get(head)
        if fd is None:
            return name
        return f"{fd.column_name}.{rest}" if rest else fd.column_name

    @property
    def stored_fields(self) -> list[FieldDescriptor]:
        return [fd for fd in self.fields if not fd.virtual]

    @property
    def soft_delete(self) -> bool:
        return any(fd.on_remove is not None for fd in self.fields)

    @property
    def soft_delete_fields(self) -> list[FieldDescriptor]:
        return [fd for fd in self.fields if fd.on_remove is not None]

    @property
    def secure_fields(self) -> list[FieldDescriptor]:
        return [fd for fd in self.fields if fd.secure]

    # -------------------------------------------------------------------------
    # Name mapping
    # -------------------------------------------------------------------------

    def to_columns(self, entity: dict[str, Any]) -> dict[str, Any]:
        """Map a field-keyed entity to column keys, dropping virtual fields."""
        row: dict[str, Any] = {}
        for key, value in entity.items():
            fd = self._by_name.get(key)
            if fd is None:
                continue
            if fd.virtual:
                continue
            row[fd.column_name] = value
        return row

    def from_columns(self, row: dict[str, Any]) -> dict[str, Any]:
        """Map a column-keyed row back to field names, dropping unknown columns."""
        entity: dict[str, Any] = {}
        for column, value in row.items():
            fd = self._by_column.get(column)
            if fd is not None:
                entity[fd.name] = value
            elif self._primary is None and column == "id":
                # Implicit key of schemas without a declared primary key
                entity["id"] = value
        return entity


# =============================================================================
# Builders
# =============================================================================

_FIELD_KEYS = {
    "columnName": "column_name",
    "primaryKey": "primary_key",
    "readOnly": "readonly",
    "onCreate": "on_create",
    "onUpdate": "on_update",
    "onRemove": "on_remove",
    "set": "setter",
    "get": "getter",
    "readPermission": "read_permission",
    "id": "primary_key",
}

_HOOK_SLOTS = {
    "default": BehaviorKind.PRODUCER,
    "on_create": BehaviorKind.PRODUCER,
    "on_update": BehaviorKind.PRODUCER,
    "on_remove": BehaviorKind.PRODUCER,
    "setter": BehaviorKind.TRANSFORM,
    "getter": BehaviorKind.TRANSFORM,
    "validate": BehaviorKind.VALIDATOR,
}


def _resolve_behavior(kind: BehaviorKind, value: Any, field_name: str) -> Any:
    """Resolve ``{"behavior": name}`` (or a bare name for transforms/validators)."""
    name = None
    if isinstance(value, dict) and set(value) == {"behavior"}:
        name = value["behavior"]
    elif isinstance(value, str) and kind != BehaviorKind.PRODUCER:
        name = value
    if name is None:
        return value
    try:
        return BehaviorRegistry.get(kind, name)
    except ValueError as exc:
        raise SchemaError(f"Field '{field_name}': {exc}") from exc


def build_field(name: str, data: dict[str, Any] | str) -> FieldDescriptor:
    """Build a FieldDescriptor from a declaration.

    Accepts either a bare type name (``"string"``) or a mapping using the
    camelCase keys of schema files or the snake_case attribute names.
    """
    if isinstance(data, str):
        data = {"type": data}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key == "name":
            continue
        attr = _FIELD_KEYS.get(key, key)
        if attr not in FieldDescriptor.__dataclass_fields__:
            raise SchemaError(f"Field '{name}' has unknown option '{key}'")
        kwargs[attr] = value

    for slot, kind in _HOOK_SLOTS.items():
        if slot in kwargs:
            kwargs[slot] = _resolve_behavior(kind, kwargs[slot], name)

    populate = kwargs.get("populate")
    if isinstance(populate, str):
        kwargs["populate"] = PopulateConfig(resolver=populate)
    elif isinstance(populate, dict):
        kwargs["populate"] = PopulateConfig(
            resolver=populate["resolver"],
            fields=populate.get("fields"),
            key_field=populate.get("keyField", populate.get("key_field")),
        )
    return FieldDescriptor(name=name, **kwargs)


def build_schema(
    name: str,
    fields: dict[str, Any] | list[dict[str, Any]],
    *,
    collection: str | None = None,
    scopes: dict[str, Any] | None = None,
    default_scopes: list[str] | None = None,
    default_populates: list[str] | None = None,
    indexes: list[Any] | None = None,
) -> EntitySchema:
    """Build an EntitySchema from a field mapping or list of field mappings."""
    if isinstance(fields, dict):
        descriptors = [build_field(field_name, spec) for field_name, spec in fields.items()]
    else:
        descriptors = [build_field(spec["name"], spec) for spec in fields]
    return EntitySchema(
        name=name,
        fields=descriptors,
        collection=collection,
        scopes=dict(scopes or {}),
        default_scopes=list(default_scopes or []),
        default_populates=list(default_populates or []),
        indexes=[
            ix if isinstance(ix, IndexDefinition) else IndexDefinition.from_dict(ix)
            for ix in (indexes or [])
        ],
    )


class SchemaLoader:
    """Loads entity schemas from YAML files.

    A schema file looks like::

        entity: User
        collection: users
        fields:
          - name: id
            type: string
            primaryKey: true
          - name: email
            type: string
            required: true
            set: lowercase
            validate: email
          - name: createdAt
            type: date
            readOnly: true
            onCreate: {behavior: now}
        scopes:
          active: {status: active}
        defaultScopes: [active]
    """

    def __init__(self, metadata_path: Path):
        self.metadata_path = Path(metadata_path)
        self.schemas: dict[str, EntitySchema] = {}

    def load_all(self) -> None:
        """Load every ``*.yaml`` file under the metadata path."""
        paths = [self.metadata_path] if self.metadata_path.is_file() else sorted(
            self.metadata_path.glob("*.yaml")
        )
        for yaml_file in paths:
            schema = self.load_file(yaml_file)
            if schema.name in self.schemas:
                raise SchemaError(f"Entity '{schema.name}' is defined more than once")
            self.schemas[schema.name] = schema

    def load_file(self, yaml_file: Path) -> EntitySchema:
        with open(yaml_file) as f:
            data = yaml.safe_load(f)
        if not data or "entity" not in data:
            raise SchemaError(f"{yaml_file}: missing 'entity' key")
        logger.debug("Loading entity '%s' from %s", data["entity"], yaml_file)
        return self.resolve(data)

    def resolve(self, data: dict[str, Any]) -> EntitySchema:
        return build_schema(
            data["entity"],
            data.get("fields", []),
            collection=data.get("collection"),
            scopes=data.get("scopes"),
            default_scopes=data.get("defaultScopes"),
            default_populates=data.get("defaultPopulates"),
            indexes=data.get("indexes"),
        )

    def get_schema(self, name: str) -> EntitySchema | None:
        return self.schemas.get(name)

    def list_schemas(self) -> list[str]:
        return sorted(self.schemas.keys())
