"""Adapter Protocol: shared interface for all storage backends.

Adapters work on column-keyed rows and receive already-compiled native
queries. Identifier arguments may be canonical strings or native ids; the
adapter's ``id_normalizer`` converts them at the boundary.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, AsyncIterator, Protocol, runtime_checkable

if TYPE_CHECKING:
    from dbforge.metadata.loader import IndexDefinition
    from dbforge.persistence.identifiers import IdNormalizer
    from dbforge.query.base import Backend, Capabilities
    from dbforge.query.compiler import NativeQuery


@runtime_checkable
class Adapter(Protocol):
    """Interface every storage adapter must implement."""

    backend: Backend
    capabilities: Capabilities
    id_normalizer: IdNormalizer

    @property
    def has_nested_field_support(self) -> bool: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def find(self, query: NativeQuery) -> list[dict[str, Any]]: ...

    async def find_one(self, query: NativeQuery) -> dict[str, Any] | None: ...

    def find_stream(
        self, query: NativeQuery, batch_size: int = 100
    ) -> AsyncIterator[dict[str, Any]]: ...

    async def find_by_id(self, id: Any) -> dict[str, Any] | None: ...

    async def find_by_ids(self, ids: list[Any]) -> list[dict[str, Any]]: ...

    async def count(self, query: NativeQuery) -> int: ...

    async def insert(self, entity: dict[str, Any]) -> dict[str, Any]: ...

    async def insert_many(
        self, entities: list[dict[str, Any]], return_entities: bool = False
    ) -> list[Any]: ...

    async def update_by_id(
        self, id: Any, changes: dict[str, Any], raw: bool = False
    ) -> dict[str, Any] | None: ...

    async def update_many(
        self, query: NativeQuery, changes: dict[str, Any], raw: bool = False
    ) -> int: ...

    async def replace_by_id(self, id: Any, entity: dict[str, Any]) -> dict[str, Any] | None: ...

    async def remove_by_id(self, id: Any) -> Any | None: ...

    async def remove_many(self, query: NativeQuery) -> int: ...

    async def clear(self) -> int: ...

    async def create_index(self, definition: IndexDefinition) -> str: ...

    async def remove_index(self, definition: IndexDefinition) -> None: ...

    def entity_to_json(self, entity: dict[str, Any]) -> dict[str, Any]: ...
