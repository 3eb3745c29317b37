"""MongoDB persistence adapter using Motor.

The entity's primary key column is stored as ``_id``; rows handed back to
the service use the schema's primary column name again.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, AsyncIterator
from urllib.parse import urlparse

from bson import ObjectId
from pymongo import ReturnDocument

from dbforge.metadata.loader import EntitySchema, IndexDefinition
from dbforge.persistence.identifiers import IdNormalizer, ObjectIdNormalizer
from dbforge.query.base import DEFAULT_CAPABILITIES, Backend
from dbforge.query.mongo import MONGO_ID, DocumentQuery

if TYPE_CHECKING:
    from motor.motor_asyncio import AsyncIOMotorClient

logger = logging.getLogger(__name__)


class MongoAdapter:
    """MongoDB adapter for one entity collection."""

    backend = Backend.MONGODB

    def __init__(
        self,
        schema: EntitySchema,
        url: str = "mongodb://localhost:27017",
        database: str | None = None,
        client: AsyncIOMotorClient[Any] | None = None,
        id_normalizer: IdNormalizer | None = None,
        string_id: bool = True,
        server_selection_timeout_ms: int = 5000,
    ):
        self.schema = schema
        self.url = url
        self.database = database or urlparse(url).path.lstrip("/") or "dbforge"
        self.capabilities = DEFAULT_CAPABILITIES[Backend.MONGODB]
        self.id_normalizer = id_normalizer or ObjectIdNormalizer()
        self.string_id = string_id
        self._server_selection_timeout_ms = server_selection_timeout_ms
        self._client = client
        self._owns_client = client is None
        self.collection: Any = None

    @property
    def has_nested_field_support(self) -> bool:
        return True

    @property
    def pk_column(self) -> str:
        return self.schema.primary_column

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self._client is None:
            from motor.motor_asyncio import AsyncIOMotorClient

            self._client = AsyncIOMotorClient(
                self.url, serverSelectionTimeoutMS=self._server_selection_timeout_ms
            )
            await self._client.admin.command("ping")
        self.collection = self._client[self.database][self.schema.collection]
        logger.debug("Connected mongodb adapter for '%s.%s'", self.database, self.schema.collection)

    async def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        self.collection = None

    def _require_collection(self) -> Any:
        if self.collection is None:
            raise RuntimeError("Database not connected")
        return self.collection

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def _id_filter(self, id: Any) -> dict[str, Any]:
        return {MONGO_ID: self.id_normalizer.to_native(id)}

    def _to_document(self, row: dict[str, Any]) -> dict[str, Any]:
        doc = dict(row)
        pk = self.pk_column
        if pk != MONGO_ID and pk in doc:
            doc[MONGO_ID] = doc.pop(pk)
        if doc.get(MONGO_ID) is None:
            doc.pop(MONGO_ID, None)
        else:
            doc[MONGO_ID] = self.id_normalizer.to_native(doc[MONGO_ID])
        return doc

    def _from_document(self, doc: dict[str, Any] | None) -> dict[str, Any] | None:
        if doc is None:
            return None
        row = dict(doc)
        pk = self.pk_column
        if pk != MONGO_ID and MONGO_ID in row:
            row[pk] = row.pop(MONGO_ID)
        return row

    def entity_to_json(self, entity: dict[str, Any]) -> dict[str, Any]:
        result = dict(entity)
        if not self.string_id:
            return result
        for key, value in result.items():
            if isinstance(value, ObjectId):
                result[key] = str(value)
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _cursor(self, query: DocumentQuery, **kwargs: Any) -> Any:
        cursor = self._require_collection().find(query.filter, **kwargs)
        if query.sort:
            cursor = cursor.sort(query.sort)
        if query.skip:
            cursor = cursor.skip(query.skip)
        if query.limit:
            cursor = cursor.limit(query.limit)
        if query.hint is not None:
            cursor = cursor.hint(query.hint)
        if query.collation is not None:
            cursor = cursor.collation(query.collation)
        return cursor

    async def find(self, query: DocumentQuery) -> list[dict[str, Any]]:
        return [self._from_document(doc) async for doc in self._cursor(query)]

    async def find_stream(self, query: DocumentQuery, batch_size: int = 100) -> AsyncIterator[dict[str, Any]]:
        """Iterate matching documents, fetching ``batch_size`` per round trip."""
        cursor = self._cursor(query, batch_size=max(batch_size, 1))
        try:
            async for doc in cursor:
                yield self._from_document(doc)
        finally:
            await cursor.close()

    async def find_one(self, query: DocumentQuery) -> dict[str, Any] | None:
        single = DocumentQuery(
            filter=query.filter,
            sort=query.sort,
            skip=query.skip,
            limit=1,
            hint=query.hint,
            collation=query.collation,
        )
        rows = await self.find(single)
        return rows[0] if rows else None

    async def find_by_id(self, id: Any) -> dict[str, Any] | None:
        doc = await self._require_collection().find_one(self._id_filter(id))
        return self._from_document(doc)

    async def find_by_ids(self, ids: list[Any]) -> list[dict[str, Any]]:
        if not ids:
            return []
        natives = [self.id_normalizer.to_native(id) for id in ids]
        cursor = self._require_collection().find({MONGO_ID: {"$in": natives}})
        return [self._from_document(doc) async for doc in cursor]

    async def count(self, query: DocumentQuery) -> int:
        kwargs: dict[str, Any] = {}
        if query.hint is not None:
            kwargs["hint"] = query.hint
        if query.collation is not None:
            kwargs["collation"] = query.collation
        return await self._require_collection().count_documents(query.filter, **kwargs)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, entity: dict[str, Any]) -> dict[str, Any]:
        result = await self._require_collection().insert_one(self._to_document(entity))
        return await self.find_by_id(result.inserted_id)

    async def insert_many(
        self, entities: list[dict[str, Any]], return_entities: bool = False
    ) -> list[Any]:
        if not entities:
            return []
        result = await self._require_collection().insert_many(
            [self._to_document(entity) for entity in entities]
        )
        if not return_entities:
            return list(result.inserted_ids)
        rows = await self.find_by_ids(list(result.inserted_ids))
        by_id = {row[self.pk_column]: row for row in rows}
        return [by_id[id] for id in result.inserted_ids if id in by_id]

    def _update_document(self, changes: dict[str, Any], raw: bool) -> dict[str, Any]:
        if raw:
            return changes
        values = {k: v for k, v in changes.items() if k not in (self.pk_column, MONGO_ID)}
        return {"$set": values} if values else {}

    async def update_by_id(
        self, id: Any, changes: dict[str, Any], raw: bool = False
    ) -> dict[str, Any] | None:
        update = self._update_document(changes, raw)
        if not update:
            return await self.find_by_id(id)
        doc = await self._require_collection().find_one_and_update(
            self._id_filter(id), update, return_document=ReturnDocument.AFTER
        )
        return self._from_document(doc)

    async def update_many(self, query: DocumentQuery, changes: dict[str, Any], raw: bool = False) -> int:
        update = self._update_document(changes, raw)
        if not update:
            return 0
        result = await self._require_collection().update_many(query.filter, update)
        return result.modified_count

    async def replace_by_id(self, id: Any, entity: dict[str, Any]) -> dict[str, Any] | None:
        doc = self._to_document(entity)
        doc.pop(MONGO_ID, None)
        replaced = await self._require_collection().find_one_and_replace(
            self._id_filter(id), doc, return_document=ReturnDocument.AFTER
        )
        return self._from_document(replaced)

    async def remove_by_id(self, id: Any) -> Any | None:
        result = await self._require_collection().delete_one(self._id_filter(id))
        return id if result.deleted_count else None

    async def remove_many(self, query: DocumentQuery) -> int:
        result = await self._require_collection().delete_many(query.filter)
        return result.deleted_count

    async def clear(self) -> int:
        result = await self._require_collection().delete_many({})
        return result.deleted_count

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    def _index_keys(self, definition: IndexDefinition) -> list[tuple[str, int]]:
        keys = []
        for field, direction in definition.fields:
            column = self.schema.column_for(field)
            keys.append((MONGO_ID if column == self.pk_column else column, direction))
        return keys

    def index_name(self, definition: IndexDefinition) -> str:
        if definition.name:
            return definition.name
        return "_".join(f"{column}_{direction}" for column, direction in self._index_keys(definition))

    async def create_index(self, definition: IndexDefinition) -> str:
        kwargs: dict[str, Any] = {"name": self.index_name(definition)}
        if definition.unique:
            kwargs["unique"] = True
        if definition.sparse:
            kwargs["sparse"] = True
        if definition.expire_after_seconds is not None:
            kwargs["expireAfterSeconds"] = definition.expire_after_seconds
        return await self._require_collection().create_index(self._index_keys(definition), **kwargs)

    async def remove_index(self, definition: IndexDefinition) -> None:
        await self._require_collection().drop_index(self.index_name(definition))
