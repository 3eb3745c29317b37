"""CRUD orchestration for one entity.

EntityService sequences the field pipeline, the filter compiler and the
adapter:

- reads: normalize params, clamp limits, merge scopes, compile, execute,
  then run the read stage (and populate) on every row
- writes: run the matching pipeline stage, call the adapter, run the read
  stage on the stored entity and emit a cache-clean signal

Pipeline and compiler errors are raised before any adapter write. Adapter
failures are re-raised as AdapterError with the backend error chained.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from dataclasses import replace
from typing import Any, AsyncIterator, Awaitable, Callable

from dbforge.errors import AdapterError, DbForgeError, FilterError, NotFoundError, SchemaError
from dbforge.metadata.loader import EntitySchema, FieldDescriptor
from dbforge.persistence.adapter import Adapter
from dbforge.persistence.identifiers import SecureIdCodec
from dbforge.persistence.registry import DEFAULT_KEY, AdapterRegistry
from dbforge.query.compiler import NativeQuery, compile_query
from dbforge.query.filter import QueryFilter, merge_query
from dbforge.service.context import RequestContext
from dbforge.service.settings import ServiceSettings
from dbforge.validation.pipeline import FieldPipeline
from dbforge.validation.types import Operation, PipelineContext

logger = logging.getLogger(__name__)

NOT_DELETED_SCOPE = "notDeleted"

# Resolver: another EntityService, or async (ids, fields, ctx) -> {id: entity}
ResolverFn = Callable[[list[Any], "list[str] | None", "RequestContext | None"], Awaitable[dict[Any, Any]]]


class EntityService:
    """Entity-level CRUD on top of an adapter registry.

    Example:
        registry = AdapterRegistry(lambda key: SQLiteAdapter(schema))
        users = EntityService(schema, registry)
        user = await users.create({"name": "Ada", "email": "ada@example.com"})
        page = await users.list({"sort": "-createdAt", "pageSize": 20})
    """

    def __init__(
        self,
        schema: EntitySchema,
        registry: AdapterRegistry,
        settings: ServiceSettings | None = None,
        cache: Any = None,
        tenant_key: Callable[[RequestContext | None], str] | None = None,
    ):
        self.schema = schema
        self.registry = registry
        self.settings = settings or registry.settings
        self.cache = cache
        self.tenant_key = tenant_key
        secret = self.settings.secure_id_secret
        self.id_codec = SecureIdCodec(secret) if secret else None
        if schema.secure_fields and self.id_codec is None:
            raise SchemaError(
                f"Entity '{schema.name}' has secure fields; set ServiceSettings.secure_id_secret"
            )
        self.pipeline = FieldPipeline(schema, self.id_codec)
        self._resolvers: dict[str, EntityService | ResolverFn] = {}

    # =========================================================================
    # Plumbing
    # =========================================================================

    def register_resolver(self, name: str, resolver: EntityService | ResolverFn) -> None:
        """Register the target used by fields declaring ``populate: name``."""
        self._resolvers[name] = resolver

    async def adapter(self, ctx: RequestContext | None = None) -> Adapter:
        key = self.tenant_key(ctx) if self.tenant_key else DEFAULT_KEY
        return await self.registry.get(key)

    async def _call(self, ctx: RequestContext | None, operation: str, awaitable: Awaitable[Any]) -> Any:
        if ctx is not None:
            ctx.raise_if_cancelled()
        try:
            result = await awaitable
        except DbForgeError:
            raise
        except Exception as exc:
            raise AdapterError(operation, self.schema.collection, str(exc)) from exc
        if ctx is not None:
            ctx.raise_if_cancelled()
        return result

    def _user(self, ctx: RequestContext | None):
        return ctx.user_context if ctx is not None else None

    def _to_entity(self, adapter: Adapter, row: dict[str, Any]) -> dict[str, Any]:
        return self.schema.from_columns(adapter.entity_to_json(row))

    @property
    def _pk_name(self) -> str:
        pk = self.schema.primary_key
        return pk.name if pk is not None else "id"

    async def entity_changed(self, event: str, entity: Any, ctx: RequestContext | None = None) -> None:
        """Signal that stored data changed so cached reads can be dropped."""
        logger.debug("Entity %s %s", self.schema.name, event)
        if not self.settings.cache_enabled or self.cache is None:
            return
        result = self.cache.clean(self.schema.name)
        if inspect.isawaitable(result):
            await result

    # =========================================================================
    # Query preparation
    # =========================================================================

    def _scopes(self) -> dict[str, Any]:
        scopes = dict(self.schema.scopes)
        if self.schema.soft_delete:
            scopes.setdefault(
                NOT_DELETED_SCOPE, {fd.name: None for fd in self.schema.soft_delete_fields}
            )
        return scopes

    def _active_scopes(self, scope: bool | list[str]) -> list[str]:
        if scope is False:
            return []
        known = self._scopes()
        names = list(self.schema.default_scopes)
        if self.schema.soft_delete and NOT_DELETED_SCOPE not in names:
            names.append(NOT_DELETED_SCOPE)
        if isinstance(scope, list):
            for entry in scope:
                name = entry[1:] if entry.startswith("-") else entry
                if name not in known:
                    raise FilterError(f"Unknown scope '{name}' on entity '{self.schema.name}'")
                if entry.startswith("-"):
                    names = [n for n in names if n != name]
                elif name not in names:
                    names.append(name)
        return names

    def apply_scopes(self, query: dict[str, Any], scope: bool | list[str] = True) -> dict[str, Any]:
        """Merge the active scopes into a query."""
        known = self._scopes()
        for name in self._active_scopes(scope):
            definition = known[name]
            if callable(definition):
                query = definition(dict(query))
            else:
                query = merge_query(query, definition)
        return query

    def _normalize(self, params: QueryFilter | dict[str, Any] | None) -> QueryFilter:
        qf = params if isinstance(params, QueryFilter) else QueryFilter.from_params(params)
        max_limit = self.settings.max_limit
        if max_limit > 0 and (qf.unbounded or qf.limit > max_limit):
            qf = replace(qf, limit=max_limit)
        return replace(qf, query=self.apply_scopes(dict(qf.query), qf.scope))

    def _compile(self, adapter: Adapter, qf: QueryFilter, counting: bool = False) -> NativeQuery:
        return compile_query(
            qf,
            self.schema,
            adapter.backend,
            capabilities=adapter.capabilities,
            counting=counting,
            normalizer=adapter.id_normalizer,
            id_codec=self.id_codec,
        )

    async def _find_entities(
        self, qf: QueryFilter, ctx: RequestContext | None
    ) -> tuple[Adapter, list[dict[str, Any]]]:
        adapter = await self.adapter(ctx)
        native = self._compile(adapter, qf)
        rows = await self._call(ctx, "find", adapter.find(native))
        return adapter, [self._to_entity(adapter, row) for row in rows]

    # =========================================================================
    # Read stage
    # =========================================================================

    async def transform(
        self,
        entities: list[dict[str, Any]],
        ctx: RequestContext | None = None,
        fields: list[str] | None = None,
        populate: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Run the read stage and populate on field-keyed entities."""
        pctx = PipelineContext(Operation.READ, self._user(ctx), requested_fields=fields)
        results = [self.pipeline.read(entity, pctx) for entity in entities]
        wanted = populate if populate is not None else self.schema.default_populates
        for name in wanted:
            fd = self.schema.get(name)
            if fd is None or fd.populate is None or not self.pipeline.is_visible(fd, pctx):
                continue
            await self._populate(fd, entities, results, ctx)
        return results

    async def _populate(
        self,
        fd: FieldDescriptor,
        entities: list[dict[str, Any]],
        results: list[dict[str, Any]],
        ctx: RequestContext | None,
    ) -> None:
        config = fd.populate
        resolver = self._resolvers.get(config.resolver)
        if resolver is None:
            raise SchemaError(
                f"Field '{fd.name}' populates through '{config.resolver}', which is not registered"
            )
        key_field = config.key_field or fd.name

        ids: list[Any] = []
        for entity in entities:
            value = entity.get(key_field)
            for id in value if isinstance(value, list) else [value]:
                if id is not None and id not in ids:
                    ids.append(id)
        if not ids:
            return

        if isinstance(resolver, EntityService):
            resolved = await resolver.resolve(
                ids, ctx, mapping=True, fields=config.fields, encoded=False
            )
        else:
            resolved = await resolver(ids, config.fields, ctx)

        for entity, result in zip(entities, results):
            value = entity.get(key_field)
            if isinstance(value, list):
                result[fd.name] = [resolved[id] for id in value if id in resolved]
            elif value is not None:
                result[fd.name] = resolved.get(value)

    # =========================================================================
    # Reads
    # =========================================================================

    async def find(
        self,
        params: QueryFilter | dict[str, Any] | None = None,
        ctx: RequestContext | None = None,
    ) -> list[dict[str, Any]]:
        """Find entities matching the params."""
        qf = self._normalize(params)
        _, entities = await self._find_entities(qf, ctx)
        return await self.transform(entities, ctx, qf.fields, qf.populate)

    async def find_stream(
        self,
        params: QueryFilter | dict[str, Any] | None = None,
        ctx: RequestContext | None = None,
        batch_size: int = 100,
    ) -> AsyncIterator[dict[str, Any]]:
        """Iterate matching entities one at a time.

        Rows are fetched from the backend ``batch_size`` at a time and each
        one passes through the read stage (and populate) before it is
        yielded. Cancellation is checked before every row.
        """
        qf = self._normalize(params)
        adapter = await self.adapter(ctx)
        native = self._compile(adapter, qf)
        stream = adapter.find_stream(native, batch_size)
        try:
            while True:
                if ctx is not None:
                    ctx.raise_if_cancelled()
                try:
                    row = await anext(stream)
                except StopAsyncIteration:
                    break
                except DbForgeError:
                    raise
                except Exception as exc:
                    raise AdapterError("find_stream", self.schema.collection, str(exc)) from exc
                (result,) = await self.transform(
                    [self._to_entity(adapter, row)], ctx, qf.fields, qf.populate
                )
                yield result
        finally:
            await stream.aclose()

    async def find_one(
        self,
        params: QueryFilter | dict[str, Any] | None = None,
        ctx: RequestContext | None = None,
    ) -> dict[str, Any] | None:
        """First matching entity, or None."""
        qf = self._normalize(params)
        adapter = await self.adapter(ctx)
        native = self._compile(adapter, replace(qf, limit=1))
        row = await self._call(ctx, "find_one", adapter.find_one(native))
        if row is None:
            return None
        results = await self.transform([self._to_entity(adapter, row)], ctx, qf.fields, qf.populate)
        return results[0]

    async def count(
        self,
        params: QueryFilter | dict[str, Any] | None = None,
        ctx: RequestContext | None = None,
    ) -> int:
        qf = self._normalize(params)
        adapter = await self.adapter(ctx)
        native = self._compile(adapter, qf, counting=True)
        return await self._call(ctx, "count", adapter.count(native))

    async def list(
        self,
        params: dict[str, Any] | None = None,
        ctx: RequestContext | None = None,
    ) -> dict[str, Any]:
        """Paginated find.

        Returns:
            ``{rows, total, page, page_size, total_pages}``
        """
        params = dict(params or {})
        page = int(params.pop("page", 1) or 1)
        page_size = params.pop("page_size", params.pop("pageSize", None))
        page_size = int(page_size) if page_size is not None else self.settings.default_page_size
        if page < 1:
            raise FilterError(f"page must be at least 1, got {page}")
        max_limit = self.settings.max_limit
        if max_limit > 0 and (page_size <= 0 or page_size > max_limit):
            page_size = max_limit

        params.pop("limit", None)
        params.pop("offset", None)
        if page_size > 0:
            qf = QueryFilter.from_params(params, limit=page_size, offset=(page - 1) * page_size)
        else:
            qf = QueryFilter.from_params(params)

        rows, total = await asyncio.gather(self.find(qf, ctx), self.count(qf, ctx))
        if page_size > 0:
            total_pages = math.ceil(total / page_size)
        else:
            total_pages = 1 if total else 0
        return {
            "rows": rows,
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": total_pages,
        }

    async def resolve(
        self,
        ids: Any,
        ctx: RequestContext | None = None,
        mapping: bool = False,
        throw_if_not_found: bool = False,
        fields: list[str] | None = None,
        populate: list[str] | None = None,
        scope: bool | list[str] = True,
        encoded: bool = True,
    ) -> Any:
        """Look entities up by identifier.

        Args:
            ids: One id or a list of ids
            mapping: Return ``{id: entity}`` keyed by the ids as given
            throw_if_not_found: Raise NotFoundError for any missing id
            encoded: Whether secure ids are given in encoded form

        Returns:
            One entity (or None), a list in input order, or a mapping
        """
        single = not isinstance(ids, (list, tuple))
        id_list = [ids] if single else list(ids)
        if not id_list:
            return {} if mapping else []

        pk = self.schema.primary_key
        secure = pk is not None and pk.secure
        if secure and not encoded:
            query_ids = [self.id_codec.encode(id) for id in id_list]
            raw_ids = [str(id) for id in id_list]
        elif secure:
            query_ids = id_list
            raw_ids = [self.id_codec.decode(id) for id in id_list]
        else:
            query_ids = id_list
            raw_ids = [str(id) for id in id_list]

        qf = self._normalize(
            QueryFilter(query={"id": {"$in": query_ids}}, fields=fields, populate=populate, scope=scope)
        )
        _, entities = await self._find_entities(qf, ctx)
        results = await self.transform(entities, ctx, fields, populate)
        by_id = {
            str(entity.get(self._pk_name)): result for entity, result in zip(entities, results)
        }

        if throw_if_not_found:
            for id, raw in zip(id_list, raw_ids):
                if raw not in by_id:
                    raise NotFoundError(self.schema.name, id)

        if mapping:
            return {id: by_id[raw] for id, raw in zip(id_list, raw_ids) if raw in by_id}
        if single:
            return by_id.get(raw_ids[0])
        return [by_id[raw] for raw in raw_ids if raw in by_id]

    async def get(
        self,
        id: Any,
        ctx: RequestContext | None = None,
        fields: list[str] | None = None,
        populate: list[str] | None = None,
        scope: bool | list[str] = True,
    ) -> dict[str, Any]:
        """Entity by id. Raises NotFoundError when missing."""
        return await self.resolve(
            id, ctx, throw_if_not_found=True, fields=fields, populate=populate, scope=scope
        )

    async def _existing(
        self, id: Any, ctx: RequestContext | None, scope: bool | list[str] = True
    ) -> tuple[Adapter, dict[str, Any]]:
        qf = self._normalize(QueryFilter(query={"id": id}, limit=1, scope=scope))
        adapter, entities = await self._find_entities(qf, ctx)
        if not entities:
            raise NotFoundError(self.schema.name, id)
        return adapter, entities[0]

    # =========================================================================
    # Writes
    # =========================================================================

    async def create(self, entity: dict[str, Any], ctx: RequestContext | None = None) -> dict[str, Any]:
        processed = self.pipeline.create(entity, PipelineContext(Operation.CREATE, self._user(ctx)))
        adapter = await self.adapter(ctx)
        row = await self._call(ctx, "insert", adapter.insert(self.schema.to_columns(processed)))
        stored = self._to_entity(adapter, row)
        await self.entity_changed("created", stored, ctx)
        return (await self.transform([stored], ctx))[0]

    async def create_many(
        self, entities: list[dict[str, Any]], ctx: RequestContext | None = None
    ) -> list[dict[str, Any]]:
        pctx = PipelineContext(Operation.CREATE, self._user(ctx))
        rows = [self.schema.to_columns(self.pipeline.create(entity, pctx)) for entity in entities]
        adapter = await self.adapter(ctx)
        inserted = await self._call(ctx, "insert_many", adapter.insert_many(rows, return_entities=True))
        stored = [self._to_entity(adapter, row) for row in inserted]
        await self.entity_changed("created", stored, ctx)
        return await self.transform(stored, ctx)

    async def update(
        self, id: Any, changes: dict[str, Any], ctx: RequestContext | None = None
    ) -> dict[str, Any]:
        adapter, existing = await self._existing(id, ctx)
        processed = self.pipeline.update(
            changes, PipelineContext(Operation.UPDATE, self._user(ctx), existing=existing)
        )
        stored_id = existing[self._pk_name]
        row = await self._call(
            ctx, "update_by_id", adapter.update_by_id(stored_id, self.schema.to_columns(processed))
        )
        if row is None:
            raise NotFoundError(self.schema.name, id)
        stored = self._to_entity(adapter, row)
        await self.entity_changed("updated", stored, ctx)
        return (await self.transform([stored], ctx))[0]

    async def replace(
        self, id: Any, entity: dict[str, Any], ctx: RequestContext | None = None
    ) -> dict[str, Any]:
        adapter, existing = await self._existing(id, ctx)
        processed = self.pipeline.replace(
            entity, PipelineContext(Operation.REPLACE, self._user(ctx), existing=existing)
        )
        stored_id = existing[self._pk_name]
        row = await self._call(
            ctx, "replace_by_id", adapter.replace_by_id(stored_id, self.schema.to_columns(processed))
        )
        if row is None:
            raise NotFoundError(self.schema.name, id)
        stored = self._to_entity(adapter, row)
        await self.entity_changed("replaced", stored, ctx)
        return (await self.transform([stored], ctx))[0]

    async def remove(self, id: Any, ctx: RequestContext | None = None) -> dict[str, Any]:
        """Soft-delete through onRemove fields when declared, else delete."""
        adapter, existing = await self._existing(id, ctx)
        stored_id = existing[self._pk_name]
        if self.schema.soft_delete:
            markers = self.pipeline.remove(
                PipelineContext(Operation.REMOVE, self._user(ctx), existing=existing)
            )
            row = await self._call(
                ctx, "update_by_id", adapter.update_by_id(stored_id, self.schema.to_columns(markers))
            )
            stored = self._to_entity(adapter, row) if row is not None else existing
        else:
            await self._call(ctx, "remove_by_id", adapter.remove_by_id(stored_id))
            stored = existing
        await self.entity_changed("removed", stored, ctx)
        return (await self.transform([stored], ctx))[0]

    async def clear(self, ctx: RequestContext | None = None) -> int:
        """Physically delete every stored entity."""
        adapter = await self.adapter(ctx)
        removed = await self._call(ctx, "clear", adapter.clear())
        await self.entity_changed("cleared", None, ctx)
        return removed

    async def create_indexes(self, ctx: RequestContext | None = None) -> list[str]:
        """Create every index declared on the schema."""
        adapter = await self.adapter(ctx)
        names = []
        for definition in self.schema.indexes:
            names.append(await self._call(ctx, "create_index", adapter.create_index(definition)))
        return names
