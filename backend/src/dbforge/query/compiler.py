"""Entry point of the filter compiler."""

from dbforge.metadata.loader import EntitySchema
from dbforge.persistence.identifiers import IdNormalizer, SecureIdCodec
from dbforge.query.base import Backend, Capabilities
from dbforge.query.filter import QueryFilter
from dbforge.query.mongo import DocumentQuery, MongoCompiler
from dbforge.query.sql import SQLCompiler, SQLQuery

NativeQuery = SQLQuery | DocumentQuery


def compile_query(
    query_filter: QueryFilter,
    schema: EntitySchema,
    backend: Backend | str,
    capabilities: Capabilities | None = None,
    counting: bool = False,
    normalizer: IdNormalizer | None = None,
    id_codec: SecureIdCodec | None = None,
) -> NativeQuery:
    """Compile a QueryFilter into the native query of a backend.

    Compilation is deterministic and performs no I/O. Counting queries
    carry no sort or pagination.

    Raises:
        FilterError: Malformed conditions or operands
        UnsupportedOperatorError: Operator or operand with no rendering
        CapabilityError: Feature the backend does not declare
    """
    backend = Backend(backend)
    if backend == Backend.MONGODB:
        compiler = MongoCompiler(schema, capabilities, normalizer, id_codec)
    else:
        compiler = SQLCompiler(schema, backend, capabilities, normalizer, id_codec)
    return compiler.compile(query_filter, counting=counting)
