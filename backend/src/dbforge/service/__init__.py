"""Service layer - entity CRUD orchestration, settings and request context."""

from dbforge.service.context import RequestContext
from dbforge.service.entity import EntityService
from dbforge.service.settings import ServiceSettings

__all__ = [
    "EntityService",
    "RequestContext",
    "ServiceSettings",
]
