"""Core types shared by the field pipeline and the entity service.

- Operation: the lifecycle point a record is being processed for
- UserContext: who is calling (tenant, roles, capability tags)
- FieldError: one problem with one field
- PipelineContext: per-call state handed to the field pipeline
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Operation(Enum):
    """The lifecycle point a record is processed for."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    REMOVE = "remove"
    READ = "read"


@dataclass
class UserContext:
    """Caller identity used for field-level access control.

    Attributes:
        tenant_id: The tenant/client ID the caller belongs to
        user_id: The authenticated caller's ID
        roles: Role names, highest-priority first
        permissions: Capability tags held by the caller
    """

    tenant_id: str | None = None
    user_id: str | None = None
    roles: list[str] = field(default_factory=list)
    permissions: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class FieldError:
    """A single field-level problem found by the pipeline.

    Attributes:
        field: Logical field name
        message: Human-readable reason
        code: Machine-readable code (REQUIRED, INVALID, TYPE_MISMATCH)
        expected: Expected kind, for type mismatches
        received: Received kind, for type mismatches
    """

    field: str
    message: str
    code: str = "INVALID"
    expected: str | None = None
    received: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "field": self.field,
            "message": self.message,
            "code": self.code,
        }
        if self.expected is not None:
            data["expected"] = self.expected
            data["received"] = self.received
        return data


@dataclass
class PipelineContext:
    """State passed to every field pipeline stage.

    Attributes:
        operation: Lifecycle point being processed
        user_context: Caller identity (None for internal/system calls)
        requested_fields: Fields the caller asked for on read (None = default set)
        existing: Stored entity for update/replace/remove, keyed by field name
    """

    operation: Operation
    user_context: UserContext | None = None
    requested_fields: list[str] | None = None
    existing: dict[str, Any] | None = None
