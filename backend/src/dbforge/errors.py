"""Error taxonomy for dbforge.

Pipeline and compiler errors are raised before any adapter call, so an
operation that fails with one of them has had no effect on storage.
"""

from dbforge.validation.types import FieldError


class DbForgeError(Exception):
    """Base class for every error raised by dbforge."""


class SchemaError(DbForgeError):
    """An entity schema declaration is inconsistent."""


class ValidationError(DbForgeError):
    """One or more fields failed validation.

    Errors are aggregated so the caller sees every problem at once.
    """

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        summary = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(f"Validation failed: {summary}")

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors]

    def to_dict(self) -> dict:
        return {"errors": [e.to_dict() for e in self.errors]}


class TypeMismatchError(ValidationError):
    """Every offending field had a value that could not be coerced to its type."""


class ImmutableFieldError(DbForgeError):
    """A readonly or immutable field was changed after creation."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field '{field}' cannot be modified")


class PermissionDeniedError(DbForgeError):
    """A write targeted a field whose permission the caller does not hold."""

    def __init__(self, field: str, permission: str | list[str]):
        self.field = field
        self.permission = permission
        super().__init__(f"Permission '{permission}' is required to write field '{field}'")


class InvalidIdentifierError(DbForgeError):
    """An identifier does not have the shape the backend expects."""

    def __init__(self, value: object, reason: str = "malformed identifier"):
        self.value = value
        super().__init__(f"Invalid identifier {value!r}: {reason}")


class FilterError(DbForgeError):
    """A query filter is malformed."""


class UnsupportedOperatorError(FilterError):
    """An operator has no rendering for the target backend."""

    def __init__(self, operator: str, backend: str, detail: str = ""):
        self.operator = operator
        self.backend = backend
        message = f"Operator '{operator}' is not supported by backend '{backend}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class CapabilityError(FilterError):
    """A filter feature was requested that the backend does not declare."""

    def __init__(self, capability: str, backend: str):
        self.capability = capability
        self.backend = backend
        super().__init__(f"Backend '{backend}' does not support '{capability}'")


class AdapterError(DbForgeError):
    """A storage backend call failed.

    The backend exception is chained as ``__cause__``.
    """

    def __init__(self, operation: str, target: str, message: str = ""):
        self.operation = operation
        self.target = target
        text = f"Adapter operation '{operation}' on '{target}' failed"
        if message:
            text += f": {message}"
        super().__init__(text)


class NotFoundError(DbForgeError):
    """An identifier lookup matched nothing."""

    def __init__(self, entity: str, id: object):
        self.entity = entity
        self.id = id
        super().__init__(f"{entity} '{id}' not found")
