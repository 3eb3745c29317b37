"""Field behavior types for dbforge.

Defines the data structures passed to field-level behaviors:
- FieldHookContext: runtime state handed to producers, transforms and validators
- BehaviorKind: the three capability slots a field can fill
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from dbforge.validation.types import Operation, UserContext


class BehaviorKind(str, Enum):
    """Capability slot a named behavior fills."""

    PRODUCER = "producer"
    TRANSFORM = "transform"
    VALIDATOR = "validator"


@dataclass
class FieldHookContext:
    """Runtime context passed to every field behavior.

    Attributes:
        value: Current value of the field (None for producers on absent fields)
        entity: Whole entity being processed, keyed by field name
        field: Logical field name
        operation: Lifecycle point being processed
        user_context: Caller identity, when known
    """

    value: Any
    entity: dict[str, Any] = field(default_factory=dict)
    field: str = ""
    operation: Operation = Operation.CREATE
    user_context: UserContext | None = None


# Producer: (ctx) -> value
Producer = Callable[[FieldHookContext], Any]
# Transform: (ctx) -> new value
Transform = Callable[[FieldHookContext], Any]
# Validator: (ctx) -> True | False | reason string
FieldValidator = Callable[[FieldHookContext], bool | str]
