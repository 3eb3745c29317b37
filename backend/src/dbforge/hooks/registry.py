"""Behavior registry for dbforge.

Provides registration and lookup for named field behaviors, so schema
files can reference them by name (``onCreate: now``, ``validate: email``).
"""

import re
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from dbforge.hooks.types import BehaviorKind, FieldHookContext

BehaviorFn = Callable[[FieldHookContext], Any]


class BehaviorRegistry:
    """Registry for named field behaviors.

    Behaviors must be registered before a schema file references them.
    Registration is done at startup via register_builtin_behaviors() or
    the @behavior decorator.

    Example:
        @behavior(BehaviorKind.PRODUCER, "currentUser")
        def current_user(ctx: FieldHookContext) -> str | None:
            return ctx.user_context.user_id if ctx.user_context else None
    """

    _behaviors: dict[BehaviorKind, dict[str, BehaviorFn]] = {
        kind: {} for kind in BehaviorKind
    }

    @classmethod
    def register(cls, kind: BehaviorKind | str, name: str, fn: BehaviorFn) -> None:
        """Register a behavior by kind and name.

        Idempotent: re-registering the same name is a no-op.
        """
        slot = cls._behaviors[BehaviorKind(kind)]
        if name in slot:
            return
        slot[name] = fn

    @classmethod
    def get(cls, kind: BehaviorKind | str, name: str) -> BehaviorFn:
        """Get a registered behavior.

        Raises:
            ValueError: If the behavior is not registered
        """
        kind = BehaviorKind(kind)
        slot = cls._behaviors[kind]
        if name not in slot:
            raise ValueError(
                f"{kind.value.capitalize()} '{name}' is not registered. "
                "Behaviors must be registered before schemas reference them."
            )
        return slot[name]

    @classmethod
    def is_registered(cls, kind: BehaviorKind | str, name: str) -> bool:
        return name in cls._behaviors[BehaviorKind(kind)]

    @classmethod
    def list_registered(cls, kind: BehaviorKind | str) -> list[str]:
        return sorted(cls._behaviors[BehaviorKind(kind)].keys())

    @classmethod
    def clear(cls) -> None:
        """Clear all registrations. Primarily for testing."""
        for slot in cls._behaviors.values():
            slot.clear()


def behavior(kind: BehaviorKind | str, name: str) -> Callable[[BehaviorFn], BehaviorFn]:
    """Decorator to register a field behavior.

    Usage:
        @behavior("transform", "slugify")
        def slugify(ctx: FieldHookContext) -> str:
            ...
    """

    def decorator(fn: BehaviorFn) -> BehaviorFn:
        BehaviorRegistry.register(kind, name, fn)
        return fn

    return decorator


# =============================================================================
# Built-in behaviors
# =============================================================================

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

URL_PATTERN = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def _now(ctx: FieldHookContext) -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(ctx: FieldHookContext) -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def _uuid(ctx: FieldHookContext) -> str:
    return str(uuid.uuid4())


def _string_transform(op: Callable[[str], str]) -> BehaviorFn:
    def transform(ctx: FieldHookContext) -> Any:
        if isinstance(ctx.value, str):
            return op(ctx.value)
        return ctx.value

    return transform


def _pattern_validator(pattern: re.Pattern, message: str) -> BehaviorFn:
    def validate(ctx: FieldHookContext) -> bool | str:
        if ctx.value is None or pattern.match(str(ctx.value)):
            return True
        return message

    return validate


def _positive(ctx: FieldHookContext) -> bool | str:
    if ctx.value is None:
        return True
    try:
        return float(ctx.value) > 0 or "must be greater than 0"
    except (TypeError, ValueError):
        return "must be a number"


def _non_negative(ctx: FieldHookContext) -> bool | str:
    if ctx.value is None:
        return True
    try:
        return float(ctx.value) >= 0 or "must not be negative"
    except (TypeError, ValueError):
        return "must be a number"


def _not_empty(ctx: FieldHookContext) -> bool | str:
    value = ctx.value
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return "must not be empty"
    if isinstance(value, (list, dict)) and not value:
        return "must not be empty"
    return True


def register_builtin_behaviors() -> None:
    """Register framework-provided behaviors. Safe to call repeatedly."""
    BehaviorRegistry.register(BehaviorKind.PRODUCER, "now", _now)
    BehaviorRegistry.register(BehaviorKind.PRODUCER, "timestamp", _timestamp)
    BehaviorRegistry.register(BehaviorKind.PRODUCER, "uuid", _uuid)

    BehaviorRegistry.register(BehaviorKind.TRANSFORM, "lowercase", _string_transform(str.lower))
    BehaviorRegistry.register(BehaviorKind.TRANSFORM, "uppercase", _string_transform(str.upper))
    BehaviorRegistry.register(BehaviorKind.TRANSFORM, "trim", _string_transform(str.strip))

    BehaviorRegistry.register(
        BehaviorKind.VALIDATOR, "email", _pattern_validator(EMAIL_PATTERN, "must be a valid email address")
    )
    BehaviorRegistry.register(
        BehaviorKind.VALIDATOR, "url", _pattern_validator(URL_PATTERN, "must be a valid URL")
    )
    BehaviorRegistry.register(
        BehaviorKind.VALIDATOR, "uuid", _pattern_validator(UUID_PATTERN, "must be a valid UUID")
    )
    BehaviorRegistry.register(BehaviorKind.VALIDATOR, "positive", _positive)
    BehaviorRegistry.register(BehaviorKind.VALIDATOR, "nonNegative", _non_negative)
    BehaviorRegistry.register(BehaviorKind.VALIDATOR, "notEmpty", _not_empty)
