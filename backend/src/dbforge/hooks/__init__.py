"""dbforge field behavior system.

Field behaviors fill three capability slots on a field declaration:
- producer: yields a value (default, onCreate, onUpdate, onRemove)
- transform: maps a value (set on write, get on read)
- validator: accepts a value or returns a reason string

Usage:
    from dbforge.hooks import behavior, FieldHookContext

    @behavior("producer", "currentUser")
    def current_user(ctx: FieldHookContext):
        return ctx.user_context.user_id if ctx.user_context else None
"""

from dbforge.hooks.registry import (
    BehaviorRegistry,
    behavior,
    register_builtin_behaviors,
)
from dbforge.hooks.types import BehaviorKind, FieldHookContext

__all__ = [
    "BehaviorKind",
    "BehaviorRegistry",
    "FieldHookContext",
    "behavior",
    "register_builtin_behaviors",
]
