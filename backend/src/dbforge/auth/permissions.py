"""Field-level permission checks."""

from __future__ import annotations

from typing import TYPE_CHECKING

from dbforge.validation import UserContext

if TYPE_CHECKING:
    from dbforge.metadata.loader import FieldDescriptor


# Role hierarchy - higher number = more permissions
# Higher roles automatically satisfy tags naming lower roles
ROLE_HIERARCHY = {
    "readonly": 1,
    "user": 2,
    "manager": 3,
    "admin": 4,
}


def _role_level(role: str | None) -> int:
    """Return numeric level for a role name, 0 if unknown/None."""
    return ROLE_HIERARCHY.get(role or "", 0)


def _user_role_level(user_context: UserContext | None) -> int:
    """Return the highest role level held by the user."""
    if not user_context or not user_context.roles:
        return 0
    return max(_role_level(role) for role in user_context.roles)


def has_role_or_higher(user_context: UserContext | None, required_role: str) -> bool:
    """Check if user has the required role or a higher one."""
    if not user_context or not user_context.roles:
        return False
    return _user_role_level(user_context) >= ROLE_HIERARCHY.get(required_role, 999)


def has_permission(
    user_context: UserContext | None,
    required: str | list[str] | None,
) -> bool:
    """Check a capability tag (or any of several tags).

    A tag is satisfied when the user holds it explicitly, or when it names a
    role and the user's role is at least that level. A None user context is
    an internal call and passes every check.
    """
    if not required:
        return True
    if user_context is None:
        return True
    tags = [required] if isinstance(required, str) else required
    for tag in tags:
        if tag in user_context.permissions:
            return True
        if tag in ROLE_HIERARCHY and has_role_or_higher(user_context, tag):
            return True
    return False


def can_read_field(field_def: "FieldDescriptor", user_context: UserContext | None) -> bool:
    return has_permission(user_context, field_def.read_permission)


def can_write_field(field_def: "FieldDescriptor", user_context: UserContext | None) -> bool:
    return has_permission(user_context, field_def.permission)
