"""Field-level access control for dbforge."""

from dbforge.auth.permissions import (
    ROLE_HIERARCHY,
    can_read_field,
    can_write_field,
    has_permission,
    has_role_or_higher,
)

__all__ = [
    "ROLE_HIERARCHY",
    "can_read_field",
    "can_write_field",
    "has_permission",
    "has_role_or_higher",
]
