"""Shared fixtures for the dbforge test suite."""

import pytest

from dbforge.hooks import BehaviorRegistry, register_builtin_behaviors
from dbforge.metadata.loader import build_schema

pytest_plugins = ["pytest_asyncio"]


USER_FIELDS = {
    "id": {"type": "string", "primaryKey": True},
    "name": {"type": "string", "required": True, "trim": True},
    "email": {"type": "string", "set": "lowercase", "validate": "email"},
    "age": {"type": "number", "validate": "nonNegative"},
    "active": {"type": "boolean", "default": True},
    "tags": {"type": "array"},
    "username": {"type": "string", "immutable": True, "columnName": "user_name"},
    "salary": {"type": "number", "permission": "manager", "readPermission": "manager"},
    "notes": {"type": "string", "hidden": "byDefault"},
    "password": {"type": "string", "hidden": True},
    "createdAt": {"type": "date", "readOnly": True, "onCreate": {"behavior": "now"}},
    "updatedAt": {"type": "date", "readOnly": True, "onUpdate": {"behavior": "now"}},
    "deletedAt": {"type": "date", "hidden": True, "onRemove": {"behavior": "now"}},
}


@pytest.fixture(autouse=True)
def behaviors():
    """Fresh behavior registry with the built-ins for every test."""
    BehaviorRegistry.clear()
    register_builtin_behaviors()
    yield
    BehaviorRegistry.clear()


@pytest.fixture
def user_schema(behaviors):
    return build_schema(
        "User",
        USER_FIELDS,
        collection="users",
        scopes={"adults": {"age": {"$gte": 18}}},
        indexes=["-createdAt", {"fields": ["email"], "unique": True}],
    )


@pytest.fixture
def user_yaml(tmp_path):
    """A valid entity schema file."""
    path = tmp_path / "user.yaml"
    path.write_text(
        """
entity: User
collection: users
fields:
  - name: id
    type: string
    primaryKey: true
  - name: name
    type: string
    required: true
    trim: true
  - name: email
    type: string
    set: lowercase
    validate: email
  - name: age
    type: number
  - name: createdAt
    type: date
    readOnly: true
    onCreate: {behavior: now}
  - name: deletedAt
    type: date
    hidden: true
    onRemove: {behavior: now}
scopes:
  adults:
    age: {$gte: 18}
indexes:
  - fields: [email]
    unique: true
"""
    )
    return path
