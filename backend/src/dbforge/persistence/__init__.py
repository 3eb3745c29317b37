"""Persistence layer - adapters, identifiers and connection management."""

from dbforge.persistence.adapter import Adapter
from dbforge.persistence.config import DatabaseConfig, create_adapter
from dbforge.persistence.identifiers import (
    IdNormalizer,
    IntegerIdNormalizer,
    ObjectIdNormalizer,
    SecureIdCodec,
    StringIdNormalizer,
)
from dbforge.persistence.registry import AdapterRegistry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "DatabaseConfig",
    "IdNormalizer",
    "IntegerIdNormalizer",
    "ObjectIdNormalizer",
    "SecureIdCodec",
    "StringIdNormalizer",
    "create_adapter",
]
