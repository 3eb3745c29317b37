"""Database configuration and adapter factory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dbforge.metadata.loader import EntitySchema
    from dbforge.persistence.adapter import Adapter
    from dbforge.service.settings import ServiceSettings


@dataclass
class DatabaseConfig:
    """Database connection configuration.

    Supports sqlite:///, postgresql:// and mongodb:// URL schemes.
    """

    url: str

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Create config from environment variables.

        Resolution order:
        1. DATABASE_URL env var (standard)
        2. DBFORGE_DB_PATH env var (converted to sqlite:/// URL)
        3. Default: in-memory SQLite
        """
        url = os.environ.get("DATABASE_URL")
        if url:
            return cls(url=url)

        db_path = os.environ.get("DBFORGE_DB_PATH")
        if db_path:
            return cls(url=f"sqlite:///{db_path}")

        return cls(url="sqlite:///:memory:")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgresql(self) -> bool:
        return self.url.startswith(("postgresql", "postgres://"))

    @property
    def is_mongodb(self) -> bool:
        return self.url.startswith(("mongodb://", "mongodb+srv://"))

    @property
    def sqlite_path(self) -> str:
        path = self.url.split("sqlite:///", 1)[-1] if "sqlite:///" in self.url else ""
        return path or ":memory:"


def create_adapter(
    config: DatabaseConfig,
    schema: EntitySchema,
    settings: ServiceSettings | None = None,
) -> Adapter:
    """Create an adapter based on the database URL scheme.

    Driver modules are imported lazily so only the selected backend's
    driver needs to be installed.

    Returns:
        An adapter instance (not yet connected).

    Raises:
        ValueError: For unsupported URL schemes.
    """
    string_id = settings.string_id if settings is not None else True

    if config.is_sqlite:
        from dbforge.persistence.sqlite import SQLiteAdapter

        return SQLiteAdapter(schema, config.sqlite_path, string_id=string_id)

    if config.is_postgresql:
        from dbforge.persistence.postgresql import PostgreSQLAdapter

        return PostgreSQLAdapter(schema, config.url, string_id=string_id)

    if config.is_mongodb:
        from dbforge.persistence.mongo import MongoAdapter

        return MongoAdapter(schema, config.url, string_id=string_id)

    raise ValueError(f"Unsupported database URL scheme: {config.url}")
