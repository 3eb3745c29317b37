"""Service-level settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServiceSettings:
    """Options controlling an EntityService and its adapter registry.

    Attributes:
        max_limit: Upper bound for page sizes; -1 means unbounded
        default_page_size: Page size used by list() when none is given
        cache_enabled: Emit cache-clean signals after writes
        auto_reconnect: Retry failed first connections
        string_id: Return identifiers as canonical strings
        reconnect_delay: Seconds between connection attempts
        max_reconnect_attempts: Attempts before giving up
        secure_id_secret: Secret for encoding secure fields
    """

    max_limit: int = -1
    default_page_size: int = 10
    cache_enabled: bool = True
    auto_reconnect: bool = True
    string_id: bool = True
    reconnect_delay: float = 1.0
    max_reconnect_attempts: int = 10
    secure_id_secret: str | None = None

    @classmethod
    def from_env(cls, prefix: str = "DBFORGE_") -> ServiceSettings:
        """Read ``DBFORGE_<FIELD>`` variables (e.g. DBFORGE_MAX_LIMIT)."""
        kwargs = {}
        for f in fields(cls):
            raw = os.environ.get(prefix + f.name.upper())
            if raw is None:
                continue
            if f.type == "bool":
                kwargs[f.name] = _env_bool(raw)
            elif f.type == "int":
                kwargs[f.name] = int(raw)
            elif f.type == "float":
                kwargs[f.name] = float(raw)
            else:
                kwargs[f.name] = raw
        return cls(**kwargs)
