"""Per-request context handed to EntityService operations."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from dbforge.validation.types import UserContext


@dataclass
class RequestContext:
    """Caller identity plus request metadata.

    Attributes:
        user_context: Who is calling (None for internal calls)
        meta: Free-form request metadata (tenant key, trace ids)
    """

    user_context: UserContext | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    _cancelled: bool = field(default=False, repr=False)

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError("request cancelled")
