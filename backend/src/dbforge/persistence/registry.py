"""Process-wide mapping from tenant/model key to a live adapter.

Concurrent first use of a key shares one pending connection task, so a
key is connected exactly once no matter how many callers race for it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from dbforge.errors import AdapterError

if TYPE_CHECKING:
    from dbforge.persistence.adapter import Adapter
    from dbforge.service.settings import ServiceSettings

logger = logging.getLogger(__name__)

# Factory signature: (key) -> Adapter, sync or async
AdapterFactory = Callable[[str], "Adapter | Awaitable[Adapter]"]

DEFAULT_KEY = "default"


class AdapterRegistry:
    """Connects adapters on first use and keeps them until disconnected.

    Example:
        registry = AdapterRegistry(lambda key: SQLiteAdapter(schema, f"{key}.db"))
        adapter = await registry.get("tenant-1")
    """

    def __init__(self, factory: AdapterFactory, settings: ServiceSettings | None = None):
        from dbforge.service.settings import ServiceSettings

        self.factory = factory
        self.settings = settings or ServiceSettings()
        self._adapters: dict[str, Adapter] = {}
        self._pending: dict[str, asyncio.Future] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._adapters

    def keys(self) -> list[str]:
        return sorted(self._adapters)

    async def get(self, key: str = DEFAULT_KEY) -> Adapter:
        """Return the live adapter for a key, connecting it on first use.

        Raises:
            AdapterError: When the connection cannot be established
        """
        adapter = self._adapters.get(key)
        if adapter is not None:
            return adapter

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._connect(key))
            self._pending[key] = pending
            pending.add_done_callback(lambda task: self._settle(key, task))
        # A cancelled caller must not cancel the shared connection attempt
        return await asyncio.shield(pending)

    def _settle(self, key: str, task: asyncio.Future) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled():
            # Mark the exception retrieved; awaiting callers still receive it
            task.exception()

    async def _create(self, key: str) -> Adapter:
        adapter: Any = self.factory(key)
        if inspect.isawaitable(adapter):
            adapter = await adapter
        return adapter

    async def _connect(self, key: str) -> Adapter:
        attempts = 0
        while True:
            attempts += 1
            adapter = None
            try:
                adapter = await self._create(key)
                await adapter.connect()
            except Exception as exc:
                if adapter is not None:
                    await self._discard(key, adapter)
                retry = (
                    self.settings.auto_reconnect
                    and attempts < self.settings.max_reconnect_attempts
                )
                if not retry:
                    logger.error("Adapter for '%s' failed to connect after %d attempt(s)", key, attempts)
                    raise AdapterError("connect", key, str(exc)) from exc
                logger.warning(
                    "Adapter for '%s' failed to connect (attempt %d): %s; retrying in %.1fs",
                    key, attempts, exc, self.settings.reconnect_delay,
                )
                await asyncio.sleep(self.settings.reconnect_delay)
                continue
            self._adapters[key] = adapter
            logger.info("Adapter for '%s' connected", key)
            return adapter

    async def _discard(self, key: str, adapter: Adapter) -> None:
        """Release whatever a failed connect attempt left open."""
        try:
            await adapter.disconnect()
        except Exception:
            logger.warning("Cleanup of failed adapter for '%s' raised", key, exc_info=True)

    async def disconnect(self, key: str = DEFAULT_KEY) -> bool:
        """Disconnect and forget one key. Returns False if it was not connected."""
        adapter = self._adapters.pop(key, None)
        if adapter is None:
            return False
        await adapter.disconnect()
        logger.info("Adapter for '%s' disconnected", key)
        return True

    async def disconnect_all(self) -> None:
        """Cancel pending connections and disconnect every live adapter."""
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()
        keys = list(self._adapters)
        await asyncio.gather(*(self.disconnect(key) for key in keys))
