"""Time-bounded cache over the endpoint catalog and permission table."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from agent_guard.config import Catalog, load_catalog

logger = logging.getLogger(__name__)


class CatalogStore:
    """Loads the catalog on first use and reloads it lazily once the TTL expires.

    Refresh is idempotent: two callers racing on an expired snapshot both
    reload and the last one to finish wins. Reads inside the TTL may be stale.
    """

    def __init__(
        self,
        api_index_path: str,
        permissions_path: str,
        *,
        ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api_index_path = api_index_path
        self._permissions_path = permissions_path
        self.ttl = ttl
        self._clock = clock
        self._snapshot: Catalog | None = None
        self._loaded_at = 0.0

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    async def load(self) -> Catalog:
        """Read both catalog files and replace the cached snapshot wholesale.

        Raises ConfigError if either file is missing or malformed; the
        previous snapshot is kept in that case.
        """
        catalog = await asyncio.to_thread(
            load_catalog, self._api_index_path, self._permissions_path
        )
        self._snapshot = catalog
        self._loaded_at = self._clock()
        logger.info(
            "Catalog loaded: %d endpoints, %d agents",
            len(catalog.endpoints),
            len(catalog.agents),
        )
        return catalog

    async def snapshot(self) -> Catalog:
        """Return the cached catalog, reloading it if missing or older than the TTL."""
        if self._snapshot is not None and (self._clock() - self._loaded_at) < self.ttl:
            return self._snapshot
        return await self.load()

    def invalidate(self) -> None:
        """Drop the cached snapshot so the next snapshot() call reloads."""
        self._snapshot = None
