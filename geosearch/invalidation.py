"""Cache invalidation when a business moves, changes category or is deactivated."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .cache import CacheStore
from .cache_keys import CacheKeyPolicy
from .errors import CacheError
from .grid_index import GridKeyIndex
from .models import GeoPoint

logger = logging.getLogger(__name__)


@dataclass
class InvalidationReport:
    business_id: str
    grid_keys: List[str] = field(default_factory=list)
    deleted_keys: List[str] = field(default_factory=list)
    prefix_scans: List[str] = field(default_factory=list)
    removed_by_prefix: int = 0
    failures: int = 0


class InvalidationCoordinator:
    """Deletes cached searches that may include a business's old or new position.

    Cells are the N x N neighborhoods of both positions. Every cell gets a
    prefix delete of the searches centered in it, which also covers keys the
    :class:`GridKeyIndex` evicted or never saw (other worker processes).
    Keys the index recorded for a cell because one of their items sat there
    are deleted exactly; those are the entries centered outside the block.
    Entries centered elsewhere and unknown to this process's index stay
    until they expire.
    """

    def __init__(self, cache: CacheStore, key_policy: CacheKeyPolicy, grid_index: GridKeyIndex) -> None:
        self.cache = cache
        self.key_policy = key_policy
        self.grid_index = grid_index

    async def on_business_location_changed(
        self,
        business_id: str,
        old_coords: Optional[GeoPoint] = None,
        new_coords: Optional[GeoPoint] = None,
    ) -> InvalidationReport:
        report = InvalidationReport(business_id=business_id)
        for coords in (old_coords, new_coords):
            if coords is None:
                continue
            for grid_key in self.key_policy.neighboring_grid_keys(coords.lat, coords.lon):
                if grid_key not in report.grid_keys:
                    report.grid_keys.append(grid_key)

        await asyncio.gather(*(self._invalidate_cell(grid_key, report) for grid_key in report.grid_keys))

        logger.info(
            "invalidation business=%s cells=%s exact_deletes=%s prefix_scans=%s prefix_removed=%s failures=%s",
            business_id,
            len(report.grid_keys),
            len(report.deleted_keys),
            len(report.prefix_scans),
            report.removed_by_prefix,
            report.failures,
        )
        return report

    async def _invalidate_cell(self, grid_key: str, report: InvalidationReport) -> None:
        await self._delete(self.key_policy.cluster_key(grid_key), report, record=False)
        for prefix in (self.key_policy.search_prefix(grid_key), self.key_policy.areas_prefix(grid_key)):
            await self._delete_prefix(prefix, report)

        search_prefix = self.key_policy.search_prefix(grid_key)
        for key in self.grid_index.pop(grid_key):
            # Centered in this cell: already gone with the prefix delete
            if key.startswith(search_prefix):
                continue
            await self._delete(key, report)

    async def _delete_prefix(self, prefix: str, report: InvalidationReport) -> None:
        try:
            removed = await self.cache.delete_by_prefix(prefix)
        except CacheError as exc:
            report.failures += 1
            logger.warning("prefix invalidation failed for %s: %s", prefix, exc)
            return
        report.prefix_scans.append(prefix)
        report.removed_by_prefix += removed
        logger.debug("prefix invalidation %s removed=%s", prefix, removed)

    async def _delete(self, key: str, report: InvalidationReport, record: bool = True) -> None:
        try:
            await self.cache.delete(key)
        except CacheError as exc:
            report.failures += 1
            logger.warning("cache delete failed for %s: %s", key, exc)
            return
        if record:
            report.deleted_keys.append(key)
