"""Location search built on top of the spatial store and the result cache.

Flow per call: normalize -> cache lookup -> (miss) concurrent radius fetch and
count -> enrichment (bearing, open-now, travel time) -> density based TTL ->
cache write -> page. Cache failures degrade to misses; spatial store failures
surface as :class:`~geosearch.errors.SearchUnavailableError`.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Callable, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from .cache import CacheStore
from .cache_keys import CacheKeyPolicy
from .config import Settings, settings as default_settings
from .errors import CacheError, SearchUnavailableError, SearchTimeoutError
from .geo import bearing_degrees, estimate_travel_minutes, haversine_km
from .grid_index import GridKeyIndex
from .hours import is_open_now
from .models import (
    Business,
    CachedPage,
    CacheEntry,
    CategoryCount,
    GeoPoint,
    GridCluster,
    LocationQuery,
    SearchResultItem,
    SearchResultPage,
)
from .normalizer import QueryNormalizer
from .spatial import SpatialStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SearchOrchestrator:
    """Facade over normalization, caching and the spatial store."""

    def __init__(
        self,
        spatial_store: SpatialStore,
        cache: CacheStore,
        *,
        config: Settings | None = None,
        key_policy: CacheKeyPolicy | None = None,
        normalizer: QueryNormalizer | None = None,
        grid_index: GridKeyIndex | None = None,
        now: Callable[[], datetime] = _utcnow,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or default_settings
        self.store = spatial_store
        self.cache = cache
        self.key_policy = key_policy if key_policy is not None else CacheKeyPolicy(self.config)
        self.normalizer = normalizer if normalizer is not None else QueryNormalizer(self.config)
        # An empty index is falsy, so test for None explicitly
        if grid_index is None:
            grid_index = GridKeyIndex(self.config.grid_index_max_cells, self.config.grid_index_keys_per_cell)
        self.grid_index = grid_index
        self._now = now
        self._wall_clock = wall_clock

    async def search(self, raw_query: Mapping[str, Any], timeout: float | None = None) -> SearchResultPage:
        """Run a location search.

        ``timeout`` is the caller's remaining budget in seconds. When it runs
        out, in-flight store calls are cancelled and
        :class:`SearchTimeoutError` is raised; nothing is written to the cache.
        """
        return await self.search_query(self.normalizer.normalize(raw_query), timeout)

    async def search_query(self, query: LocationQuery, timeout: float | None = None) -> SearchResultPage:
        """Same as :meth:`search` for a query that is already normalized."""
        start = perf_counter()
        if timeout is None:
            return await self._search(query, start)
        try:
            return await asyncio.wait_for(self._search(query, start), timeout)
        except asyncio.TimeoutError:
            elapsed_ms = (perf_counter() - start) * 1000
            logger.warning(
                "search deadline exceeded after %.2fms (timeout=%.3fs) lat=%s lng=%s",
                elapsed_ms,
                timeout,
                query.lat,
                query.lng,
            )
            raise SearchTimeoutError(f"Search exceeded {timeout}s deadline", elapsed_ms=elapsed_ms) from None

    async def _search(self, query: LocationQuery, start: float) -> SearchResultPage:
        key = self.key_policy.search_key(query)
        entry = await self._read_cache(key)
        if entry is not None:
            took_ms = (perf_counter() - start) * 1000
            logger.info("timing: total=%.2fms cache_hit=1 key=%s", took_ms, key)
            return SearchResultPage(**dict(entry.payload), cache_hit=True, took_ms=took_ms)

        t0 = perf_counter()
        businesses, total_count, breakdown = await self._fetch(query, start)
        t1 = perf_counter()
        now = self._now()
        items = [self._enrich(query, business, now) for business in businesses]
        if query.open_only:
            items = [item for item in items if item.is_open_now]
        t2 = perf_counter()

        payload = CachedPage(
            items=items,
            total_count=total_count,
            radius_km=query.radius_km,
            center=GeoPoint(lat=query.lat, lon=query.lng),
            category_breakdown=breakdown,
            adjustments=list(query.adjustments),
        )
        ttl = self.dynamic_ttl(len(items), total_count)
        await self._write_cache(key, query, payload, ttl)
        t3 = perf_counter()

        took_ms = (t3 - start) * 1000
        logger.info(
            "timing: total=%.2fms store=%.2fms enrich=%.2fms cache_write=%.2fms cache_hit=0 "
            "results=%s total_count=%s ttl=%s key=%s",
            took_ms,
            (t1 - t0) * 1000,
            (t2 - t1) * 1000,
            (t3 - t2) * 1000,
            len(items),
            total_count,
            ttl,
            key,
        )
        return SearchResultPage(**dict(payload), cache_hit=False, took_ms=took_ms)

    async def _fetch(
        self, query: LocationQuery, start: float
    ) -> tuple[List[Business], int, Optional[List[CategoryCount]]]:
        find_task = asyncio.ensure_future(self.store.find_within_radius(query))
        count_task = asyncio.ensure_future(self.store.count_within_radius(query))
        breakdown_task = (
            asyncio.ensure_future(self._category_breakdown(query)) if query.include_category_stats else None
        )
        tasks = [task for task in (find_task, count_task, breakdown_task) if task is not None]
        try:
            results = await asyncio.gather(*tasks)
        except Exception as exc:
            for task in tasks:
                task.cancel()
            elapsed_ms = (perf_counter() - start) * 1000
            logger.error(
                "spatial store failure after %.2fms lat=%s lng=%s radius=%s: %s",
                elapsed_ms,
                query.lat,
                query.lng,
                query.radius_km,
                exc,
            )
            raise SearchUnavailableError(
                f"Spatial store unavailable: {exc}", query=query, elapsed_ms=elapsed_ms
            ) from exc
        businesses, total_count = results[0], results[1]
        breakdown = results[2] if breakdown_task is not None else None
        return list(businesses), int(total_count), breakdown

    async def _category_breakdown(self, query: LocationQuery) -> Optional[List[CategoryCount]]:
        try:
            return await self.store.category_breakdown(query)
        except Exception as exc:
            # A failed aggregation only drops the breakdown from the page
            logger.warning("category breakdown failed, continuing without it: %s", exc)
            return None

    def _enrich(self, query: LocationQuery, business: Business, now: datetime) -> SearchResultItem:
        lat, lng = business.location.lat, business.location.lon
        distance_km = business.distance_km
        if distance_km is None:
            distance_km = haversine_km(query.lat, query.lng, lat, lng)
        data = business.model_dump()
        data.update(
            distance_km=distance_km,
            bearing_degrees=bearing_degrees(query.lat, query.lng, lat, lng),
            is_open_now=is_open_now(business.hours, business.timezone, now, self.config.default_timezone),
            estimated_travel_minutes=estimate_travel_minutes(distance_km, self.config.average_speed_kmh),
        )
        return SearchResultItem.model_validate(data)

    def dynamic_ttl(self, result_count: int, total_count: int) -> int:
        """Dense pages cache longer; sparse ones are likely near the data edge."""
        cfg = self.config
        density = result_count / max(total_count, 1)
        if density > cfg.high_density_threshold:
            return cfg.ttl_high_density_seconds
        if density > cfg.medium_density_threshold:
            return cfg.ttl_medium_density_seconds
        return cfg.ttl_low_density_seconds

    async def _read_cache(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self.cache.get(key)
        except CacheError as exc:
            logger.warning("cache read failed, treating as miss: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except PydanticValidationError as exc:
            logger.warning("discarding undecodable cache entry %s: %s", key, exc)
            return None

    async def _write_cache(self, key: str, query: LocationQuery, payload: CachedPage, ttl: int) -> None:
        center_grid = self.key_policy.center_grid_key(query)
        entry = CacheEntry(
            key=key,
            grid_key=center_grid,
            payload=payload,
            ttl_seconds=ttl,
            written_at=self._wall_clock(),
        )
        try:
            await self.cache.set(key, entry.model_dump_json().encode("utf-8"), ttl)
        except CacheError as exc:
            logger.warning("cache write failed for %s: %s", key, exc)
            return
        logger.debug("cache_store key=%s ttl=%s", key, ttl)

        item_grids = [self.key_policy.grid_key(item.location.lat, item.location.lon) for item in payload.items]
        self.grid_index.add([center_grid, *item_grids], key)

        cluster = GridCluster(
            grid_key=center_grid,
            center=payload.center,
            business_ids=[item.id for item in payload.items],
            written_at=entry.written_at,
        )
        try:
            await self.cache.set(
                self.key_policy.cluster_key(center_grid),
                cluster.model_dump_json().encode("utf-8"),
                self.config.cluster_ttl_seconds,
            )
        except CacheError as exc:
            logger.debug("grid cluster write failed for %s: %s", center_grid, exc)
