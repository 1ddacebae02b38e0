"""Popular areas: grid cells around a point ranked by business density."""
from __future__ import annotations

import logging
from time import perf_counter
from typing import List

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from .cache import CacheStore
from .cache_keys import CacheKeyPolicy
from .config import Settings, settings as default_settings
from .errors import CacheError, SearchUnavailableError
from .models import AreaBucket, GeoPoint, PopularArea
from .spatial import SpatialStore

logger = logging.getLogger(__name__)

AREA_LIST = TypeAdapter(List[PopularArea])
# Cells holding this many businesses saturate the count half of the score
SATURATION_COUNT = 20
COUNT_WEIGHT = 0.6
RATING_WEIGHT = 0.4


def density_score(business_count: int, average_rating: float) -> float:
    score = min(business_count / SATURATION_COUNT, 1.0) * COUNT_WEIGHT + average_rating / 5 * RATING_WEIGHT
    return round(score, 2)


def to_popular_area(bucket: AreaBucket) -> PopularArea:
    return PopularArea(
        name=f"Area {bucket.cell_lat:.3f}, {bucket.cell_lng:.3f}",
        center=GeoPoint(lat=bucket.cell_lat, lon=bucket.cell_lng),
        business_count=bucket.business_count,
        average_rating=round(bucket.average_rating, 2),
        top_categories=list(bucket.top_categories),
        density_score=density_score(bucket.business_count, bucket.average_rating),
    )


class AreaAnalytics:
    """Ranks the busiest grid cells near a point and caches the answer.

    Results live under the cell of the requested center, so moving a business
    drops them together with the cached searches of that cell.
    """

    def __init__(
        self,
        spatial_store: SpatialStore,
        cache: CacheStore,
        key_policy: CacheKeyPolicy | None = None,
        config: Settings | None = None,
    ) -> None:
        self.store = spatial_store
        self.cache = cache
        self.config = config or default_settings
        self.key_policy = key_policy if key_policy is not None else CacheKeyPolicy(self.config)

    async def popular_areas(self, lat: float, lng: float, radius_km: float | None = None) -> List[PopularArea]:
        cfg = self.config
        radius_km = radius_km if radius_km is not None else cfg.popular_areas_radius_km
        start = perf_counter()
        key = self.key_policy.areas_key(lat, lng, radius_km)

        cached = await self._read_cache(key)
        if cached is not None:
            logger.info("timing: total=%.2fms popular_areas cache_hit=1 key=%s", (perf_counter() - start) * 1000, key)
            return cached

        try:
            buckets = await self.store.area_buckets(lat, lng, radius_km, cfg.grid_cell_degrees)
        except Exception as exc:
            logger.error("area aggregation failed lat=%s lng=%s radius=%s: %s", lat, lng, radius_km, exc)
            raise SearchUnavailableError(f"Spatial store unavailable: {exc}") from exc

        dense = [bucket for bucket in buckets if bucket.business_count >= cfg.popular_areas_min_businesses]
        dense.sort(key=lambda bucket: (-bucket.business_count, -bucket.average_rating))
        areas = [to_popular_area(bucket) for bucket in dense[: cfg.popular_areas_limit]]

        try:
            await self.cache.set(key, AREA_LIST.dump_json(areas), cfg.popular_areas_ttl_seconds)
        except CacheError as exc:
            logger.warning("popular areas cache write failed for %s: %s", key, exc)
        logger.info(
            "timing: total=%.2fms popular_areas cache_hit=0 cells=%s returned=%s key=%s",
            (perf_counter() - start) * 1000,
            len(buckets),
            len(areas),
            key,
        )
        return areas

    async def _read_cache(self, key: str) -> List[PopularArea] | None:
        try:
            raw = await self.cache.get(key)
        except CacheError as exc:
            logger.warning("popular areas cache read failed, treating as miss: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return AREA_LIST.validate_json(raw)
        except PydanticValidationError as exc:
            logger.warning("discarding undecodable popular areas entry %s: %s", key, exc)
            return None
