"""Shared fakes for engine tests."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from geosearch.cache import InMemoryCache
from geosearch.config import Settings
from geosearch.errors import CacheError
from geosearch.geo import grid_cell, haversine_km
from geosearch.models import AreaBucket, Business, CategoryCount, GeoPoint, LocationQuery

NYC = (40.7128, -74.0060)
# ~2 km due north of NYC
NORTH_2KM = (40.7128 + 2 / 111.19492664455873, -74.0060)


def make_business(business_id: str, lat: float, lng: float, **extra) -> Business:
    data = {
        "id": business_id,
        "name": extra.pop("name", f"Business {business_id}"),
        "location": {"lat": lat, "lon": lng},
        "categories": extra.pop("categories", ["restaurants"]),
    }
    data.update(extra)
    return Business.model_validate(data)


class FakeSpatialStore:
    """In-memory SpatialStore with call counters, failure and latency knobs."""

    def __init__(self, businesses: Optional[List[Business]] = None, delay: float = 0.0) -> None:
        self.businesses = list(businesses or [])
        self.delay = delay
        self.fail_with: Optional[Exception] = None
        self.fail_breakdown = False
        self.find_calls = 0
        self.count_calls = 0
        self.area_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    def _matching(self, query: LocationQuery) -> List[Business]:
        wanted = {c.casefold() for c in query.categories}
        matches = []
        for business in self.businesses:
            distance = haversine_km(query.lat, query.lng, business.location.lat, business.location.lon)
            if distance > query.radius_km:
                continue
            if wanted and not wanted & {c.casefold() for c in business.categories}:
                continue
            if query.text and query.text.lower() not in business.name.lower():
                continue
            matches.append((distance, business))
        matches.sort(key=lambda pair: (pair[0], pair[1].id))
        return [business for _, business in matches]

    async def _enter(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        if self.fail_with is not None:
            raise self.fail_with

    async def find_within_radius(self, query: LocationQuery) -> List[Business]:
        self.find_calls += 1
        await self._enter()
        matches = self._matching(query)
        return matches[query.offset : query.offset + query.page_size]

    async def count_within_radius(self, query: LocationQuery) -> int:
        self.count_calls += 1
        await self._enter()
        return len(self._matching(query))

    async def category_breakdown(self, query: LocationQuery) -> List[CategoryCount]:
        if self.fail_breakdown:
            raise RuntimeError("aggregation failed")
        matches = self._matching(query)
        counts: dict[str, int] = {}
        for business in matches:
            for category in business.categories:
                counts[category] = counts.get(category, 0) + 1
        total = len(matches) or 1
        return [
            CategoryCount(category=name, count=count, percentage=round(count * 100 / total, 2))
            for name, count in sorted(counts.items())
        ]

    async def area_buckets(self, lat, lng, radius_km, cell_degrees) -> List[AreaBucket]:
        self.area_calls += 1
        await self._enter()
        cells: dict = {}
        for business in self.businesses:
            if not getattr(business, "is_active", True):
                continue
            if haversine_km(lat, lng, business.location.lat, business.location.lon) > radius_km:
                continue
            cells.setdefault(grid_cell(business.location.lat, business.location.lon, cell_degrees), []).append(business)
        buckets = []
        for (i, j), members in sorted(cells.items()):
            ratings = [b.rating if b.rating is not None else 4.0 for b in members]
            counts: dict[str, int] = {}
            for business in members:
                for category in business.categories:
                    counts[category] = counts.get(category, 0) + 1
            top = sorted(counts, key=lambda name: (-counts[name], name))[:3]
            buckets.append(
                AreaBucket(
                    cell_lat=i * cell_degrees + cell_degrees / 2,
                    cell_lng=j * cell_degrees + cell_degrees / 2,
                    business_count=len(members),
                    average_rating=sum(ratings) / len(ratings),
                    top_categories=top,
                )
            )
        return buckets


class BrokenCache:
    """CacheStore whose every call fails."""

    def __init__(self) -> None:
        self.calls = 0

    async def get(self, key):
        self.calls += 1
        raise CacheError("cache down")

    async def set(self, key, value, ttl_seconds):
        self.calls += 1
        raise CacheError("cache down")

    async def delete(self, key):
        self.calls += 1
        raise CacheError("cache down")

    async def delete_by_prefix(self, prefix):
        self.calls += 1
        raise CacheError("cache down")


class ManualClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def config() -> Settings:
    return Settings()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def memory_cache(clock: ManualClock) -> InMemoryCache:
    return InMemoryCache(clock=clock)


@pytest.fixture
def fixed_now() -> datetime:
    # Monday 2024-01-15 12:00 UTC
    return datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def nyc() -> GeoPoint:
    return GeoPoint(lat=NYC[0], lon=NYC[1])
