"""Popular areas ranking, scoring and caching."""

import pytest

from geosearch.areas import AreaAnalytics, density_score
from geosearch.cache_keys import CacheKeyPolicy
from geosearch.config import Settings
from geosearch.errors import SearchUnavailableError
from geosearch.grid_index import GridKeyIndex
from geosearch.invalidation import InvalidationCoordinator
from geosearch.models import GeoPoint

from conftest import BrokenCache, FakeSpatialStore, make_business


def _cluster(prefix, lat, lng, count, **extra):
    return [make_business(f"{prefix}{i}", lat, lng, **extra) for i in range(count)]


@pytest.fixture
def store():
    businesses = (
        _cluster("a", 40.7105, -74.0055, 5, rating=4.5, categories=["restaurants", "bars"])
        + _cluster("b", 40.7305, -74.0155, 3, rating=3.0, categories=["cafes"])
        # Below the minimum count
        + _cluster("c", 40.7505, -73.9855, 2, rating=5.0)
        + _cluster("d", 40.7005, -74.0255, 1)
        + [make_business("gone", 40.7005, -74.0255, is_active=False)]
    )
    return FakeSpatialStore(businesses)


@pytest.fixture
def analytics(store, memory_cache):
    return AreaAnalytics(store, memory_cache, config=Settings())


def test_density_score_blends_count_and_rating():
    assert density_score(20, 5.0) == 1.0
    assert density_score(40, 5.0) == 1.0
    assert density_score(5, 4.5) == 0.51
    assert density_score(3, 3.0) == 0.33


@pytest.mark.asyncio
async def test_areas_are_dense_cells_ordered_by_count(analytics):
    areas = await analytics.popular_areas(40.7128, -74.0060, 10)
    assert [area.business_count for area in areas] == [5, 3]
    top = areas[0]
    assert top.center.lat == pytest.approx(40.715)
    assert top.center.lon == pytest.approx(-74.005)
    assert top.name == "Area 40.715, -74.005"
    assert top.average_rating == 4.5
    assert top.top_categories == ["bars", "restaurants"]
    assert top.density_score == 0.51


@pytest.mark.asyncio
async def test_equal_counts_prefer_the_better_rated_cell(memory_cache):
    store = FakeSpatialStore(
        _cluster("low", 40.7105, -74.0055, 4, rating=3.0) + _cluster("high", 40.7305, -74.0155, 4, rating=4.8)
    )
    areas = await AreaAnalytics(store, memory_cache, config=Settings()).popular_areas(40.72, -74.01, 10)
    assert [area.average_rating for area in areas] == [4.8, 3.0]


@pytest.mark.asyncio
async def test_missing_ratings_count_as_four(memory_cache):
    store = FakeSpatialStore(_cluster("x", 40.7105, -74.0055, 3))
    areas = await AreaAnalytics(store, memory_cache, config=Settings()).popular_areas(40.71, -74.0, 10)
    assert areas[0].average_rating == 4.0


@pytest.mark.asyncio
async def test_result_is_capped_at_the_configured_limit(memory_cache):
    businesses = []
    for n in range(12):
        businesses += _cluster(f"cell{n}-", 40.5 + n * 0.02 + 0.005, -74.005, 3)
    areas = await AreaAnalytics(FakeSpatialStore(businesses), memory_cache, config=Settings()).popular_areas(
        40.6, -74.0, 50
    )
    assert len(areas) == 10


@pytest.mark.asyncio
async def test_second_call_is_served_from_the_cache(analytics, store, memory_cache, clock):
    first = await analytics.popular_areas(40.7128, -74.0060, 10)
    second = await analytics.popular_areas(40.7128, -74.0060, 10)
    assert second == first
    assert store.area_calls == 1

    clock.advance(1800)
    await analytics.popular_areas(40.7128, -74.0060, 10)
    assert store.area_calls == 2


@pytest.mark.asyncio
async def test_default_radius_applies_when_none_given(analytics, memory_cache):
    await analytics.popular_areas(40.7128, -74.0060)
    assert analytics.key_policy.areas_key(40.7128, -74.0060, 50) in memory_cache.keys()


@pytest.mark.asyncio
async def test_broken_cache_still_answers(store):
    areas = await AreaAnalytics(store, BrokenCache(), config=Settings()).popular_areas(40.7128, -74.0060, 10)
    assert len(areas) == 2


@pytest.mark.asyncio
async def test_store_failure_is_unavailable(store, analytics):
    store.fail_with = ConnectionError("es down")
    with pytest.raises(SearchUnavailableError):
        await analytics.popular_areas(40.7128, -74.0060, 10)


@pytest.mark.asyncio
async def test_moving_a_business_nearby_refreshes_the_areas(store, memory_cache):
    config = Settings()
    policy = CacheKeyPolicy(config)
    analytics = AreaAnalytics(store, memory_cache, key_policy=policy, config=config)
    coordinator = InvalidationCoordinator(memory_cache, policy, GridKeyIndex())

    await analytics.popular_areas(40.7128, -74.0060, 10)
    await coordinator.on_business_location_changed("a0", GeoPoint(lat=40.7105, lon=-74.0055))
    await analytics.popular_areas(40.7128, -74.0060, 10)
    assert store.area_calls == 2
