"""HTTP surface over an in-memory engine."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from geosearch.cache import InMemoryCache
from geosearch.config import Settings
from geosearch.main import app, assemble_engine
from geosearch.models import SourceType, SuggestionCandidate

from conftest import NORTH_2KM, NYC, FakeSpatialStore, make_business


class NameSource:
    async def find_candidates(self, text, location, limit):
        return [SuggestionCandidate(id="business_1", source_type=SourceType.NAME, text="Pizza Hut", base_score=1.0)]


@pytest.fixture
def store():
    return FakeSpatialStore([make_business("b1", *NORTH_2KM, name="Pizza Hut")])


@pytest.fixture
def engine(store, monkeypatch):
    engine = assemble_engine(store, InMemoryCache(), {SourceType.NAME: NameSource()}, Settings())
    monkeypatch.setattr(app.state, "engine", engine, raising=False)
    return engine


@pytest.fixture
def client(engine):
    return TestClient(app)


def test_search_returns_enriched_page(client, store):
    response = client.get("/search", params={"lat": NYC[0], "lng": NYC[1], "radius_km": 5})
    assert response.status_code == 200
    body = response.json()
    assert body["total_count"] == 1
    assert body["cache_hit"] is False
    assert body["items"][0]["distance_km"] == pytest.approx(2.0, abs=0.01)

    again = client.get("/search", params={"lat": NYC[0], "lng": NYC[1], "radius_km": 5}).json()
    assert again["cache_hit"] is True
    assert store.find_calls == 1


def test_repeated_category_params_become_a_list(client):
    response = client.get(
        "/search", params=[("lat", NYC[0]), ("lng", NYC[1]), ("categories", "bars"), ("categories", "restaurants")]
    )
    assert response.status_code == 200
    assert response.json()["total_count"] == 1


def test_invalid_coordinates_are_bad_requests(client, store):
    response = client.get("/search", params={"lat": 123, "lng": 0})
    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "lat"
    assert store.find_calls == 0


def test_store_outage_is_service_unavailable(client, store):
    store.fail_with = ConnectionError("es down")
    response = client.get("/search", params={"lat": NYC[0], "lng": NYC[1]})
    assert response.status_code == 503


def test_deadline_is_gateway_timeout(client, store):
    store.delay = 1.0
    response = client.get("/search", params={"lat": NYC[0], "lng": NYC[1], "timeout_ms": 20})
    assert response.status_code == 504


def test_text_searches_are_recorded_once_per_miss(client, engine):
    engine.query_stats = MagicMock()
    engine.query_stats.record = AsyncMock()
    for _ in range(2):
        assert client.get("/search", params={"lat": NYC[0], "lng": NYC[1], "text": "pizza"}).status_code == 200
    engine.query_stats.record.assert_awaited_once_with("pizza")


def test_recorded_text_is_the_normalized_query_text(client, engine):
    engine.query_stats = MagicMock()
    engine.query_stats.record = AsyncMock()
    response = client.get("/search", params={"lat": NYC[0], "lng": NYC[1], "search": "  Pizza   Hut "})
    assert response.status_code == 200
    engine.query_stats.record.assert_awaited_once_with("Pizza Hut")


def test_searches_without_text_are_not_recorded(client, engine):
    engine.query_stats = MagicMock()
    engine.query_stats.record = AsyncMock()
    assert client.get("/search", params={"lat": NYC[0], "lng": NYC[1]}).status_code == 200
    engine.query_stats.record.assert_not_awaited()


def test_suggestions_are_cached_per_text(client, engine, monkeypatch):
    calls = []
    original = NameSource.find_candidates

    async def counting(self, text, location, limit):
        calls.append(text)
        return await original(self, text, location, limit)

    monkeypatch.setattr(NameSource, "find_candidates", counting)
    for _ in range(2):
        assert client.get("/suggest", params={"q": "pizza"}).status_code == 200
    assert calls == ["pizza"]


def test_suggest_endpoint(client):
    response = client.get("/suggest", params={"q": "pizza", "lat": NYC[0], "lng": NYC[1]})
    assert response.status_code == 200
    body = response.json()
    assert body[0]["text"] == "Pizza Hut"
    assert body[0]["position"] == 1


def test_suggest_rejects_blank_text(client):
    assert client.get("/suggest", params={"q": "  "}).status_code == 400


def test_location_changed_invalidates_both_neighborhoods(client):
    response = client.post(
        "/businesses/b1/location-changed",
        json={"old": {"lat": 40.0, "lon": -74.0}, "new": {"lat": 41.0, "lon": -75.0}},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["business_id"] == "b1"
    assert body["cells"] == 18
    assert body["failures"] == 0
    assert body["prefix_scans"] == 36


def test_popular_areas_requires_a_location(client):
    assert client.get("/areas/popular").status_code == 400
    assert client.get("/areas/popular", params={"lat": NYC[0]}).status_code == 400


def test_popular_areas_endpoint(client, store):
    store.businesses = [make_business(f"b{i}", 40.7105, -74.0055, rating=4.0) for i in range(3)]
    response = client.get("/areas/popular", params={"lat": NYC[0], "lng": NYC[1], "radius": 5})
    assert response.status_code == 200
    body = response.json()
    assert len(body) == 1
    assert body[0]["business_count"] == 3
    assert body[0]["name"] == "Area 40.715, -74.005"


def test_popular_areas_store_outage_is_service_unavailable(client, store):
    store.fail_with = ConnectionError("es down")
    response = client.get("/areas/popular", params={"lat": NYC[0], "lng": NYC[1]})
    assert response.status_code == 503
