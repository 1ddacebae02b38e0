"""Pydantic models for queries, results, cache entries and suggestions."""
from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SortBy(str, Enum):
    DISTANCE = "distance"
    RATING = "rating"
    NEWEST = "newest"
    POPULAR = "popular"


class SourceType(str, Enum):
    HISTORY = "history"
    NAME = "name"
    CATEGORY = "category"
    TRENDING = "trending"
    LOCATION = "location"
    POPULAR = "popular"


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float


class QueryAdjustment(BaseModel):
    """A parameter that was silently clamped during normalization."""

    model_config = ConfigDict(frozen=True)

    field: str
    requested: Any
    applied: Any


class LocationQuery(BaseModel):
    """Canonical, validated search query. Built once by the normalizer."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    radius_km: float
    categories: tuple[str, ...] = ()
    text: str | None = None
    page: int = 1
    page_size: int = 10
    sort_by: SortBy = SortBy.DISTANCE
    price_range: tuple[int, int] | None = None
    amenities: tuple[str, ...] = ()
    open_only: bool | None = None
    include_category_stats: bool = False
    adjustments: tuple[QueryAdjustment, ...] = ()

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class DayHours(BaseModel):
    open: str | None = None
    close: str | None = None
    closed: bool = False


class Business(BaseModel):
    """Business document as stored in the spatial index."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    location: GeoPoint
    categories: list[str] = Field(default_factory=list)
    hours: dict[str, DayHours] | None = None
    timezone: str | None = None
    rating: float | None = None
    review_count: int | None = None
    price_level: int | None = None
    amenities: list[str] = Field(default_factory=list)
    popularity: float | None = None
    distance_km: float | None = None


class SearchResultItem(Business):
    distance_km: float
    bearing_degrees: float
    is_open_now: bool
    estimated_travel_minutes: int


class CategoryCount(BaseModel):
    category: str
    count: int
    percentage: float


class SearchResultPage(BaseModel):
    items: list[SearchResultItem]
    total_count: int
    radius_km: float
    center: GeoPoint
    cache_hit: bool = False
    took_ms: float = 0.0
    category_breakdown: list[CategoryCount] | None = None
    adjustments: list[QueryAdjustment] = Field(default_factory=list)


class CachedPage(BaseModel):
    """Search page without per-call timing fields, as stored in the cache."""

    items: list[SearchResultItem]
    total_count: int
    radius_km: float
    center: GeoPoint
    category_breakdown: list[CategoryCount] | None = None
    adjustments: list[QueryAdjustment] = Field(default_factory=list)


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    grid_key: str
    payload: CachedPage
    ttl_seconds: int
    written_at: float


class GridCluster(BaseModel):
    grid_key: str
    center: GeoPoint
    business_ids: list[str]
    written_at: float


class SuggestionCandidate(BaseModel):
    id: str
    source_type: SourceType
    text: str
    base_score: float = 0.0
    location: GeoPoint | None = None
    global_popularity: float = 0.0
    last_used: float | None = Field(default=None, description="Epoch seconds")
    metadata: dict[str, Any] = Field(default_factory=dict)


class RankedSuggestion(SuggestionCandidate):
    final_score: float
    position: int


DEFAULT_SUGGESTION_SOURCES = frozenset(
    {SourceType.NAME, SourceType.CATEGORY, SourceType.TRENDING, SourceType.POPULAR}
)


class SuggestOptions(BaseModel):
    limit: int = Field(default=10, ge=1, le=50)
    source_limit: int = Field(default=3, ge=1, le=20)
    sources: frozenset[SourceType] = DEFAULT_SUGGESTION_SOURCES
    min_confidence: float | None = None
    timeout_seconds: float | None = None


class LocationChange(BaseModel):
    old: GeoPoint | None = None
    new: GeoPoint | None = None


class AreaBucket(BaseModel):
    """Active businesses of one grid cell as aggregated by the spatial store."""

    cell_lat: float
    cell_lng: float
    business_count: int
    average_rating: float
    top_categories: list[str] = Field(default_factory=list)


class PopularArea(BaseModel):
    name: str
    center: GeoPoint
    business_count: int
    average_rating: float
    top_categories: list[str]
    density_score: float
