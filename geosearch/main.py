"""FastAPI application wiring the search engine."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request

from .areas import AreaAnalytics
from .cache import CacheStore, RedisCache, create_redis_client, get_cache
from .cache_keys import CacheKeyPolicy
from .config import Settings, settings
from .errors import CacheError, SearchTimeoutError, SearchUnavailableError, ValidationError
from .es_client import get_client
from .grid_index import GridKeyIndex
from .importer import import_if_empty, reindex_data
from .indexing import ensure_index, index_is_empty
from .invalidation import InvalidationCoordinator, InvalidationReport
from .models import (
    GeoPoint,
    LocationChange,
    PopularArea,
    RankedSuggestion,
    SearchResultPage,
    SourceType,
    SuggestOptions,
)
from .query_stats import QueryStats
from .ranking import RankingEngine
from .search_service import SearchOrchestrator
from .spatial import ElasticsearchSpatialStore, SpatialStore
from .suggestions import (
    BusinessNameSource,
    CategorySource,
    PopularQuerySource,
    SuggestionAggregator,
    SuggestionSource,
    TrendingQuerySource,
)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVEL = logging.getLevelName(settings.log_level.upper())

# ``force=True`` replaces uvicorn's default handlers so engine timing lines
# show up with the same format.
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, force=True)
for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "elastic_transport"):
    logging.getLogger(name).setLevel(LOG_LEVEL)

logger = logging.getLogger(__name__)

LIST_PARAMS = ("categories", "category", "amenities", "price_range")


@dataclass
class Engine:
    search: SearchOrchestrator
    invalidation: InvalidationCoordinator
    suggestions: SuggestionAggregator
    areas: AreaAnalytics
    query_stats: Optional[QueryStats] = None


def assemble_engine(
    spatial_store: SpatialStore,
    cache: CacheStore,
    suggestion_sources: dict[SourceType, SuggestionSource],
    config: Settings = settings,
    query_stats: Optional[QueryStats] = None,
) -> Engine:
    """Connect the components around one shared key policy and grid index."""
    key_policy = CacheKeyPolicy(config)
    grid_index = GridKeyIndex(config.grid_index_max_cells, config.grid_index_keys_per_cell)
    return Engine(
        search=SearchOrchestrator(spatial_store, cache, config=config, key_policy=key_policy, grid_index=grid_index),
        invalidation=InvalidationCoordinator(cache, key_policy, grid_index),
        suggestions=SuggestionAggregator(
            suggestion_sources,
            RankingEngine(min_confidence=config.suggest_min_confidence),
            config=config,
            cache=cache,
            key_policy=key_policy,
        ),
        areas=AreaAnalytics(spatial_store, cache, key_policy=key_policy, config=config),
        query_stats=query_stats,
    )


def build_engine(config: Settings = settings) -> Engine:
    es = get_client()
    cache = get_cache(config)
    sources: dict[SourceType, SuggestionSource] = {
        SourceType.NAME: BusinessNameSource(es, config.es_index, config.suggest_name_radius_km),
        SourceType.CATEGORY: CategorySource(es, config.es_index, config.suggest_category_radius_km),
    }
    query_stats = None
    if isinstance(cache, RedisCache):
        query_stats = QueryStats(create_redis_client(config), prefix=config.cache_prefix)
        sources[SourceType.TRENDING] = TrendingQuerySource(query_stats)
        sources[SourceType.POPULAR] = PopularQuerySource(query_stats)
    return assemble_engine(ElasticsearchSpatialStore(es, config.es_index), cache, sources, config, query_stats)


app = FastAPI(title="Nearby Business Search Service")


def get_engine() -> Engine:
    engine = getattr(app.state, "engine", None)
    if engine is None:
        engine = build_engine()
        app.state.engine = engine
    return engine


@app.on_event("startup")
async def startup_event() -> None:
    es = get_client()
    await ensure_index(es)
    if settings.load_on_startup:
        imported = await import_if_empty(es)
        if imported:
            logger.info("Imported %s businesses on startup", imported)
    get_engine()


@app.get("/health")
async def health() -> dict:
    es = get_client()
    status = await asyncio.to_thread(es.cluster.health)
    empty = await index_is_empty(es)
    return {
        "elasticsearch": status.get("status"),
        "index": settings.es_index,
        "empty": empty,
    }


def _raw_query(request: Request) -> dict:
    params = request.query_params
    raw: dict = dict(params)
    for name in LIST_PARAMS:
        values = params.getlist(name)
        if len(values) > 1:
            raw[name] = values
    raw.pop("timeout_ms", None)
    return raw


@app.get("/search", response_model=SearchResultPage)
async def search(request: Request, timeout_ms: Optional[int] = Query(None, ge=1)) -> SearchResultPage:
    engine = get_engine()
    try:
        query = engine.search.normalizer.normalize(_raw_query(request))
        page = await engine.search.search_query(query, timeout=timeout_ms / 1000 if timeout_ms else None)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": str(exc), "field": exc.field}) from exc
    except SearchUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except SearchTimeoutError as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from exc

    if query.text and engine.query_stats is not None and not page.cache_hit:
        try:
            await engine.query_stats.record(query.text)
        except CacheError as exc:
            logger.warning("query stats update failed: %s", exc)
    return page


@app.get("/suggest", response_model=List[RankedSuggestion])
async def suggest(
    q: str = Query(..., description="Typed text"),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    limit: int = Query(10, ge=1, le=50),
    source_limit: int = Query(3, ge=1, le=20),
    timeout_ms: Optional[int] = Query(None, ge=1),
) -> List[RankedSuggestion]:
    if not q.strip():
        raise HTTPException(status_code=400, detail="Query must not be empty")
    location = GeoPoint(lat=lat, lon=lng) if lat is not None and lng is not None else None
    options = SuggestOptions(
        limit=limit,
        source_limit=source_limit,
        min_confidence=settings.suggest_min_confidence,
        timeout_seconds=timeout_ms / 1000 if timeout_ms else None,
    )
    try:
        return await get_engine().suggestions.suggest(q, location, options)
    except SearchTimeoutError as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from exc


@app.get("/areas/popular", response_model=List[PopularArea])
async def popular_areas(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: Optional[float] = Query(None, gt=0, description="Radius in km"),
) -> List[PopularArea]:
    if lat is None or lng is None:
        raise HTTPException(status_code=400, detail="lat and lng are required")
    try:
        return await get_engine().areas.popular_areas(lat, lng, radius)
    except SearchUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.post("/businesses/{business_id}/location-changed")
async def location_changed(business_id: str, change: LocationChange) -> dict:
    report: InvalidationReport = await get_engine().invalidation.on_business_location_changed(
        business_id, change.old, change.new
    )
    return {
        "business_id": report.business_id,
        "cells": len(report.grid_keys),
        "deleted_keys": len(report.deleted_keys),
        "prefix_scans": len(report.prefix_scans),
        "failures": report.failures,
    }


@app.post("/reindex")
async def reindex() -> dict:
    es = get_client()
    count = await reindex_data(es)
    return {"indexed": count}
