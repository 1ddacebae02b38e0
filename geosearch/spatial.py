"""Spatial store contract and its Elasticsearch implementation."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Protocol

from elasticsearch import Elasticsearch

from .models import AreaBucket, Business, CategoryCount, LocationQuery, SortBy

logger = logging.getLogger(__name__)

TEXT_FIELDS = ["name^3", "name.autocomplete^1.5", "description", "categories^2"]
CATEGORY_AGG_SIZE = 20
AREA_PAGE_SIZE = 500
AREA_TOP_CATEGORIES = 3
# Ratings missing from a document count as this in area averages
AREA_DEFAULT_RATING = 4.0


class SpatialStore(Protocol):
    async def find_within_radius(self, query: LocationQuery) -> List[Business]: ...

    async def count_within_radius(self, query: LocationQuery) -> int: ...

    async def category_breakdown(self, query: LocationQuery) -> List[CategoryCount]: ...

    async def area_buckets(
        self, lat: float, lng: float, radius_km: float, cell_degrees: float
    ) -> List[AreaBucket]: ...


def geo_distance_filter(lat: float, lng: float, radius_km: float) -> dict:
    return {
        "geo_distance": {
            "distance": f"{radius_km}km",
            "location": {"lat": lat, "lon": lng},
        }
    }


def build_filter_query(query: LocationQuery) -> Dict[str, Any]:
    """Translate the radius predicate plus filters into an ES bool query.

    Categories are OR-matched, amenities must all be present and free text is
    a fuzzy multi-field match.
    """
    filters: List[dict] = [
        geo_distance_filter(query.lat, query.lng, query.radius_km),
        {"term": {"is_active": True}},
    ]
    must: List[dict] = []

    if query.categories:
        filters.append({"terms": {"categories": [c.casefold() for c in query.categories]}})
    for amenity in query.amenities:
        filters.append({"term": {"amenities": amenity.casefold()}})
    if query.price_range:
        low, high = query.price_range
        filters.append({"range": {"price_level": {"gte": low, "lte": high}}})
    if query.text:
        must.append(
            {
                "multi_match": {
                    "query": query.text,
                    "fields": TEXT_FIELDS,
                    "type": "most_fields",
                    "fuzziness": "AUTO",
                }
            }
        )

    return {"bool": {"filter": filters, "must": must}}


def build_sort(query: LocationQuery) -> List[dict]:
    distance_sort = {
        "_geo_distance": {
            "location": {"lat": query.lat, "lon": query.lng},
            "order": "asc",
            "unit": "km",
            "distance_type": "arc",
        }
    }
    if query.sort_by == SortBy.RATING:
        leading = [{"rating": {"order": "desc", "missing": "_last"}}, {"review_count": {"order": "desc", "missing": "_last"}}]
    elif query.sort_by == SortBy.NEWEST:
        leading = [{"created_at": {"order": "desc", "missing": "_last"}}]
    elif query.sort_by == SortBy.POPULAR:
        leading = [{"popularity": {"order": "desc", "missing": "_last"}}, {"review_count": {"order": "desc", "missing": "_last"}}]
    else:
        leading = []
    # Distance sorts second to last so every hit carries it in ``sort[-2]``;
    # the id tie-break keeps pagination stable across equal distances.
    return leading + [distance_sort, {"id": {"order": "asc"}}]


def _hit_to_business(hit: dict) -> Business:
    source = dict(hit.get("_source", {}))
    source.setdefault("id", hit.get("_id"))
    sort_values = hit.get("sort") or []
    if len(sort_values) >= 2 and isinstance(sort_values[-2], (int, float)):
        source["distance_km"] = float(sort_values[-2])
    return Business.model_validate(source)


class ElasticsearchSpatialStore:
    """SpatialStore over a ``geo_point`` business index."""

    def __init__(self, es: Elasticsearch, index: str) -> None:
        self.es = es
        self.index = index

    async def find_within_radius(self, query: LocationQuery) -> List[Business]:
        es_query = build_filter_query(query)
        logger.debug("ES radius query=%s sort=%s", es_query, query.sort_by.value)
        response = await asyncio.to_thread(
            self.es.search,
            index=self.index,
            query=es_query,
            sort=build_sort(query),
            size=query.page_size,
            from_=query.offset,
            track_total_hits=False,
        )
        hits = response.get("hits", {}).get("hits", [])
        return [_hit_to_business(hit) for hit in hits]

    async def count_within_radius(self, query: LocationQuery) -> int:
        response = await asyncio.to_thread(self.es.count, index=self.index, query=build_filter_query(query))
        return int(response.get("count", 0))

    async def category_breakdown(self, query: LocationQuery) -> List[CategoryCount]:
        response = await asyncio.to_thread(
            self.es.search,
            index=self.index,
            query=build_filter_query(query),
            size=0,
            track_total_hits=True,
            aggs={"categories": {"terms": {"field": "categories", "size": CATEGORY_AGG_SIZE}}},
        )
        total = response.get("hits", {}).get("total", {}).get("value", 0)
        buckets = response.get("aggregations", {}).get("categories", {}).get("buckets", [])
        return [
            CategoryCount(
                category=bucket["key"],
                count=bucket["doc_count"],
                percentage=round(bucket["doc_count"] * 100.0 / total, 2) if total else 0.0,
            )
            for bucket in buckets
        ]

    async def area_buckets(
        self, lat: float, lng: float, radius_km: float, cell_degrees: float
    ) -> List[AreaBucket]:
        """Group active businesses around a point into grid cells of ``cell_degrees``."""
        query = {"bool": {"filter": [geo_distance_filter(lat, lng, radius_km), {"term": {"is_active": True}}]}}
        buckets: List[AreaBucket] = []
        after_key = None
        while True:
            composite: Dict[str, Any] = {
                "size": AREA_PAGE_SIZE,
                "sources": [
                    {"i": {"terms": {"script": _cell_script("lat", cell_degrees)}}},
                    {"j": {"terms": {"script": _cell_script("lon", cell_degrees)}}},
                ],
            }
            if after_key is not None:
                composite["after"] = after_key
            response = await asyncio.to_thread(
                self.es.search,
                index=self.index,
                query=query,
                size=0,
                aggs={
                    "cells": {
                        "composite": composite,
                        "aggs": {
                            "rating": {"avg": {"field": "rating", "missing": AREA_DEFAULT_RATING}},
                            "categories": {"terms": {"field": "categories", "size": AREA_TOP_CATEGORIES}},
                        },
                    }
                },
            )
            agg = response.get("aggregations", {}).get("cells", {})
            for bucket in agg.get("buckets", []):
                rating = bucket.get("rating", {}).get("value")
                buckets.append(
                    AreaBucket(
                        cell_lat=int(bucket["key"]["i"]) * cell_degrees + cell_degrees / 2,
                        cell_lng=int(bucket["key"]["j"]) * cell_degrees + cell_degrees / 2,
                        business_count=bucket["doc_count"],
                        average_rating=rating if rating is not None else AREA_DEFAULT_RATING,
                        top_categories=[c["key"] for c in bucket.get("categories", {}).get("buckets", [])],
                    )
                )
            after_key = agg.get("after_key")
            if not agg.get("buckets") or after_key is None:
                break
        logger.debug("area buckets lat=%s lng=%s radius=%s cells=%s", lat, lng, radius_km, len(buckets))
        return buckets


def _cell_script(axis: str, cell_degrees: float) -> dict:
    # Same rounding as geo.grid_cell so ES cells line up with cache grid keys
    return {
        "lang": "painless",
        "source": f"(long) Math.floor(Math.rint(doc['location'].{axis} / params.cell * 1e9) / 1e9)",
        "params": {"cell": cell_degrees},
    }
