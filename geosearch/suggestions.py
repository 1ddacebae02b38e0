"""Autocomplete fan-out across suggestion sources.

Each source proposes a handful of :class:`SuggestionCandidate` objects for
the typed text. :class:`SuggestionAggregator` queries the enabled sources
concurrently, tolerates individual failures, collapses duplicates and lets
:class:`~geosearch.ranking.RankingEngine` order the result.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from time import perf_counter
from typing import Callable, Dict, List, Mapping, Optional, Protocol

from elasticsearch import Elasticsearch
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from .cache import CacheStore
from .cache_keys import CacheKeyPolicy, normalize_text_fragment
from .config import Settings, settings as default_settings
from .errors import CacheError, SearchTimeoutError
from .models import GeoPoint, RankedSuggestion, SourceType, SuggestionCandidate, SuggestOptions
from .query_stats import QueryStats
from .ranking import SOURCE_PRIORITY, RankingEngine
from .spatial import geo_distance_filter
from .text import normalize_text, similarity, to_phonetic

logger = logging.getLogger(__name__)

CATEGORY_SIMILARITY_THRESHOLD = 0.5
CATEGORY_AGG_SIZE = 50
SUGGESTION_LIST = TypeAdapter(List[RankedSuggestion])
# Fewer results than this are cached for the sparse TTL
SPARSE_RESULT_COUNT = 3
LOCATION_TTL_FACTOR = 1.5


class SuggestionSource(Protocol):
    async def find_candidates(
        self, text: str, location: Optional[GeoPoint], limit: int
    ) -> List[SuggestionCandidate]: ...


class BusinessNameSource:
    """Business names matching the typed prefix, fuzzily or phonetically."""

    def __init__(self, es: Elasticsearch, index: str, radius_km: float = 10.0) -> None:
        self.es = es
        self.index = index
        self.radius_km = radius_km

    def build_query(self, text: str, location: Optional[GeoPoint]) -> dict:
        should: List[dict] = [
            {"match_phrase_prefix": {"name": {"query": text, "boost": 3.0}}},
            {"match": {"name.autocomplete": {"query": text, "operator": "and", "boost": 2.0}}},
            {"match": {"name": {"query": text, "fuzziness": "AUTO"}}},
        ]
        phonetic = to_phonetic(text)
        if phonetic:
            should.append({"match": {"name_phonetic": {"query": phonetic, "boost": 1.5}}})
        filters: List[dict] = [{"term": {"is_active": True}}]
        if location is not None:
            filters.append(geo_distance_filter(location.lat, location.lon, self.radius_km))
        return {"bool": {"should": should, "minimum_should_match": 1, "filter": filters}}

    async def find_candidates(
        self, text: str, location: Optional[GeoPoint], limit: int
    ) -> List[SuggestionCandidate]:
        if not normalize_text(text):
            return []
        response = await asyncio.to_thread(
            self.es.search,
            index=self.index,
            query=self.build_query(text, location),
            size=limit,
            source_includes=["id", "name", "location", "categories", "popularity", "review_count"],
        )
        hits = response.get("hits", {}).get("hits", [])
        top_score = max((hit.get("_score") or 0.0 for hit in hits), default=0.0) or 1.0
        candidates = []
        for hit in hits:
            source = hit.get("_source", {})
            business_id = str(source.get("id") or hit.get("_id"))
            popularity = source.get("popularity")
            if popularity is None:
                popularity = min(100, source.get("review_count") or 0)
            point = source.get("location")
            candidates.append(
                SuggestionCandidate(
                    id=f"business_{business_id}",
                    source_type=SourceType.NAME,
                    text=source.get("name", ""),
                    base_score=(hit.get("_score") or 0.0) / top_score,
                    location=GeoPoint(lat=point["lat"], lon=point["lon"]) if point else None,
                    global_popularity=float(popularity),
                    metadata={"business_id": business_id, "categories": source.get("categories", [])},
                )
            )
        return candidates


class CategorySource:
    """Categories present near the user (or globally) that resemble the typed text."""

    def __init__(self, es: Elasticsearch, index: str, radius_km: float = 25.0) -> None:
        self.es = es
        self.index = index
        self.radius_km = radius_km

    async def find_candidates(
        self, text: str, location: Optional[GeoPoint], limit: int
    ) -> List[SuggestionCandidate]:
        typed = normalize_text(text)
        if not typed:
            return []
        filters: List[dict] = [{"term": {"is_active": True}}]
        if location is not None:
            filters.append(geo_distance_filter(location.lat, location.lon, self.radius_km))
        response = await asyncio.to_thread(
            self.es.search,
            index=self.index,
            query={"bool": {"filter": filters}},
            size=0,
            track_total_hits=True,
            aggs={"categories": {"terms": {"field": "categories", "size": CATEGORY_AGG_SIZE}}},
        )
        total = response.get("hits", {}).get("total", {}).get("value", 0)
        buckets = response.get("aggregations", {}).get("categories", {}).get("buckets", [])

        candidates = []
        for bucket in buckets:
            category = bucket["key"]
            if typed not in normalize_text(category) and similarity(category, typed) <= CATEGORY_SIMILARITY_THRESHOLD:
                continue
            share = bucket["doc_count"] / total if total else 0.0
            candidates.append(
                SuggestionCandidate(
                    id=f"category_{category}",
                    source_type=SourceType.CATEGORY,
                    text=category,
                    base_score=share,
                    location=location,
                    global_popularity=share * 100,
                    metadata={"count": bucket["doc_count"], "percentage": round(share * 100, 1)},
                )
            )
            if len(candidates) >= limit:
                break
        return candidates


class TrendingQuerySource:
    """Queries searched more today than yesterday."""

    def __init__(self, stats: QueryStats, clock: Callable[[], float] = time.time) -> None:
        self.stats = stats
        self._clock = clock

    async def find_candidates(
        self, text: str, location: Optional[GeoPoint], limit: int
    ) -> List[SuggestionCandidate]:
        rows = await self.stats.trending(limit, containing=text)
        now = self._clock()
        return [
            SuggestionCandidate(
                id=f"trending_{row.query}",
                source_type=SourceType.TRENDING,
                text=row.query,
                base_score=min(1.0, row.growth_pct / 100),
                global_popularity=min(100.0, float(row.frequency)),
                last_used=now,
                metadata={"frequency": row.frequency, "growth_pct": row.growth_pct},
            )
            for row in rows
        ]


class PopularQuerySource:
    """Most searched queries of all time."""

    def __init__(self, stats: QueryStats) -> None:
        self.stats = stats

    async def find_candidates(
        self, text: str, location: Optional[GeoPoint], limit: int
    ) -> List[SuggestionCandidate]:
        rows = await self.stats.popular(limit, containing=text)
        return [
            SuggestionCandidate(
                id=f"popular_{row.query}",
                source_type=SourceType.POPULAR,
                text=row.query,
                base_score=min(1.0, row.frequency / 100),
                global_popularity=min(100.0, float(row.frequency)),
                metadata={"frequency": row.frequency},
            )
            for row in rows
        ]


def dedupe_candidates(candidates: List[SuggestionCandidate]) -> List[SuggestionCandidate]:
    """Collapse candidates with the same normalized text, keeping the highest base score."""
    best: Dict[str, SuggestionCandidate] = {}
    for candidate in candidates:
        key = normalize_text(candidate.text)
        if not key:
            continue
        current = best.get(key)
        if current is None or candidate.base_score > current.base_score:
            best[key] = candidate
    return list(best.values())


class SuggestionAggregator:
    """Fans out to the suggestion sources and caches the ranked answer.

    The cache is best-effort: read and write failures are logged and the
    fan-out proceeds as if nothing was cached.
    """

    def __init__(
        self,
        sources: Mapping[SourceType, SuggestionSource],
        ranking: RankingEngine,
        config: Settings | None = None,
        cache: CacheStore | None = None,
        key_policy: CacheKeyPolicy | None = None,
    ) -> None:
        self.sources = dict(sources)
        self.ranking = ranking
        self.config = config or default_settings
        self.cache = cache
        self.key_policy = key_policy if key_policy is not None else CacheKeyPolicy(self.config)

    def default_options(self) -> SuggestOptions:
        return SuggestOptions(
            limit=self.config.suggest_limit,
            source_limit=self.config.suggest_source_limit,
            min_confidence=self.config.suggest_min_confidence,
        )

    def cache_key(self, text: str, location: Optional[GeoPoint], options: SuggestOptions) -> str:
        return self.key_policy.suggest_key(
            {
                "q": normalize_text_fragment(normalize_text(text), self.config.max_text_length),
                "loc": [round(location.lat, 3), round(location.lon, 3)] if location is not None else None,
                "l": options.limit,
                "sl": options.source_limit,
                "src": sorted(source.value for source in options.sources),
                "mc": options.min_confidence,
            }
        )

    def cache_ttl(self, result_count: int, location: Optional[GeoPoint]) -> int:
        cfg = self.config
        ttl = cfg.suggest_cache_ttl_seconds if result_count >= SPARSE_RESULT_COUNT else cfg.suggest_sparse_cache_ttl_seconds
        if location is not None:
            ttl = math.floor(ttl * LOCATION_TTL_FACTOR)
        return ttl

    async def suggest(
        self,
        text: str,
        location: Optional[GeoPoint] = None,
        options: Optional[SuggestOptions] = None,
    ) -> List[RankedSuggestion]:
        options = options or self.default_options()
        start = perf_counter()
        key = self.cache_key(text, location, options)
        cached = await self._read_cache(key)
        if cached is not None:
            logger.info(
                "timing: total=%.2fms suggest q=%r cache_hit=1 returned=%s",
                (perf_counter() - start) * 1000,
                text,
                len(cached),
            )
            return cached

        fan_out = self._collect(text, location, options)
        if options.timeout_seconds is None:
            candidates = await fan_out
        else:
            try:
                candidates = await asyncio.wait_for(fan_out, options.timeout_seconds)
            except asyncio.TimeoutError:
                elapsed_ms = (perf_counter() - start) * 1000
                logger.warning("suggest deadline exceeded after %.2fms q=%r", elapsed_ms, text)
                raise SearchTimeoutError(
                    f"Suggestions exceeded {options.timeout_seconds}s deadline", elapsed_ms=elapsed_ms
                ) from None

        merged = dedupe_candidates(candidates)
        ranked = self.ranking.rank(merged, text, location, min_confidence=options.min_confidence)[: options.limit]
        await self._write_cache(key, ranked, location)
        logger.info(
            "timing: total=%.2fms suggest q=%r cache_hit=0 candidates=%s unique=%s returned=%s",
            (perf_counter() - start) * 1000,
            text,
            len(candidates),
            len(merged),
            len(ranked),
        )
        return ranked

    async def _read_cache(self, key: str) -> Optional[List[RankedSuggestion]]:
        if self.cache is None:
            return None
        try:
            raw = await self.cache.get(key)
        except CacheError as exc:
            logger.warning("suggestion cache read failed, treating as miss: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return SUGGESTION_LIST.validate_json(raw)
        except PydanticValidationError as exc:
            logger.warning("discarding undecodable suggestion entry %s: %s", key, exc)
            return None

    async def _write_cache(self, key: str, ranked: List[RankedSuggestion], location: Optional[GeoPoint]) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(key, SUGGESTION_LIST.dump_json(ranked), self.cache_ttl(len(ranked), location))
        except CacheError as exc:
            logger.warning("suggestion cache write failed for %s: %s", key, exc)

    async def _collect(
        self, text: str, location: Optional[GeoPoint], options: SuggestOptions
    ) -> List[SuggestionCandidate]:
        enabled = [
            (source_type, self.sources[source_type])
            for source_type in SOURCE_PRIORITY
            if source_type in options.sources and source_type in self.sources
        ]
        results = await asyncio.gather(
            *(source.find_candidates(text, location, options.source_limit) for _, source in enabled),
            return_exceptions=True,
        )
        candidates: List[SuggestionCandidate] = []
        for (source_type, _), result in zip(enabled, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning("suggestion source %s failed: %s", source_type.value, result)
                continue
            candidates.extend(result[: options.source_limit])
        return candidates
