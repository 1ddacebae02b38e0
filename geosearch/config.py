"""Application configuration and constants."""
from __future__ import annotations

import os
from dataclasses import dataclass


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value is not None else default


@dataclass(frozen=True)
class Settings:
    """Simple settings container with environment variable overrides."""

    es_host: str = _get_env("ES_HOST", "http://localhost:9200")
    es_index: str = _get_env("ES_INDEX", "businesses")
    es_request_timeout_seconds: float = float(_get_env("ES_REQUEST_TIMEOUT_SECONDS", "10"))
    mapping_path: str = _get_env("MAPPING_PATH", "business-mapping.json")
    businesses_path: str = _get_env("BUSINESSES_PATH", "businesses.json")
    redis_host: str = _get_env("REDIS_HOST", "localhost")
    redis_port: int = int(_get_env("REDIS_PORT", "6379"))
    cache_prefix: str = _get_env("CACHE_PREFIX", "geosearch")
    load_on_startup: bool = _get_env("LOAD_ON_STARTUP", "true").lower() in {"1", "true", "yes"}
    log_level: str = _get_env("LOG_LEVEL", "INFO")

    # Query limits
    min_radius_km: float = float(_get_env("MIN_RADIUS_KM", "0.1"))
    max_radius_km: float = float(_get_env("MAX_RADIUS_KM", "100"))
    default_radius_km: float = float(_get_env("DEFAULT_RADIUS_KM", "25"))
    default_page_size: int = int(_get_env("DEFAULT_PAGE_SIZE", "10"))
    max_page_size: int = int(_get_env("MAX_PAGE_SIZE", "50"))
    max_text_length: int = int(_get_env("MAX_TEXT_LENGTH", "100"))

    # Grid used for invalidation scoping (0.01 deg ~ 1.1 km)
    grid_cell_degrees: float = float(_get_env("GRID_CELL_DEGREES", "0.01"))
    grid_neighbor_span: int = int(_get_env("GRID_NEIGHBOR_SPAN", "3"))
    grid_index_max_cells: int = int(_get_env("GRID_INDEX_MAX_CELLS", "10000"))
    grid_index_keys_per_cell: int = int(_get_env("GRID_INDEX_KEYS_PER_CELL", "64"))
    cluster_ttl_seconds: int = int(_get_env("CLUSTER_TTL_SECONDS", "600"))

    # Dynamic TTL by result density
    ttl_high_density_seconds: int = int(_get_env("TTL_HIGH_DENSITY_SECONDS", "600"))
    ttl_medium_density_seconds: int = int(_get_env("TTL_MEDIUM_DENSITY_SECONDS", "300"))
    ttl_low_density_seconds: int = int(_get_env("TTL_LOW_DENSITY_SECONDS", "120"))
    high_density_threshold: float = float(_get_env("HIGH_DENSITY_THRESHOLD", "0.5"))
    medium_density_threshold: float = float(_get_env("MEDIUM_DENSITY_THRESHOLD", "0.2"))

    # Result enrichment
    average_speed_kmh: float = float(_get_env("AVERAGE_SPEED_KMH", "30"))
    default_timezone: str = _get_env("DEFAULT_TIMEZONE", "UTC")

    # Autocomplete
    suggest_limit: int = int(_get_env("SUGGEST_LIMIT", "10"))
    suggest_source_limit: int = int(_get_env("SUGGEST_SOURCE_LIMIT", "3"))
    suggest_min_confidence: float = float(_get_env("SUGGEST_MIN_CONFIDENCE", "0.1"))
    suggest_name_radius_km: float = float(_get_env("SUGGEST_NAME_RADIUS_KM", "10"))
    suggest_category_radius_km: float = float(_get_env("SUGGEST_CATEGORY_RADIUS_KM", "25"))
    suggest_cache_ttl_seconds: int = int(_get_env("SUGGEST_CACHE_TTL_SECONDS", "300"))
    suggest_sparse_cache_ttl_seconds: int = int(_get_env("SUGGEST_SPARSE_CACHE_TTL_SECONDS", "120"))

    # Popular areas analytics
    popular_areas_ttl_seconds: int = int(_get_env("POPULAR_AREAS_TTL_SECONDS", "1800"))
    popular_areas_radius_km: float = float(_get_env("POPULAR_AREAS_RADIUS_KM", "50"))
    popular_areas_min_businesses: int = int(_get_env("POPULAR_AREAS_MIN_BUSINESSES", "3"))
    popular_areas_limit: int = int(_get_env("POPULAR_AREAS_LIMIT", "10"))

    # In-memory cache fallback
    memory_cache_max_entries: int = int(_get_env("MEMORY_CACHE_MAX_ENTRIES", "10000"))


settings = Settings()
