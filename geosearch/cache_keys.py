"""Cache key derivation for search results and invalidation grid cells."""
from __future__ import annotations

import hashlib
import json
from decimal import ROUND_DOWN, Decimal

from .config import Settings, settings as default_settings
from .geo import grid_cell, neighboring_cells
from .models import LocationQuery

COORDINATE_DECIMALS = 4


def quantize_coordinate(value: float, decimals: int = COORDINATE_DECIMALS) -> str:
    """Truncate toward zero so values sharing the first ``decimals`` digits collide."""
    # repr() is the shortest string that round-trips, so no binary float noise
    # leaks into the decimal digits being kept
    step = Decimal(1).scaleb(-decimals)
    truncated = Decimal(repr(float(value))).quantize(step, rounding=ROUND_DOWN)
    if truncated.is_zero():
        truncated = abs(truncated)
    return format(truncated, "f")


def normalize_text_fragment(text: str | None, max_length: int) -> str:
    if not text:
        return ""
    return "_".join(text.lower().split())[:max_length]


def _canonical_terms(values: tuple[str, ...]) -> list[str]:
    return sorted({value.strip().casefold() for value in values if value.strip()})


class CacheKeyPolicy:
    """Derives stable search keys and coarse grid keys.

    Search keys look like ``<prefix>:search:<grid>:<digest>``: the grid
    segment scopes prefix deletes during invalidation, the digest covers the
    quantized coordinates and every filter in canonical order.
    """

    def __init__(self, config: Settings | None = None) -> None:
        self.config = config or default_settings
        self.prefix = self.config.cache_prefix
        self.cell_degrees = self.config.grid_cell_degrees
        self.neighbor_span = self.config.grid_neighbor_span

    def canonical_parts(self, query: LocationQuery) -> dict:
        price = list(query.price_range) if query.price_range else None
        return {
            "lat": quantize_coordinate(query.lat),
            "lng": quantize_coordinate(query.lng),
            "r": f"{query.radius_km:g}",
            "c": _canonical_terms(query.categories),
            "a": _canonical_terms(query.amenities),
            "s": normalize_text_fragment(query.text, self.config.max_text_length),
            "sort": query.sort_by.value,
            "pr": price,
            "open": query.open_only,
            "stats": query.include_category_stats,
            "p": query.page,
            "l": query.page_size,
        }

    def search_key(self, query: LocationQuery) -> str:
        parts = self.canonical_parts(query)
        serialized = json.dumps(parts, sort_keys=True, separators=(",", ":"))
        digest = hashlib.sha256(serialized.encode("utf-8")).hexdigest()[:16]
        return f"{self.search_prefix(self.center_grid_key(query))}{digest}"

    def center_grid_key(self, query: LocationQuery) -> str:
        # Grid of the quantized center, so keys that share a digest share a cell too
        return self.grid_key(float(quantize_coordinate(query.lat)), float(quantize_coordinate(query.lng)))

    def grid_key(self, lat: float, lng: float) -> str:
        return self._format_cell(grid_cell(lat, lng, self.cell_degrees))

    def neighboring_grid_keys(self, lat: float, lng: float) -> list[str]:
        return [
            self._format_cell(cell)
            for cell in neighboring_cells(lat, lng, self.cell_degrees, self.neighbor_span)
        ]

    def search_prefix(self, grid_key: str) -> str:
        return f"{self.prefix}:search:{grid_key}:"

    def cluster_key(self, grid_key: str) -> str:
        return f"{self.prefix}:cluster:{grid_key}"

    def areas_prefix(self, grid_key: str) -> str:
        return f"{self.prefix}:areas:{grid_key}:"

    def areas_key(self, lat: float, lng: float, radius_km: float) -> str:
        return f"{self.areas_prefix(self.grid_key(lat, lng))}r{radius_km:g}"

    def suggest_key(self, parts: dict) -> str:
        serialized = json.dumps(parts, sort_keys=True, separators=(",", ":"))
        digest = hashlib.sha256(serialized.encode("utf-8")).hexdigest()[:16]
        return f"{self.prefix}:suggest:{digest}"

    @staticmethod
    def _format_cell(cell: tuple[int, int]) -> str:
        return f"g{cell[0]}_{cell[1]}"
