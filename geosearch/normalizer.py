"""Validation and clamping of raw location queries.

Raw input arrives loosely typed (HTTP query strings, JSON bodies, CLI args).
:class:`QueryNormalizer` turns it into a single immutable
:class:`~geosearch.models.LocationQuery` that nothing downstream re-parses.

Coordinates are a hard contract: non-finite or out-of-range values raise
:class:`~geosearch.errors.ValidationError`. Radius and paging are UX hints and
are clamped instead, with every clamp reported as a
:class:`~geosearch.models.QueryAdjustment`.
"""
from __future__ import annotations

import math
from typing import Any, Iterable, Mapping

from .config import Settings, settings as default_settings
from .errors import ValidationError
from .models import LocationQuery, QueryAdjustment, SortBy

MIN_PRICE_LEVEL = 1
MAX_PRICE_LEVEL = 4
_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def _first(raw: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = raw.get(name)
        if value is not None and value != "":
            return value
    return None


def _to_float(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field) from None
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be finite", field=field)
    return number


def _to_int(value: Any, field: str) -> int:
    number = _to_float(value, field)
    return int(number)


def _to_bool(value: Any, field: str) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in _TRUE_STRINGS:
        return True
    if lowered in _FALSE_STRINGS:
        return False
    raise ValidationError(f"{field} must be a boolean, got {value!r}", field=field)


def _split_terms(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    else:
        items = value
    return [str(item) for item in items]


def dedupe_terms(values: Iterable[str]) -> tuple[str, ...]:
    """Trim and drop case-insensitive duplicates, keeping first spelling and order."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        term = value.strip()
        folded = term.casefold()
        if not term or folded in seen:
            continue
        seen.add(folded)
        result.append(term)
    return tuple(result)


class QueryNormalizer:
    """Pure function object: ``normalize(raw) -> LocationQuery``."""

    def __init__(self, config: Settings | None = None) -> None:
        self.config = config or default_settings

    def normalize(self, raw: Mapping[str, Any]) -> LocationQuery:
        cfg = self.config
        adjustments: list[QueryAdjustment] = []

        lat_raw = _first(raw, "lat", "latitude")
        lng_raw = _first(raw, "lng", "lon", "longitude")
        if lat_raw is None or lng_raw is None:
            raise ValidationError("lat and lng are required", field="lat" if lat_raw is None else "lng")
        lat = _to_float(lat_raw, "lat")
        lng = _to_float(lng_raw, "lng")
        if not -90.0 <= lat <= 90.0:
            raise ValidationError(f"lat out of range: {lat}", field="lat")
        if not -180.0 <= lng <= 180.0:
            raise ValidationError(f"lng out of range: {lng}", field="lng")

        radius_raw = _first(raw, "radius_km", "radiusKm", "radius")
        requested_radius = cfg.default_radius_km if radius_raw is None else _to_float(radius_raw, "radius_km")
        radius_km = min(max(requested_radius, cfg.min_radius_km), cfg.max_radius_km)
        if radius_km != requested_radius:
            adjustments.append(QueryAdjustment(field="radius_km", requested=requested_radius, applied=radius_km))

        page_raw = _first(raw, "page")
        requested_page = 1 if page_raw is None else _to_int(page_raw, "page")
        page = max(requested_page, 1)
        if page != requested_page:
            adjustments.append(QueryAdjustment(field="page", requested=requested_page, applied=page))

        size_raw = _first(raw, "page_size", "pageSize", "limit")
        requested_size = cfg.default_page_size if size_raw is None else _to_int(size_raw, "page_size")
        page_size = min(max(requested_size, 1), cfg.max_page_size)
        if page_size != requested_size:
            adjustments.append(QueryAdjustment(field="page_size", requested=requested_size, applied=page_size))

        sort_raw = _first(raw, "sort_by", "sortBy")
        try:
            sort_by = SortBy(str(sort_raw).strip().lower()) if sort_raw is not None else SortBy.DISTANCE
        except ValueError:
            raise ValidationError(f"Unsupported sort_by {sort_raw!r}", field="sort_by") from None

        price_range = self._price_range(_first(raw, "price_range", "priceRange"), adjustments)

        return LocationQuery(
            lat=lat,
            lng=lng,
            radius_km=radius_km,
            categories=dedupe_terms(_split_terms(_first(raw, "categories", "category"))),
            text=self._text(_first(raw, "text", "q", "search")),
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            price_range=price_range,
            amenities=dedupe_terms(_split_terms(_first(raw, "amenities"))),
            open_only=_to_bool(_first(raw, "open_only", "openOnly", "is_open"), "open_only"),
            include_category_stats=bool(
                _to_bool(_first(raw, "include_category_stats", "includeCategoryStats"), "include_category_stats")
            ),
            adjustments=tuple(adjustments),
        )

    def _text(self, value: Any) -> str | None:
        if value is None:
            return None
        compact = " ".join(str(value).split())
        return compact[: self.config.max_text_length] or None

    def _price_range(self, value: Any, adjustments: list[QueryAdjustment]) -> tuple[int, int] | None:
        if value is None:
            return None
        parts = value.split("-") if isinstance(value, str) else list(value)
        if len(parts) != 2:
            raise ValidationError(f"price_range must have two bounds, got {value!r}", field="price_range")
        low, high = sorted(_to_int(part, "price_range") for part in parts)
        applied = (
            min(max(low, MIN_PRICE_LEVEL), MAX_PRICE_LEVEL),
            min(max(high, MIN_PRICE_LEVEL), MAX_PRICE_LEVEL),
        )
        if applied != (low, high):
            adjustments.append(QueryAdjustment(field="price_range", requested=[low, high], applied=list(applied)))
        return applied


def normalize(raw: Mapping[str, Any], config: Settings | None = None) -> LocationQuery:
    return QueryNormalizer(config).normalize(raw)
