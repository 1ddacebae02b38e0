"""Bulk loader for business documents kept in a local JSON file."""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Iterable

from elasticsearch import Elasticsearch, helpers

from .config import settings
from .text import to_phonetic

logger = logging.getLogger(__name__)

PASSTHROUGH_FIELDS = (
    "description",
    "hours",
    "timezone",
    "rating",
    "review_count",
    "price_level",
    "popularity",
    "created_at",
    "address",
)


def _load_businesses(path: Path) -> list[dict]:
    if not path.exists():
        logger.warning("Businesses file %s is missing", path)
        return []
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _location(raw: dict) -> dict | None:
    location = raw.get("location")
    if isinstance(location, dict):
        lat = location.get("lat")
        lon = location.get("lon", location.get("lng"))
    else:
        lat = raw.get("lat", raw.get("latitude"))
        lon = raw.get("lng", raw.get("lon", raw.get("longitude")))
    if lat is None or lon is None:
        return None
    return {"lat": float(lat), "lon": float(lon)}


def prepare_business(raw: dict) -> dict | None:
    """Shape a raw record into an index document; ``None`` when it has no location."""
    location = _location(raw)
    if location is None:
        logger.warning("Skipping business %r without coordinates", raw.get("id") or raw.get("name"))
        return None
    name = raw.get("name") or ""
    categories = raw.get("categories") or ([raw["category"]] if raw.get("category") else [])
    document = {
        "id": str(raw.get("id") or raw.get("external_id") or name),
        "name": name,
        "name_phonetic": to_phonetic(name),
        "location": location,
        "categories": list(categories),
        "amenities": list(raw.get("amenities") or []),
        "is_active": bool(raw.get("is_active", True)),
    }
    for field in PASSTHROUGH_FIELDS:
        if raw.get(field) is not None:
            document[field] = raw[field]
    return document


def _iter_actions(index: str, documents: Iterable[dict]) -> Iterable[dict]:
    for document in documents:
        yield {
            "_index": index,
            "_id": document["id"],
            "_source": document,
        }


async def import_businesses(es: Elasticsearch, path: str | Path | None = None, index: str | None = None) -> int:
    raw_businesses = _load_businesses(Path(path or settings.businesses_path))
    documents = [doc for doc in (prepare_business(item) for item in raw_businesses) if doc]
    if not documents:
        return 0
    actions = list(_iter_actions(index or settings.es_index, documents))
    await asyncio.to_thread(helpers.bulk, es, actions)
    logger.info("Indexed %s businesses", len(actions))
    return len(actions)


async def import_if_empty(es: Elasticsearch) -> int:
    from .indexing import index_is_empty

    if not await index_is_empty(es):
        return 0
    return await import_businesses(es)


async def reindex_data(es: Elasticsearch) -> int:
    from .indexing import drop_index, ensure_index

    await drop_index(es)
    await ensure_index(es)
    return await import_businesses(es)
