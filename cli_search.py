"""Terminal client that reuses the in-process search engine."""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Iterable

from geosearch.errors import SearchError
from geosearch.main import Engine, build_engine
from geosearch.models import GeoPoint, SearchResultPage

GREEN = "\033[92m"
RED = "\033[91m"
RESET = "\033[0m"


async def perform_query(engine: Engine, lat: float, lng: float, text: str | None, radius: float, size: int) -> SearchResultPage:
    raw = {"lat": lat, "lng": lng, "radius_km": radius, "page_size": size}
    if text:
        raw["text"] = text
    return await engine.search.search(raw)


def pretty_print_page(text: str | None, page: SearchResultPage) -> None:
    color = GREEN if page.took_ms < 200 else RED
    took_label = f"{color}{page.took_ms:.1f} ms{RESET}"
    cache_label = "hit" if page.cache_hit else "miss"
    print(
        f"Query: {text or '*'} | results: {len(page.items)}/{page.total_count} | "
        f"radius: {page.radius_km:g} km | cache: {cache_label} | took: {took_label}"
    )
    for adjustment in page.adjustments:
        print(f"  note: {adjustment.field} {adjustment.requested} -> {adjustment.applied}")
    for idx, item in enumerate(page.items, start=1):
        status = "open" if item.is_open_now else "closed"
        print(
            f"  {idx:02d}. {item.distance_km:6.2f} km {item.bearing_degrees:5.0f}° "
            f"~{item.estimated_travel_minutes} min | {status:6} | {item.name} | {', '.join(item.categories)}"
        )


def batch_mode(engine: Engine, file_path: Path, lat: float, lng: float, radius: float, size: int) -> None:
    with file_path.open("r", encoding="utf-8") as fh:
        for line in fh:
            text = line.strip()
            if not text:
                continue
            page = asyncio.run(perform_query(engine, lat, lng, text, radius, size))
            pretty_print_page(text, page)


def suggest_mode(engine: Engine, text: str, lat: float, lng: float) -> None:
    suggestions = asyncio.run(engine.suggestions.suggest(text, GeoPoint(lat=lat, lon=lng)))
    for suggestion in suggestions:
        print(
            f"  {suggestion.position:02d}. score={suggestion.final_score:.2f} | "
            f"{suggestion.source_type.value:8} | {suggestion.text}"
        )


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="CLI client for the nearby search engine")
    parser.add_argument("lat", type=float, help="Latitude of the search center")
    parser.add_argument("lng", type=float, help="Longitude of the search center")
    parser.add_argument("text", nargs="?", help="Optional free text filter")
    parser.add_argument("--radius", type=float, default=25.0, help="Search radius in km")
    parser.add_argument("--size", type=int, default=10, help="Page size")
    parser.add_argument("--batch", type=Path, help="File with text queries to execute line by line")
    parser.add_argument("--suggest", action="store_true", help="Show autocomplete suggestions for TEXT instead")
    args = parser.parse_args(list(argv) if argv is not None else None)

    engine = build_engine()
    try:
        if args.batch:
            batch_mode(engine, args.batch, args.lat, args.lng, args.radius, args.size)
        elif args.suggest:
            if not args.text:
                parser.error("--suggest requires TEXT")
            suggest_mode(engine, args.text, args.lat, args.lng)
        else:
            page = asyncio.run(perform_query(engine, args.lat, args.lng, args.text, args.radius, args.size))
            pretty_print_page(args.text, page)
    except SearchError as exc:
        print(f"{RED}error:{RESET} {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
