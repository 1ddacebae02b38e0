"""Redis-backed counters of searched phrases, feeding trending and popular suggestions."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional

import redis

from .errors import CacheError
from .text import normalize_text

logger = logging.getLogger(__name__)

DAY_BUCKET_TTL_SECONDS = 3 * 24 * 60 * 60
SCAN_LIMIT = 200


@dataclass(frozen=True)
class QueryFrequency:
    query: str
    frequency: int
    growth_pct: float = 0.0


def _today() -> date:
    return datetime.now(timezone.utc).date()


class QueryStats:
    """All-time and per-day sorted sets of normalized query text."""

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "geosearch",
        today: Callable[[], date] = _today,
    ) -> None:
        self.client = client
        self.prefix = prefix
        self._today = today

    def _all_key(self) -> str:
        return f"{self.prefix}:stats:queries:all"

    def _day_key(self, day: date) -> str:
        return f"{self.prefix}:stats:queries:{day:%Y%m%d}"

    async def record(self, text: str) -> None:
        member = normalize_text(text)
        if not member:
            return
        try:
            await asyncio.to_thread(self._record, member)
        except redis.RedisError as exc:
            raise CacheError(f"Failed to record query {member!r}: {exc}") from exc

    def _record(self, member: str) -> None:
        day_key = self._day_key(self._today())
        pipe = self.client.pipeline()
        pipe.zincrby(self._all_key(), 1, member)
        pipe.zincrby(day_key, 1, member)
        pipe.expire(day_key, DAY_BUCKET_TTL_SECONDS)
        pipe.execute()

    async def popular(self, limit: int, containing: Optional[str] = None) -> List[QueryFrequency]:
        try:
            rows = await asyncio.to_thread(self._top, self._all_key())
        except redis.RedisError as exc:
            raise CacheError(f"Failed to read popular queries: {exc}") from exc
        return [QueryFrequency(query, count) for query, count in self._filter(rows, containing)][:limit]

    async def trending(self, limit: int, containing: Optional[str] = None) -> List[QueryFrequency]:
        try:
            rows = await asyncio.to_thread(self._trending_rows)
        except redis.RedisError as exc:
            raise CacheError(f"Failed to read trending queries: {exc}") from exc
        ranked = [
            QueryFrequency(query, today_count, growth)
            for query, today_count, growth in rows
            if growth > 0 and (not containing or normalize_text(containing) in query)
        ]
        ranked.sort(key=lambda item: (-item.growth_pct, -item.frequency, item.query))
        return ranked[:limit]

    def _top(self, key: str) -> list[tuple[str, int]]:
        rows = self.client.zrevrange(key, 0, SCAN_LIMIT - 1, withscores=True)
        return [(self._decode(member), int(score)) for member, score in rows]

    def _trending_rows(self) -> list[tuple[str, int, float]]:
        today = self._today()
        today_rows = self._top(self._day_key(today))
        if not today_rows:
            return []
        pipe = self.client.pipeline()
        yesterday_key = self._day_key(today - timedelta(days=1))
        for member, _ in today_rows:
            pipe.zscore(yesterday_key, member)
        previous = pipe.execute()
        rows = []
        for (member, count), before in zip(today_rows, previous):
            before_count = int(before or 0)
            growth = (count - before_count) * 100.0 / max(before_count, 1)
            rows.append((member, count, round(growth, 1)))
        return rows

    @staticmethod
    def _filter(rows: list[tuple[str, int]], containing: Optional[str]) -> list[tuple[str, int]]:
        needle = normalize_text(containing)
        if not needle:
            return rows
        return [(query, count) for query, count in rows if needle in query]

    @staticmethod
    def _decode(member: bytes | str) -> str:
        return member.decode("utf-8") if isinstance(member, bytes) else member
