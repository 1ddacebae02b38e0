"""Deterministic scoring and ordering of autocomplete candidates."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .geo import haversine_km
from .models import GeoPoint, RankedSuggestion, SourceType, SuggestionCandidate
from .text import normalize_text

logger = logging.getLogger(__name__)

RECENCY_WINDOW_SECONDS = 30 * 24 * 60 * 60

DEFAULT_SOURCE_WEIGHTS: Dict[SourceType, float] = {
    SourceType.HISTORY: 0.5,
    SourceType.NAME: 0.4,
    SourceType.CATEGORY: 0.3,
    SourceType.TRENDING: 0.2,
    SourceType.LOCATION: 0.2,
    SourceType.POPULAR: 0.1,
}

# Tie-break order for equal scores, most preferred first.
SOURCE_PRIORITY: Tuple[SourceType, ...] = (
    SourceType.HISTORY,
    SourceType.NAME,
    SourceType.CATEGORY,
    SourceType.TRENDING,
    SourceType.LOCATION,
    SourceType.POPULAR,
)

DEFAULT_PROXIMITY_BANDS: Tuple[Tuple[float, float], ...] = ((1.0, 0.3), (5.0, 0.2), (10.0, 0.1))


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


@dataclass(frozen=True)
class ScoringWeights:
    """Tunable weights. Every signal is clamped to [0, 1] before weighting."""

    base: float = 1.0
    exact_match: float = 0.5
    prefix_match: float = 0.3
    popularity: float = 0.2
    recency: float = 0.1
    source_weights: Mapping[SourceType, float] = field(default_factory=lambda: dict(DEFAULT_SOURCE_WEIGHTS))
    # (max distance km, bonus) pairs checked in order
    proximity_bands: Tuple[Tuple[float, float], ...] = DEFAULT_PROXIMITY_BANDS

    def with_source_weights(self, overrides: Mapping[SourceType, float]) -> "ScoringWeights":
        merged = dict(self.source_weights)
        merged.update(overrides)
        return ScoringWeights(
            base=self.base,
            exact_match=self.exact_match,
            prefix_match=self.prefix_match,
            popularity=self.popularity,
            recency=self.recency,
            source_weights=merged,
            proximity_bands=self.proximity_bands,
        )


class RankingEngine:
    """Scores candidates additively and returns them best first.

    Identical inputs always produce identical scores and ordering: ties fall
    back to source priority, then to input order.
    """

    def __init__(
        self,
        weights: ScoringWeights | None = None,
        min_confidence: float = 0.1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.weights = weights or ScoringWeights()
        self.min_confidence = min_confidence
        self._clock = clock

    def score(
        self,
        candidate: SuggestionCandidate,
        query: str,
        location: Optional[GeoPoint] = None,
        now: Optional[float] = None,
    ) -> float:
        w = self.weights
        now = self._clock() if now is None else now
        text = normalize_text(candidate.text)
        typed = normalize_text(query)

        score = w.base * _clamp(candidate.base_score)
        if typed and text == typed:
            score += w.exact_match
        if typed and text.startswith(typed):
            score += w.prefix_match
        score += _clamp(w.source_weights.get(candidate.source_type, 0.0))
        if location is not None and candidate.location is not None:
            score += self._proximity_bonus(location, candidate.location)
        score += w.popularity * _clamp(candidate.global_popularity / 100.0)
        if candidate.last_used is not None:
            age = max(0.0, now - candidate.last_used)
            score += w.recency * _clamp(1.0 - age / RECENCY_WINDOW_SECONDS)
        return score

    def _proximity_bonus(self, origin: GeoPoint, target: GeoPoint) -> float:
        distance = haversine_km(origin.lat, origin.lon, target.lat, target.lon)
        for max_km, bonus in self.weights.proximity_bands:
            if distance < max_km:
                return _clamp(bonus)
        return 0.0

    def rank(
        self,
        candidates: Iterable[SuggestionCandidate],
        query: str,
        location: Optional[GeoPoint] = None,
        min_confidence: Optional[float] = None,
    ) -> List[RankedSuggestion]:
        threshold = self.min_confidence if min_confidence is None else min_confidence
        now = self._clock()
        priority = {source: idx for idx, source in enumerate(SOURCE_PRIORITY)}

        scored = []
        dropped = 0
        for index, candidate in enumerate(candidates):
            value = self.score(candidate, query, location, now)
            if value < threshold:
                dropped += 1
                continue
            scored.append((value, index, candidate))

        scored.sort(
            key=lambda entry: (
                -round(entry[0], 9),
                priority.get(entry[2].source_type, len(priority)),
                entry[1],
            )
        )
        logger.debug("rank query=%r kept=%s dropped=%s", query, len(scored), dropped)
        return [
            RankedSuggestion(**dict(candidate), final_score=value, position=position)
            for position, (value, _, candidate) in enumerate(scored, start=1)
        ]
