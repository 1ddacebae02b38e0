"""Suggestion scoring and ordering."""

import pytest

from geosearch.models import GeoPoint, SourceType, SuggestionCandidate
from geosearch.ranking import RankingEngine, ScoringWeights

NOW = 1_700_000_000.0


def _candidate(text, source=SourceType.NAME, base=0.5, **extra):
    return SuggestionCandidate(id=f"{source.value}_{text}", source_type=source, text=text, base_score=base, **extra)


@pytest.fixture
def engine() -> RankingEngine:
    return RankingEngine(clock=lambda: NOW)


def test_exact_and_prefix_matches_outrank_unrelated_text(engine):
    candidates = [
        _candidate("Pizza Hut", SourceType.NAME, base=0.8),
        _candidate("pizza", SourceType.CATEGORY, base=0.5),
        _candidate("Sushi Place", SourceType.NAME, base=0.9),
    ]
    ranked = engine.rank(candidates, "pizza")
    assert [r.text for r in ranked] == ["pizza", "Pizza Hut", "Sushi Place"]
    assert [r.position for r in ranked] == [1, 2, 3]
    assert ranked[0].final_score == pytest.approx(0.5 + 0.5 + 0.3 + 0.3)
    assert ranked[1].final_score == pytest.approx(0.8 + 0.3 + 0.4)


def test_ranking_is_deterministic(engine):
    candidates = [_candidate(f"place {i}", base=0.5) for i in range(5)]
    first = engine.rank(candidates, "place")
    second = engine.rank(candidates, "place")
    assert [(r.id, r.final_score) for r in first] == [(r.id, r.final_score) for r in second]
    # Equal scores from one source keep input order
    assert [r.id for r in first] == [c.id for c in candidates]


def test_equal_scores_break_ties_by_source_priority():
    weights = ScoringWeights().with_source_weights({SourceType.CATEGORY: 0.2})
    engine = RankingEngine(weights, clock=lambda: NOW)
    trending = _candidate("burgers", SourceType.TRENDING, base=0.4)
    category = _candidate("burgers", SourceType.CATEGORY, base=0.4)
    ranked = engine.rank([trending, category], "bur")
    assert ranked[0].final_score == pytest.approx(ranked[1].final_score)
    assert [r.source_type for r in ranked] == [SourceType.CATEGORY, SourceType.TRENDING]


def test_source_weight_overrides_change_order():
    name = _candidate("Pizza Hut", SourceType.NAME, base=0.5)
    popular = _candidate("pizza hut delivery", SourceType.POPULAR, base=0.5)

    default = RankingEngine(clock=lambda: NOW).rank([popular, name], "pizza")
    assert default[0].source_type == SourceType.NAME

    boosted = RankingEngine(
        ScoringWeights().with_source_weights({SourceType.POPULAR: 0.9}), clock=lambda: NOW
    ).rank([popular, name], "pizza")
    assert boosted[0].source_type == SourceType.POPULAR


def test_candidates_below_min_confidence_are_dropped():
    weights = ScoringWeights().with_source_weights({SourceType.POPULAR: 0.0})
    engine = RankingEngine(weights, min_confidence=0.1, clock=lambda: NOW)
    weak = _candidate("xyz", SourceType.POPULAR, base=0.0)
    assert engine.rank([weak], "pizza") == []
    assert len(engine.rank([weak], "pizza", min_confidence=0.0)) == 1


def test_proximity_bands(engine, nyc):
    near = _candidate("near", base=0.0, location=GeoPoint(lat=nyc.lat + 0.001, lon=nyc.lon))
    mid = _candidate("mid", base=0.0, location=GeoPoint(lat=nyc.lat + 0.03, lon=nyc.lon))
    far = _candidate("far", base=0.0, location=GeoPoint(lat=nyc.lat + 1.0, lon=nyc.lon))
    assert engine.score(near, "q", nyc) == pytest.approx(0.4 + 0.3)
    assert engine.score(mid, "q", nyc) == pytest.approx(0.4 + 0.2)
    assert engine.score(far, "q", nyc) == pytest.approx(0.4)
    # Without a user location proximity is ignored
    assert engine.score(near, "q") == pytest.approx(0.4)


def test_popularity_and_recency_are_clamped(engine):
    hot = _candidate("hot", base=0.0, global_popularity=500, last_used=NOW)
    stale = _candidate("stale", base=0.0, global_popularity=50, last_used=NOW - 60 * 24 * 3600)
    assert engine.score(hot, "q") == pytest.approx(0.4 + 0.2 + 0.1)
    assert engine.score(stale, "q") == pytest.approx(0.4 + 0.1)


def test_base_score_is_clamped(engine):
    wild = _candidate("wild", base=7.5)
    assert engine.score(wild, "q") == pytest.approx(1.0 + 0.4)
