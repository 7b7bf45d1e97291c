from collections import Counter
from datetime import timedelta

import pytest

from marquee_core.types import WatchedItem
from marquee_ranking.scoring import (
    NEUTRAL_NOVELTY_SCORE,
    NEUTRAL_RATING_SCORE,
    blend_scores,
    genre_frequencies,
    novelty_score,
    rating_score,
    score_candidates,
)
from marquee_ranking.types import Candidate, ScoringConfig

from conftest import NOW


def test_blend_prefers_similar_over_novel():
    cfg = ScoringConfig(similarity_weight=0.5, novelty_weight=0.3, rating_weight=0.2)
    x = blend_scores(0.9, 0.1, 0.8, cfg)
    y = blend_scores(0.5, 0.9, 0.5, cfg)
    assert x.total == pytest.approx(0.64)
    assert y.total == pytest.approx(0.62)
    assert x.total > y.total
    assert x.features["rating"].contribution == pytest.approx(0.16)


def test_weights_are_renormalized():
    cfg = ScoringConfig(similarity_weight=2, novelty_weight=1, rating_weight=1)
    b = blend_scores(1.0, 0.0, 0.0, cfg)
    assert b.features["similarity"].weight == pytest.approx(0.5)
    assert b.total == pytest.approx(0.5)


@pytest.mark.parametrize("weights", [(0, 0, 0), (-0.1, 0.5, 0.5)])
def test_invalid_weights_rejected(weights):
    with pytest.raises(ValueError):
        ScoringConfig(*weights)


@pytest.mark.parametrize(
    "rating, expected",
    [
        (None, NEUTRAL_RATING_SCORE),
        (9.0, 0.9),
        (7.5, 0.7),
        (6.5, 0.5),
        (5.5, 0.3),
        (2.5, 0.1),
        (12.0, 1.0),
    ],
)
def test_rating_tiers(rating, expected):
    assert rating_score(rating) == pytest.approx(expected)


def test_novelty_bands():
    counts, total = Counter({"Drama": 3, "Crime": 1}), 4
    assert novelty_score([], counts, total) == NEUTRAL_NOVELTY_SCORE
    # all familiar: 0.4 + avg * 0.2
    assert novelty_score(["Drama"], counts, total) == pytest.approx(0.4 + 0.25 * 0.2)
    # partly new: 0.5 + avg * 0.4
    assert novelty_score(["Drama", "Western"], counts, total) == pytest.approx(0.5 + 0.625 * 0.4)
    # mostly new: 0.3 + avg * 0.2
    assert novelty_score(["Western", "Musical"], counts, total) == pytest.approx(0.5)
    # no history at all
    assert novelty_score(["Western"], Counter(), 0) == pytest.approx(0.3 + 0.5 * 0.2)


def test_genre_window_uses_most_recent_titles():
    watched = [
        WatchedItem(id="old", title="Old", genres=["Western"], last_played_at=NOW - timedelta(days=300)),
        WatchedItem(id="new", title="New", genres=["Drama"], last_played_at=NOW - timedelta(days=1)),
        WatchedItem(id="undated", title="Undated", genres=["Musical"]),
    ]
    counts, total = genre_frequencies(watched, limit=1)
    assert counts == Counter({"Drama": 1})
    assert total == 1


def test_missing_similarity_still_ranks():
    cands = [
        Candidate(id="a", title="A", genres=["Drama"], community_rating=5.0),
        Candidate(id="b", title="B", genres=["Drama"], community_rating=8.5),
    ]
    ranked = score_candidates(cands, [], ScoringConfig())
    assert [c.id for c in ranked] == ["b", "a"]
    assert ranked[0].breakdown.features["similarity"].value == 0.0
    assert ranked[0].final_score == ranked[0].base_score > 0


def test_equal_scores_keep_input_order():
    cands = [Candidate(id=str(i), title=f"T{i}", genres=["Drama"], similarity=0.5, community_rating=7) for i in range(5)]
    ranked = score_candidates(cands, [], ScoringConfig())
    assert [c.id for c in ranked] == ["0", "1", "2", "3", "4"]


def test_similarity_dominates_with_default_weights():
    watched = [WatchedItem(id="w", title="W", genres=["Drama"], last_played_at=NOW)]
    cands = [
        Candidate(id="far", title="Far", genres=["Drama"], similarity=0.1, community_rating=7),
        Candidate(id="near", title="Near", genres=["Drama"], similarity=0.9, community_rating=7),
    ]
    ranked = score_candidates(cands, watched, ScoringConfig())
    assert [c.id for c in ranked] == ["near", "far"]
    assert ranked[0].novelty == pytest.approx(0.4)
