from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Sequence

from marquee_core.types import WatchedItem
from marquee_ranking.types import Candidate, FeatureContribution, ScoreBreakdown, ScoringConfig

NEUTRAL_RATING_SCORE = 0.4  # unrated titles land just below "good" (6/10)
NEUTRAL_NOVELTY_SCORE = 0.5

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def rating_score(rating: float | None) -> float:
    """
    Community rating (0-10) to [0, 1] with extra resolution in the 6-9 band.

    8-10 -> 0.8-1.0, 7-8 -> 0.6-0.8, 6-7 -> 0.4-0.6, 5-6 -> 0.2-0.4, below 5 -> r / 25
    """
    if rating is None or math.isnan(rating):
        return NEUTRAL_RATING_SCORE
    r = min(10.0, max(0.0, float(rating)))
    if r >= 8:
        return 0.8 + (r - 8) * 0.1
    if r >= 7:
        return 0.6 + (r - 7) * 0.2
    if r >= 6:
        return 0.4 + (r - 6) * 0.2
    if r >= 5:
        return 0.2 + (r - 5) * 0.2
    return r / 25


def genre_frequencies(watched: Iterable[WatchedItem], limit: int) -> tuple[Counter[str], int]:
    """Genre counts over the `limit` most recently watched titles."""
    recent = sorted(watched, key=lambda w: w.last_played_at or _EPOCH, reverse=True)[:limit]
    counts: Counter[str] = Counter()
    for w in recent:
        counts.update(w.genres or [])
    return counts, sum(counts.values())


def novelty_score(genres: Sequence[str], counts: Counter[str], total: int) -> float:
    """
    How far a title sits from what the user has been watching lately.

    Unseen genres are rewarded only up to a point: a mostly unfamiliar genre
    mix scores lower than a partially unfamiliar one.
    """
    if not genres:
        return NEUTRAL_NOVELTY_SCORE

    per_genre = [(1.0 - counts.get(g, 0) / total) if total > 0 else 0.5 for g in genres]
    avg = sum(per_genre) / len(per_genre)
    unseen_ratio = sum(1 for g in genres if counts.get(g, 0) == 0) / len(genres)

    if 0 < unseen_ratio < 0.7:
        return 0.5 + avg * 0.4
    if unseen_ratio >= 0.7:
        return 0.3 + avg * 0.2
    return 0.4 + avg * 0.2


def blend_scores(
    similarity: float | None, novelty: float, rating: float, config: ScoringConfig
) -> ScoreBreakdown:
    w = config.normalized()
    values = {"similarity": float(similarity or 0.0), "novelty": novelty, "rating": rating}
    feats: Dict[str, FeatureContribution] = {
        name: FeatureContribution(
            feature=name,
            value=values[name],
            weight=w[name],
            contribution=w[name] * values[name],
        )
        for name in ("similarity", "novelty", "rating")
    }
    return ScoreBreakdown(features=feats)


def score_candidates(
    candidates: Sequence[Candidate],
    watched: Iterable[WatchedItem],
    config: ScoringConfig,
) -> List[Candidate]:
    """
    Score every candidate and return them sorted by final score, highest first.

    The sort is stable, so equal scores keep their input order. A candidate
    without a similarity still ranks, on novelty and rating alone.
    """
    counts, total = genre_frequencies(watched, config.recent_watch_limit)
    for c in candidates:
        c.novelty = novelty_score(c.genres, counts, total)
        c.rating_score = rating_score(c.community_rating)
        c.breakdown = blend_scores(c.similarity, c.novelty, c.rating_score, config)
        c.base_score = c.breakdown.total
        c.final_score = c.base_score
    return sorted(candidates, key=lambda c: c.final_score, reverse=True)
