from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class Candidate:
    id: str
    title: str
    year: int | None = None
    genres: list[str] = field(default_factory=list)
    community_rating: float | None = None
    similarity: float | None = None  # cosine vs taste profile; None when no profile
    network: str | None = None  # series only
    payload: dict[str, Any] = field(default_factory=dict)
    # filled by the scorer
    novelty: float = 0.0
    rating_score: float = 0.0
    base_score: float = 0.0
    final_score: float = 0.0
    breakdown: ScoreBreakdown | None = None
    # filled by diversity selection
    diversity_boost: float | None = None
    selected_rank: int | None = None


@dataclass(frozen=True)
class ScoringConfig:
    similarity_weight: float = 0.4
    novelty_weight: float = 0.2
    rating_weight: float = 0.2
    recent_watch_limit: int = 50

    def __post_init__(self) -> None:
        ws = (self.similarity_weight, self.novelty_weight, self.rating_weight)
        if any(w < 0 for w in ws):
            raise ValueError("scoring weights must be non-negative")
        if sum(ws) <= 0:
            raise ValueError("at least one scoring weight must be positive")

    def normalized(self) -> Dict[str, float]:
        total = self.similarity_weight + self.novelty_weight + self.rating_weight
        return {
            "similarity": self.similarity_weight / total,
            "novelty": self.novelty_weight / total,
            "rating": self.rating_weight / total,
        }


@dataclass(frozen=True)
class FeatureContribution:
    feature: str  # "similarity", "novelty", "rating"
    value: float  # feature value (pre-weight)
    weight: float  # normalized weight used in this run
    contribution: float  # weight * value


@dataclass(frozen=True)
class ScoreBreakdown:
    features: Dict[str, FeatureContribution]  # keyed by feature name

    @property
    def total(self) -> float:
        return sum(fc.contribution for fc in self.features.values())


@dataclass
class SelectionResult:
    selected: list[Candidate]
    skipped_duplicates: list[dict[str, Any]] = field(default_factory=list)
