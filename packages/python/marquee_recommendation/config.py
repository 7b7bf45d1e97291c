from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import BaseModel, Field, ValidationError, model_validator

from marquee_core.types import MediaKind
from marquee_ranking.types import ScoringConfig

log = logging.getLogger(__name__)


class MediaTypeConfig(BaseModel):
    max_candidates: int = Field(default=50000, ge=1)
    selected_count: int = Field(default=50, ge=1)
    recent_watch_limit: int = Field(default=50, ge=1)
    similarity_weight: float = Field(default=0.4, ge=0)
    novelty_weight: float = Field(default=0.2, ge=0)
    rating_weight: float = Field(default=0.2, ge=0)
    diversity_weight: float = Field(default=0.2, ge=0, le=1)

    @model_validator(mode="after")
    def _some_weight(self) -> MediaTypeConfig:
        if self.similarity_weight + self.novelty_weight + self.rating_weight <= 0:
            raise ValueError("similarity, novelty and rating weights cannot all be zero")
        return self

    def scoring(self) -> ScoringConfig:
        return ScoringConfig(
            similarity_weight=self.similarity_weight,
            novelty_weight=self.novelty_weight,
            rating_weight=self.rating_weight,
            recent_watch_limit=self.recent_watch_limit,
        )


class RecommendationConfig(BaseModel):
    movie: MediaTypeConfig = Field(default_factory=MediaTypeConfig)
    series: MediaTypeConfig = Field(
        default_factory=lambda: MediaTypeConfig(selected_count=12, recent_watch_limit=100)
    )

    def for_kind(self, kind: MediaKind, overrides: Mapping[str, Any] | None = None) -> MediaTypeConfig:
        """Global defaults for `kind`, with a user's overrides merged field by field."""
        base = self.movie if kind is MediaKind.MOVIE else self.series
        if not overrides:
            return base
        known = {k: v for k, v in overrides.items() if k in MediaTypeConfig.model_fields and v is not None}
        try:
            return MediaTypeConfig.model_validate({**base.model_dump(), **known})
        except ValidationError as e:
            log.warning("ignoring invalid recommendation overrides %s: %s", known, e)
            return base
