from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

ItemId = str
UserId = str


class MediaKind(str, Enum):
    MOVIE = "movie"
    SERIES = "series"


@dataclass
class WatchedItem:
    """One title from a user's watch history, collapsed per movie or per series."""

    id: ItemId
    title: str
    genres: list[str] = field(default_factory=list)
    play_count: int = 1
    episodes_watched: int | None = None  # series only
    total_episodes: int | None = None  # series only
    is_favorite: bool = False
    rating: float | None = None  # 1-10 or 1-5 scale
    last_played_at: datetime | None = None  # tz-aware
    library_id: str | None = None
    network: str | None = None

    @property
    def completion_rate(self) -> float | None:
        if not self.total_episodes:
            return None
        return (self.episodes_watched or 0) / self.total_episodes


@dataclass
class UserRecord:
    id: UserId
    provider_user_id: str
    username: str
    display_name: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.username


@dataclass
class EngagementParams:
    # series depth
    completion_high: float = 0.9
    completion_mid: float = 0.5
    completion_high_bonus: float = 1.5
    completion_mid_bonus: float = 1.2
    # movie rewatches
    rewatch_scale: float = 0.5
    favorite_bonus: float = 1.5
    # rating factor = rating_base + normalized_rating * rating_scale
    rating_base: float = 0.5
    rating_scale: float = 0.75
    # recency decay
    half_life_days: float = 180.0
    recency_floor: float = 0.25
