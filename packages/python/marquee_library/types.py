from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

ItemKind = Literal["movie", "series", "episode"]
Layout = Literal["flat", "folder"]


@dataclass
class LibraryItem:
    """One entry a virtual library should contain."""

    provider_item_id: str
    title: str
    kind: ItemKind = "movie"
    source: str | None = None  # file path or stream URL written into the pointer
    rank: int | None = None  # 1 = top; drives dateadded and sorttitle
    year: int | None = None
    original_title: str | None = None
    overview: str | None = None
    tagline: str | None = None
    genres: list[str] = field(default_factory=list)
    studios: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    community_rating: float | None = None
    critic_rating: float | None = None
    content_rating: str | None = None
    runtime_minutes: int | None = None
    imdb_id: str | None = None
    tmdb_id: str | None = None
    network: str | None = None  # series
    status: str | None = None  # series
    series_name: str | None = None  # episode
    season_number: int | None = None  # episode
    episode_number: int | None = None  # episode
    poster_url: str | None = None
    backdrop_url: str | None = None
    episodes: list[LibraryItem] = field(default_factory=list)  # series folders


@dataclass
class ImageTask:
    url: str
    dest: Path


@dataclass
class WriteResult:
    library_root: Path
    written: int = 0
    added: int = 0
    unchanged: int = 0
    deleted: int = 0
    failed: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)
    image_tasks: list[ImageTask] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return self.added > 0 or self.deleted > 0
