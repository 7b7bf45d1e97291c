from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

_FRACTION = re.compile(r"\.(\d+)")


def parse_server_datetime(value: str | None) -> datetime | None:
    """
    Parse a media-server timestamp into tz-aware UTC.

    Servers emit ISO-8601 with up to 7 fractional digits and a trailing Z;
    fractions are cut to microseconds so values of different precision compare
    by instant rather than as strings.
    """
    if not value:
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    raw = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), raw, count=1)
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class MediaUser(BaseModel):
    id: str
    name: str
    is_admin: bool = False
    is_disabled: bool = False


class MediaLibrary(BaseModel):
    id: str
    guid: str  # used in user policies
    name: str
    collection_type: str | None = None
    locations: list[str] = Field(default_factory=list)


class LibraryAccess(BaseModel):
    enable_all_folders: bool = True
    enabled_folders: list[str] = Field(default_factory=list)


class ResumeItem(BaseModel):
    """One partially watched movie or episode, as reported by the server."""

    id: str
    name: str
    type: Literal["Movie", "Episode"]
    library_id: str = ""
    library_name: str | None = None
    year: int | None = None
    series_id: str | None = None
    series_name: str | None = None
    season_number: int | None = None
    episode_number: int | None = None
    tmdb_id: str | None = None
    imdb_id: str | None = None
    playback_position_ticks: int = 0
    runtime_ticks: int = 0
    progress_percent: float = 0.0
    last_played_at: datetime | None = None
    path: str | None = None

    @property
    def identity_key(self) -> str:
        """Same title across libraries (4K + HD copies) shares a key."""
        if self.tmdb_id:
            return f"tmdb:{self.tmdb_id}"
        if self.imdb_id:
            return f"imdb:{self.imdb_id}"
        return f"id:{self.id}"

    @property
    def media_type(self) -> str:
        return "movie" if self.type == "Movie" else "episode"
