from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Sequence

import pytest
from sqlalchemy import insert

from marquee_core.config import MarqueeSettings
from marquee_core.context import PipelineContext
from marquee_core.types import UserRecord
from marquee_media.types import LibraryAccess, MediaLibrary, MediaUser, ResumeItem
from marquee_store.db import create_schema, get_engine
from marquee_store import tables as t

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def engine():
    eng = get_engine("sqlite://")
    create_schema(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture()
def settings(tmp_path: Path) -> MarqueeSettings:
    return MarqueeSettings(
        _env_file=None,
        database_url="sqlite://",
        media_server_api_key="test-key",
        openai_api_key=None,
        strm_root=tmp_path / "strm",
        library_path_prefix="/strm",
        rate_limit_backoff_s=5.0,
        rate_limit_max_retries=2,
        embedding_job_batch_size=2,
        continue_watching_excluded_library_ids=[],
    )


class FakeMediaServer:
    """In-memory stand-in for Emby/Jellyfin; records every mutating call."""

    def __init__(self):
        self.libraries: List[MediaLibrary] = [
            MediaLibrary(id="lib-movies", guid="guid-movies", name="Movies", locations=["/media/movies"]),
            MediaLibrary(id="lib-4k", guid="guid-4k", name="4K Movies", locations=["/media/4k"]),
        ]
        self.resume: Dict[str, List[ResumeItem]] = {}
        self.access: Dict[str, LibraryAccess] = {}
        self.paths: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.fail_resume_for: set = set()

    async def get_users(self) -> List[MediaUser]:
        return [MediaUser(id=uid, name=uid) for uid in self.resume]

    async def get_libraries(self) -> List[MediaLibrary]:
        return list(self.libraries)

    async def get_resume_items(self, user_id: str, *, limit: int = 100) -> List[ResumeItem]:
        if user_id in self.fail_resume_for:
            from marquee_core.errors import ProviderError

            raise ProviderError(f"resume fetch failed for {user_id}")
        return list(self.resume.get(user_id, []))[:limit]

    async def get_item_path(self, item_id: str):
        return self.paths.get(item_id)

    async def create_virtual_library(self, name: str, path: str, collection_type: str) -> MediaLibrary:
        n = len(self.libraries) + 1
        lib = MediaLibrary(id=f"vlib-{n}", guid=f"vguid-{n}", name=name, collection_type=collection_type, locations=[path])
        self.libraries.append(lib)
        self.calls.append(("create", name, path, collection_type))
        return lib

    async def refresh_library(self, library_id: str) -> None:
        self.calls.append(("refresh", library_id))

    async def get_user_library_access(self, user_id: str) -> LibraryAccess:
        return self.access.get(user_id, LibraryAccess(enable_all_folders=False, enabled_folders=["guid-movies"]))

    async def update_user_library_access(self, user_id: str, library_guids: List[str]) -> None:
        self.access[user_id] = LibraryAccess(enable_all_folders=False, enabled_folders=list(library_guids))
        self.calls.append(("access", user_id, tuple(library_guids)))

    async def set_library_sort_preference(self, user_id, library_id, sort_by="DateCreated", order="Descending"):
        self.calls.append(("sort", user_id, library_id, sort_by, order))

    def stream_url(self, item_id: str) -> str:
        return f"http://media.test/Videos/{item_id}/stream"

    async def aclose(self) -> None:
        return None


class FakeEmbeddingProvider:
    """
    Deterministic 3-d vectors; `script` is consumed one entry per embed() call,
    where an exception entry is raised instead of answering.
    """

    def __init__(self, model_id: str = "test-embed", script: Sequence[Any] = ()):
        self.model_id = model_id
        self.script = list(script)
        self.calls: List[List[str]] = []

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.script:
            step = self.script.pop(0)
            if isinstance(step, BaseException):
                raise step
        return [[float(len(text) % 7 + 1), 1.0, 0.5] for text in texts]

    async def aclose(self) -> None:
        return None


@pytest.fixture()
def media() -> FakeMediaServer:
    return FakeMediaServer()


@pytest.fixture()
def embedder() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture()
def ctx(settings, engine, media, embedder) -> PipelineContext:
    return PipelineContext(settings=settings, engine=engine, media=media, embedder=embedder)


class Seeder:
    """Row builders for the catalog, history and embedding tables."""

    def __init__(self, engine):
        self.engine = engine

    def _insert(self, table, **values) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            conn.execute(insert(table).values(**values))
        return values

    def user(self, user_id: str = "u1", username: str = "alice", display_name: str | None = None) -> UserRecord:
        self._insert(
            t.users,
            id=user_id,
            provider_user_id=f"emby-{user_id}",
            username=username,
            display_name=display_name,
            is_enabled=True,
        )
        return UserRecord(id=user_id, provider_user_id=f"emby-{user_id}", username=username, display_name=display_name)

    def movie(self, movie_id: str, title: str, *, year: int = 2000, genres=(), rating=None, library_id="lib-movies", **extra):
        return self._insert(
            t.movies,
            id=movie_id,
            provider_item_id=f"p-{movie_id}",
            title=title,
            year=year,
            genres=list(genres),
            community_rating=rating,
            library_id=library_id,
            path=f"/media/movies/{title}.mkv",
            **extra,
        )

    def series(self, series_id: str, title: str, *, total_episodes: int = 10, genres=(), network=None, rating=None, **extra):
        return self._insert(
            t.series,
            id=series_id,
            provider_item_id=f"p-{series_id}",
            title=title,
            year=2015,
            genres=list(genres),
            network=network,
            community_rating=rating,
            total_episodes=total_episodes,
            library_id="lib-shows",
            **extra,
        )

    def episodes(self, series_id: str, count: int, *, season: int = 1) -> List[str]:
        ids = []
        for n in range(1, count + 1):
            ep_id = f"{series_id}-s{season}e{n}"
            self._insert(
                t.episodes,
                id=ep_id,
                series_id=series_id,
                provider_item_id=f"p-{ep_id}",
                season_number=season,
                episode_number=n,
                title=f"Episode {n}",
                path=f"/media/shows/{series_id}/S{season:02d}E{n:02d}.mkv",
            )
            ids.append(ep_id)
        return ids

    def watch_movie(self, user_id: str, movie_id: str, *, days_ago: float = 1, play_count: int = 1, favorite: bool = False):
        self._insert(
            t.watch_history,
            user_id=user_id,
            media_type="movie",
            movie_id=movie_id,
            play_count=play_count,
            is_favorite=favorite,
            last_played_at=NOW - timedelta(days=days_ago),
        )

    def watch_episode(self, user_id: str, episode_id: str, *, days_ago: float = 1, favorite: bool = False):
        self._insert(
            t.watch_history,
            user_id=user_id,
            media_type="episode",
            episode_id=episode_id,
            play_count=1,
            is_favorite=favorite,
            last_played_at=NOW - timedelta(days=days_ago),
        )

    def rate(self, user_id: str, rating: float, *, movie_id: str | None = None, series_id: str | None = None):
        self._insert(t.user_ratings, user_id=user_id, movie_id=movie_id, series_id=series_id, rating=rating)

    def embedding(self, item_id: str, vector, *, kind: str = "movie", model: str = "test-embed"):
        table = t.movie_embeddings if kind == "movie" else t.series_embeddings
        self._insert(table, item_id=item_id, model=model, embedding=[float(x) for x in vector])


@pytest.fixture()
def seed(engine) -> Seeder:
    return Seeder(engine)


def resume_item(item_id: str, *, tmdb: str | None = None, library_id: str = "lib-movies", progress: float = 50.0,
                played: str | None = "2026-09-30T20:00:00.0000000Z", **extra) -> ResumeItem:
    from marquee_media.types import parse_server_datetime

    return ResumeItem(
        id=item_id,
        name=extra.pop("name", f"Title {item_id}"),
        type=extra.pop("type", "Movie"),
        library_id=library_id,
        tmdb_id=tmdb,
        progress_percent=progress,
        playback_position_ticks=int(progress * 1000),
        runtime_ticks=100_000,
        last_played_at=parse_server_datetime(played),
        **extra,
    )


@pytest.fixture()
def make_resume():
    return resume_item
