from __future__ import annotations

from typing import Sequence

from anyio import to_thread
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.engine import Engine

from marquee_core.types import ItemId, MediaKind, WatchedItem
from marquee_store.db import ensure_ts
from marquee_store.filters import FilterSet
from marquee_store.tables import episodes as t_episodes
from marquee_store.tables import movies as t_movies
from marquee_store.tables import series as t_series
from marquee_store.tables import user_preferences as t_prefs
from marquee_store.tables import user_ratings as t_ratings
from marquee_store.tables import watch_history as t_history

DISLIKE_THRESHOLD = 3.0  # ratings at or below this count as a dislike


class SqlWatchHistoryRepo:
    """Watched titles per user, collapsed to one WatchedItem per movie or series."""

    def __init__(self, engine: Engine):
        self.engine = engine

    # ---------- Async facade ----------
    async def watched_items(
        self, user_id: str, kind: MediaKind, *, limit: int | None = None
    ) -> list[WatchedItem]:
        """Most recently played first; the user's excluded libraries are left out."""
        return await to_thread.run_sync(self._watched_items_sync, user_id, kind, limit)

    async def watched_ids(self, user_id: str, kind: MediaKind) -> set[ItemId]:
        return await to_thread.run_sync(self._watched_ids_sync, user_id, kind)

    async def disliked_ids(self, user_id: str, kind: MediaKind) -> set[ItemId]:
        return await to_thread.run_sync(self._disliked_ids_sync, user_id, kind)

    # ---------- Private sync impls ----------
    def _excluded_libraries(self, conn, user_id: str) -> list[str]:
        row = conn.execute(
            select(t_prefs.c.excluded_library_ids).where(t_prefs.c.user_id == user_id)
        ).first()
        return list(row.excluded_library_ids or []) if row else []

    def _watched_items_sync(self, user_id: str, kind: MediaKind, limit: int | None) -> list[WatchedItem]:
        with self.engine.connect() as conn:
            excluded = self._excluded_libraries(conn, user_id)
            if kind is MediaKind.MOVIE:
                return self._movie_items(conn, user_id, excluded, limit)
            return self._series_items(conn, user_id, excluded, limit)

    def _movie_items(self, conn, user_id: str, excluded: Sequence[str], limit: int | None) -> list[WatchedItem]:
        wh, m, ur = t_history, t_movies, t_ratings
        j = wh.join(m, m.c.id == wh.c.movie_id).outerjoin(
            ur, and_(ur.c.movie_id == m.c.id, ur.c.user_id == wh.c.user_id)
        )
        filters = (
            FilterSet()
            .add("user", wh.c.user_id == user_id)
            .add("kind", wh.c.media_type == "movie")
            .add(
                "library",
                or_(m.c.library_id.is_(None), m.c.library_id.notin_(list(excluded))),
                when=bool(excluded),
            )
        )
        stmt = filters.apply(
            select(
                m.c.id,
                m.c.title,
                m.c.genres,
                m.c.library_id,
                wh.c.play_count,
                wh.c.is_favorite,
                wh.c.last_played_at,
                ur.c.rating,
            ).select_from(j)
        ).order_by(wh.c.last_played_at.desc().nulls_last(), m.c.id)
        if limit:
            stmt = stmt.limit(limit)

        out: list[WatchedItem] = []
        seen: set[str] = set()
        for r in conn.execute(stmt):
            if r.id in seen:
                continue
            seen.add(r.id)
            out.append(
                WatchedItem(
                    id=r.id,
                    title=r.title,
                    genres=list(r.genres or []),
                    play_count=int(r.play_count or 1),
                    is_favorite=bool(r.is_favorite),
                    rating=r.rating,
                    last_played_at=ensure_ts(r.last_played_at),
                    library_id=r.library_id,
                )
            )
        return out

    def _series_items(self, conn, user_id: str, excluded: Sequence[str], limit: int | None) -> list[WatchedItem]:
        wh, e, s = t_history, t_episodes, t_series
        last_played = func.max(wh.c.last_played_at).label("last_played")
        filters = (
            FilterSet()
            .add("user", wh.c.user_id == user_id)
            .add("kind", wh.c.media_type == "episode")
            .add(
                "library",
                or_(s.c.library_id.is_(None), s.c.library_id.notin_(list(excluded))),
                when=bool(excluded),
            )
        )
        agg = filters.apply(
            select(
                s.c.id,
                func.count(func.distinct(e.c.id)).label("episodes_watched"),
                func.max(case((wh.c.is_favorite, 1), else_=0)).label("is_favorite"),
                last_played,
            ).select_from(wh.join(e, e.c.id == wh.c.episode_id).join(s, s.c.id == e.c.series_id))
        ).group_by(s.c.id).order_by(last_played.desc().nulls_last(), s.c.id)
        if limit:
            agg = agg.limit(limit)
        stats = conn.execute(agg).all()
        if not stats:
            return []

        ids = [r.id for r in stats]
        meta = {
            r.id: r
            for r in conn.execute(
                select(
                    s.c.id, s.c.title, s.c.genres, s.c.total_episodes, s.c.library_id, s.c.network
                ).where(s.c.id.in_(ids))
            )
        }
        ratings = {
            r.series_id: r.rating
            for r in conn.execute(
                select(t_ratings.c.series_id, func.max(t_ratings.c.rating).label("rating"))
                .where(t_ratings.c.user_id == user_id, t_ratings.c.series_id.in_(ids))
                .group_by(t_ratings.c.series_id)
            )
        }

        out: list[WatchedItem] = []
        for r in stats:
            info = meta[r.id]
            out.append(
                WatchedItem(
                    id=r.id,
                    title=info.title,
                    genres=list(info.genres or []),
                    episodes_watched=int(r.episodes_watched),
                    total_episodes=info.total_episodes,
                    is_favorite=bool(r.is_favorite),
                    rating=ratings.get(r.id),
                    last_played_at=ensure_ts(r.last_played),
                    library_id=info.library_id,
                    network=info.network,
                )
            )
        return out

    def _watched_ids_sync(self, user_id: str, kind: MediaKind) -> set[ItemId]:
        wh = t_history
        if kind is MediaKind.MOVIE:
            stmt = select(wh.c.movie_id).where(wh.c.user_id == user_id, wh.c.movie_id.is_not(None))
        else:
            stmt = (
                select(t_episodes.c.series_id)
                .select_from(wh.join(t_episodes, t_episodes.c.id == wh.c.episode_id))
                .where(wh.c.user_id == user_id)
            )
        with self.engine.connect() as conn:
            return {row[0] for row in conn.execute(stmt)}

    def _disliked_ids_sync(self, user_id: str, kind: MediaKind) -> set[ItemId]:
        col = t_ratings.c.movie_id if kind is MediaKind.MOVIE else t_ratings.c.series_id
        stmt = select(col).where(
            t_ratings.c.user_id == user_id,
            col.is_not(None),
            t_ratings.c.rating <= DISLIKE_THRESHOLD,
        )
        with self.engine.connect() as conn:
            return {row[0] for row in conn.execute(stmt)}
