from __future__ import annotations

from typing import Sequence

from anyio import to_thread
from sqlalchemy import delete, select
from sqlalchemy.engine import Engine

from marquee_media.types import ResumeItem
from marquee_store.db import ensure_ts, upsert, utcnow
from marquee_store.tables import continue_watching as t_cw


class SqlContinueWatchingRepo:
    def __init__(self, engine: Engine):
        self.engine = engine

    # ---------- Async facade ----------
    async def existing_ids(self, user_id: str) -> set[str]:
        return await to_thread.run_sync(self._existing_ids_sync, user_id)

    async def upsert_items(self, user_id: str, items: Sequence[ResumeItem]) -> int:
        return await to_thread.run_sync(self._upsert_items_sync, user_id, items)

    async def delete_ids(self, user_id: str, provider_item_ids: Sequence[str]) -> int:
        return await to_thread.run_sync(self._delete_ids_sync, user_id, provider_item_ids)

    async def list_for_user(self, user_id: str) -> list[dict]:
        return await to_thread.run_sync(self._list_for_user_sync, user_id)

    # ---------- Private sync impls ----------
    def _existing_ids_sync(self, user_id: str) -> set[str]:
        stmt = select(t_cw.c.provider_item_id).where(t_cw.c.user_id == user_id)
        with self.engine.connect() as conn:
            return {row[0] for row in conn.execute(stmt)}

    def _upsert_items_sync(self, user_id: str, items: Sequence[ResumeItem]) -> int:
        if not items:
            return 0
        now = utcnow()
        rows = [
            {
                "user_id": user_id,
                "provider_item_id": it.id,
                "identity_key": it.identity_key,
                "media_type": it.media_type,
                "title": it.name,
                "year": it.year,
                "series_id": it.series_id,
                "series_name": it.series_name,
                "season_number": it.season_number,
                "episode_number": it.episode_number,
                "tmdb_id": it.tmdb_id,
                "imdb_id": it.imdb_id,
                "progress_percent": it.progress_percent,
                "playback_position_ticks": it.playback_position_ticks,
                "runtime_ticks": it.runtime_ticks,
                "last_played_at": it.last_played_at,
                "source_library_id": it.library_id,
                "source_library_name": it.library_name,
                "path": it.path,
                "updated_at": now,
            }
            for it in items
        ]
        with self.engine.begin() as conn:
            upsert(conn, t_cw, rows, conflict_cols=["user_id", "provider_item_id"])
        return len(rows)

    def _delete_ids_sync(self, user_id: str, provider_item_ids: Sequence[str]) -> int:
        if not provider_item_ids:
            return 0
        stmt = delete(t_cw).where(
            t_cw.c.user_id == user_id, t_cw.c.provider_item_id.in_(list(provider_item_ids))
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount

    def _list_for_user_sync(self, user_id: str) -> list[dict]:
        stmt = (
            select(t_cw)
            .where(t_cw.c.user_id == user_id)
            .order_by(t_cw.c.last_played_at.desc().nulls_last(), t_cw.c.provider_item_id)
        )
        with self.engine.connect() as conn:
            rows = [dict(r) for r in conn.execute(stmt).mappings()]
        for r in rows:
            r["last_played_at"] = ensure_ts(r["last_played_at"])
        return rows
