from __future__ import annotations

from typing import Optional

import numpy as np
from anyio import to_thread
from sqlalchemy import select, update
from sqlalchemy.engine import Engine

from marquee_core.types import MediaKind
from marquee_store.db import ensure_ts, upsert, utcnow
from marquee_store.tables import user_taste_profiles as t_profiles

from .schemas import TasteProfile, TasteProfileSettings


class SqlTasteProfileRepo:
    def __init__(self, engine: Engine):
        self.engine = engine

    # ---------- Async facade ----------
    async def get(self, user_id: str, kind: MediaKind) -> Optional[TasteProfile]:
        return await to_thread.run_sync(self._get_sync, user_id, kind)

    async def store_vector(self, user_id: str, kind: MediaKind, vector: np.ndarray, *, model: str) -> None:
        await to_thread.run_sync(self._store_vector_sync, user_id, kind, vector, model)

    async def update_settings(self, user_id: str, kind: MediaKind, settings: TasteProfileSettings) -> bool:
        return await to_thread.run_sync(self._update_settings_sync, user_id, kind, settings)

    async def invalidate(self, user_id: str, kind: MediaKind) -> bool:
        return await to_thread.run_sync(self._invalidate_sync, user_id, kind)

    # ---------- Private sync impls ----------
    def _get_sync(self, user_id: str, kind: MediaKind) -> Optional[TasteProfile]:
        stmt = select(t_profiles).where(
            t_profiles.c.user_id == user_id, t_profiles.c.media_type == kind.value
        )
        with self.engine.connect() as conn:
            r = conn.execute(stmt).mappings().first()
        if r is None:
            return None
        return TasteProfile(
            user_id=r["user_id"],
            media_type=kind,
            embedding=r["embedding"],
            embedding_model=r["embedding_model"],
            auto_updated_at=ensure_ts(r["auto_updated_at"]),
            user_modified_at=ensure_ts(r["user_modified_at"]),
            is_locked=bool(r["is_locked"]),
            refresh_interval_days=r["refresh_interval_days"],
        )

    def _store_vector_sync(self, user_id: str, kind: MediaKind, vector: np.ndarray, model: str) -> None:
        row = {
            "user_id": user_id,
            "media_type": kind.value,
            "embedding": [float(x) for x in vector],
            "embedding_model": model,
            "auto_updated_at": utcnow(),
        }
        # lock and refresh interval are user-owned; a rebuild never touches them
        with self.engine.begin() as conn:
            upsert(conn, t_profiles, [row], conflict_cols=["user_id", "media_type"])

    def _update_settings_sync(self, user_id: str, kind: MediaKind, settings: TasteProfileSettings) -> bool:
        values = settings.model_dump(exclude_none=True)
        if not values:
            return False
        values["user_modified_at"] = utcnow()
        row = {"user_id": user_id, "media_type": kind.value, **values}
        with self.engine.begin() as conn:
            upsert(conn, t_profiles, [row], conflict_cols=["user_id", "media_type"])
        return True

    def _invalidate_sync(self, user_id: str, kind: MediaKind) -> bool:
        stmt = (
            update(t_profiles)
            .where(t_profiles.c.user_id == user_id, t_profiles.c.media_type == kind.value)
            .values(auto_updated_at=None)
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0
