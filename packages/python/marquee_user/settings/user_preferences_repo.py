from __future__ import annotations

from anyio import to_thread
from sqlalchemy import select
from sqlalchemy.engine import Engine

from marquee_store.db import upsert
from marquee_store.tables import user_preferences as t_prefs

from .schemas import UserPreferences


class SqlUserPreferencesRepo:
    def __init__(self, engine: Engine):
        self.engine = engine

    # ---------- Async facade ----------
    async def get(self, user_id: str) -> UserPreferences:
        return await to_thread.run_sync(self._get_sync, user_id)

    async def save(self, prefs: UserPreferences) -> UserPreferences:
        return await to_thread.run_sync(self._save_sync, prefs)

    # ---------- Private sync impls ----------
    def _get_sync(self, user_id: str) -> UserPreferences:
        with self.engine.connect() as conn:
            r = conn.execute(select(t_prefs).where(t_prefs.c.user_id == user_id)).mappings().first()
        if r is None:
            return UserPreferences(user_id=user_id)
        return UserPreferences.model_validate(dict(r))

    def _save_sync(self, prefs: UserPreferences) -> UserPreferences:
        with self.engine.begin() as conn:
            upsert(conn, t_prefs, [prefs.model_dump()], conflict_cols=["user_id"])
        return prefs
