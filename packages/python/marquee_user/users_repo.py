from __future__ import annotations

from anyio import to_thread
from sqlalchemy import select
from sqlalchemy.engine import Engine

from marquee_core.types import UserRecord
from marquee_store.db import upsert
from marquee_store.tables import users as t_users


class SqlUserRepo:
    def __init__(self, engine: Engine):
        self.engine = engine

    async def list_enabled(self) -> list[UserRecord]:
        return await to_thread.run_sync(self._list_enabled_sync)

    async def get(self, user_id: str) -> UserRecord | None:
        return await to_thread.run_sync(self._get_sync, user_id)

    def _list_enabled_sync(self) -> list[UserRecord]:
        stmt = select(t_users).where(t_users.c.is_enabled.is_(True)).order_by(t_users.c.username)
        with self.engine.connect() as conn:
            return [_to_record(r) for r in conn.execute(stmt).mappings()]

    def _get_sync(self, user_id: str) -> UserRecord | None:
        with self.engine.connect() as conn:
            r = conn.execute(select(t_users).where(t_users.c.id == user_id)).mappings().first()
        return _to_record(r) if r else None

    def save_sync(self, user: UserRecord, *, enabled: bool = True) -> None:
        row = {
            "id": user.id,
            "provider_user_id": user.provider_user_id,
            "username": user.username,
            "display_name": user.display_name,
            "is_enabled": enabled,
        }
        with self.engine.begin() as conn:
            upsert(conn, t_users, [row], conflict_cols=["id"])


def _to_record(r) -> UserRecord:
    return UserRecord(
        id=r["id"],
        provider_user_id=r["provider_user_id"],
        username=r["username"],
        display_name=r["display_name"],
    )
