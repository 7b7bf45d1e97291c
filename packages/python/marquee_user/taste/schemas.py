from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, Field

from marquee_core.config import PROFILE_REFRESH_INTERVAL_DAYS
from marquee_core.types import MediaKind


class TasteProfile(BaseModel):
    user_id: str
    media_type: MediaKind
    embedding: list[float] | None = None
    embedding_model: str | None = None
    auto_updated_at: datetime | None = None
    user_modified_at: datetime | None = None
    is_locked: bool = False
    refresh_interval_days: int = Field(default=PROFILE_REFRESH_INTERVAL_DAYS, ge=1)

    def is_stale(self, *, model: str | None = None, now: datetime | None = None) -> bool:
        if self.embedding is None or self.auto_updated_at is None:
            return True
        if model is not None and self.embedding_model != model:
            return True
        now = now or datetime.now(timezone.utc)
        return now - self.auto_updated_at > timedelta(days=self.refresh_interval_days)


class TasteProfileSettings(BaseModel):
    is_locked: bool | None = None
    refresh_interval_days: int | None = Field(default=None, ge=1)
